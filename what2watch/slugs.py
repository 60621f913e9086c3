from __future__ import annotations

import re

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")

MEDIA_PATH_PREFIX = {"movie": "/movie", "tv": "/tv"}


def encode(title: str | None) -> str:
    """Turn a title or name into a lowercase, hyphen-delimited URL segment.

    Every run of characters outside ``[a-z0-9]`` collapses into a single
    hyphen, so accented letters are dropped rather than transliterated
    (``"  Amélie!! "`` becomes ``"am-lie"``).
    """
    if not title:
        return ""
    return _NON_SLUG_CHARS.sub("-", title.lower()).strip("-")


def encode_person_slug(person_id: int, name: str | None) -> str:
    """Build the ``"{id}-{name}"`` segment used in person URLs.

    A name that encodes to nothing (empty, or only punctuation) yields the
    bare id, e.g. ``"42"`` rather than ``"42-"``; ``decode_person_id``
    accepts both forms.
    """
    slug = encode(name)
    if not slug:
        return str(person_id)
    return f"{person_id}-{slug}"


def decode_person_id(slug: str | None) -> int | None:
    """
    Recover the numeric id from an ``"{id}-{name}"`` path segment.

    Returns None when the leading segment is not an integer; callers treat
    that as a missing resource.
    """
    if not slug:
        return None
    head = slug.split("-", 1)[0]
    if not head.isdigit():
        return None
    try:
        return int(head)
    except ValueError:
        return None


def canonical_path(media_type: str, tmdb_id: int, title: str | None) -> str:
    prefix = MEDIA_PATH_PREFIX.get(media_type)
    if prefix is None:
        raise ValueError(f"unsupported media type: {media_type!r}")
    slug = encode(title)
    if not slug:
        return f"{prefix}/{tmdb_id}"
    return f"{prefix}/{tmdb_id}/{slug}"


def person_path(person_id: int, name: str | None) -> str:
    return f"/person/{encode_person_slug(person_id, name)}"


def needs_redirect(stored_title: str | None, requested_slug: str | None) -> bool:
    """True when the slug in the request no longer matches the stored title."""
    return encode(stored_title) != (requested_slug or "")
