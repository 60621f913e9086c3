from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

COLLECTION_KINDS = ("watchlist", "playlist", "list")
VISIBILITIES = ("PRIVATE", "PUBLIC", "FOLLOWERS_ONLY")
MEDIA_TYPES = ("movie", "tv")

# First position value per collection kind.
POSITION_BASE = {"watchlist": 0, "playlist": 1, "list": 1}

INTEGER_TEXT = re.compile(r"-?\d+")

USERS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    display_name TEXT,
    is_admin INTEGER DEFAULT 0 CHECK (is_admin IN (0, 1)),
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

COLLECTIONS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS collections (
    collection_id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id INTEGER NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    kind TEXT NOT NULL CHECK (kind IN ('watchlist', 'playlist', 'list')),
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    visibility TEXT NOT NULL DEFAULT 'PRIVATE'
        CHECK (visibility IN ('PRIVATE', 'PUBLIC', 'FOLLOWERS_ONLY')),
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""

ITEMS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS collection_items (
    item_id INTEGER PRIMARY KEY AUTOINCREMENT,
    collection_id INTEGER NOT NULL REFERENCES collections(collection_id) ON DELETE CASCADE,
    media_type TEXT NOT NULL CHECK (media_type IN ('movie', 'tv')),
    tmdb_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    title TEXT NOT NULL,
    poster_path TEXT,
    note TEXT,
    added_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (collection_id, media_type, tmdb_id)
);
"""

INDEX_SQL: Sequence[str] = (
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_items_collection_position ON collection_items (collection_id, position);",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_collections_one_watchlist ON collections (owner_id) WHERE kind = 'watchlist';",
    "CREATE INDEX IF NOT EXISTS ix_collections_owner_kind ON collections (owner_id, kind);",
)


def init_db(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they do not yet exist."""
    conn.execute(USERS_TABLE_SQL)
    conn.execute(COLLECTIONS_TABLE_SQL)
    conn.execute(ITEMS_TABLE_SQL)
    for stmt in INDEX_SQL:
        conn.execute(stmt)
    conn.commit()


def ensure_user(conn: sqlite3.Connection, email: str, display_name: str | None = None, is_admin: bool = False) -> int:
    """Return the id of the user with ``email``, inserting the row if needed."""
    row = conn.execute(
        "SELECT user_id FROM users WHERE lower(email) = lower(?) LIMIT 1",
        (email,),
    ).fetchone()
    if row:
        return int(row["user_id"])
    cur = conn.execute(
        "INSERT INTO users (email, display_name, is_admin) VALUES (?, ?, ?)",
        (email, display_name, 1 if is_admin else 0),
    )
    conn.commit()
    return int(cur.lastrowid)


class RowDecodeError(ValueError):
    """A stored row does not have the shape the application expects."""


def _as_int(data: Mapping[str, Any], key: str) -> int:
    if key not in data:
        raise RowDecodeError(f"missing column {key!r}")
    value = data[key]
    if isinstance(value, bool):
        raise RowDecodeError(f"{key!r} is a boolean, expected an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and INTEGER_TEXT.fullmatch(value.strip()):
        return int(value.strip())
    raise RowDecodeError(f"{key!r} has unrecognised value {value!r}")


def _as_choice(data: Mapping[str, Any], key: str, choices: Sequence[str]) -> str:
    value = data.get(key)
    if value not in choices:
        raise RowDecodeError(f"{key!r} must be one of {', '.join(choices)}, got {value!r}")
    return value


def _as_text(data: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    value = data.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise RowDecodeError(f"{key!r} must be text, got {type(value).__name__}")
    return value


@dataclass
class Collection:
    id: int
    owner_id: int
    kind: str
    name: str
    description: str
    visibility: str
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def base(self) -> int:
        return POSITION_BASE[self.kind]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "kind": self.kind,
            "name": self.name,
            "description": self.description,
            "visibility": self.visibility,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Entry:
    id: int
    collection_id: int
    media_type: str
    tmdb_id: int
    position: int
    title: str
    poster_path: str | None = None
    note: str | None = None
    added_at: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "collection_id": self.collection_id,
            "media_type": self.media_type,
            "tmdb_id": self.tmdb_id,
            "position": self.position,
            "title": self.title,
            "poster_path": self.poster_path,
            "note": self.note,
            "added_at": self.added_at,
        }


def collection_from_row(row: Mapping[str, Any]) -> Collection:
    """Decode a ``collections`` row, failing closed on unexpected shapes."""
    data = dict(row)
    return Collection(
        id=_as_int(data, "collection_id"),
        owner_id=_as_int(data, "owner_id"),
        kind=_as_choice(data, "kind", COLLECTION_KINDS),
        name=_as_text(data, "name") or "",
        description=_as_text(data, "description", "") or "",
        visibility=_as_choice(data, "visibility", VISIBILITIES),
        created_at=_as_text(data, "created_at"),
        updated_at=_as_text(data, "updated_at"),
    )


def entry_from_row(row: Mapping[str, Any]) -> Entry:
    """Decode a ``collection_items`` row, failing closed on unexpected shapes."""
    data = dict(row)
    title = _as_text(data, "title")
    if not title:
        raise RowDecodeError("'title' must be a non-empty string")
    return Entry(
        id=_as_int(data, "item_id"),
        collection_id=_as_int(data, "collection_id"),
        media_type=_as_choice(data, "media_type", MEDIA_TYPES),
        tmdb_id=_as_int(data, "tmdb_id"),
        position=_as_int(data, "position"),
        title=title,
        poster_path=_as_text(data, "poster_path"),
        note=_as_text(data, "note"),
        added_at=_as_text(data, "added_at"),
    )
