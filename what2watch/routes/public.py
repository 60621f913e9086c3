# /what2watch/what2watch/routes/public.py
from flask import Blueprint, current_app, jsonify, redirect, request, url_for

from ..db import query
from ..pagination import page_window
from ..slugs import canonical_path, encode, needs_redirect, person_path, decode_person_id
from ..tmdb import TMDbClient, TMDbError, image_url

bp = Blueprint("public", __name__, url_prefix="/api")


def _tmdb() -> TMDbClient:
    """Return the app's TMDb client, building it from settings on first use."""
    client = current_app.config.get("TMDB_CLIENT")
    if client is None:
        if not current_app.config.get("TMDB_API_KEY"):
            raise TMDbError("TMDB_API_KEY is not configured")
        client = TMDbClient(
            current_app.config.get("TMDB_API_KEY"),
            timeout=current_app.config.get("TMDB_TIMEOUT", 20),
        )
        current_app.config["TMDB_CLIENT"] = client
    return client


def _get_int(param: str | None, default: int, minimum: int = 1, maximum: int | None = None) -> int:
    try:
        value = int(param) if param is not None else default
    except (TypeError, ValueError):
        value = default
    value = max(minimum, value)
    if maximum is not None:
        value = min(value, maximum)
    return value


def _result_path(item: dict) -> str | None:
    media_type = item.get("media_type")
    if media_type in ("movie", "tv") and item.get("tmdb_id") is not None:
        return canonical_path(media_type, item["tmdb_id"], item.get("title"))
    if media_type == "person" and item.get("tmdb_id") is not None:
        return person_path(item["tmdb_id"], item.get("title"))
    return None


@bp.get("/health")
def health():
    """
    Lightweight readiness check.

    Runs a trivial query so a broken SQLite file surfaces as a 503.
    """
    try:
        query("SELECT 1")
    except Exception as exc:
        current_app.logger.exception("/api/health failed")
        return jsonify({"status": "unhealthy", "error": str(exc)}), 503
    return jsonify({"status": "healthy"})


@bp.get("/search")
def search():
    q = (request.args.get("q") or "").strip()
    page = _get_int(request.args.get("page"), 1)
    client = _tmdb()
    data = client.search_multi(q, page)

    results = []
    for raw in data.get("results", []):
        item = client.normalize(raw)
        item["path"] = _result_path(item)
        results.append(item)

    total_pages = max(1, int(data.get("total_pages") or 1))
    current = min(int(data.get("page") or page), total_pages)
    return jsonify({
        "page": current,
        "total_pages": total_pages,
        "total_results": data.get("total_results", 0),
        "pages": page_window(current, total_pages, current_app.config["PAGINATION_MAX_VISIBLE"]),
        "results": results,
    })


def _title_detail(media_type: str, tmdb_id: int, slug: str | None):
    """
    Title details keyed by TMDb id.

    The slug is decorative: when it no longer matches the current title the
    client is sent to the canonical URL with a permanent redirect.
    """
    details = _tmdb().details(media_type, tmdb_id)
    title = details.get("title") or details.get("name") or ""

    if needs_redirect(title, slug) and encode(title):
        target = url_for(f"public.{media_type}_detail", tmdb_id=tmdb_id, slug=encode(title))
        return redirect(target, code=301)

    payload = {
        **details,
        "media_type": media_type,
        "tmdb_id": tmdb_id,
        "title": title,
        "slug": encode(title),
        "canonical_path": canonical_path(media_type, tmdb_id, title),
        "poster_url": image_url(details.get("poster_path")),
    }
    return jsonify(payload)


@bp.get("/movie/<int:tmdb_id>", defaults={"slug": None})
@bp.get("/movie/<int:tmdb_id>/<slug>")
def movie_detail(tmdb_id: int, slug: str | None):
    return _title_detail("movie", tmdb_id, slug)


@bp.get("/tv/<int:tmdb_id>", defaults={"slug": None})
@bp.get("/tv/<int:tmdb_id>/<slug>")
def tv_detail(tmdb_id: int, slug: str | None):
    return _title_detail("tv", tmdb_id, slug)


@bp.get("/person/<slug>")
def person_detail(slug: str):
    person_id = decode_person_id(slug)
    if person_id is None:
        return jsonify({"ok": False, "error": "Person not found"}), 404

    person = _tmdb().person_details(person_id)
    name = person.get("name") or ""
    canonical = person_path(person_id, name)
    if canonical != f"/person/{slug}":
        return redirect(url_for("public.person_detail", slug=canonical.rsplit("/", 1)[-1]), code=301)

    return jsonify({
        **person,
        "person_id": person_id,
        "canonical_path": canonical,
        "profile_image_url": image_url(person.get("profile_path"), "w185"),
    })


@bp.get("/pagination")
def pagination():
    """Page window for clients that render their own pager."""
    try:
        page = int(request.args.get("page", 1))
        total_pages = int(request.args.get("total_pages", 1))
        max_visible = int(request.args.get("max_visible", current_app.config["PAGINATION_MAX_VISIBLE"]))
        pages = page_window(page, total_pages, max_visible)
    except (TypeError, ValueError) as exc:
        return jsonify({"ok": False, "error": str(exc)}), 400
    return jsonify({"ok": True, "page": page, "total_pages": total_pages, "pages": pages})
