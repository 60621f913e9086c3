# /what2watch/what2watch/routes/collections.py
from flask import Blueprint, Response, abort, current_app, jsonify, request

from ..auth import current_user_id, require_user
from ..db import get_db
from ..models import Collection
from ..ordering import EntryNotFoundError, ReorderIndexError
from ..pagination import paginate
from ..services import (
    DuplicateEntryError,
    ValidationError,
    add_entry,
    can_view,
    create_collection,
    delete_collection,
    export_entries_csv,
    filter_entries,
    get_collection,
    get_watchlist,
    import_entries_csv,
    list_collections,
    list_entries,
    remove_entry,
    reorder_filtered,
    set_positions,
    update_collection,
    update_entry,
)
from ..slugs import encode

bp = Blueprint("collections", __name__, url_prefix="/api")

# URL segment -> collection kind
KIND_BY_SEGMENT = {"playlists": "playlist", "lists": "list"}


@bp.errorhandler(ValidationError)
@bp.errorhandler(ReorderIndexError)
def _bad_request(exc):
    return jsonify({"ok": False, "error": str(exc)}), 400


@bp.errorhandler(DuplicateEntryError)
def _conflict(exc):
    return jsonify({"ok": False, "error": str(exc)}), 409


@bp.errorhandler(EntryNotFoundError)
def _item_not_found(exc):
    return jsonify({"ok": False, "error": "Item not found"}), 404


def _payload() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _page_args() -> tuple[int, int]:
    cfg = current_app.config
    try:
        page = int(request.args.get("page", 1))
        per_page = int(request.args.get("per_page", cfg["DEFAULT_PAGE_SIZE"]))
    except (TypeError, ValueError):
        raise ValidationError("page and per_page must be integers")
    return page, min(max(1, per_page), cfg["MAX_PAGE_SIZE"])


def _filter_args(source: dict) -> tuple[str | None, str | None]:
    search = source.get("q") or None
    media_type = source.get("type") or None
    if media_type not in (None, "movie", "tv"):
        raise ValidationError("type must be 'movie' or 'tv'")
    return search, media_type


def _collection_payload(collection: Collection) -> dict:
    """Collection plus the requested page of its (optionally filtered) entries."""
    conn = get_db()
    entries = list_entries(conn, collection.id)
    search, media_type = _filter_args(request.args)
    view = filter_entries(entries, search, media_type)
    page, per_page = _page_args()
    pager = paginate(len(view), page, per_page, current_app.config["PAGINATION_MAX_VISIBLE"])
    window = view[pager.offset:pager.offset + pager.per_page]
    return {
        "ok": True,
        "collection": {**collection.to_dict(), "slug": encode(collection.name), "item_count": len(entries)},
        "items": [entry.to_dict() for entry in window],
        "pagination": pager.to_dict(),
    }


def _owned(collection: Collection | None, user_id: int) -> Collection:
    if collection is None:
        abort(404, description="Collection not found")
    if collection.owner_id != user_id:
        abort(403, description="Access denied")
    return collection


def _viewable(collection: Collection | None) -> Collection:
    # Hidden collections answer 404 so their existence is not leaked.
    if collection is None or not can_view(collection, current_user_id()):
        abort(404, description="Collection not found")
    return collection


def _parse_item_patch(data: dict) -> dict:
    if "note" not in data and "position" not in data:
        raise ValidationError("At least one field (note or position) must be provided")
    note = data.get("note")
    if note is not None and not isinstance(note, str):
        raise ValidationError("Note must be a string or null")
    position = data.get("position")
    if position is not None and (not isinstance(position, int) or isinstance(position, bool)):
        raise ValidationError("Position must be an integer")
    return {"note": note, "position": position, "update_note": "note" in data}


def _parse_reorder(data: dict) -> dict:
    source_index = data.get("source_index")
    destination_index = data.get("destination_index")
    for name, value in (("source_index", source_index), ("destination_index", destination_index)):
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"{name} must be an integer")
    search, media_type = _filter_args(data)
    return {
        "source_index": source_index,
        "destination_index": destination_index,
        "search": search,
        "media_type": media_type,
    }


# ---------------------------------------------------------------------------
# Watchlist (one per user, positions start at 0)
# ---------------------------------------------------------------------------


@bp.get("/watchlist")
def watchlist_detail():
    user = require_user()
    collection = get_watchlist(get_db(), user["user_id"])
    if collection is None:
        return jsonify({"ok": True, "collection": None, "items": [], "pagination": paginate(0, 1, 1).to_dict()})
    return jsonify(_collection_payload(collection))


@bp.post("/watchlist")
def watchlist_add():
    """Add a movie or show to the caller's watchlist, creating it on first use."""
    user = require_user()
    conn = get_db()
    collection = get_watchlist(conn, user["user_id"], create=True)
    entry = add_entry(conn, collection, _payload())
    return jsonify({"ok": True, "item": entry.to_dict()}), 201


@bp.patch("/watchlist/items/<int:item_id>")
def watchlist_item_update(item_id: int):
    user = require_user()
    conn = get_db()
    collection = get_watchlist(conn, user["user_id"])
    if collection is None:
        abort(404, description="Watchlist not found")
    entry = update_entry(conn, collection, item_id, **_parse_item_patch(_payload()))
    return jsonify({"ok": True, "item": entry.to_dict()})


@bp.delete("/watchlist/items/<int:item_id>")
def watchlist_item_remove(item_id: int):
    user = require_user()
    conn = get_db()
    collection = get_watchlist(conn, user["user_id"])
    if collection is None:
        abort(404, description="Watchlist not found")
    moved = remove_entry(conn, collection, item_id)
    return jsonify({"ok": True, "repacked": moved})


@bp.post("/watchlist/reorder")
def watchlist_reorder():
    user = require_user()
    conn = get_db()
    collection = get_watchlist(conn, user["user_id"])
    if collection is None:
        abort(404, description="Watchlist not found")
    updates = reorder_filtered(conn, collection, **_parse_reorder(_payload()))
    return jsonify({"ok": True, "updates": [u.to_dict() for u in updates]})


# ---------------------------------------------------------------------------
# Playlists and lists (many per user, positions start at 1)
# ---------------------------------------------------------------------------


@bp.get("/<any(playlists, lists):segment>")
def collections_index(segment: str):
    """Caller's own collections, or a user's public ones with ?owner_id=."""
    kind = KIND_BY_SEGMENT[segment]
    viewer_id = current_user_id()
    owner_id = request.args.get("owner_id", type=int)
    if owner_id is None:
        if viewer_id is None:
            abort(401, description="Authentication required")
        owner_id = viewer_id
    collections = list_collections(get_db(), kind, owner_id=owner_id, viewer_id=viewer_id)
    return jsonify({"ok": True, segment: [c.to_dict() for c in collections]})


@bp.post("/<any(playlists, lists):segment>")
def collections_create(segment: str):
    user = require_user()
    data = _payload()
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required")
    description = data.get("description") or ""
    if not isinstance(description, str):
        raise ValidationError("description must be a string")
    collection = create_collection(
        get_db(),
        user["user_id"],
        KIND_BY_SEGMENT[segment],
        name.strip(),
        description,
        data.get("visibility") or ("PUBLIC" if segment == "lists" else "PRIVATE"),
    )
    return jsonify({"ok": True, "collection": collection.to_dict()}), 201


@bp.get("/<any(playlists, lists):segment>/<int:collection_id>")
def collection_detail(segment: str, collection_id: int):
    collection = _viewable(get_collection(get_db(), collection_id, KIND_BY_SEGMENT[segment]))
    return jsonify(_collection_payload(collection))


@bp.patch("/<any(playlists, lists):segment>/<int:collection_id>")
def collection_update(segment: str, collection_id: int):
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, KIND_BY_SEGMENT[segment]), user["user_id"])
    updated = update_collection(conn, collection, _payload())
    return jsonify({"ok": True, "collection": updated.to_dict()})


@bp.delete("/<any(playlists, lists):segment>/<int:collection_id>")
def collection_delete(segment: str, collection_id: int):
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, KIND_BY_SEGMENT[segment]), user["user_id"])
    delete_collection(conn, collection)
    return jsonify({"ok": True})


@bp.post("/<any(playlists, lists):segment>/<int:collection_id>/items")
def collection_item_add(segment: str, collection_id: int):
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, KIND_BY_SEGMENT[segment]), user["user_id"])
    entry = add_entry(conn, collection, _payload())
    return jsonify({"ok": True, "item": entry.to_dict()}), 201


@bp.patch("/<any(playlists, lists):segment>/<int:collection_id>/items/<int:item_id>")
def collection_item_update(segment: str, collection_id: int, item_id: int):
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, KIND_BY_SEGMENT[segment]), user["user_id"])
    entry = update_entry(conn, collection, item_id, **_parse_item_patch(_payload()))
    return jsonify({"ok": True, "item": entry.to_dict()})


@bp.delete("/<any(playlists, lists):segment>/<int:collection_id>/items/<int:item_id>")
def collection_item_remove(segment: str, collection_id: int, item_id: int):
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, KIND_BY_SEGMENT[segment]), user["user_id"])
    moved = remove_entry(conn, collection, item_id)
    return jsonify({"ok": True, "repacked": moved})


@bp.post("/<any(playlists, lists):segment>/<int:collection_id>/reorder")
def collection_reorder(segment: str, collection_id: int):
    """Drag-and-drop inside a (possibly filtered) view; renumbers the whole collection."""
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, KIND_BY_SEGMENT[segment]), user["user_id"])
    updates = reorder_filtered(conn, collection, **_parse_reorder(_payload()))
    return jsonify({"ok": True, "updates": [u.to_dict() for u in updates]})


@bp.patch("/lists/<int:collection_id>/positions")
def list_positions(collection_id: int):
    """Explicit ``{items: [{id, position}]}`` batch covering the whole list."""
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, "list"), user["user_id"])
    items = _payload().get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("Items must be a non-empty array")
    updates = set_positions(conn, collection, items)
    return jsonify({"ok": True, "updated": len(updates)})


@bp.get("/lists/<int:collection_id>/export")
def list_export(collection_id: int):
    collection = _viewable(get_collection(get_db(), collection_id, "list"))
    body = export_entries_csv(list_entries(get_db(), collection.id))
    filename = f"{encode(collection.name) or 'list'}-{collection.id}.csv"
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.post("/<any(playlists, lists):segment>/<int:collection_id>/import")
def collection_import(segment: str, collection_id: int):
    """
    Import a CSV in the export format, sent as the raw body or as a
    multipart ``file`` field. ``?duplicates=skip`` leaves existing items
    untouched; the default updates them.
    """
    user = require_user()
    conn = get_db()
    collection = _owned(get_collection(conn, collection_id, KIND_BY_SEGMENT[segment]), user["user_id"])

    if request.mimetype == "multipart/form-data":
        upload = request.files.get("file")
        if upload is None:
            raise ValidationError("No file provided")
        raw = upload.read()
    else:
        raw = request.get_data()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("CSV must be UTF-8 encoded")
    if not text.strip():
        raise ValidationError("CSV is empty")

    duplicates = (request.values.get("duplicates") or "update").lower()
    if duplicates not in ("update", "skip"):
        raise ValidationError("duplicates must be 'update' or 'skip'")

    result = import_entries_csv(conn, collection, text, update_existing=duplicates == "update")
    return jsonify({"ok": True, **result})
