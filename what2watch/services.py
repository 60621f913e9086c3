from __future__ import annotations

import csv
import io
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Sequence

from .models import (
    COLLECTION_KINDS,
    INTEGER_TEXT,
    MEDIA_TYPES,
    VISIBILITIES,
    Collection,
    Entry,
    collection_from_row,
    entry_from_row,
)
from .ordering import (
    EntryNotFoundError,
    PositionUpdate,
    assign_positions,
    is_densely_packed,
    move_entry,
    next_position,
    repack_positions,
)

logger = logging.getLogger("what2watch.collections")

EXPORT_COLUMNS = ("position", "media_type", "tmdb_id", "title", "poster_path", "note", "added_at")

# Header names accepted for an explicit position, first match wins.
IMPORT_POSITION_COLUMNS = ("position", "order", "rank", "sortorder")
MAX_IMPORT_ROWS = 1000


class ValidationError(ValueError):
    """Request data cannot be applied to a collection."""


class DuplicateEntryError(ValidationError):
    pass


class InvalidPositionBatch(ValidationError):
    pass


def _now() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


def get_collection(conn: sqlite3.Connection, collection_id: int, kind: str | None = None) -> Collection | None:
    row = conn.execute(
        "SELECT * FROM collections WHERE collection_id = ?",
        (collection_id,),
    ).fetchone()
    if not row:
        return None
    collection = collection_from_row(row)
    if kind is not None and collection.kind != kind:
        return None
    return collection


def get_watchlist(conn: sqlite3.Connection, owner_id: int, create: bool = False) -> Collection | None:
    """Return the owner's watchlist, creating an empty one when ``create`` is set."""
    row = conn.execute(
        "SELECT * FROM collections WHERE owner_id = ? AND kind = 'watchlist'",
        (owner_id,),
    ).fetchone()
    if row:
        return collection_from_row(row)
    if not create:
        return None
    return create_collection(conn, owner_id, "watchlist", "Watchlist")


def create_collection(
    conn: sqlite3.Connection,
    owner_id: int,
    kind: str,
    name: str,
    description: str = "",
    visibility: str = "PRIVATE",
) -> Collection:
    if kind not in COLLECTION_KINDS:
        raise ValidationError(f"kind must be one of {', '.join(COLLECTION_KINDS)}")
    if visibility not in VISIBILITIES:
        raise ValidationError(f"visibility must be one of {', '.join(VISIBILITIES)}")
    now = _now()
    with conn:
        cur = conn.execute(
            """
            INSERT INTO collections (owner_id, kind, name, description, visibility, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (owner_id, kind, name, description or "", visibility, now, now),
        )
    logger.info(f"Created {kind} {cur.lastrowid} for user {owner_id}")
    return get_collection(conn, int(cur.lastrowid))


def list_collections(
    conn: sqlite3.Connection,
    kind: str,
    owner_id: int | None = None,
    viewer_id: int | None = None,
) -> List[Collection]:
    """
    Collections of one kind, most recently updated first.

    With ``owner_id`` the listing is scoped to that owner; anything the
    viewer may not see is dropped.
    """
    sql = "SELECT * FROM collections WHERE kind = ?"
    params: list = [kind]
    if owner_id is not None:
        sql += " AND owner_id = ?"
        params.append(owner_id)
    sql += " ORDER BY updated_at DESC, collection_id DESC"
    rows = conn.execute(sql, params).fetchall()
    collections = [collection_from_row(row) for row in rows]
    return [c for c in collections if can_view(c, viewer_id)]


def can_view(collection: Collection, viewer_id: int | None) -> bool:
    # Follow relationships are not modelled, so FOLLOWERS_ONLY is owner-only.
    if collection.visibility == "PUBLIC":
        return True
    return viewer_id is not None and viewer_id == collection.owner_id


def update_collection(conn: sqlite3.Connection, collection: Collection, changes: Dict[str, Any]) -> Collection:
    allowed = {k: v for k, v in changes.items() if k in {"name", "description", "visibility"}}
    if "visibility" in allowed and allowed["visibility"] not in VISIBILITIES:
        raise ValidationError(f"visibility must be one of {', '.join(VISIBILITIES)}")
    if "name" in allowed and not (isinstance(allowed["name"], str) and allowed["name"].strip()):
        raise ValidationError("name must be non-empty")
    if "description" in allowed and not isinstance(allowed["description"] or "", str):
        raise ValidationError("description must be a string")
    if not allowed:
        return collection
    assignments = ", ".join(f"{column} = ?" for column in allowed)
    with conn:
        conn.execute(
            f"UPDATE collections SET {assignments}, updated_at = ? WHERE collection_id = ?",
            (*allowed.values(), _now(), collection.id),
        )
    return get_collection(conn, collection.id)


def delete_collection(conn: sqlite3.Connection, collection: Collection) -> None:
    with conn:
        conn.execute("DELETE FROM collections WHERE collection_id = ?", (collection.id,))
    logger.info(f"Deleted {collection.kind} {collection.id}")


def touch_collection(conn: sqlite3.Connection, collection_id: int) -> None:
    conn.execute(
        "UPDATE collections SET updated_at = ? WHERE collection_id = ?",
        (_now(), collection_id),
    )


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


def list_entries(conn: sqlite3.Connection, collection_id: int) -> List[Entry]:
    """All entries of a collection in position order."""
    rows = conn.execute(
        "SELECT * FROM collection_items WHERE collection_id = ? ORDER BY position ASC, item_id ASC",
        (collection_id,),
    ).fetchall()
    return [entry_from_row(row) for row in rows]


def filter_entries(entries: Iterable[Entry], search: str | None = None, media_type: str | None = None) -> List[Entry]:
    """The filtered view: entries matching the search term and type, order preserved."""
    needle = (search or "").strip().lower()
    view = []
    for entry in entries:
        if needle and needle not in entry.title.lower():
            continue
        if media_type and entry.media_type != media_type:
            continue
        view.append(entry)
    return view


def add_entry(conn: sqlite3.Connection, collection: Collection, payload: Dict[str, Any]) -> Entry:
    """Append a catalog item to the end of the collection."""
    media_type = payload.get("media_type")
    tmdb_id = payload.get("tmdb_id")
    title = payload.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if media_type not in MEDIA_TYPES:
        raise ValidationError("media_type must be 'movie' or 'tv'")
    if not isinstance(tmdb_id, int) or isinstance(tmdb_id, bool):
        raise ValidationError("tmdb_id must be an integer")
    if not title:
        raise ValidationError("title is required")
    for optional in ("poster_path", "note"):
        if payload.get(optional) is not None and not isinstance(payload[optional], str):
            raise ValidationError(f"{optional} must be a string or null")

    entries = list_entries(conn, collection.id)
    if any(e.media_type == media_type and e.tmdb_id == tmdb_id for e in entries):
        raise DuplicateEntryError(f"{media_type} {tmdb_id} is already in this {collection.kind}")

    position = next_position(entries, base=collection.base)
    with conn:
        cur = conn.execute(
            """
            INSERT INTO collection_items (collection_id, media_type, tmdb_id, position, title, poster_path, note, added_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                collection.id,
                media_type,
                tmdb_id,
                position,
                title,
                payload.get("poster_path"),
                payload.get("note"),
                _now(),
            ),
        )
        touch_collection(conn, collection.id)
    row = conn.execute("SELECT * FROM collection_items WHERE item_id = ?", (cur.lastrowid,)).fetchone()
    return entry_from_row(row)


def remove_entry(conn: sqlite3.Connection, collection: Collection, item_id: int) -> int:
    """Delete an entry and re-pack the remaining positions. Returns the number of moved entries."""
    with conn:
        deleted = conn.execute(
            "DELETE FROM collection_items WHERE item_id = ? AND collection_id = ?",
            (item_id, collection.id),
        ).rowcount
        if not deleted:
            raise EntryNotFoundError(item_id)
        remaining = list_entries(conn, collection.id)
        updates = repack_positions(remaining, base=collection.base)
        apply_position_updates(conn, collection.id, updates)
        touch_collection(conn, collection.id)
    return len(updates)


def update_entry(
    conn: sqlite3.Connection,
    collection: Collection,
    item_id: int,
    note: Any = None,
    position: int | None = None,
    update_note: bool = False,
) -> Entry:
    """Change an entry's note and/or move it to an explicit position."""
    with conn:
        entries = list_entries(conn, collection.id)
        if not any(e.id == item_id for e in entries):
            raise EntryNotFoundError(item_id)
        if position is not None:
            updates = move_entry(entries, item_id, position, base=collection.base)
            apply_position_updates(conn, collection.id, updates)
        if update_note:
            conn.execute(
                "UPDATE collection_items SET note = ? WHERE item_id = ? AND collection_id = ?",
                (note, item_id, collection.id),
            )
        touch_collection(conn, collection.id)
    row = conn.execute("SELECT * FROM collection_items WHERE item_id = ?", (item_id,)).fetchone()
    return entry_from_row(row)


def reorder_filtered(
    conn: sqlite3.Connection,
    collection: Collection,
    source_index: int,
    destination_index: int,
    search: str | None = None,
    media_type: str | None = None,
) -> List[PositionUpdate]:
    """
    Apply a drag-and-drop performed against a filtered view.

    The filtered view is rebuilt from the stored collection with the same
    search/type filter the client used, then every entry is renumbered in
    one transaction.
    """
    with conn:
        entries = list_entries(conn, collection.id)
        view = filter_entries(entries, search, media_type)
        updates = assign_positions(view, entries, source_index, destination_index, base=collection.base)
        if updates:
            apply_position_updates(conn, collection.id, updates)
            touch_collection(conn, collection.id)
    logger.info(
        f"Reordered {collection.kind} {collection.id}: {source_index} -> {destination_index} "
        f"({len(view)} visible of {len(entries)}, {len(updates)} updates)"
    )
    return updates


def set_positions(conn: sqlite3.Connection, collection: Collection, items: Sequence[Dict[str, Any]]) -> List[PositionUpdate]:
    """Apply a client-computed ``[{id, position}]`` batch covering the whole collection."""
    updates: List[PositionUpdate] = []
    for item in items:
        if not isinstance(item, dict):
            raise InvalidPositionBatch("each item must be an object with id and position")
        item_id, position = item.get("id"), item.get("position")
        if not isinstance(item_id, int) or not isinstance(position, int) or isinstance(position, bool):
            raise InvalidPositionBatch("id and position must be integers")
        updates.append(PositionUpdate(item_id, position))

    with conn:
        entries = list_entries(conn, collection.id)
        expected_ids = {e.id for e in entries}
        given_ids = [u.id for u in updates]
        if len(set(given_ids)) != len(given_ids):
            raise InvalidPositionBatch("duplicate ids in batch")
        if set(given_ids) != expected_ids:
            raise InvalidPositionBatch("batch must cover every item in the collection exactly once")
        if not is_densely_packed([u.position for u in updates], base=collection.base):
            raise InvalidPositionBatch(f"positions must be a gap-free run starting at {collection.base}")
        apply_position_updates(conn, collection.id, updates)
        touch_collection(conn, collection.id)
    return updates


def apply_position_updates(conn: sqlite3.Connection, collection_id: int, updates: Sequence[PositionUpdate]) -> None:
    """
    Write a batch of positions for one collection.

    Must run inside the caller's transaction. The touched rows are first
    parked on negative placeholders so the (collection_id, position) unique
    index never sees two rows on the same value mid-batch.
    """
    if not updates:
        return
    ids = [u.id for u in updates]
    marks = ",".join("?" for _ in ids)
    parked = conn.execute(
        f"UPDATE collection_items SET position = -position - 1 WHERE collection_id = ? AND item_id IN ({marks})",
        (collection_id, *ids),
    ).rowcount
    if parked != len(set(ids)):
        raise EntryNotFoundError(f"{len(set(ids)) - parked} item(s) do not belong to collection {collection_id}")
    conn.executemany(
        "UPDATE collection_items SET position = ? WHERE item_id = ? AND collection_id = ?",
        [(u.position, u.id, collection_id) for u in updates],
    )


def export_entries_csv(entries: Iterable[Entry]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for entry in entries:
        writer.writerow(entry.to_dict())
    return buffer.getvalue()


def _parse_import_rows(text: str, base: int, result: Dict[str, Any]) -> List[Dict[str, Any]]:
    reader = csv.DictReader(io.StringIO(text))
    columns = {(name or "").strip().lower(): name for name in (reader.fieldnames or [])}
    missing = [name for name in ("media_type", "tmdb_id", "title") if name not in columns]
    if missing:
        raise ValidationError(f"CSV is missing required column(s): {', '.join(missing)}")
    position_column = next((columns[c] for c in IMPORT_POSITION_COLUMNS if c in columns), None)

    def warn(row_number: int, message: str) -> None:
        result["warnings"].append({"row": row_number, "warning": message})

    rows = []
    # row 1 is the header
    for row_number, raw in enumerate(reader, start=2):
        if row_number - 1 > MAX_IMPORT_ROWS:
            raise ValidationError(f"CSV may contain at most {MAX_IMPORT_ROWS} rows")

        def cell(name: str | None) -> str:
            value = raw.get(name) if name else None
            return value.strip() if isinstance(value, str) else ""

        media_type = cell(columns["media_type"]).lower()
        tmdb_id = cell(columns["tmdb_id"])
        title = cell(columns["title"])
        if media_type not in MEDIA_TYPES:
            warn(row_number, f"Invalid media_type {media_type!r}; row skipped.")
            result["skipped"] += 1
            continue
        if not tmdb_id.isdecimal():
            warn(row_number, f"Invalid tmdb_id {tmdb_id!r}; row skipped.")
            result["skipped"] += 1
            continue
        if not title:
            warn(row_number, "Missing title; row skipped.")
            result["skipped"] += 1
            continue

        position = None
        position_text = cell(position_column)
        if position_text:
            if INTEGER_TEXT.fullmatch(position_text) and int(position_text) >= base:
                position = int(position_text)
            else:
                warn(row_number, f"Invalid position value: {position_text}. Will be assigned automatically.")

        rows.append({
            "row": row_number,
            "media_type": media_type,
            "tmdb_id": int(tmdb_id),
            "title": title,
            "position": position,
            # has_* is false when the column is absent; updates then keep the stored value
            "poster_path": (cell(columns["poster_path"]) or None) if "poster_path" in columns else None,
            "note": (cell(columns["note"]) or None) if "note" in columns else None,
            "has_poster_path": "poster_path" in columns,
            "has_note": "note" in columns,
        })
    return rows


def import_entries_csv(
    conn: sqlite3.Connection,
    collection: Collection,
    text: str,
    update_existing: bool = True,
) -> Dict[str, Any]:
    """
    Import rows in the export format into a collection.

    ``media_type``, ``tmdb_id`` and ``title`` are required columns. An
    optional ``position`` (or ``order``/``rank``/``sortorder``) column places
    the row explicitly; anything unparsable there is reported as a warning
    and the row is appended instead. Rows already in the collection are
    updated, or skipped when ``update_existing`` is false.

    The whole import runs in one transaction and leaves positions densely
    packed from the collection's base.

    Returns:
        ``{"imported", "updated", "skipped", "warnings": [{"row", "warning"}]}``
    """
    result: Dict[str, Any] = {"imported": 0, "updated": 0, "skipped": 0, "warnings": []}
    rows = _parse_import_rows(text, collection.base, result)

    with conn:
        entries = list_entries(conn, collection.id)
        item_by_key = {(e.media_type, e.tmdb_id): e.id for e in entries}
        order = [e.id for e in entries]
        position = next_position(entries, base=collection.base)
        requested: Dict[int, tuple] = {}

        for row in rows:
            key = (row["media_type"], row["tmdb_id"])
            item_id = item_by_key.get(key)
            if item_id is None:
                cur = conn.execute(
                    """
                    INSERT INTO collection_items (collection_id, media_type, tmdb_id, position, title, poster_path, note, added_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        collection.id,
                        row["media_type"],
                        row["tmdb_id"],
                        position,
                        row["title"],
                        row["poster_path"],
                        row["note"],
                        _now(),
                    ),
                )
                position += 1
                item_id = cur.lastrowid
                item_by_key[key] = item_id
                order.append(item_id)
                result["imported"] += 1
            elif update_existing:
                conn.execute(
                    "UPDATE collection_items SET title = ? WHERE item_id = ? AND collection_id = ?",
                    (row["title"], item_id, collection.id),
                )
                for column in ("poster_path", "note"):
                    if row[f"has_{column}"]:
                        conn.execute(
                            f"UPDATE collection_items SET {column} = ? WHERE item_id = ? AND collection_id = ?",
                            (row[column], item_id, collection.id),
                        )
                result["updated"] += 1
            else:
                result["skipped"] += 1
                continue

            if row["position"] is not None:
                requested.pop(item_id, None)
                requested[item_id] = (row["position"], row["row"])

        # Explicit positions are placed in ascending order; ties keep file order.
        rest = [item_id for item_id in order if item_id not in requested]
        last_index = -1
        for item_id, (wanted, row_number) in sorted(requested.items(), key=lambda pair: pair[1][0]):
            index = max(wanted - collection.base, last_index + 1)
            if index > len(rest):
                result["warnings"].append({
                    "row": row_number,
                    "warning": f"Position {wanted} is past the end of the {collection.kind}; appended.",
                })
                index = len(rest)
            rest.insert(index, item_id)
            last_index = index

        stored = {e.id: e for e in list_entries(conn, collection.id)}
        updates = repack_positions([stored[item_id] for item_id in rest], base=collection.base)
        apply_position_updates(conn, collection.id, updates)
        if result["imported"] or result["updated"]:
            touch_collection(conn, collection.id)

    logger.info(
        f"Imported into {collection.kind} {collection.id}: {result['imported']} new, "
        f"{result['updated']} updated, {result['skipped']} skipped, {len(result['warnings'])} warnings"
    )
    return result
