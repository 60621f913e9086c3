from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Iterable, List, Protocol, Sequence


class ReorderIndexError(ValueError):
    """Raised when a drag source/destination does not point into the view."""


class EntryNotFoundError(LookupError):
    pass


class HasIdentity(Protocol):
    id: Hashable


@dataclass(frozen=True)
class PositionUpdate:
    id: Hashable
    position: int

    def to_dict(self) -> dict:
        return {"id": self.id, "position": self.position}


def _check_index(name: str, index: int, length: int) -> None:
    if not isinstance(index, int) or isinstance(index, bool):
        raise ReorderIndexError(f"{name} must be an integer")
    if index < 0 or index >= length:
        raise ReorderIndexError(f"{name} {index} is out of range for {length} visible item(s)")


def assign_positions(
    filtered_entries: Sequence[HasIdentity],
    all_entries: Sequence[HasIdentity],
    source_index: int,
    destination_index: int,
    base: int = 1,
) -> List[PositionUpdate]:
    """
    Reconcile a drag-and-drop inside a filtered view with the full collection.

    The dragged entry is moved within ``filtered_entries``; the reordered
    filtered entries then take the leading positions and every hidden entry
    follows in its existing relative order. Every entry of ``all_entries``
    receives exactly one update, numbered densely from ``base``.

    Args:
        filtered_entries: visible entries before the drag, in display order
        all_entries: the whole collection in current position order
        source_index: index of the dragged entry in ``filtered_entries``
        destination_index: index it was dropped at in ``filtered_entries``
        base: first position value for the collection kind (0 or 1)

    Returns:
        One PositionUpdate per entry, or an empty list for a no-op drag.

    Raises:
        ReorderIndexError: if either index falls outside ``filtered_entries``
    """
    _check_index("source_index", source_index, len(filtered_entries))
    _check_index("destination_index", destination_index, len(filtered_entries))

    if source_index == destination_index:
        return []

    reordered = list(filtered_entries)
    moved = reordered.pop(source_index)
    reordered.insert(destination_index, moved)

    filtered_ids = {entry.id for entry in filtered_entries}
    hidden = [entry for entry in all_entries if entry.id not in filtered_ids]

    final_order = reordered + hidden
    return [PositionUpdate(entry.id, base + index) for index, entry in enumerate(final_order)]


def move_entry(
    entries: Sequence[HasIdentity],
    entry_id: Hashable,
    new_position: int,
    base: int = 1,
) -> List[PositionUpdate]:
    """Move one entry to ``new_position`` and return only the changed positions.

    ``entries`` must be in current position order.
    """
    ids = [entry.id for entry in entries]
    if entry_id not in ids:
        raise EntryNotFoundError(entry_id)

    target = new_position - base
    if isinstance(new_position, bool) or target < 0 or target >= len(ids):
        raise ReorderIndexError(
            f"position must be between {base} and {base + len(ids) - 1}"
        )

    current = {entry.id: getattr(entry, "position", None) for entry in entries}
    ordered = list(ids)
    ordered.remove(entry_id)
    ordered.insert(target, entry_id)

    return [
        PositionUpdate(item_id, base + index)
        for index, item_id in enumerate(ordered)
        if current[item_id] != base + index
    ]


def repack_positions(entries: Sequence[HasIdentity], base: int = 1) -> List[PositionUpdate]:
    """Close the gaps left behind by a removal."""
    return [
        PositionUpdate(entry.id, base + index)
        for index, entry in enumerate(entries)
        if getattr(entry, "position", None) != base + index
    ]


def next_position(entries: Sequence[HasIdentity], base: int = 1) -> int:
    positions = [getattr(entry, "position", None) for entry in entries]
    positions = [p for p in positions if isinstance(p, int)]
    if not positions:
        return base
    return max(positions) + 1


def is_densely_packed(positions: Iterable[int], base: int = 1) -> bool:
    ordered = sorted(positions)
    return ordered == list(range(base, base + len(ordered)))
