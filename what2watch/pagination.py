from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Union

PAGINATION_ELLIPSIS = "ellipsis"
DEFAULT_MAX_VISIBLE = 7

PageToken = Union[int, str]


def page_window(current_page: int, total_pages: int, max_visible: int = DEFAULT_MAX_VISIBLE) -> List[PageToken]:
    """
    Compute the page numbers a pager should render.

    Collapses skipped ranges into ``"ellipsis"`` markers so that at most
    ``max_visible`` tokens are returned. The first and last page are always
    present once the window overflows.

    Args:
        current_page: 1-indexed page the user is on
        total_pages: number of pages, at least 1
        max_visible: odd number of tokens to show, at least 5

    Raises:
        ValueError: for out-of-domain arguments
    """
    if total_pages < 1:
        raise ValueError("total_pages must be at least 1")
    if max_visible < 5 or max_visible % 2 == 0:
        raise ValueError("max_visible must be an odd integer >= 5")

    if total_pages <= max_visible:
        return list(range(1, total_pages + 1))

    half = max_visible // 2

    if current_page <= half + 1:
        head = list(range(1, max_visible - 1))
        return [*head, PAGINATION_ELLIPSIS, total_pages]

    if current_page >= total_pages - half:
        tail = list(range(total_pages - (max_visible - 3), total_pages + 1))
        return [1, PAGINATION_ELLIPSIS, *tail]

    # current_page +/- 1; only the current page fits when max_visible is 5
    span = 1 if max_visible >= 7 else 0
    middle = list(range(current_page - span, current_page + span + 1))
    return [1, PAGINATION_ELLIPSIS, *middle, PAGINATION_ELLIPSIS, total_pages]


@dataclass
class Page:
    page: int
    per_page: int
    total_items: int
    total_pages: int
    offset: int
    window: List[PageToken] = field(default_factory=list)

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    def to_dict(self) -> dict:
        return {
            "page": self.page,
            "per_page": self.per_page,
            "total": self.total_items,
            "total_pages": self.total_pages,
            "has_previous": self.has_previous,
            "has_next": self.has_next,
            "pages": self.window,
        }


def paginate(total_items: int, page: int, per_page: int, max_visible: int = DEFAULT_MAX_VISIBLE) -> Page:
    """Clamp ``page`` into range and work out the slice offset for a listing."""
    per_page = max(1, per_page)
    total_pages = max(1, -(-max(0, total_items) // per_page))
    page = min(max(1, page), total_pages)
    return Page(
        page=page,
        per_page=per_page,
        total_items=max(0, total_items),
        total_pages=total_pages,
        offset=(page - 1) * per_page,
        window=page_window(page, total_pages, max_visible),
    )
