from __future__ import annotations

from dataclasses import dataclass
from typing import Any


def parse_page(raw: Any) -> int:
    """0-based page index from a query arg; malformed or negative -> 0."""
    try:
        page = int(str(raw).strip())
    except (TypeError, ValueError):
        return 0
    return max(page, 0)


@dataclass(frozen=True)
class Page:
    page: int
    page_size: int
    total: int = 0

    @property
    def offset(self) -> int:
        return self.page * self.page_size

    @property
    def range_to(self) -> int:
        """Inclusive index of the last row requested for this page."""
        return self.offset + self.page_size - 1

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_prev(self) -> bool:
        return self.page > 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages - 1

    @property
    def first_item(self) -> int:
        return self.offset + 1 if self.total else 0

    @property
    def last_item(self) -> int:
        return min(self.offset + self.page_size, self.total)

    def with_total(self, total: int | None) -> "Page":
        """Same page with `total` set; a page past the end snaps to the last one."""
        sized = Page(page=self.page, page_size=self.page_size, total=total or 0)
        last = max(sized.total_pages - 1, 0)
        if sized.page > last:
            return Page(page=last, page_size=self.page_size, total=sized.total)
        return sized

    def page_window(self, size: int = 5) -> list[int]:
        """Up to `size` consecutive page indexes centred on the current page."""
        if self.total_pages <= size:
            return list(range(self.total_pages))
        start = min(max(self.page - size // 2, 0), self.total_pages - size)
        return list(range(start, start + size))
