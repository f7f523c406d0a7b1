from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


# PUBLIC_INTERFACE
@dataclass(frozen=True)
class Page:
    """
    Page/limit pair for list endpoints.

    Pages past the end are not an error: they produce an empty slice while
    the summary still reports the real page count.
    """

    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit

    def summary(self, total: int) -> Dict[str, Any]:
        """
        Build the pagination block for ``total`` matching items.

        Returns:
            Dict with keys current_page, total_pages, total_items,
            has_next_page, has_prev_page.
        """
        total_pages = math.ceil(total / self.limit) if self.limit > 0 else 0
        return {
            "current_page": self.page,
            "total_pages": total_pages,
            "total_items": int(total),
            "has_next_page": self.page < total_pages,
            "has_prev_page": self.page > 1,
        }
