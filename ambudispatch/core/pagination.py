"""
Page envelopes for list endpoints.

The facade returns whole, already filtered collections; routes slice them
here and report the window both in the body and in ``X-*`` headers.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Optional, Sequence, TypeVar

from fastapi import Response

T = TypeVar("T")

DEFAULT_MAX_PAGE_SIZE = 200


def max_page_size() -> int:
    try:
        limit = int(os.getenv("API_MAX_PAGE_SIZE", str(DEFAULT_MAX_PAGE_SIZE)))
    except ValueError:
        return DEFAULT_MAX_PAGE_SIZE
    return limit if limit >= 1 else DEFAULT_MAX_PAGE_SIZE


def paginate(items: Sequence[T], page: int, page_size: int) -> list[T]:
    start = (max(page, 1) - 1) * page_size
    return list(items[start : start + page_size])


def page_envelope(
    rows: Sequence[T],
    *,
    page: int,
    page_size: int,
    dump: Callable[[T], Any],
    response: Optional[Response] = None,
) -> dict:
    """Slice ``rows`` to one page (size capped) and wrap it with totals."""
    page_size = max(1, min(page_size, max_page_size()))
    if response is not None:
        response.headers["X-Total-Count"] = str(len(rows))
        response.headers["X-Page"] = str(page)
        response.headers["X-Page-Size"] = str(page_size)
    return {
        "items": [dump(row) for row in paginate(rows, page, page_size)],
        "total": len(rows),
        "page": page,
        "page_size": page_size,
    }
