from __future__ import annotations

import math
from typing import Any, Sequence

from pydantic import BaseModel


class PaginationInfo(BaseModel):
    current_page: int
    page_size: int
    total_items: int
    total_pages: int
    has_next: bool
    has_previous: bool


def paginate(results: Sequence[Any], page: int, page_size: int) -> tuple[list[Any], PaginationInfo]:
    """Slice one page out of a ranked list.

    Never raises. Out-of-range or negative inputs are echoed in the metadata and produce an
    empty slice rather than wrapping around from the end of the list.
    """
    total = len(results)
    start = (page - 1) * page_size
    end = start + page_size
    if page_size <= 0 or start < 0:
        items: list[Any] = []
    else:
        items = list(results[start:end])

    info = PaginationInfo(
        current_page=page,
        page_size=page_size,
        total_items=total,
        total_pages=math.ceil(total / page_size) if page_size > 0 else 0,
        has_next=page_size > 0 and start >= 0 and end < total,
        has_previous=page > 1,
    )
    return items, info
