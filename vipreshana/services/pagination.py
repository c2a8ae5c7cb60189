from __future__ import annotations

from collections.abc import Sequence
from typing import TypeVar

from ..domain.pagination import PaginationMeta, PaginationParams

T = TypeVar("T")


def paginate_sequence(
    items: Sequence[T],
    params: PaginationParams,
) -> tuple[list[T], PaginationMeta]:
    """Slice an already ordered sequence into one page plus its metadata."""

    total = len(items)
    end = params.offset + params.limit
    page = list(items[params.offset:end])
    next_offset = end if end < total else None
    return page, PaginationMeta(
        limit=params.limit,
        offset=params.offset,
        count=len(page),
        total=total,
        has_more=next_offset is not None,
        next_offset=next_offset,
    )
