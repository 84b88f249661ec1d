"""
Pagination Manager

Slices a ranked list into one page and computes pagination metadata.
A page past the end is an empty slice with the true totals, not an error.
"""

import math
from typing import List, Sequence, Tuple, TypeVar

from ...models.search import PaginationInfo

T = TypeVar("T")


def total_pages(total_results: int, page_size: int) -> int:
    if total_results <= 0 or page_size <= 0:
        return 0
    return math.ceil(total_results / page_size)


def build_pagination(total_results: int, page: int, page_size: int) -> PaginationInfo:
    pages = total_pages(total_results, page_size)
    return PaginationInfo(
        current_page=page,
        total_pages=pages,
        total_results=total_results,
        page_size=page_size,
        has_next=page < pages,
        has_previous=page > 1,
    )


def paginate(items: Sequence[T], page: int, page_size: int) -> Tuple[List[T], PaginationInfo]:
    """
    Slice items for the requested page.

    Args:
        items: Fully ranked items
        page: 1-based page number (validated upstream)
        page_size: Items per page (validated upstream)

    Returns:
        Tuple of (page items, PaginationInfo)
    """
    offset = (page - 1) * page_size
    page_items = list(items[offset:offset + page_size])
    return page_items, build_pagination(len(items), page, page_size)
