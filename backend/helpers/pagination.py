"""
Standardized pagination parameters for consistent API pagination.
"""

from fastapi import Query
from typing import Annotated

# Offset pagination (audit log)
PaginationSkip = Annotated[int, Query(ge=0, description="Number of records to skip")]
PaginationLimit = Annotated[
    int, Query(ge=1, le=100, description="Maximum number of records to return")
]

# Page pagination (review queues); the service caps page_size at QUEUE_MAX_PAGE_SIZE
PaginationPage = Annotated[int, Query(ge=1, description="1-based page number")]
PaginationPageSize = Annotated[
    int, Query(ge=1, le=100, description="Number of items per page")
]


def get_page_params(
    page: int = Query(1, ge=1), page_size: int = Query(20, ge=1, le=100)
) -> tuple[int, int]:
    """
    Page-based pagination parameters.

    Args:
        page: 1-based page number (default 1)
        page_size: Items per page (default 20, max 100)

    Returns:
        Tuple of (page, page_size)
    """
    return page, page_size
