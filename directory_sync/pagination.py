"""
Page-walking helpers shared by the registry and directory clients.

Two pagination styles are supported:
- numbered pages, where each response reports the total page count
  (registry API, ``page[number]``/``page[size]``)
- token pages, where each response hands out the token of the next page
  (Google Admin SDK ``nextPageToken``, LDAP paged-results cookie)

Both helpers fail fast and never retry; retrying is the HTTP layer's job.
"""

import logging
import threading
from typing import Callable, List, Any, Optional, Tuple, TypeVar

from directory_sync.errors import SyncError, OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 10000


class PaginationError(SyncError):
    """
    Raised when a paginated fetch is aborted.

    Attributes:
        page: Page number that failed (1-based)
        partial_items: Items accumulated before the failure
        cause: Underlying exception, if any
    """

    def __init__(self, message: str, page: int, partial_items: List[Any],
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.page = page
        self.partial_items = partial_items
        self.cause = cause


def _check_cancelled(cancel_event: Optional[threading.Event], page: int, items: List[Any]):
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled(f"Paginated fetch cancelled before page {page} ({len(items)} items fetched)")


def fetch_all_pages(
    fetch_page: Callable[[int, int], Tuple[List[T], int]],
    page_size: int = DEFAULT_PAGE_SIZE,
    max_pages: int = DEFAULT_MAX_PAGES,
    cancel_event: Optional[threading.Event] = None,
    description: str = 'items'
) -> List[T]:
    """
    Fetch every page of a numbered-page listing.

    Args:
        fetch_page: Callable taking (page_number, page_size) and returning
            (items, total_pages)
        page_size: Items requested per page
        max_pages: Upper bound on pages walked, guards against a corrupt
            total page count
        cancel_event: Optional event checked before each page
        description: Name of the listed entity, used in log messages

    Returns:
        Items of pages 1..total_pages in order

    Raises:
        PaginationError: If a page fetch fails or max_pages is exceeded;
            carries the items fetched so far
        OperationCancelled: If cancel_event is set
    """
    items: List[T] = []
    page_number = 1

    while True:
        _check_cancelled(cancel_event, page_number, items)

        if page_number > max_pages:
            raise PaginationError(
                f"Fetching {description} exceeded {max_pages} pages, reported page count is not trustworthy",
                page=page_number, partial_items=items
            )

        try:
            page_items, total_pages = fetch_page(page_number, page_size)
        except OperationCancelled:
            raise
        except Exception as e:
            raise PaginationError(
                f"Failed fetching page {page_number} of {description}: {e}",
                page=page_number, partial_items=items, cause=e
            ) from e

        items.extend(page_items)
        logger.debug(f"Fetched page {page_number}/{total_pages} of {description}: {len(page_items)} items")

        if total_pages <= page_number:
            break

        page_number += 1

    return items


def iter_token_pages(
    fetch_page: Callable[[Optional[Any]], Tuple[List[T], Optional[Any]]],
    max_pages: int = DEFAULT_MAX_PAGES,
    cancel_event: Optional[threading.Event] = None,
    description: str = 'items'
) -> List[T]:
    """
    Fetch every page of a token-paginated listing.

    Args:
        fetch_page: Callable taking the page token (None for the first page)
            and returning (items, next_token); a falsy next_token ends the walk
        max_pages: Upper bound on pages walked
        cancel_event: Optional event checked before each page
        description: Name of the listed entity, used in log messages

    Returns:
        Items of all pages in order

    Raises:
        PaginationError: If a page fetch fails or max_pages is exceeded
        OperationCancelled: If cancel_event is set
    """
    items: List[T] = []
    token = None
    page_number = 1

    while True:
        _check_cancelled(cancel_event, page_number, items)

        if page_number > max_pages:
            raise PaginationError(
                f"Fetching {description} exceeded {max_pages} pages",
                page=page_number, partial_items=items
            )

        try:
            page_items, token = fetch_page(token)
        except OperationCancelled:
            raise
        except Exception as e:
            raise PaginationError(
                f"Failed fetching page {page_number} of {description}: {e}",
                page=page_number, partial_items=items, cause=e
            ) from e

        items.extend(page_items)

        if not token:
            break

        page_number += 1

    logger.debug(f"Fetched {len(items)} {description} across {page_number} pages")
    return items
