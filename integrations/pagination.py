"""Lazy pagination over provider list endpoints.

Providers page in different ways (Xero by page number, Tink by opaque
page token). Adapters describe one page fetch as a callable returning a
:class:`Page`; :func:`iter_pages` drives it until the provider signals the
end or the safety bound is reached.
"""

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_PAGES = 1000


@dataclass
class Page(Generic[T]):
    """One page of results and the cursor for the next page (None at the end)."""

    items: list[T] = field(default_factory=list)
    next_cursor: Any = None


def iter_pages(
    fetch_page: Callable[[Any], Page[T]],
    *,
    start_cursor: Any = None,
    max_pages: int = DEFAULT_MAX_PAGES,
    label: str = "",
) -> Iterator[Page[T]]:
    """Yield pages lazily until the cursor runs out.

    Passing the last seen ``next_cursor`` as ``start_cursor`` resumes an
    interrupted walk.

    Args:
        fetch_page: Callable taking a cursor and returning a Page.
        start_cursor: Cursor for the first request.
        max_pages: Hard bound on requests, guarding against a provider
            that keeps returning a next cursor.
        label: Used in the warning logged when the bound is hit.
    """
    cursor = start_cursor
    for _ in range(max_pages):
        page = fetch_page(cursor)
        yield page
        if page.next_cursor is None:
            return
        cursor = page.next_cursor
    logger.warning(
        "%s: stopped after reaching the page safety limit (%d pages)",
        label or "pagination", max_pages,
    )


def paginate(
    fetch_page: Callable[[Any], Page[T]],
    *,
    start_cursor: Any = None,
    max_pages: int = DEFAULT_MAX_PAGES,
    label: str = "",
) -> Iterator[T]:
    """Yield individual items across every page."""
    for page in iter_pages(
        fetch_page, start_cursor=start_cursor, max_pages=max_pages, label=label
    ):
        yield from page.items


def page_number_cursor(page_size: int) -> Callable[[int, int], int | None]:
    """Build the next-cursor rule for page-numbered APIs.

    A short page means the provider has nothing further.
    """

    def next_page(current_page: int, item_count: int) -> int | None:
        if item_count < page_size:
            return None
        return current_page + 1

    return next_page
