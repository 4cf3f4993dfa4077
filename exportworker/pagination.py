"""
Paginated remote sources.

A source turns a sequence of bounded page fetches into one logical stream of
records. Two variants:

- OffsetPaginatedSource: offset/limit paging with a fixed stride. The
  accumulated offset grows by the page size after every fetch, no matter how
  many records came back. If the backing collection shrinks between fetches
  (concurrent deletes), records can be skipped or repeated. That behaviour is
  kept on purpose; callers that need a consistent view must page a snapshot.
- ContinuationPaginatedSource: the server hands back a "next" marker with
  every page. The source walks that marker from the end of the requested range
  and stops only when the server stops returning one.

Sources are pulled synchronously by a single owner. They are iterators, and
also expose next() which returns None once the stream is exhausted.
Exhaustion is permanent: build a new source to read again.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional

from .errors import RemoteUnavailable
from .logger import get_logger

logger = get_logger()


@dataclass
class Page:
    """One page from a remote collection.

    next is the continuation marker; offset-paged sources ignore it.
    """

    records: List[Any] = field(default_factory=list)
    next: Optional[Any] = None
    total_records: Optional[int] = None


# fetch(offset, limit) -> Page
OffsetFetcher = Callable[[int, int], Page]
# fetch(limit, range_start, cursor) -> Page
ContinuationFetcher = Callable[[int, Any, Any], Page]


class PaginatedSource:
    """Base class: iterator protocol on top of next()."""

    def __init__(self, page_size: int, stop_event: Optional[threading.Event] = None, name: str = "source"):
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.page_size = page_size
        self.name = name
        self.fetch_count = 0
        self.item_count = 0
        self._stop_event = stop_event
        self._page: List[Any] = []
        self._cursor = 0
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def next(self) -> Optional[Any]:
        raise NotImplementedError

    def __iter__(self) -> Iterator[Any]:
        return self

    def __next__(self) -> Any:
        record = self.next()
        if record is None:
            raise StopIteration
        return record

    def _stop_requested(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    def _has_buffered(self) -> bool:
        return self._cursor < len(self._page)

    def _take(self) -> Any:
        record = self._page[self._cursor]
        self._cursor += 1
        self.item_count += 1
        return record

    def _load(self, page: Page) -> None:
        self.fetch_count += 1
        self._page = list(page.records or [])
        self._cursor = 0
        logger.record_page_fetched()

    def _abort(self) -> None:
        self._exhausted = True
        self._page = []
        self._cursor = 0


class OffsetPaginatedSource(PaginatedSource):
    """Offset/limit paging with a fixed stride.

    Args:
        fetch_page: callable(offset, limit) -> Page
        page_size: records requested per fetch (the stride)
        offset: starting offset
        max_item_count: stop after returning this many records (None = no cap)
        stop_event: when set, no further fetch is issued
    """

    def __init__(
        self,
        fetch_page: OffsetFetcher,
        page_size: int,
        offset: int = 0,
        max_item_count: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        name: str = "offset-source",
    ):
        super().__init__(page_size, stop_event=stop_event, name=name)
        if offset < 0:
            raise ValueError(f"offset must not be negative, got {offset}")
        self._fetch_page = fetch_page
        self.start_offset = offset
        self.offset = offset
        self.max_item_count = max_item_count

    def next(self) -> Optional[Any]:
        if self._exhausted:
            return None
        if self.max_item_count is not None and self.item_count >= self.max_item_count:
            self._abort()
            return None

        if not self._has_buffered():
            if self._stop_requested():
                logger.info("Stop requested, not fetching next page", source=self.name, offset=self.offset)
                self._abort()
                return None
            try:
                page = self._fetch_page(self.offset, self.page_size)
            except Exception:
                self._abort()
                raise
            self._load(page)
            logger.debug(
                "Fetched page",
                source=self.name,
                offset=self.offset,
                limit=self.page_size,
                returned=len(self._page),
            )
            # Fixed stride: advance by the requested size, not the returned size
            self.offset += self.page_size
            if not self._page:
                self._abort()
                return None

        return self._take()


class ContinuationPaginatedSource(PaginatedSource):
    """Paging driven by a server-supplied continuation marker.

    The high-water mark starts at range_end and is replaced by the "next"
    marker of every page. A page without a marker is the last one: its records
    are still returned, then the source is exhausted. An empty page that does
    carry a marker is not the end; the source fetches again from the marker.
    If that marker did not move, the source aborts with RemoteUnavailable.

    Args:
        fetch_page: callable(limit, range_start, cursor) -> Page
        page_size: records requested per fetch
        range_start: inclusive lower bound sent with every request
        range_end: inclusive upper bound, the first cursor
        stop_event: when set, no further fetch is issued
    """

    def __init__(
        self,
        fetch_page: ContinuationFetcher,
        page_size: int,
        range_start: Any,
        range_end: Any,
        stop_event: Optional[threading.Event] = None,
        name: str = "continuation-source",
    ):
        super().__init__(page_size, stop_event=stop_event, name=name)
        self._fetch_page = fetch_page
        self.range_start = range_start
        self.range_end = range_end
        self.high_water_mark = range_end

    def next(self) -> Optional[Any]:
        while not self._exhausted:
            if self._has_buffered():
                return self._take()

            if self.high_water_mark is None:
                self._abort()
                break
            if self._stop_requested():
                logger.info("Stop requested, not fetching next page", source=self.name, cursor=str(self.high_water_mark))
                self._abort()
                break

            cursor = self.high_water_mark
            try:
                page = self._fetch_page(self.page_size, self.range_start, cursor)
            except Exception:
                self._abort()
                raise
            self._load(page)
            self.high_water_mark = page.next
            logger.debug(
                "Fetched page",
                source=self.name,
                cursor=str(cursor),
                next=str(page.next),
                returned=len(self._page),
            )

            if not self._page and page.next is not None and page.next == cursor:
                logger.error("Continuation marker did not advance on empty page", source=self.name, cursor=str(cursor))
                self._abort()
                raise RemoteUnavailable(f"continuation marker {cursor!r} did not advance", service=self.name)

        return None
