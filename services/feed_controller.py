"""
Infinite Feed Controller.

Client-side owner of the gallery feed: the item list, the pagination cursor,
loading and error flags, and the scroll-triggered "load more" protocol. One
controller instance belongs to one screen; all of its state is mutated from
the event loop that drives that screen.

Protocol:
1. `mount()` resets everything and fetches the first window at offset 0
   (`initial_page_size`, 16 by default), and pre-fetches the name directory.
2. The scroll trigger (`on_scroll` / `on_sentinel_visible` / `load_more`)
   fetches `page_size` items at the cursor only when the controller is
   mounted, nothing is in flight, the server reported another page, and
   `min_trigger_interval` seconds passed since the last accepted trigger.
3. The first window replaces `items`; later windows append only ids that are
   not already present.
4. A failed first window is terminal (`status == FeedStatus.ERROR`). A failed
   later window notifies the user and re-arms the trigger.

The in-flight flag is set synchronously, before the first `await`, so any
number of triggers arriving while a fetch is outstanding start no further
requests. Responses are tagged with the mount generation; a response that
completes after `unmount()` or `reload()` is dropped.

The cursor advances by the number of rows the server returned, which equals
`len(items)` unless duplicates were dropped. This keeps the feed moving when
concurrent inserts shift a whole window onto already-seen items.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set

from core.models import GalleryItemOut
from services.gallery_client import GalleryClient, GalleryClientError

logger = logging.getLogger("services.feed_controller")

INITIAL_PAGE_SIZE = 16
PAGE_SIZE = 8
MIN_TRIGGER_INTERVAL = 1.0  # seconds
SENTINEL_ROOT_MARGIN = 400.0  # px of lookahead below the viewport


class FeedStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"
    EMPTY = "empty"
    READY = "ready"
    EXHAUSTED = "exhausted"


@dataclass
class ScrollSentinel:
    """Marker below the last card; once near the viewport, fetch more"""

    root_margin: float = SENTINEL_ROOT_MARGIN

    def is_near(self, sentinel_top: float, viewport_bottom: float) -> bool:
        return sentinel_top - viewport_bottom <= self.root_margin


def log_notification(level: str, message: str):
    """Default notification sink"""
    logger.log(logging.ERROR if level == "error" else logging.INFO, message)


class InfiniteFeedController:
    """Paginated, de-duplicated, scroll-driven gallery feed"""

    def __init__(
        self,
        client: GalleryClient,
        initial_page_size: int = INITIAL_PAGE_SIZE,
        page_size: int = PAGE_SIZE,
        min_trigger_interval: float = MIN_TRIGGER_INTERVAL,
        sentinel: Optional[ScrollSentinel] = None,
        notify: Optional[Callable[[str, str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if initial_page_size < 1 or page_size < 1:
            raise ValueError("page sizes must be positive")

        self.client = client
        self.initial_page_size = initial_page_size
        self.page_size = page_size
        self.min_trigger_interval = min_trigger_interval
        self.sentinel = sentinel or ScrollSentinel()
        self.notify = notify or log_notification
        self.clock = clock

        self.names: List[str] = []
        self._mounted = False
        self._generation = 0
        self._tasks: Set[asyncio.Task] = set()
        self._reset()

    def _reset(self):
        self.items: List[GalleryItemOut] = []
        self.total = 0
        self.has_next_page = False
        self.is_loading = False
        self.is_loading_more = False
        self.fetch_error: Optional[str] = None
        self.load_more_error: Optional[str] = None
        self._seen_ids: Set[str] = set()
        self._cursor = 0
        self._in_flight = False
        self._last_trigger_at: Optional[float] = None

    @property
    def status(self) -> FeedStatus:
        if not self._mounted:
            return FeedStatus.IDLE
        if self.is_loading:
            return FeedStatus.LOADING
        if self.fetch_error is not None:
            return FeedStatus.ERROR
        if not self.items:
            return FeedStatus.EMPTY
        if not self.has_next_page:
            return FeedStatus.EXHAUSTED
        return FeedStatus.READY

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def mount(self):
        """Reset state and load the first window plus the name directory"""
        self._generation += 1
        self._mounted = True
        self._reset()
        generation = self._generation

        self.is_loading = True
        self._in_flight = True
        await asyncio.gather(
            self._fetch_initial(generation), self._fetch_names(generation)
        )

    async def reload(self):
        """Full reload, e.g. after the user published a new item"""
        await self.mount()

    def unmount(self):
        """Detach; results of outstanding fetches will be ignored"""
        self._mounted = False
        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _is_current(self, generation: int) -> bool:
        return self._mounted and generation == self._generation

    async def _fetch_initial(self, generation: int):
        try:
            page = await self.client.fetch_page(0, self.initial_page_size)
        except GalleryClientError as e:
            if not self._is_current(generation):
                return
            logger.error(f"Initial gallery fetch failed: {e.message}")
            self.fetch_error = e.message
            return
        finally:
            if self._is_current(generation):
                self.is_loading = False
                self._in_flight = False

        if not self._is_current(generation):
            logger.debug("Discarding initial page for a stale feed generation")
            return

        self.items = []
        self._seen_ids = set()
        self._append(page.items)
        self._cursor = len(page.items)
        self.total = page.pagination.total
        self.has_next_page = page.pagination.hasNextPage
        logger.info(
            f"Initial feed load: {len(self.items)} items, total={self.total}, "
            f"has_next_page={self.has_next_page}"
        )

    async def _fetch_names(self, generation: int):
        try:
            names = await self.client.fetch_names()
        except GalleryClientError as e:
            if self._is_current(generation):
                logger.warning(f"Name directory unavailable: {e.message}")
                self.notify("error", "Could not load names for the guessing game")
                self.names = []
            return

        if self._is_current(generation):
            self.names = names

    def _append(self, new_items: List[GalleryItemOut]) -> int:
        added = 0
        for item in new_items:
            if item.id in self._seen_ids:
                continue
            self._seen_ids.add(item.id)
            self.items.append(item)
            added += 1
        return added

    def can_load_more(self) -> bool:
        if not self._mounted or self._in_flight or not self.has_next_page:
            return False
        if self.fetch_error is not None:
            return False
        if self._last_trigger_at is not None:
            if self.clock() - self._last_trigger_at < self.min_trigger_interval:
                return False
        return True

    def _begin_load_more(self) -> bool:
        # Synchronous check-and-set; nothing may await between these lines
        if not self.can_load_more():
            return False
        self._in_flight = True
        self.is_loading_more = True
        self.load_more_error = None
        self._last_trigger_at = self.clock()
        return True

    async def load_more(self) -> bool:
        """Fetch the next window if allowed; returns whether a fetch ran"""
        if not self._begin_load_more():
            return False
        await self._fetch_more(self._generation, self._cursor)
        return True

    def on_sentinel_visible(self) -> Optional[asyncio.Task]:
        """Scroll-observer callback; schedules at most one fetch"""
        if not self._begin_load_more():
            return None
        task = asyncio.get_running_loop().create_task(
            self._fetch_more(self._generation, self._cursor)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def on_scroll(self, sentinel_top: float, viewport_bottom: float) -> Optional[asyncio.Task]:
        if not self.sentinel.is_near(sentinel_top, viewport_bottom):
            return None
        return self.on_sentinel_visible()

    async def _fetch_more(self, generation: int, offset: int):
        try:
            page = await self.client.fetch_page(offset, self.page_size)
        except GalleryClientError as e:
            if self._is_current(generation):
                logger.warning(f"Load more failed at offset={offset}: {e.message}")
                self.load_more_error = e.message
                self.notify("error", "Failed to load more images")
            return
        finally:
            if self._is_current(generation):
                self.is_loading_more = False
                self._in_flight = False

        if not self._is_current(generation):
            logger.debug(f"Discarding page at offset={offset} for a stale feed generation")
            return

        added = self._append(page.items)
        self._cursor = offset + len(page.items)
        self.total = page.pagination.total
        self.has_next_page = page.pagination.hasNextPage
        logger.info(
            f"Loaded {added} new items at offset={offset} "
            f"({len(page.items) - added} duplicates dropped)"
        )
