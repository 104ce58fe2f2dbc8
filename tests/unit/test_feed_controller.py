"""
Unit tests for the infinite feed controller.

The backend double serves windows from an in-memory list ordered newest
first, exactly like GET /gallery, and can hold requests open on a gate.
"""

import pytest
import asyncio
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock, Mock

from core.models import GalleryItemOut, GalleryPage
from services.feed_controller import (
    FeedStatus,
    InfiniteFeedController,
    ScrollSentinel,
)
from services.gallery_client import GalleryClient, GalleryClientError
from services.gallery_service import build_pagination


def make_out(index: int) -> GalleryItemOut:
    return GalleryItemOut(
        id=f"item-{index:03d}",
        person_name=f"Person {index}",
        generated_image=f"https://images.example.com/avatars/{index}.png",
    )


class FakeGalleryBackend:
    """In-memory stand-in for GalleryClient"""

    def __init__(self, count: int):
        self.rows: List[GalleryItemOut] = [make_out(i) for i in reversed(range(count))]
        self.calls = []
        self.gate: Optional[asyncio.Event] = None
        self.fail_offsets = set()
        self.names_error: Optional[Exception] = None
        self._next_index = count

    def insert_newest(self, n: int):
        new_rows = [make_out(self._next_index + i) for i in range(n)]
        self._next_index += n
        self.rows = list(reversed(new_rows)) + self.rows

    async def fetch_page(self, offset: int, limit: int) -> GalleryPage:
        self.calls.append((offset, limit))
        if self.gate is not None:
            await self.gate.wait()
        if offset in self.fail_offsets:
            raise GalleryClientError("HTTP 500", status=500)
        window = self.rows[offset : offset + limit]
        return GalleryPage(
            items=window,
            pagination=build_pagination(offset, limit, len(window), len(self.rows)),
        )

    async def fetch_names(self) -> List[str]:
        if self.names_error is not None:
            raise self.names_error
        return sorted({row.person_name for row in self.rows})


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notify():
    return Mock()


def make_controller(backend, clock, notify, **kwargs) -> InfiniteFeedController:
    return InfiniteFeedController(backend, clock=clock, notify=notify, **kwargs)


async def drain(controller, clock, max_rounds: int = 50):
    """Trigger load_more until the feed reports no further page"""
    rounds = 0
    while controller.has_next_page and rounds < max_rounds:
        clock.now += 2
        await controller.load_more()
        rounds += 1
    return rounds


class TestMount:
    """Test the initial load."""

    @pytest.mark.asyncio
    async def test_initial_window(self, clock, notify):
        backend = FakeGalleryBackend(20)
        controller = make_controller(backend, clock, notify)

        assert controller.status == FeedStatus.IDLE
        await controller.mount()

        assert backend.calls == [(0, 16)]
        assert len(controller.items) == 16
        assert controller.items[0].id == "item-019"
        assert controller.total == 20
        assert controller.has_next_page is True
        assert controller.cursor == 16
        assert controller.status == FeedStatus.READY
        assert controller.names == sorted(f"Person {i}" for i in range(20))

    @pytest.mark.asyncio
    async def test_empty_gallery(self, clock, notify):
        controller = make_controller(FakeGalleryBackend(0), clock, notify)

        await controller.mount()

        assert controller.items == []
        assert controller.fetch_error is None
        assert controller.status == FeedStatus.EMPTY
        assert controller.can_load_more() is False

    @pytest.mark.asyncio
    async def test_initial_failure_is_terminal(self, clock, notify):
        backend = FakeGalleryBackend(20)
        backend.fail_offsets = {0}
        controller = make_controller(backend, clock, notify)

        await controller.mount()

        assert controller.status == FeedStatus.ERROR
        assert controller.fetch_error == "HTTP 500"
        assert controller.is_loading is False
        assert await controller.load_more() is False
        assert backend.calls == [(0, 16)]

    @pytest.mark.asyncio
    async def test_malformed_body_is_terminal(self, clock, notify):
        """A 200 whose body is not a gallery page ends in the error state"""
        response = AsyncMock()
        response.status = 200
        response.json = AsyncMock(return_value={"unexpected": 1})
        session = MagicMock()
        session.request.return_value.__aenter__.return_value = response
        client = GalleryClient("https://gallery.example.com", session=session)
        controller = make_controller(client, clock, notify)

        await controller.mount()

        assert controller.status == FeedStatus.ERROR
        assert controller.fetch_error == "Malformed response"
        assert controller.items == []
        assert controller.is_loading is False

    @pytest.mark.asyncio
    async def test_names_failure_degrades(self, clock, notify):
        backend = FakeGalleryBackend(5)
        backend.names_error = GalleryClientError("Network error: ClientConnectorError")
        controller = make_controller(backend, clock, notify)

        await controller.mount()

        assert controller.names == []
        assert len(controller.items) == 5
        notify.assert_called_once_with("error", "Could not load names for the guessing game")

    @pytest.mark.asyncio
    async def test_reload_resets(self, clock, notify):
        backend = FakeGalleryBackend(20)
        controller = make_controller(backend, clock, notify)
        await controller.mount()
        clock.now += 2
        await controller.load_more()
        assert len(controller.items) == 20

        backend.insert_newest(1)
        await controller.reload()

        assert len(controller.items) == 16
        assert controller.items[0].id == "item-020"
        assert controller.cursor == 16


class TestLoadMore:
    """Test scroll-triggered pagination."""

    @pytest.mark.asyncio
    async def test_windows_cover_store(self, clock, notify):
        backend = FakeGalleryBackend(20)
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        clock.now += 2
        assert await controller.load_more() is True

        assert backend.calls == [(0, 16), (16, 8)]
        assert len(controller.items) == 20
        assert controller.has_next_page is False
        assert controller.status == FeedStatus.EXHAUSTED

        clock.now += 2
        assert await controller.load_more() is False
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 1, 8, 16, 17, 24, 25, 101])
    async def test_feed_terminates(self, clock, notify, count):
        backend = FakeGalleryBackend(count)
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        rounds = await drain(controller, clock)

        assert controller.has_next_page is False
        assert len(controller.items) == count
        assert rounds <= max(0, -(-(count - 16) // 8))

    @pytest.mark.asyncio
    async def test_overlapping_windows_are_deduplicated(self, clock, notify):
        backend = FakeGalleryBackend(30)
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        # Three new posts shift every later window down by three rows
        backend.insert_newest(3)
        clock.now += 2
        await controller.load_more()

        ids = [item.id for item in controller.items]
        assert len(ids) == len(set(ids))
        assert len(ids) == 16 + 5
        assert controller.cursor == 24

        await drain(controller, clock)
        ids = [item.id for item in controller.items]
        assert len(ids) == len(set(ids)) == 30

    @pytest.mark.asyncio
    async def test_window_of_only_duplicates_still_advances(self, clock, notify):
        backend = FakeGalleryBackend(40)
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        backend.insert_newest(8)
        clock.now += 2
        await controller.load_more()

        assert len(controller.items) == 16
        assert controller.cursor == 24
        assert controller.has_next_page is True

    @pytest.mark.asyncio
    async def test_concurrent_triggers_start_one_fetch(self, clock, notify):
        backend = FakeGalleryBackend(40)
        controller = make_controller(backend, clock, notify, min_trigger_interval=0)
        await controller.mount()

        backend.gate = asyncio.Event()
        tasks = [controller.on_sentinel_visible() for _ in range(10)]
        started = [task for task in tasks if task is not None]

        assert len(started) == 1
        assert controller.in_flight is True
        assert controller.is_loading_more is True

        await asyncio.sleep(0)
        assert backend.calls == [(0, 16), (16, 8)]

        backend.gate.set()
        await started[0]

        assert len(backend.calls) == 2
        assert len(controller.items) == 24
        assert controller.in_flight is False

    @pytest.mark.asyncio
    async def test_gathered_load_more_calls(self, clock, notify):
        backend = FakeGalleryBackend(40)
        controller = make_controller(backend, clock, notify, min_trigger_interval=0)
        await controller.mount()

        backend.gate = asyncio.Event()
        tasks = [asyncio.ensure_future(controller.load_more()) for _ in range(5)]
        await asyncio.sleep(0)
        backend.gate.set()
        results = await asyncio.gather(*tasks)

        assert results.count(True) == 1
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_trigger_interval(self, clock, notify):
        backend = FakeGalleryBackend(60)
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        assert await controller.load_more() is True
        clock.now += 0.5
        assert await controller.load_more() is False
        clock.now += 0.6
        assert await controller.load_more() is True

        assert backend.calls == [(0, 16), (16, 8), (24, 8)]

    @pytest.mark.asyncio
    async def test_failure_notifies_and_rearms(self, clock, notify):
        backend = FakeGalleryBackend(40)
        backend.fail_offsets = {16}
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        clock.now += 2
        await controller.load_more()

        assert controller.load_more_error == "HTTP 500"
        assert controller.in_flight is False
        assert len(controller.items) == 16
        notify.assert_called_once_with("error", "Failed to load more images")

        backend.fail_offsets = set()
        clock.now += 2
        assert await controller.load_more() is True
        assert controller.load_more_error is None
        assert len(controller.items) == 24


class TestUnmount:
    """Test that late responses are discarded."""

    @pytest.mark.asyncio
    async def test_late_page_ignored(self, clock, notify):
        backend = FakeGalleryBackend(40)
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        backend.gate = asyncio.Event()
        clock.now += 2
        task = asyncio.ensure_future(controller.load_more())
        await asyncio.sleep(0)

        controller.unmount()
        backend.gate.set()
        await task

        assert len(controller.items) == 16
        assert controller.status == FeedStatus.IDLE

    @pytest.mark.asyncio
    async def test_unmount_cancels_scheduled_fetch(self, clock, notify):
        backend = FakeGalleryBackend(40)
        controller = make_controller(backend, clock, notify)
        await controller.mount()

        backend.gate = asyncio.Event()
        clock.now += 2
        task = controller.on_sentinel_visible()
        await asyncio.sleep(0)
        controller.unmount()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(controller.items) == 16

    @pytest.mark.asyncio
    async def test_no_trigger_while_unmounted(self, clock, notify):
        backend = FakeGalleryBackend(40)
        controller = make_controller(backend, clock, notify)

        assert controller.on_sentinel_visible() is None
        assert backend.calls == []


class TestScrollSentinel:
    def test_within_margin(self):
        sentinel = ScrollSentinel(root_margin=400)

        assert sentinel.is_near(sentinel_top=1300, viewport_bottom=1000) is True
        assert sentinel.is_near(sentinel_top=1400, viewport_bottom=1000) is True
        assert sentinel.is_near(sentinel_top=1401, viewport_bottom=1000) is False

    @pytest.mark.asyncio
    async def test_on_scroll_respects_margin(self, clock, notify):
        backend = FakeGalleryBackend(40)
        controller = make_controller(backend, clock, notify)
        await controller.mount()
        clock.now += 2

        assert controller.on_scroll(sentinel_top=5000, viewport_bottom=800) is None

        task = controller.on_scroll(sentinel_top=1000, viewport_bottom=800)
        assert task is not None
        await task
        assert len(controller.items) == 24


def test_rejects_invalid_page_sizes():
    with pytest.raises(ValueError):
        InfiniteFeedController(FakeGalleryBackend(0), page_size=0)
