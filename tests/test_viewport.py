from __future__ import annotations

from typing import Callable, List, Optional

from pid_annotator.config import ViewportConfig
from pid_annotator.geometry import PageRect
from pid_annotator.viewport import ViewportTracker


class FakeSurface:
    def __init__(self, page: Optional[PageRect] = None, container: Optional[PageRect] = None) -> None:
        self.page = page
        self.container = container

    def page_rect(self) -> Optional[PageRect]:
        return self.page

    def container_size(self) -> Optional[PageRect]:
        return self.container


class FakeScheduler:
    def __init__(self) -> None:
        self.pending: List[List] = []
        self.delays: List[int] = []

    def __call__(self, delay_ms: int, callback: Callable[[], None]) -> Callable[[], None]:
        entry = [delay_ms, callback, False]
        self.pending.append(entry)
        self.delays.append(delay_ms)

        def _cancel() -> None:
            entry[2] = True

        return _cancel

    def run_next(self) -> bool:
        while self.pending:
            _delay, callback, cancelled = self.pending.pop(0)
            if not cancelled:
                callback()
                return True
        return False


def test_mount_publishes_page_rect() -> None:
    page = PageRect(width=800, height=1000, left=12, top=30)
    scheduler = FakeScheduler()
    tracker = ViewportTracker(FakeSurface(page=page), schedule=scheduler)
    seen = []
    tracker.subscribe(seen.append)

    assert tracker.mount() == page
    assert tracker.current() == page
    assert seen == [page]
    assert scheduler.delays == []


def test_missing_page_falls_back_to_container_and_retries_bounded() -> None:
    scheduler = FakeScheduler()
    surface = FakeSurface(container=PageRect(width=640, height=480, left=5, top=5))
    tracker = ViewportTracker(surface, schedule=scheduler)

    tracker.mount()

    assert tracker.current() == PageRect(width=640, height=480)
    while scheduler.run_next():
        pass
    assert scheduler.delays == [250] * 8
    assert tracker.retries == 8
    assert tracker.retry_pending is False
    assert tracker.current() == PageRect(width=640, height=480)


def test_page_found_during_retry_stops_polling() -> None:
    scheduler = FakeScheduler()
    surface = FakeSurface(container=PageRect(width=640, height=480))
    tracker = ViewportTracker(surface, schedule=scheduler)
    tracker.mount()

    surface.page = PageRect(width=600, height=750, left=20, top=0)
    scheduler.run_next()

    assert tracker.current() == surface.page
    assert scheduler.run_next() is False
    assert len(scheduler.delays) == 1


def test_backoff_grows_retry_delay() -> None:
    scheduler = FakeScheduler()
    cfg = ViewportConfig(max_retries=3, retry_interval_ms=100, backoff=2.0)
    tracker = ViewportTracker.from_config(FakeSurface(container=PageRect(10, 10)), cfg, schedule=scheduler)

    tracker.mount()
    while scheduler.run_next():
        pass

    assert scheduler.delays == [100, 200, 400]


def test_refresh_restarts_retry_budget_and_cancels_pending() -> None:
    scheduler = FakeScheduler()
    tracker = ViewportTracker(FakeSurface(container=PageRect(10, 10)), schedule=scheduler, max_retries=2)
    tracker.mount()
    scheduler.run_next()
    assert tracker.retries == 2

    tracker.on_resize()

    assert tracker.retries == 1
    assert scheduler.pending[0][2] is True


def test_unmount_publishes_none_and_cancels_retry() -> None:
    scheduler = FakeScheduler()
    tracker = ViewportTracker(FakeSurface(container=PageRect(10, 10)), schedule=scheduler)
    seen = []
    tracker.subscribe(seen.append)
    tracker.mount()

    tracker.unmount()

    assert tracker.current() is None
    assert seen[-1] is None
    assert tracker.retry_pending is False
    assert tracker.refresh() is None
    assert scheduler.run_next() is False


def test_zero_sized_surface_never_publishes_a_rect() -> None:
    surface = FakeSurface(page=PageRect(width=0, height=100), container=PageRect(width=-5, height=0))
    tracker = ViewportTracker(surface)
    seen = []
    tracker.subscribe(seen.append)

    assert tracker.mount() is None
    assert tracker.current() is None
    assert seen == []


def test_only_changes_are_published() -> None:
    surface = FakeSurface(page=PageRect(width=800, height=1000))
    tracker = ViewportTracker(surface)
    seen = []
    tracker.subscribe(seen.append)
    tracker.mount()

    tracker.on_zoom_changed()
    tracker.on_layout_mutated()
    surface.page = PageRect(width=400, height=500)
    tracker.on_zoom_changed()

    assert seen == [PageRect(width=800, height=1000), PageRect(width=400, height=500)]
