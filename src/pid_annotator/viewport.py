"""Tracks the rendered page rectangle of a render surface.

The surface is any object exposing ``page_rect()`` (the inner page element,
``None`` when it cannot be found yet) and ``container_size()`` (the surface's
own size, ``None`` when it is not mounted). Recomputation is triggered by the
owner on mount, resize, zoom and layout changes; when the inner page is not
discoverable the tracker falls back to the container size and polls again a
bounded number of times.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

from .config import ViewportConfig
from .geometry import PageRect

logger = logging.getLogger("pid_annotator.viewport")

Cancel = Callable[[], None]
Scheduler = Callable[[int, Callable[[], None]], Cancel]
RectListener = Callable[[Optional[PageRect]], None]


def _usable(rect: Optional[PageRect]) -> Optional[PageRect]:
    if rect is None:
        return None
    if rect.width <= 0 or rect.height <= 0:
        return None
    return rect


class ViewportTracker:
    def __init__(
        self,
        surface: Any,
        schedule: Optional[Scheduler] = None,
        max_retries: int = 8,
        retry_interval_ms: int = 250,
        backoff: float = 1.0,
    ) -> None:
        self.surface = surface
        self.schedule = schedule
        self.max_retries = max(0, int(max_retries))
        self.retry_interval_ms = max(1, int(retry_interval_ms))
        self.backoff = max(1.0, float(backoff))
        self._mounted = False
        self._current: Optional[PageRect] = None
        self._retries = 0
        self._pending_cancel: Optional[Cancel] = None
        self._listeners: List[RectListener] = []

    @classmethod
    def from_config(cls, surface: Any, cfg: ViewportConfig, schedule: Optional[Scheduler] = None) -> "ViewportTracker":
        return cls(
            surface,
            schedule=schedule,
            max_retries=cfg.max_retries,
            retry_interval_ms=cfg.retry_interval_ms,
            backoff=cfg.backoff,
        )

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def retry_pending(self) -> bool:
        return self._pending_cancel is not None

    def current(self) -> Optional[PageRect]:
        return self._current

    def subscribe(self, listener: RectListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def mount(self) -> Optional[PageRect]:
        self._mounted = True
        return self.refresh("mount")

    def unmount(self) -> None:
        self._mounted = False
        self._cancel_pending()
        self._retries = 0
        self._publish(None)

    def on_resize(self) -> Optional[PageRect]:
        return self.refresh("resize")

    def on_zoom_changed(self) -> Optional[PageRect]:
        return self.refresh("zoom")

    def on_layout_mutated(self) -> Optional[PageRect]:
        return self.refresh("layout")

    def refresh(self, reason: str = "request") -> Optional[PageRect]:
        """Recompute the page rect, restarting the retry budget."""
        if not self._mounted:
            return None
        self._cancel_pending()
        self._retries = 0
        return self._measure(reason)

    def _measure(self, reason: str) -> Optional[PageRect]:
        if not self._mounted:
            return None
        page = _usable(self.surface.page_rect())
        if page is not None:
            self._publish(page)
            return page

        container = _usable(self.surface.container_size())
        if container is not None:
            container = PageRect(width=container.width, height=container.height)
        self._publish(container)
        self._schedule_retry(reason)
        return container

    def _schedule_retry(self, reason: str) -> None:
        if self.schedule is None:
            return
        if self._retries >= self.max_retries:
            logger.debug("page element not found after %d retries, keeping container size", self._retries)
            return
        delay = int(round(self.retry_interval_ms * (self.backoff ** self._retries)))
        self._retries += 1
        logger.debug("page element missing (%s), retry %d/%d in %dms", reason, self._retries, self.max_retries, delay)
        self._pending_cancel = self.schedule(delay, self._on_retry)

    def _on_retry(self) -> None:
        self._pending_cancel = None
        self._measure("retry")

    def _cancel_pending(self) -> None:
        cancel = self._pending_cancel
        self._pending_cancel = None
        if cancel is not None:
            cancel()

    def _publish(self, rect: Optional[PageRect]) -> None:
        if rect == self._current:
            return
        self._current = rect
        for listener in list(self._listeners):
            listener(rect)


__all__ = ["PageRect", "Scheduler", "ViewportTracker"]
