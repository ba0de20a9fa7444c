"""Update scheduler: coalesces bursts of mutations into one flush per tick.

Inbound messages can arrive far faster than anything downstream wants to
react. Callbacks passed to :meth:`UpdateScheduler.schedule_update` are
queued; the first one arms a single timer and every callback queued before
it fires runs in that one flush, in enqueue order. Flush listeners are
then invoked once, which bounds downstream notification rate to the tick
frequency regardless of input rate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

_logger = logging.getLogger(__name__)


class UpdateScheduler:
    def __init__(
        self,
        *,
        interval_ms: float = 16,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self._interval = interval_ms / 1000.0
        self._loop = loop
        self._queue: list[Callable[[], Any]] = []
        self._handle: asyncio.TimerHandle | None = None
        self._listeners: list[Callable[[], None]] = []
        self._closed = False
        self.flush_count = 0

    @property
    def is_armed(self) -> bool:
        return self._handle is not None

    @property
    def pending(self) -> int:
        return len(self._queue)

    def schedule_update(self, callback: Callable[[], Any]) -> None:
        """Queue *callback* for the next flush, arming the tick timer if idle.

        Without a running event loop nothing is armed and the owner is
        expected to call :meth:`flush` itself.
        """
        if not callable(callback):
            raise TypeError("callback must be callable")
        if self._closed:
            _logger.debug("Scheduler closed, dropping update")
            return
        self._queue.append(callback)
        if self._handle is not None:
            return
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
        self._handle = loop.call_later(self._interval, self._on_tick)

    def _on_tick(self) -> None:
        self._handle = None
        self.flush()

    def flush(self) -> int:
        """Run every queued callback, then the flush listeners.

        A failing callback is logged and does not stop the others.
        Callbacks queued while flushing run in the next tick. Returns the
        number of callbacks executed.
        """
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        queue, self._queue = self._queue, []
        if not queue:
            return 0

        for callback in queue:
            try:
                callback()
            except Exception:
                _logger.exception("Queued update failed")

        self.flush_count += 1
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                _logger.exception("Flush listener failed")
        return len(queue)

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a per-flush listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    @property
    def is_closed(self) -> bool:
        return self._closed

    def reopen(self) -> None:
        """Accept updates again after :meth:`close`."""
        self._closed = False

    def close(self) -> None:
        """Cancel the armed tick and drop queued callbacks."""
        self._closed = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        dropped = len(self._queue)
        self._queue.clear()
        if dropped:
            _logger.debug("Scheduler closed with %d queued update(s) dropped", dropped)
