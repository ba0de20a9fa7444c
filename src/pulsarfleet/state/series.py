"""Bounded in-memory time-series store.

Each ``(device_id, metric)`` key owns a :class:`BoundedSeries` limited by
point count and point age. Eviction is strictly FIFO from the head: points
are never re-sorted, so producers are expected to push in non-decreasing
``t`` order.

Age eviction runs on every push for that key. :meth:`SeriesStore.prune`
applies the same age bound to every series independently of push
activity, so a metric that stops reporting eventually empties.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator

from pulsarfleet.models._base import now_ms
from pulsarfleet.models.series import SeriesKey, SeriesPoint


class BoundedSeries:
    """Fixed-capacity, age-bounded point buffer."""

    __slots__ = ("max_size", "max_age_ms", "_points")

    def __init__(self, max_size: int, max_age_ms: int) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if max_age_ms <= 0:
            raise ValueError("max_age_ms must be positive")
        self.max_size = max_size
        self.max_age_ms = max_age_ms
        self._points: deque[SeriesPoint] = deque()

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[SeriesPoint]:
        return iter(tuple(self._points))

    def push(self, point: SeriesPoint, now: int) -> int:
        """Append *point* then evict; returns the number of evicted points."""
        self._points.append(point)
        return self.evict(now)

    def evict(self, now: int) -> int:
        points = self._points
        cutoff = now - self.max_age_ms
        removed = 0
        while points and (len(points) > self.max_size or points[0].t < cutoff):
            points.popleft()
            removed += 1
        return removed

    def snapshot(self, *, max_age_ms: int | None = None, now: int | None = None) -> tuple[SeriesPoint, ...]:
        """Copy of the retained points, optionally limited to ``t >= now - max_age_ms``."""
        if max_age_ms is None:
            return tuple(self._points)
        if now is None:
            raise ValueError("now is required with max_age_ms")
        cutoff = now - max_age_ms
        return tuple(p for p in self._points if p.t >= cutoff)

    def latest(self) -> SeriesPoint | None:
        return self._points[-1] if self._points else None


class SeriesStore:
    """Store of bounded series keyed by ``(device_id, metric)``.

    Series are referenced, not owned, by device records: removing a device
    from the registry leaves its history here until :meth:`clear_device`.
    """

    def __init__(
        self,
        *,
        max_size: int = 1000,
        max_age_ms: int = 3_600_000,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if max_size <= 0 or max_age_ms <= 0:
            raise ValueError("max_size and max_age_ms must be positive")
        self._max_size = max_size
        self._max_age_ms = max_age_ms
        self._clock = clock
        self._series: dict[SeriesKey, BoundedSeries] = {}

    def __len__(self) -> int:
        return len(self._series)

    def __contains__(self, key: object) -> bool:
        return key in self._series

    def push(self, key: SeriesKey, point: SeriesPoint) -> None:
        series = self._series.get(key)
        if series is None:
            series = BoundedSeries(self._max_size, self._max_age_ms)
            self._series[key] = series
        series.push(point, self._clock())

    def query(self, key: SeriesKey, max_age_ms: int | None = None) -> tuple[SeriesPoint, ...]:
        """Snapshot of a series; empty when the key is unknown."""
        series = self._series.get(key)
        if series is None:
            return ()
        if max_age_ms is None:
            return series.snapshot()
        return series.snapshot(max_age_ms=max_age_ms, now=self._clock())

    def latest(self, key: SeriesKey) -> SeriesPoint | None:
        series = self._series.get(key)
        return series.latest() if series is not None else None

    def keys(self) -> list[SeriesKey]:
        return list(self._series)

    def metrics_for(self, device_id: str) -> list[str]:
        return sorted(metric for dev, metric in self._series if dev == device_id)

    def clear(self, key: SeriesKey) -> bool:
        return self._series.pop(key, None) is not None

    def clear_device(self, device_id: str) -> int:
        keys = [key for key in self._series if key[0] == device_id]
        for key in keys:
            del self._series[key]
        return len(keys)

    def prune(self, now: int | None = None) -> int:
        """Apply age eviction to every series; drops series left empty."""
        ts = self._clock() if now is None else now
        removed = 0
        for key in list(self._series):
            series = self._series[key]
            removed += series.evict(ts)
            if not series:
                del self._series[key]
        return removed
