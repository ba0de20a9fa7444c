"""Capped timeline of device events, used for chart markers and audit."""

from __future__ import annotations

from collections import deque

from pulsarfleet.models.event import DeviceEvent


class EventTimeline:
    def __init__(self, max_events: int = 1000) -> None:
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self._events: deque[DeviceEvent] = deque(maxlen=max_events)

    def __len__(self) -> int:
        return len(self._events)

    def add(self, event: DeviceEvent) -> None:
        self._events.appendleft(event)

    def query(
        self,
        start: int,
        end: int,
        *,
        device_id: str | None = None,
        name: str | None = None,
        severity: str | None = None,
    ) -> list[DeviceEvent]:
        """Events with ``start <= t <= end`` matching every given filter, newest first."""
        return [
            event
            for event in self._events
            if start <= event.t <= end
            and (device_id is None or event.device_id == device_id)
            and (name is None or event.name == name)
            and (severity is None or event.severity == severity)
        ]

    def purge(self, cutoff: int) -> int:
        """Drop events older than *cutoff*; returns how many were removed."""
        kept = [event for event in self._events if event.t >= cutoff]
        removed = len(self._events) - len(kept)
        if removed:
            self._events = deque(kept, maxlen=self._events.maxlen)
        return removed
