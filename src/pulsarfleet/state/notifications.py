"""Bounded, grouped log of user-facing notifications."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable

from pulsarfleet.models._base import new_id, now_ms
from pulsarfleet.models.notification import NotificationEntry, NotificationLevel

_logger = logging.getLogger(__name__)


class NotificationAggregator:
    """Newest-first capped log.

    A new notification is folded into the most recent unacknowledged entry
    with the same device, level and first word of the title: the existing
    entry's ``count`` is incremented, its ``t`` refreshed, and it moves to
    the front.
    """

    def __init__(
        self,
        *,
        max_entries: int = 400,
        clock: Callable[[], int] = now_ms,
        on_notify: Callable[[NotificationEntry], None] | None = None,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._clock = clock
        self._on_notify = on_notify
        self._entries: deque[NotificationEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def push(
        self,
        level: NotificationLevel | str,
        title: str,
        detail: str = "",
        device_id: str | None = None,
    ) -> NotificationEntry:
        candidate = NotificationEntry(
            id=new_id(),
            level=NotificationLevel(level),
            title=title,
            detail=detail,
            device_id=device_id,
            t=self._clock(),
        )

        entry = candidate
        for index, existing in enumerate(self._entries):
            if not existing.acknowledged and existing.group_key == candidate.group_key:
                entry = existing.model_copy(
                    update={"count": existing.count + 1, "t": candidate.t, "detail": detail or existing.detail}
                )
                del self._entries[index]
                break

        self._entries.appendleft(entry)
        self._emit(entry)
        return entry

    def _emit(self, entry: NotificationEntry) -> None:
        if self._on_notify is None:
            return
        try:
            self._on_notify(entry)
        except Exception:
            _logger.exception("Notification callback failed for %s", entry.title)

    def entries(self, limit: int | None = None) -> list[NotificationEntry]:
        items = list(self._entries)
        return items if limit is None else items[:limit]

    def unacknowledged(self) -> list[NotificationEntry]:
        return [entry for entry in self._entries if not entry.acknowledged]

    def unacknowledged_count(self) -> int:
        return sum(1 for entry in self._entries if not entry.acknowledged)

    def for_device(self, device_id: str) -> list[NotificationEntry]:
        return [entry for entry in self._entries if entry.device_id == device_id]

    def acknowledge(self, entry_id: str) -> bool:
        for index, entry in enumerate(self._entries):
            if entry.id == entry_id:
                if not entry.acknowledged:
                    self._entries[index] = entry.model_copy(update={"acknowledged": True})
                return True
        return False

    def acknowledge_all(self) -> int:
        changed = 0
        for index, entry in enumerate(self._entries):
            if not entry.acknowledged:
                self._entries[index] = entry.model_copy(update={"acknowledged": True})
                changed += 1
        return changed

    def clear(self) -> None:
        self._entries.clear()
