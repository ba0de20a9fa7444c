"""User-facing notification model."""

from __future__ import annotations

import enum

from pulsarfleet.models._base import FleetModel


class NotificationLevel(enum.StrEnum):
    INFO = "info"
    OK = "ok"
    WARN = "warn"
    BAD = "bad"


class NotificationEntry(FleetModel):
    """A (possibly grouped) notification.

    ``count`` is the number of occurrences folded into this entry and ``t``
    the timestamp (epoch ms) of the most recent one.
    """

    id: str
    level: NotificationLevel
    title: str
    detail: str = ""
    device_id: str | None = None
    t: int
    count: int = 1
    acknowledged: bool = False

    @property
    def group_key(self) -> tuple[str | None, NotificationLevel, str]:
        words = self.title.strip().lower().split()
        return (self.device_id, self.level, words[0] if words else "")
