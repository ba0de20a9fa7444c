"""Device record and liveness models."""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from pydantic import Field

from pulsarfleet.models._base import FleetModel
from pulsarfleet.models.command import CommandRecord, PendingCommand


class Liveness(enum.StrEnum):
    """Derived device liveness. Never set by message content."""

    ONLINE = "online"
    STALE = "stale"
    OFFLINE = "offline"

    @property
    def priority(self) -> int:
        """Sort priority, healthiest first."""
        return _LIVENESS_PRIORITY[self]


_LIVENESS_PRIORITY: dict[Liveness, int] = {
    Liveness.ONLINE: 0,
    Liveness.STALE: 1,
    Liveness.OFFLINE: 2,
}


@dataclass(slots=True)
class DeviceRecord:
    """Mutable per-device state owned by :class:`pulsarfleet.state.registry.DeviceRegistry`.

    ``state`` and ``meta`` are last-write-wins per key: a message on
    ``state/calibration`` replaces the whole value stored under
    ``"calibration"``; other keys are untouched. Messages without a sub-path
    are stored under ``"root"``.

    ``liveness`` holds the value computed by the most recent recompute pass.
    """

    id: str
    created_at: int
    liveness: Liveness = Liveness.OFFLINE
    last_seen_at: int | None = None
    state: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    latest_status: Any = None
    latest_telemetry: Any = None
    pending_commands: dict[str, PendingCommand] = field(default_factory=dict)
    command_history: deque[CommandRecord] = field(default_factory=lambda: deque(maxlen=60))
    message_count: int = 0


@dataclass(frozen=True, slots=True)
class LivenessTransition:
    device_id: str
    previous: Liveness
    current: Liveness


class DeviceSnapshot(FleetModel):
    """Detached, read-only copy of a device record."""

    id: str
    liveness: Liveness
    last_seen_at: int | None = None
    role: str = "unknown"
    name: str | None = None
    state: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)
    latest_status: Any = None
    latest_telemetry: Any = None
    pending_command_ids: tuple[str, ...] = ()
    command_history: tuple[CommandRecord, ...] = ()


class FleetHealthSummary(FleetModel):
    """Device counts per liveness state."""

    online: int = 0
    stale: int = 0
    offline: int = 0
    total: int = 0

    @property
    def alerts(self) -> int:
        """Stale and offline devices."""
        return self.stale + self.offline
