"""Data models for fleet state, commands and notifications."""

from pulsarfleet.models._base import FleetModel, new_id, now_ms
from pulsarfleet.models.command import (
    TERMINAL_STATUSES,
    AckPayload,
    CommandRecord,
    CommandStatus,
    PendingCommand,
)
from pulsarfleet.models.device import (
    DeviceRecord,
    DeviceSnapshot,
    FleetHealthSummary,
    Liveness,
    LivenessTransition,
)
from pulsarfleet.models.event import DeviceEvent
from pulsarfleet.models.notification import NotificationEntry, NotificationLevel
from pulsarfleet.models.series import SeriesKey, SeriesPoint

__all__ = [
    "AckPayload",
    "CommandRecord",
    "CommandStatus",
    "DeviceEvent",
    "DeviceRecord",
    "DeviceSnapshot",
    "FleetHealthSummary",
    "FleetModel",
    "Liveness",
    "LivenessTransition",
    "NotificationEntry",
    "NotificationLevel",
    "PendingCommand",
    "SeriesKey",
    "SeriesPoint",
    "TERMINAL_STATUSES",
    "new_id",
    "now_ms",
]
