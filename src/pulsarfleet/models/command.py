"""Command lifecycle models.

``staged -> sent -> (acked | failed | timeout | cancelled)``

A :class:`PendingCommand` lives in its device's ``pending_commands`` map
while staged or sent. Once terminal it is converted to an immutable
:class:`CommandRecord` and appended to the device's command history.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from pydantic import Field, model_validator

from pulsarfleet.models._base import FleetModel


class CommandStatus(enum.StrEnum):
    STAGED = "staged"
    SENT = "sent"
    ACKED = "acked"
    TIMEOUT = "timeout"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[CommandStatus] = frozenset(
    {CommandStatus.ACKED, CommandStatus.TIMEOUT, CommandStatus.FAILED, CommandStatus.CANCELLED}
)


class CommandRecord(FleetModel):
    """Terminal outcome of a command."""

    id: str
    device_id: str
    action: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: CommandStatus
    started_at: int
    sent_at: int | None = None
    completed_at: int | None = None
    error: str | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at


@dataclass(slots=True)
class PendingCommand:
    """An in-flight command owned by its device record."""

    id: str
    device_id: str
    action: str
    payload: dict[str, Any]
    started_at: int
    timeout_ms: int
    status: CommandStatus = CommandStatus.STAGED
    sent_at: int | None = None
    error: str | None = field(default=None)

    @property
    def deadline_at(self) -> int | None:
        """Epoch ms after which a sent command times out."""
        if self.sent_at is None:
            return None
        return self.sent_at + self.timeout_ms

    def to_record(self, status: CommandStatus, *, completed_at: int, error: str | None = None) -> CommandRecord:
        return CommandRecord(
            id=self.id,
            device_id=self.device_id,
            action=self.action,
            payload=dict(self.payload),
            status=status,
            started_at=self.started_at,
            sent_at=self.sent_at,
            completed_at=completed_at,
            error=error,
        )


class AckPayload(FleetModel):
    """Acknowledgement published by a device on ``root/{device}/ack/{action}``.

    Devices in the field use ``id``, ``req_id`` or ``request_id`` for the
    command id and ``error`` or ``err`` for the failure reason. Only an
    explicit ``ok: false`` marks the command as failed.
    """

    id: str = Field(min_length=1)
    ok: bool | None = None
    error: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_shapes(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values

        merged = dict(values)
        if not merged.get("id"):
            for alias in ("req_id", "request_id"):
                if merged.get(alias):
                    merged["id"] = merged[alias]
                    break
        if isinstance(merged.get("id"), int) and not isinstance(merged.get("id"), bool):
            merged["id"] = str(merged["id"])

        if merged.get("error") is None and merged.get("err") is not None:
            merged["error"] = merged["err"]
        if merged.get("error") is not None and not isinstance(merged["error"], str):
            merged["error"] = str(merged["error"])

        if not isinstance(merged.get("ok"), bool):
            merged["ok"] = None
        return merged

    @property
    def succeeded(self) -> bool:
        return self.ok is not False
