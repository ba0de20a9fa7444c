"""Authoritative in-memory device registry.

This is the only component allowed to mutate :class:`DeviceRecord`
instances. Liveness is time-driven: :meth:`DeviceRegistry.recompute_liveness`
re-derives it for every device from ``now - last_seen_at`` and reports the
transitions it observed.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from collections.abc import Callable
from typing import Any, Literal

from pulsarfleet.ingestion.payload import DecodedPayload
from pulsarfleet.models._base import now_ms
from pulsarfleet.models.command import CommandRecord, PendingCommand
from pulsarfleet.models.device import (
    DeviceRecord,
    DeviceSnapshot,
    FleetHealthSummary,
    Liveness,
    LivenessTransition,
)
from pulsarfleet.state.policy import derive_liveness, friendly_name, infer_role
from pulsarfleet.topic import TopicKind

_logger = logging.getLogger(__name__)

ROOT_KEY = "root"


def _as_value(payload: Any) -> Any:
    if isinstance(payload, DecodedPayload):
        return payload.as_value()
    return payload


class DeviceRegistry:
    """Map of device id to :class:`DeviceRecord`.

    Records handed out by :meth:`ensure_device` and :meth:`get` are the live
    objects; callers outside ``pulsarfleet.state`` and
    ``pulsarfleet.commands`` should use :meth:`snapshot` instead.
    """

    def __init__(
        self,
        *,
        stale_after_ms: int = 5000,
        command_history_limit: int = 60,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if stale_after_ms <= 0:
            raise ValueError("stale_after_ms must be positive")
        self._stale_after_ms = stale_after_ms
        self._history_limit = command_history_limit
        self._clock = clock
        self._devices: dict[str, DeviceRecord] = {}

    @property
    def stale_after_ms(self) -> int:
        return self._stale_after_ms

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def ensure_device(self, device_id: str) -> DeviceRecord:
        """Return the record for *device_id*, creating a default one if needed."""
        if not device_id:
            raise ValueError("device_id must be non-empty")
        record = self._devices.get(device_id)
        if record is None:
            record = DeviceRecord(
                id=device_id,
                created_at=self._clock(),
                command_history=deque(maxlen=self._history_limit),
            )
            self._devices[device_id] = record
            _logger.debug("Registered device %s", device_id)
        return record

    def get(self, device_id: str) -> DeviceRecord | None:
        return self._devices.get(device_id)

    def device_ids(self) -> list[str]:
        return list(self._devices)

    def devices(self) -> list[DeviceRecord]:
        return list(self._devices.values())

    def remove_device(self, device_id: str) -> bool:
        return self._devices.pop(device_id, None) is not None

    def record_inbound(
        self,
        device_id: str,
        kind: TopicKind | str,
        payload: Any,
        timestamp: int | None = None,
        *,
        path: str = "",
    ) -> DeviceRecord:
        """Apply one inbound message to the device's record.

        ``state``/``meta`` messages replace the value under their sub-path
        (``"root"`` when the topic has none). ``status`` payloads are kept
        raw for role/feature projections. ``cmd`` topics carry our own
        outbound commands and do not count as device activity.
        """
        record = self.ensure_device(device_id)
        kind_value = TopicKind(kind)
        if kind_value == TopicKind.CMD:
            return record

        ts = self._clock() if timestamp is None else timestamp
        if record.last_seen_at is None or ts > record.last_seen_at:
            record.last_seen_at = ts
        record.message_count += 1

        if kind_value == TopicKind.STATUS:
            record.latest_status = _as_value(payload)
        elif kind_value == TopicKind.STATE:
            record.state[path or ROOT_KEY] = _as_value(payload)
        elif kind_value == TopicKind.META:
            record.meta[path or ROOT_KEY] = _as_value(payload)
        elif kind_value == TopicKind.TELEMETRY:
            if isinstance(payload, DecodedPayload):
                if payload.is_json:
                    record.latest_telemetry = payload.data
            elif payload is not None:
                record.latest_telemetry = payload
        return record

    def snapshot(self, device_id: str, now: int | None = None) -> DeviceSnapshot | None:
        record = self._devices.get(device_id)
        if record is None:
            return None
        ts = self._clock() if now is None else now
        return DeviceSnapshot(
            id=record.id,
            liveness=derive_liveness(record.last_seen_at, ts, self._stale_after_ms),
            last_seen_at=record.last_seen_at,
            role=infer_role(record),
            name=friendly_name(record),
            state=copy.deepcopy(record.state),
            meta=copy.deepcopy(record.meta),
            latest_status=copy.deepcopy(record.latest_status),
            latest_telemetry=copy.deepcopy(record.latest_telemetry),
            pending_command_ids=tuple(record.pending_commands),
            command_history=tuple(record.command_history),
        )

    def role_of(self, device_id: str) -> str:
        record = self._devices.get(device_id)
        return infer_role(record) if record is not None else "unknown"

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def liveness_of(self, device_id: str, now: int | None = None) -> Liveness:
        record = self._devices.get(device_id)
        if record is None:
            return Liveness.OFFLINE
        ts = self._clock() if now is None else now
        return derive_liveness(record.last_seen_at, ts, self._stale_after_ms)

    def recompute_liveness(self, now: int | None = None) -> list[LivenessTransition]:
        """Re-derive liveness for every device; at most one transition per device."""
        ts = self._clock() if now is None else now
        transitions: list[LivenessTransition] = []
        for record in self._devices.values():
            current = derive_liveness(record.last_seen_at, ts, self._stale_after_ms)
            if current != record.liveness:
                transitions.append(LivenessTransition(record.id, record.liveness, current))
                record.liveness = current
        return transitions

    def health_summary(self, now: int | None = None) -> FleetHealthSummary:
        ts = self._clock() if now is None else now
        counts = {liveness: 0 for liveness in Liveness}
        for record in self._devices.values():
            counts[derive_liveness(record.last_seen_at, ts, self._stale_after_ms)] += 1
        return FleetHealthSummary(
            online=counts[Liveness.ONLINE],
            stale=counts[Liveness.STALE],
            offline=counts[Liveness.OFFLINE],
            total=len(self._devices),
        )

    def devices_sorted(self, now: int | None = None) -> list[DeviceRecord]:
        """Healthiest first, then by id."""
        ts = self._clock() if now is None else now
        return sorted(
            self._devices.values(),
            key=lambda r: (derive_liveness(r.last_seen_at, ts, self._stale_after_ms).priority, r.id),
        )

    def devices_by_liveness(
        self,
        liveness: Liveness | Literal["alerts"],
        now: int | None = None,
    ) -> list[DeviceRecord]:
        """Devices in one liveness state; ``"alerts"`` selects stale and offline."""
        ts = self._clock() if now is None else now
        wanted = {Liveness.STALE, Liveness.OFFLINE} if liveness == "alerts" else {Liveness(liveness)}
        return [
            record
            for record in self._devices.values()
            if derive_liveness(record.last_seen_at, ts, self._stale_after_ms) in wanted
        ]

    def prune_offline(self, older_than_ms: int, now: int | None = None) -> list[str]:
        """Remove devices idle for longer than *older_than_ms*.

        Devices with commands still in flight are kept.
        """
        ts = self._clock() if now is None else now
        removed: list[str] = []
        for record in list(self._devices.values()):
            if record.pending_commands:
                continue
            reference = record.last_seen_at if record.last_seen_at is not None else record.created_at
            if ts - reference > older_than_ms:
                del self._devices[record.id]
                removed.append(record.id)
        if removed:
            _logger.debug("Pruned %d idle device(s): %s", len(removed), removed)
        return removed

    # ------------------------------------------------------------------
    # Command bookkeeping (used by the command correlator)
    # ------------------------------------------------------------------

    def add_pending(self, command: PendingCommand) -> None:
        self.ensure_device(command.device_id).pending_commands[command.id] = command

    def find_pending(self, device_id: str, command_id: str) -> PendingCommand | None:
        record = self._devices.get(device_id)
        if record is None:
            return None
        return record.pending_commands.get(command_id)

    def pop_pending(self, device_id: str, command_id: str) -> PendingCommand | None:
        record = self._devices.get(device_id)
        if record is None:
            return None
        return record.pending_commands.pop(command_id, None)

    def append_history(self, command: CommandRecord) -> None:
        record = self._devices.get(command.device_id)
        if record is None:
            # Device removed while the command was in flight.
            return
        record.command_history.append(command)
