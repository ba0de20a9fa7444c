"""Tests for pydantic model parsing of acks, records and snapshots."""

from __future__ import annotations

import pydantic
import pytest

from pulsarfleet.models import (
    AckPayload,
    CommandRecord,
    CommandStatus,
    DeviceSnapshot,
    FleetHealthSummary,
    Liveness,
    NotificationEntry,
    NotificationLevel,
    PendingCommand,
)


def test_ack_payload_accepts_field_aliases() -> None:
    ack = AckPayload.model_validate({"req_id": 42, "ok": False, "err": 7, "extra": "ignored"})

    assert ack.id == "42"
    assert ack.ok is False
    assert ack.error == "7"
    assert ack.succeeded is False


def test_ack_payload_non_bool_ok_is_treated_as_missing() -> None:
    ack = AckPayload.model_validate({"id": "c1", "ok": "false"})

    assert ack.ok is None
    assert ack.succeeded is True


@pytest.mark.parametrize("data", [{}, {"id": ""}, {"id": True}, ["c1"]])
def test_ack_payload_requires_an_id(data: object) -> None:
    with pytest.raises(pydantic.ValidationError):
        AckPayload.model_validate(data)


def test_pending_command_to_record() -> None:
    pending = PendingCommand(
        id="c1",
        device_id="d1",
        action="relay.set",
        payload={"on": True},
        started_at=1_000,
        timeout_ms=2_000,
        status=CommandStatus.SENT,
        sent_at=1_005,
    )

    record = pending.to_record(CommandStatus.ACKED, completed_at=1_250)

    assert record.status.is_terminal
    assert record.duration_ms == 250
    assert record.sent_at == 1_005
    assert record.payload == {"on": True}
    assert record.payload is not pending.payload
    assert not CommandStatus.SENT.is_terminal


def test_records_are_frozen() -> None:
    record = CommandRecord(id="c1", device_id="d1", action="x", status=CommandStatus.TIMEOUT, started_at=0)

    with pytest.raises(pydantic.ValidationError):
        record.status = CommandStatus.ACKED  # type: ignore[misc]
    assert record.duration_ms is None


def test_notification_group_key_uses_first_title_word() -> None:
    entry = NotificationEntry(id="n1", level=NotificationLevel.WARN, title="  Device stale ", device_id="d1", t=0)

    assert entry.group_key == ("d1", NotificationLevel.WARN, "device")


def test_snapshot_and_summary() -> None:
    snapshot = DeviceSnapshot(id="d1", liveness="stale")
    summary = FleetHealthSummary(online=2, stale=1, offline=3, total=6)

    assert snapshot.liveness == Liveness.STALE
    assert snapshot.role == "unknown"
    assert summary.alerts == 4
    assert Liveness.ONLINE.priority < Liveness.STALE.priority < Liveness.OFFLINE.priority
