from __future__ import annotations

import asyncio
import json

import pytest

from pulsarfleet.config import FleetConfig
from pulsarfleet.models.command import CommandStatus
from pulsarfleet.models.device import Liveness
from pulsarfleet.models.notification import NotificationLevel
from pulsarfleet.session import FleetSession
from pulsarfleet.topic import TopicKind


class _Clock:
    def __init__(self, now: int = 1_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class _Publisher:
    def __init__(self) -> None:
        self.sent: list[tuple[str, bytes]] = []

    def __call__(self, topic: str, payload: bytes) -> None:
        self.sent.append((topic, payload))


def _session(**config: int) -> tuple[FleetSession, _Clock, _Publisher]:
    clock = _Clock()
    publisher = _Publisher()
    session = FleetSession(FleetConfig(**config), publish=publisher, clock=clock)
    return session, clock, publisher


def test_telemetry_updates_registry_series_and_message_log() -> None:
    session, _, _ = _session()

    message = session.handle_message("pulsar/pump-07/telemetry", b'{"temp": 21.5, "rssi": -60}')

    assert message.kind == TopicKind.TELEMETRY
    snapshot = session.device("pump-07")
    assert snapshot is not None
    assert snapshot.liveness == Liveness.ONLINE
    assert snapshot.latest_telemetry == {"temp": 21.5, "rssi": -60}
    assert [p.v for p in session.series_for("pump-07", "temp")] == [21.5]
    assert session.series.metrics_for("pump-07") == ["rssi", "temp"]
    assert session.messages.messages(device_id="pump-07") == [message]


def test_non_fleet_topic_is_logged_but_not_applied() -> None:
    session, _, _ = _session()

    session.handle_message("homeassistant/status", b"online")

    assert len(session.registry) == 0
    assert len(session.messages) == 1
    assert session.messages.messages(search="homeassistant")[0].device_id is None


def test_liveness_transitions_raise_notifications() -> None:
    session, clock, _ = _session(stale_after_ms=5_000)
    session.handle_message("pulsar/pump-07/status", b'{"fw": "1.2"}')

    transitions = session.recompute()
    assert [(t.previous, t.current) for t in transitions] == [(Liveness.OFFLINE, Liveness.ONLINE)]

    clock.now += 5_000
    session.recompute()
    clock.now += 10_000
    session.recompute()

    entries = session.notifications.entries()
    assert [(n.level, n.title) for n in entries] == [
        (NotificationLevel.BAD, "Device offline"),
        (NotificationLevel.WARN, "Device stale"),
        (NotificationLevel.OK, "Device online"),
    ]
    assert session.health_summary().offline == 1


def test_ack_message_resolves_command_and_notifies_on_flush() -> None:
    session, _, publisher = _session()

    command_id = session.send_command("pump-07", "relay.set", {"on": True})
    assert publisher.sent[0][0] == "pulsar/pump-07/cmd/relay.set"

    session.handle_message("pulsar/pump-07/ack/relay.set", json.dumps({"id": command_id, "ok": True}).encode())

    record = session.commands.find_record(command_id)
    assert record is not None
    assert record.status == CommandStatus.ACKED
    assert session.notifications.entries() == []

    session.scheduler.flush()
    [entry] = session.notifications.entries()
    assert (entry.level, entry.title, entry.device_id) == (NotificationLevel.OK, "Command acked", "pump-07")


def test_stage_execute_and_cancel_through_session() -> None:
    session, _, publisher = _session()

    command_id = session.stage_command("pump-07", "reboot")
    assert publisher.sent == []
    assert session.execute_command(command_id) == CommandStatus.SENT

    record = session.cancel_command(command_id)
    assert record is not None
    assert record.status == CommandStatus.CANCELLED
    assert session.cancel_command(command_id) is None


def test_broadcast_online_targets_only_online_devices() -> None:
    session, clock, publisher = _session(stale_after_ms=5_000)

    assert session.broadcast_online("identify") == []
    assert session.notifications.entries()[0].level == NotificationLevel.WARN

    session.handle_message("pulsar/old/telemetry", b"{}")
    clock.now += 10_000
    session.handle_message("pulsar/new-1/telemetry", b"{}")
    session.handle_message("pulsar/new-2/telemetry", b"{}")

    ids = session.broadcast_online("identify", {"blink": 3})

    assert len(ids) == 2
    assert sorted(topic for topic, _ in publisher.sent) == [
        "pulsar/new-1/cmd/identify",
        "pulsar/new-2/cmd/identify",
    ]


def test_warning_event_goes_to_timeline_and_notifications() -> None:
    session, clock, _ = _session()

    session.handle_message(
        "pulsar/pump-07/event/overheat",
        b'{"severity": "error", "msg": "motor at 90C", "temp": 90}',
    )
    session.handle_message("pulsar/pump-07/event/boot", b'{"msg": "started"}')

    events = session.timeline.query(0, clock.now, device_id="pump-07")
    assert [e.name for e in events] == ["boot", "overheat"]
    [entry] = session.notifications.entries()
    assert (entry.level, entry.title, entry.detail) == (NotificationLevel.BAD, "Event overheat", "motor at 90C")
    assert [p.v for p in session.series_for("pump-07", "temp")] == [90]


def test_command_echo_does_not_mark_device_online() -> None:
    session, _, _ = _session()

    session.handle_message("pulsar/pump-07/cmd/reboot", b'{"v": 1, "id": "abc"}')

    snapshot = session.device("pump-07")
    assert snapshot is not None
    assert snapshot.liveness == Liveness.OFFLINE
    assert session.recompute() == []


def test_idle_devices_are_cleaned_up() -> None:
    session, clock, _ = _session(device_cleanup_age_ms=60_000, series_max_age_ms=30_000)
    session.handle_message("pulsar/pump-07/telemetry", b'{"temp": 20}')

    clock.now += 60_001
    session.recompute()

    assert session.device("pump-07") is None
    assert session.series_for("pump-07", "temp") == ()


@pytest.mark.asyncio
async def test_message_burst_is_processed_in_one_flush() -> None:
    session = FleetSession(FleetConfig(flush_interval_ms=10))
    flushes: list[int] = []
    unsubscribe = session.subscribe(lambda: flushes.append(len(session.messages)))

    async with session:
        assert session.is_running
        for i in range(50):
            session.on_message("pulsar/pump-07/telemetry", json.dumps({"seq": i, "temp": i}).encode())
        assert len(session.messages) == 0

        await asyncio.sleep(0.05)

        assert flushes == [50]
        assert len(session.series_for("pump-07", "temp")) == 50
        unsubscribe()

    assert not session.is_running


@pytest.mark.asyncio
async def test_background_liveness_loop_emits_transitions() -> None:
    seen: list[str] = []
    session = FleetSession(
        FleetConfig(liveness_interval_ms=10),
        on_notification=lambda entry: seen.append(entry.title),
    )

    async with session:
        session.handle_message("pulsar/pump-07/status", b"{}")
        await asyncio.sleep(0.05)

    assert seen == ["Device online"]


@pytest.mark.asyncio
async def test_stop_cancels_command_deadlines() -> None:
    session = FleetSession(FleetConfig(command_timeout_ms=20), publish=_Publisher())

    async with session:
        command_id = session.send_command("pump-07", "reboot")

    await asyncio.sleep(0.1)
    pending = session.commands.get(command_id)
    assert pending is not None
    assert pending.status == CommandStatus.SENT


@pytest.mark.asyncio
async def test_session_restart_processes_messages_and_resolves_inflight_commands() -> None:
    session = FleetSession(FleetConfig(command_timeout_ms=20, flush_interval_ms=5), publish=_Publisher())

    async with session:
        command_id = session.send_command("pump-07", "reboot")

    async with session:
        session.on_message("pulsar/pump-07/status", b"{}")
        await asyncio.sleep(0.1)

        assert session.device("pump-07") is not None
        record = session.commands.find_record(command_id)
        assert record is not None
        assert record.status == CommandStatus.TIMEOUT
        assert "Command timeout" in [entry.title for entry in session.notifications.entries()]


def test_recompute_times_out_commands_sent_without_event_loop() -> None:
    session, clock, publisher = _session(command_timeout_ms=20)

    command_id = session.send_command("pump-07", "reboot")
    assert len(publisher.sent) == 1

    clock.now += 19
    session.recompute()
    assert session.commands.get(command_id) is not None

    clock.now += 2
    session.recompute()

    record = session.commands.find_record(command_id)
    assert record is not None
    assert record.status == CommandStatus.TIMEOUT
    assert session.commands.pending() == []
