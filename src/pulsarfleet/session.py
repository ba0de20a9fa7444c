"""Fleet session: one registry, series store, correlator and scheduler.

Usage::

    async with FleetSession(FleetConfig.from_env(), publish=runtime.publish) as session:
        runtime = FleetMqttRuntime(loop=..., on_message=session.on_message, ...)
        ...
        session.send_command("pump-07", "relay.set", {"on": True})

Inbound deliveries are queued on the :class:`UpdateScheduler` and
processed together once per tick; subscribers registered with
:meth:`FleetSession.subscribe` are called once per processed tick. A
background task recomputes device liveness on a fixed cadence.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pulsarfleet._redact import redact_for_log
from pulsarfleet.commands import CommandCorrelator, Publisher
from pulsarfleet.config import FleetConfig
from pulsarfleet.ingestion.inbound import InboundMessage, build_device_event, build_inbound, build_samples
from pulsarfleet.models._base import now_ms
from pulsarfleet.models.command import CommandRecord, CommandStatus
from pulsarfleet.models.device import DeviceSnapshot, FleetHealthSummary, Liveness, LivenessTransition
from pulsarfleet.models.notification import NotificationEntry, NotificationLevel
from pulsarfleet.models.series import SeriesPoint
from pulsarfleet.scheduler import UpdateScheduler
from pulsarfleet.state.messages import MessageLog
from pulsarfleet.state.notifications import NotificationAggregator
from pulsarfleet.state.registry import DeviceRegistry
from pulsarfleet.state.series import SeriesStore
from pulsarfleet.state.timeline import EventTimeline
from pulsarfleet.topic import ParsedTopic, TopicKind

_logger = logging.getLogger(__name__)

_EVENT_SEVERITY_LEVELS: dict[str, NotificationLevel] = {
    "warn": NotificationLevel.WARN,
    "warning": NotificationLevel.WARN,
    "error": NotificationLevel.BAD,
    "critical": NotificationLevel.BAD,
}

_COMMAND_OUTCOMES: dict[CommandStatus, tuple[NotificationLevel, str]] = {
    CommandStatus.ACKED: (NotificationLevel.OK, "Command acked"),
    CommandStatus.FAILED: (NotificationLevel.BAD, "Command failed"),
    CommandStatus.TIMEOUT: (NotificationLevel.WARN, "Command timeout"),
    CommandStatus.CANCELLED: (NotificationLevel.INFO, "Command cancelled"),
}


class FleetSession:
    """Per-session owner of the fleet model."""

    def __init__(
        self,
        config: FleetConfig | None = None,
        *,
        publish: Publisher | None = None,
        clock: Callable[[], int] = now_ms,
        on_notification: Callable[[NotificationEntry], None] | None = None,
    ) -> None:
        self._config = (config or FleetConfig()).validate()
        cfg = self._config
        self._clock = clock

        self.registry = DeviceRegistry(
            stale_after_ms=cfg.stale_after_ms,
            command_history_limit=cfg.command_history_limit,
            clock=clock,
        )
        self.series = SeriesStore(max_size=cfg.series_max_size, max_age_ms=cfg.series_max_age_ms, clock=clock)
        self.notifications = NotificationAggregator(
            max_entries=cfg.max_notifications,
            clock=clock,
            on_notify=on_notification,
        )
        self.timeline = EventTimeline(cfg.max_events)
        self.messages = MessageLog(cfg.max_messages, preview_chars=cfg.message_preview_chars)
        self.scheduler = UpdateScheduler(interval_ms=cfg.flush_interval_ms)
        self.commands = CommandCorrelator(
            self.registry,
            publish=publish,
            default_timeout_ms=cfg.command_timeout_ms,
            topic_root=cfg.topic_root,
            clock=clock,
            on_complete=self._on_command_complete,
        )
        self._liveness_task: asyncio.Task[None] | None = None

    @property
    def config(self) -> FleetConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._liveness_task is not None and not self._liveness_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FleetSession:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Start the periodic liveness recompute.

        Also valid after :meth:`stop`: the scheduler accepts updates again
        and deadlines of commands still in flight are re-armed.
        """
        if self.is_running:
            return
        self.scheduler.reopen()
        self.commands.resume()
        self._liveness_task = asyncio.create_task(self._liveness_loop(), name="pulsarfleet-liveness")

    async def stop(self) -> None:
        """Cancel the liveness loop, the scheduler tick and all command deadlines."""
        task = self._liveness_task
        self._liveness_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.scheduler.close()
        self.commands.cancel_all()

    async def _liveness_loop(self) -> None:
        interval = self._config.liveness_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            try:
                self.recompute()
            except Exception:
                _logger.exception("Liveness recompute failed")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def on_message(self, topic: str, payload: bytes) -> None:
        """Transport delivery callback; processing is deferred to the next flush."""
        self.scheduler.schedule_update(functools.partial(self.handle_message, topic, payload))

    def handle_message(self, topic: str, payload: bytes | str | None) -> InboundMessage:
        """Decode, classify and apply one inbound message."""
        now = self._clock()
        message = build_inbound(
            topic,
            payload,
            received_at=now,
            root=self._config.topic_root,
            max_bytes=self._config.max_payload_bytes,
        )
        self.messages.add(message)

        parsed = message.parsed
        if not isinstance(parsed, ParsedTopic):
            _logger.debug("Ignoring topic %r: %s", topic, parsed.reason)
            return message

        for key, point in build_samples(message):
            self.series.push(key, point)

        if parsed.kind == TopicKind.EVENT:
            self._handle_event(message)
        elif parsed.kind == TopicKind.ACK:
            self.commands.resolve_ack(parsed.device_id, parsed.path or "unknown", message.payload)

        self.registry.record_inbound(parsed.device_id, parsed.kind, message.payload, now, path=parsed.path)
        return message

    def _handle_event(self, message: InboundMessage) -> None:
        event = build_device_event(message)
        if event is None:
            return
        self.timeline.add(event)
        level = _EVENT_SEVERITY_LEVELS.get(event.severity.lower())
        if level is not None:
            self.notifications.push(level, f"Event {event.name}", event.msg, event.device_id)
        _logger.debug("Device event %s/%s data=%s", event.device_id, event.name, redact_for_log(event.data))

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call *listener* once after each flush; returns an unsubscribe callable."""
        return self.scheduler.add_listener(listener)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def recompute(self, now: int | None = None) -> list[LivenessTransition]:
        """Run one liveness pass, time out overdue commands, expire old series
        points and prune idle devices."""
        ts = self._clock() if now is None else now
        transitions = self.registry.recompute_liveness(ts)
        for transition in transitions:
            self._notify_transition(transition)

        self.commands.expire_overdue(ts)

        self.series.prune(ts)
        if self._config.device_cleanup_age_ms > 0:
            self.registry.prune_offline(self._config.device_cleanup_age_ms, ts)

        if transitions:
            self.scheduler.schedule_update(_noop)
        return transitions

    def _notify_transition(self, transition: LivenessTransition) -> None:
        device_id = transition.device_id
        if transition.current == Liveness.ONLINE:
            self.notifications.push(NotificationLevel.OK, "Device online", f"{device_id} is reporting", device_id)
        elif transition.current == Liveness.STALE:
            seconds = self._config.stale_after_ms / 1000
            self.notifications.push(NotificationLevel.WARN, "Device stale", f"No data for {seconds:g}s", device_id)
        else:
            seconds = self._config.offline_after_ms / 1000
            self.notifications.push(NotificationLevel.BAD, "Device offline", f"No data for {seconds:g}s", device_id)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def set_publisher(self, publish: Publisher | None) -> None:
        self.commands.set_publisher(publish)

    def stage_command(
        self,
        device_id: str,
        action: str,
        payload: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        return self.commands.stage(device_id, action, payload, timeout_ms)

    def execute_command(self, command_id: str) -> CommandStatus:
        return self.commands.execute(command_id)

    def send_command(
        self,
        device_id: str,
        action: str,
        payload: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        return self.commands.send(device_id, action, payload, timeout_ms)

    def cancel_command(self, command_id: str) -> CommandRecord | None:
        return self.commands.cancel(command_id)

    def broadcast(
        self,
        device_ids: Iterable[str],
        action: str,
        payload: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> list[str]:
        return self.commands.broadcast(device_ids, action, payload, timeout_ms)

    def broadcast_online(
        self,
        action: str,
        payload: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> list[str]:
        """Broadcast to every device that is currently online."""
        targets = [record.id for record in self.registry.devices_by_liveness(Liveness.ONLINE)]
        if not targets:
            self.notifications.push(NotificationLevel.WARN, "Broadcast", "No online devices to send to")
            return []
        self.notifications.push(NotificationLevel.INFO, "Broadcast", f"Sending {action} to {len(targets)} device(s)")
        return self.commands.broadcast(targets, action, payload, timeout_ms)

    def _on_command_complete(self, record: CommandRecord) -> None:
        # Runs inside correlator mutations; record the notification on the next flush.
        self.scheduler.schedule_update(functools.partial(self._notify_command, record))

    def _notify_command(self, record: CommandRecord) -> None:
        level, title = _COMMAND_OUTCOMES.get(record.status, (NotificationLevel.INFO, "Command"))
        detail = record.action if not record.error else f"{record.action}: {record.error}"
        self.notifications.push(level, title, detail, record.device_id)

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    def device(self, device_id: str) -> DeviceSnapshot | None:
        return self.registry.snapshot(device_id)

    def devices(self) -> list[DeviceSnapshot]:
        now = self._clock()
        snapshots = (self.registry.snapshot(record.id, now) for record in self.registry.devices_sorted(now))
        return [snapshot for snapshot in snapshots if snapshot is not None]

    def health_summary(self) -> FleetHealthSummary:
        return self.registry.health_summary()

    def series_for(self, device_id: str, metric: str, max_age_ms: int | None = None) -> tuple[SeriesPoint, ...]:
        return self.series.query((device_id, metric), max_age_ms)


def _noop() -> None:
    return None
