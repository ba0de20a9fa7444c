"""Outbound command lifecycle and acknowledgement correlation.

Commands are published on ``root/{device}/cmd/{action}`` with the JSON
envelope::

    {"v": 1, "id": "<command id>", "t_ms": <sent at>, "args": {...}, "ttl_ms": <timeout>}

Devices answer on ``root/{device}/ack/{action}`` with ``{"id": ..., "ok": ...}``.
Acks are matched by id, never by device + action, since several commands
with the same action may be in flight.

Every terminal transition goes through :meth:`CommandCorrelator._finish`,
which removes the command from its device's pending map first. Timer
callbacks and late acks check that map before mutating, so whichever of
ack, timeout or cancel happens first wins and the others are no-ops.
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from pulsarfleet._redact import redact_for_log
from pulsarfleet.exceptions import CommandNotFoundError, CommandStateError, FleetTransportError
from pulsarfleet.ingestion.payload import DecodedPayload
from pulsarfleet.models._base import new_id, now_ms
from pulsarfleet.models.command import AckPayload, CommandRecord, CommandStatus, PendingCommand
from pulsarfleet.state.registry import DeviceRegistry
from pulsarfleet.topic import DEFAULT_ROOT, TopicKind, build_topic

_logger = logging.getLogger(__name__)

Publisher = Callable[[str, bytes], Any]

ENVELOPE_VERSION = 1


def build_command_envelope(command: PendingCommand) -> bytes:
    body = {
        "v": ENVELOPE_VERSION,
        "id": command.id,
        "t_ms": command.sent_at if command.sent_at is not None else command.started_at,
        "args": command.payload,
        "ttl_ms": command.timeout_ms,
    }
    return json.dumps(body, separators=(",", ":"), default=str).encode("utf-8")


class CommandCorrelator:
    """Tracks in-flight commands and resolves them by ack, timeout or cancel."""

    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        publish: Publisher | None = None,
        default_timeout_ms: int = 2000,
        topic_root: str = DEFAULT_ROOT,
        clock: Callable[[], int] = now_ms,
        loop: asyncio.AbstractEventLoop | None = None,
        on_complete: Callable[[CommandRecord], None] | None = None,
    ) -> None:
        if default_timeout_ms <= 0:
            raise ValueError("default_timeout_ms must be positive")
        self._registry = registry
        self._publish = publish
        self._default_timeout_ms = default_timeout_ms
        self._root = topic_root
        self._clock = clock
        self._loop = loop
        self._on_complete = on_complete
        # command id -> device id, for lookups by id alone
        self._index: dict[str, str] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._publish_tasks: set[asyncio.Future[Any]] = set()

    def set_publisher(self, publish: Publisher | None) -> None:
        self._publish = publish

    @property
    def pending_count(self) -> int:
        return len(self._index)

    @property
    def publishes_in_flight(self) -> int:
        return len(self._publish_tasks)

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def stage(
        self,
        device_id: str,
        action: str,
        payload: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        """Register a command without publishing it; returns its id."""
        if not device_id:
            raise ValueError("device_id must be non-empty")
        if not action:
            raise ValueError("action must be non-empty")
        timeout = self._default_timeout_ms if timeout_ms is None else timeout_ms
        if timeout <= 0:
            raise ValueError("timeout_ms must be positive")

        command = PendingCommand(
            id=new_id(),
            device_id=device_id,
            action=action,
            payload=dict(payload or {}),
            started_at=self._clock(),
            timeout_ms=timeout,
        )
        self._registry.add_pending(command)
        self._index[command.id] = device_id
        return command.id

    def execute(self, command_id: str) -> CommandStatus:
        """Publish a staged command and arm its deadline.

        Returns ``sent``, or ``failed`` when the publish call raised.
        """
        command = self._lookup(command_id)
        if command is None:
            raise CommandNotFoundError(command_id)
        if command.status != CommandStatus.STAGED:
            raise CommandStateError(
                f"Command {command_id} is {command.status}, expected staged",
                command_id=command_id,
                status=command.status,
            )

        topic = build_topic(command.device_id, TopicKind.CMD, command.action, root=self._root)
        command.status = CommandStatus.SENT
        command.sent_at = self._clock()
        self._arm(command)

        try:
            if self._publish is None:
                raise FleetTransportError("not connected", topic=topic)
            result = self._publish(topic, build_command_envelope(command))
        except Exception as exc:
            _logger.warning("Publishing command %s to %s failed: %s", command.id, topic, exc)
            self._finish(command, CommandStatus.FAILED, error=str(exc) or type(exc).__name__)
            return CommandStatus.FAILED

        if inspect.isawaitable(result):
            self._track_publish(command.id, result)

        _logger.debug(
            "Command sent id=%s topic=%s args=%s",
            command.id,
            topic,
            redact_for_log(command.payload),
        )
        return CommandStatus.SENT

    def send(
        self,
        device_id: str,
        action: str,
        payload: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> str:
        """Stage and immediately execute a command; returns its id."""
        command_id = self.stage(device_id, action, payload, timeout_ms)
        self.execute(command_id)
        return command_id

    def broadcast(
        self,
        device_ids: Iterable[str],
        action: str,
        payload: Mapping[str, Any] | None = None,
        timeout_ms: int | None = None,
    ) -> list[str]:
        """Send the same command to each device independently."""
        return [self.send(device_id, action, payload, timeout_ms) for device_id in dict.fromkeys(device_ids)]

    def resolve_ack(self, device_id: str, action: str, ack_payload: Any) -> CommandRecord | None:
        """Match an ack to the device's pending command by id.

        Returns the terminal record, or ``None`` when the ack is malformed,
        unknown, or refers to a command that already completed.
        """
        data = ack_payload.data if isinstance(ack_payload, DecodedPayload) else ack_payload
        try:
            ack = AckPayload.model_validate(data)
        except ValidationError:
            _logger.debug("Dropping malformed ack from %s/%s: %s", device_id, action, redact_for_log(data))
            return None

        command = self._registry.find_pending(device_id, ack.id)
        if command is None or command.status != CommandStatus.SENT:
            _logger.debug("Dropping unmatched ack id=%s device=%s action=%s", ack.id, device_id, action)
            return None

        status = CommandStatus.ACKED if ack.succeeded else CommandStatus.FAILED
        return self._finish(command, status, error=ack.error)

    def on_timeout(self, command_id: str) -> CommandRecord | None:
        """Deadline callback; a no-op unless the command is still ``sent``."""
        self._cancel_timer(command_id)
        command = self._lookup(command_id)
        if command is None or command.status != CommandStatus.SENT:
            return None
        return self._finish(
            command,
            CommandStatus.TIMEOUT,
            error=f"No ack within {command.timeout_ms} ms",
        )

    def cancel(self, command_id: str) -> CommandRecord | None:
        """Locally cancel a staged or sent command.

        The device is not told; a late ack is dropped. Returns ``None`` if
        the command is unknown or already terminal.
        """
        command = self._lookup(command_id)
        if command is None:
            return None
        return self._finish(command, CommandStatus.CANCELLED)

    def cancel_all(self) -> None:
        """Stop every deadline timer without recording outcomes (teardown).

        Commands stay ``sent``; :meth:`resume` or :meth:`expire_overdue`
        resolves them later.
        """
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def expire_overdue(self, now: int | None = None) -> list[CommandRecord]:
        """Time out every ``sent`` command whose deadline has passed.

        Covers commands whose timer could not be armed (no running loop) or
        was cancelled by :meth:`cancel_all`.
        """
        ts = self._clock() if now is None else now
        expired: list[CommandRecord] = []
        for command_id in list(self._index):
            command = self._lookup(command_id)
            if command is None or command.status != CommandStatus.SENT:
                continue
            deadline = command.deadline_at
            if deadline is not None and ts >= deadline:
                record = self.on_timeout(command_id)
                if record is not None:
                    expired.append(record)
        return expired

    def resume(self) -> None:
        """Re-arm deadlines for ``sent`` commands that have no timer.

        Commands already past their deadline time out immediately.
        """
        now = self._clock()
        for command_id in list(self._index):
            if command_id in self._timers:
                continue
            command = self._lookup(command_id)
            if command is None or command.status != CommandStatus.SENT:
                continue
            remaining = (command.deadline_at or now) - now
            if remaining <= 0:
                self.on_timeout(command_id)
            else:
                self._arm(command, remaining)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, command_id: str) -> PendingCommand | None:
        command = self._lookup(command_id)
        return dataclasses.replace(command) if command is not None else None

    def pending(self, device_id: str | None = None) -> list[PendingCommand]:
        """Copies of in-flight commands, newest first."""
        out: list[PendingCommand] = []
        for cid, dev in self._index.items():
            if device_id is not None and dev != device_id:
                continue
            command = self._registry.find_pending(dev, cid)
            if command is not None:
                out.append(dataclasses.replace(command))
        out.sort(key=lambda c: c.started_at, reverse=True)
        return out

    def history(self, device_id: str | None = None) -> list[CommandRecord]:
        """Completed commands, most recently completed first."""
        if device_id is not None:
            record = self._registry.get(device_id)
            items = list(record.command_history) if record is not None else []
        else:
            items = [cmd for rec in self._registry.devices() for cmd in rec.command_history]
        items.sort(key=lambda c: c.completed_at or 0, reverse=True)
        return items

    def find_record(self, command_id: str) -> CommandRecord | None:
        for record in self._registry.devices():
            for command in record.command_history:
                if command.id == command_id:
                    return command
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, command_id: str) -> PendingCommand | None:
        device_id = self._index.get(command_id)
        if device_id is None:
            return None
        command = self._registry.find_pending(device_id, command_id)
        if command is None:
            # Device was removed from the registry while the command was in flight.
            self._index.pop(command_id, None)
            self._cancel_timer(command_id)
        return command

    def _arm(self, command: PendingCommand, delay_ms: int | None = None) -> None:
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # expire_overdue() enforces the deadline instead.
                _logger.debug("No running loop, deadline for %s left to the sweep", command.id)
                return
        delay = command.timeout_ms if delay_ms is None else delay_ms
        self._timers[command.id] = loop.call_later(delay / 1000.0, self.on_timeout, command.id)

    def _cancel_timer(self, command_id: str) -> None:
        handle = self._timers.pop(command_id, None)
        if handle is not None:
            handle.cancel()

    def _track_publish(self, command_id: str, result: Any) -> None:
        future = asyncio.ensure_future(result)
        # The loop only keeps weak references to tasks.
        self._publish_tasks.add(future)

        def _done(fut: asyncio.Future[Any]) -> None:
            self._publish_tasks.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is None:
                return
            command = self._lookup(command_id)
            if command is not None and command.status == CommandStatus.SENT:
                _logger.warning("Async publish of command %s failed: %s", command_id, exc)
                self._finish(command, CommandStatus.FAILED, error=str(exc) or type(exc).__name__)

        future.add_done_callback(_done)

    def _finish(self, command: PendingCommand, status: CommandStatus, *, error: str | None = None) -> CommandRecord:
        self._registry.pop_pending(command.device_id, command.id)
        self._index.pop(command.id, None)
        self._cancel_timer(command.id)

        record = command.to_record(status, completed_at=self._clock(), error=error)
        self._registry.append_history(record)
        _logger.debug("Command %s %s -> %s", command.id, command.action, status)

        if self._on_complete is not None:
            try:
                self._on_complete(record)
            except Exception:
                _logger.exception("Command completion callback failed for %s", record.id)
        return record
