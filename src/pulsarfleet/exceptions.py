"""Custom exception hierarchy for pulsarfleet.

Only programmer errors cross the public API as exceptions. Data-driven
anomalies (malformed payloads, unknown acks, late timers) degrade to
"not applicable" or "dropped" outcomes instead.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base exception for all pulsarfleet errors."""


class FleetConfigError(FleetError):
    """Invalid or missing configuration."""


class FleetTransportError(FleetError):
    """Publish failed or transport not available."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class CommandNotFoundError(FleetError):
    """No pending command is registered under the given id."""

    def __init__(self, command_id: str) -> None:
        self.command_id = command_id
        super().__init__(f"Command not found: {command_id}")


class CommandStateError(FleetError):
    """Operation not valid for the command's current status.

    Raised e.g. when executing a command that is already ``sent``.
    """

    def __init__(self, message: str, *, command_id: str = "", status: str = "") -> None:
        self.command_id = command_id
        self.status = status
        super().__init__(message)
