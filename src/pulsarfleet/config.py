"""Session configuration for pulsarfleet."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pulsarfleet.exceptions import FleetConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class FleetConfig:
    """Session configuration.

    All durations are milliseconds.

    Parameters
    ----------
    topic_root : str
        First topic segment of every fleet topic (``root/{device}/{kind}/...``).
    stale_after_ms : int
        A device not seen for this long is ``stale``. It becomes ``offline``
        after ``max(3 * stale_after_ms, 15000)``.
    command_timeout_ms : int
        Default acknowledgement deadline for outbound commands.
    series_max_size : int
        Maximum number of points retained per ``(device, metric)`` series.
    series_max_age_ms : int
        Maximum age of retained series points.
    liveness_interval_ms : int
        Cadence of the background liveness recompute pass.
    flush_interval_ms : int
        Update scheduler tick. Inbound processing and subscriber
        notifications are coalesced to at most one flush per tick.
    command_history_limit : int
        Completed commands kept per device.
    max_notifications : int
        Capacity of the notification log.
    max_messages : int
        Capacity of the raw inbound message log.
    message_preview_chars : int
        Payload text kept per logged message; longer payloads are stored
        as a truncated text preview.
    max_events : int
        Capacity of the device event timeline.
    max_payload_bytes : int
        Payloads larger than this are not decoded.
    device_cleanup_age_ms : int
        Devices not seen for this long are removed from the registry during
        the liveness pass. ``0`` disables cleanup.
    mqtt_host : str or None
        Broker host used by :class:`pulsarfleet._mqtt.FleetMqttRuntime`.
    mqtt_port : int
        Broker port.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_client_id : str
        MQTT client id. Empty lets the broker assign one.
    mqtt_username : str or None
        Broker username.
    mqtt_password : str or None
        Broker password.
    mqtt_tls : bool
        Enable TLS with the system trust store.
    """

    topic_root: str = "pulsar"
    stale_after_ms: int = 5000
    command_timeout_ms: int = 2000
    series_max_size: int = 1000
    series_max_age_ms: int = 3_600_000
    liveness_interval_ms: int = 500
    flush_interval_ms: int = 16
    command_history_limit: int = 60
    max_notifications: int = 400
    max_messages: int = 1000
    message_preview_chars: int = 2048
    max_events: int = 1000
    max_payload_bytes: int = 1_000_000
    device_cleanup_age_ms: int = 3_600_000
    mqtt_host: str | None = None
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    mqtt_client_id: str = ""
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_tls: bool = False

    def validate(self) -> FleetConfig:
        """Raise :class:`FleetConfigError` for unusable values, return self."""
        if not self.topic_root or "/" in self.topic_root:
            raise FleetConfigError(f"Invalid topic_root: {self.topic_root!r}")
        positive = (
            "stale_after_ms",
            "command_timeout_ms",
            "series_max_size",
            "series_max_age_ms",
            "liveness_interval_ms",
            "flush_interval_ms",
            "command_history_limit",
            "max_notifications",
            "max_messages",
            "message_preview_chars",
            "max_events",
            "max_payload_bytes",
        )
        for name in positive:
            value = getattr(self, name)
            if value <= 0:
                raise FleetConfigError(f"{name} must be positive, got {value!r}")
        if self.device_cleanup_age_ms < 0:
            raise FleetConfigError("device_cleanup_age_ms must be >= 0")
        return self

    @property
    def offline_after_ms(self) -> int:
        return max(self.stale_after_ms * 3, 15_000)

    @classmethod
    def from_env(cls, **overrides: Any) -> FleetConfig:
        """Create configuration from environment variables.

        Reads ``PULSAR_*`` variables (``PULSAR_TOPIC_ROOT``,
        ``PULSAR_STALE_AFTER_MS``, ``PULSAR_MQTT_HOST``, ...). Explicit
        keyword arguments override environment values.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "PULSAR_TOPIC_ROOT": "topic_root",
            "PULSAR_MQTT_HOST": "mqtt_host",
            "PULSAR_MQTT_CLIENT_ID": "mqtt_client_id",
            "PULSAR_MQTT_USERNAME": "mqtt_username",
            "PULSAR_MQTT_PASSWORD": "mqtt_password",
        }
        _ENV_INT_MAP = {
            "PULSAR_STALE_AFTER_MS": "stale_after_ms",
            "PULSAR_COMMAND_TIMEOUT_MS": "command_timeout_ms",
            "PULSAR_SERIES_MAX_SIZE": "series_max_size",
            "PULSAR_SERIES_MAX_AGE_MS": "series_max_age_ms",
            "PULSAR_LIVENESS_INTERVAL_MS": "liveness_interval_ms",
            "PULSAR_FLUSH_INTERVAL_MS": "flush_interval_ms",
            "PULSAR_COMMAND_HISTORY_LIMIT": "command_history_limit",
            "PULSAR_MAX_NOTIFICATIONS": "max_notifications",
            "PULSAR_MAX_MESSAGES": "max_messages",
            "PULSAR_MESSAGE_PREVIEW_CHARS": "message_preview_chars",
            "PULSAR_MAX_EVENTS": "max_events",
            "PULSAR_MAX_PAYLOAD_BYTES": "max_payload_bytes",
            "PULSAR_DEVICE_CLEANUP_AGE_MS": "device_cleanup_age_ms",
            "PULSAR_MQTT_PORT": "mqtt_port",
            "PULSAR_MQTT_KEEPALIVE": "mqtt_keepalive",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = int(val)
            except ValueError as exc:
                raise FleetConfigError(f"{env_key} must be an integer, got {val!r}") from exc

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("PULSAR_MQTT_TLS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs).validate()
