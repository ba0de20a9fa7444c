"""Internal MQTT runtime: paho-mqtt network thread bridged onto asyncio."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, cast

import paho.mqtt.client as mqtt

from pulsarfleet.config import FleetConfig
from pulsarfleet.exceptions import FleetConfigError, FleetTransportError

COMMAND_QOS = 1


class FleetMqttRuntime:
    """Threaded paho-mqtt runtime that hands fleet deliveries to an asyncio loop.

    Subscribes to ``{topic_root}/#``. Every delivery is passed to
    *on_message* as ``(topic, payload_bytes)`` via ``call_soon_threadsafe``,
    so the callback always runs on the loop thread.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[str, bytes], None],
        topic_root: str = "pulsar",
        keepalive: int = 60,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._subscription = f"{topic_root}/#"
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._connected = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def is_connected(self) -> bool:
        """Whether the broker accepted the connection and it has not dropped since."""
        return self._connected

    @property
    def subscription(self) -> str:
        return self._subscription

    def start(self, config: FleetConfig) -> None:
        """Connect to the broker named in *config* and subscribe to the fleet root."""
        if not config.mqtt_host:
            raise FleetConfigError("mqtt_host is required to start the MQTT runtime")
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            config.mqtt_host,
            config.mqtt_port,
            self._subscription,
            config.mqtt_client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=config.mqtt_client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if config.mqtt_username:
            client.username_pw_set(config.mqtt_username, config.mqtt_password)
        if config.mqtt_tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._connected = True
            self._logger.debug("MQTT connected, subscribing topic=%s", self._subscription)
            c.subscribe(self._subscription, qos=COMMAND_QOS)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._deliver(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._connected = False
            if self._running:
                self._logger.info("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        try:
            client.connect(config.mqtt_host, config.mqtt_port, keepalive=config.mqtt_keepalive or self._keepalive)
        except OSError as exc:
            raise FleetTransportError(
                f"MQTT connect to {config.mqtt_host}:{config.mqtt_port} failed: {exc}",
                topic=self._subscription,
            ) from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def _deliver(self, topic: str, payload: bytes) -> None:
        """Called on the paho network thread."""
        try:
            self._loop.call_soon_threadsafe(self._on_message, topic, bytes(payload))
        except RuntimeError:
            # Loop already closed during shutdown.
            self._logger.debug("Dropping MQTT delivery on %s, loop closed", topic)

    def publish(self, topic: str, payload: bytes) -> None:
        """Publish at QoS 1; raises :class:`FleetTransportError` when not possible."""
        client = self._client
        if client is None or not self._running:
            raise FleetTransportError("not connected", topic=topic)
        info = client.publish(topic, payload, qos=COMMAND_QOS)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise FleetTransportError(f"publish failed: {mqtt.error_string(info.rc)}", topic=topic)
        self._logger.debug("MQTT published topic=%s bytes=%d mid=%s", topic, len(payload), info.mid)

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._connected = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
