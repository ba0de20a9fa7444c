from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from pulsarfleet import _mqtt
from pulsarfleet._mqtt import FleetMqttRuntime
from pulsarfleet.config import FleetConfig
from pulsarfleet.exceptions import FleetConfigError, FleetTransportError


class _FakeClient:
    instances: list[_FakeClient] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.credentials: tuple[str, str | None] | None = None
        self.tls = False
        self.connected_to: tuple[str, int, int] | None = None
        self.subscriptions: list[tuple[str, int]] = []
        self.published: list[tuple[str, bytes, int]] = []
        self.publish_rc = 0
        self.loop_running = False
        self.disconnected = False
        self.on_connect: Any = None
        self.on_message: Any = None
        self.on_disconnect: Any = None
        _FakeClient.instances.append(self)

    def enable_logger(self, _logger: Any) -> None:
        pass

    def username_pw_set(self, username: str, password: str | None) -> None:
        self.credentials = (username, password)

    def tls_set(self) -> None:
        self.tls = True

    def connect(self, host: str, port: int, keepalive: int) -> None:
        self.connected_to = (host, port, keepalive)

    def loop_start(self) -> None:
        self.loop_running = True

    def loop_stop(self) -> None:
        self.loop_running = False

    def disconnect(self) -> None:
        self.disconnected = True

    def subscribe(self, topic: str, qos: int) -> None:
        self.subscriptions.append((topic, qos))

    def publish(self, topic: str, payload: bytes, qos: int) -> SimpleNamespace:
        self.published.append((topic, payload, qos))
        return SimpleNamespace(rc=self.publish_rc, mid=len(self.published))


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch) -> type[_FakeClient]:
    _FakeClient.instances = []
    monkeypatch.setattr(_mqtt.mqtt, "Client", _FakeClient)
    return _FakeClient


def _config(**overrides: Any) -> FleetConfig:
    values: dict[str, Any] = {"mqtt_host": "broker.local", "mqtt_port": 1884, "mqtt_keepalive": 30}
    values.update(overrides)
    return FleetConfig(**values)


@pytest.mark.asyncio
async def test_start_connects_and_subscribes_to_fleet_root(fake_client: type[_FakeClient]) -> None:
    runtime = FleetMqttRuntime(loop=asyncio.get_running_loop(), on_message=lambda t, p: None, topic_root="lab")

    runtime.start(_config(mqtt_username="ops", mqtt_password="pw", mqtt_tls=True))

    [client] = fake_client.instances
    assert client.connected_to == ("broker.local", 1884, 30)
    assert client.credentials == ("ops", "pw")
    assert client.tls is True
    assert client.loop_running
    assert runtime.is_running

    client.on_connect(client, None, None, SimpleNamespace(value=0), None)
    assert client.subscriptions == [("lab/#", 1)]
    assert runtime.is_connected

    runtime.stop()
    assert client.disconnected
    assert not client.loop_running
    assert not runtime.is_running


@pytest.mark.asyncio
async def test_failed_connect_does_not_subscribe(fake_client: type[_FakeClient]) -> None:
    runtime = FleetMqttRuntime(loop=asyncio.get_running_loop(), on_message=lambda t, p: None)
    runtime.start(_config())

    [client] = fake_client.instances
    client.on_connect(client, None, None, SimpleNamespace(value=135), None)

    assert client.subscriptions == []
    assert not runtime.is_connected


@pytest.mark.asyncio
async def test_deliveries_are_handed_to_the_loop(fake_client: type[_FakeClient]) -> None:
    received: list[tuple[str, bytes]] = []
    runtime = FleetMqttRuntime(
        loop=asyncio.get_running_loop(),
        on_message=lambda topic, payload: received.append((topic, payload)),
    )
    runtime.start(_config())
    [client] = fake_client.instances

    client.on_message(client, None, SimpleNamespace(topic="pulsar/d1/telemetry", payload=b'{"temp": 1}'))
    assert received == []
    await asyncio.sleep(0)

    assert received == [("pulsar/d1/telemetry", b'{"temp": 1}')]


@pytest.mark.asyncio
async def test_publish_uses_qos_1_and_reports_failures(fake_client: type[_FakeClient]) -> None:
    runtime = FleetMqttRuntime(loop=asyncio.get_running_loop(), on_message=lambda t, p: None)

    with pytest.raises(FleetTransportError):
        runtime.publish("pulsar/d1/cmd/reboot", b"{}")

    runtime.start(_config())
    [client] = fake_client.instances
    runtime.publish("pulsar/d1/cmd/reboot", b"{}")
    assert client.published == [("pulsar/d1/cmd/reboot", b"{}", 1)]

    client.publish_rc = 4
    with pytest.raises(FleetTransportError) as excinfo:
        runtime.publish("pulsar/d1/cmd/reboot", b"{}")
    assert excinfo.value.topic == "pulsar/d1/cmd/reboot"


def test_start_requires_broker_host() -> None:
    loop = asyncio.new_event_loop()
    try:
        runtime = FleetMqttRuntime(loop=loop, on_message=lambda t, p: None)
        with pytest.raises(FleetConfigError):
            runtime.start(FleetConfig())
    finally:
        loop.close()
