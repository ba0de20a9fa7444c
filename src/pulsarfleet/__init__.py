"""pulsarfleet - Async fleet state, telemetry history and command tracking over MQTT."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pulsarfleet")
except PackageNotFoundError:
    __version__ = "0+local"
from pulsarfleet._mqtt import FleetMqttRuntime
from pulsarfleet.commands import CommandCorrelator, build_command_envelope
from pulsarfleet.config import FleetConfig
from pulsarfleet.exceptions import (
    CommandNotFoundError,
    CommandStateError,
    FleetConfigError,
    FleetError,
    FleetTransportError,
)
from pulsarfleet.ingestion.payload import DecodedPayload, decode_payload
from pulsarfleet.models import (
    CommandRecord,
    CommandStatus,
    DeviceEvent,
    DeviceSnapshot,
    FleetHealthSummary,
    Liveness,
    NotificationEntry,
    NotificationLevel,
    SeriesPoint,
)
from pulsarfleet.scheduler import UpdateScheduler
from pulsarfleet.session import FleetSession
from pulsarfleet.state.registry import DeviceRegistry
from pulsarfleet.state.series import SeriesStore
from pulsarfleet.topic import NotApplicable, ParsedTopic, TopicKind, build_topic, parse_topic

__all__ = [
    "__version__",
    "CommandCorrelator",
    "CommandNotFoundError",
    "CommandRecord",
    "CommandStateError",
    "CommandStatus",
    "DecodedPayload",
    "DeviceEvent",
    "DeviceRegistry",
    "DeviceSnapshot",
    "FleetConfig",
    "FleetConfigError",
    "FleetError",
    "FleetHealthSummary",
    "FleetMqttRuntime",
    "FleetSession",
    "FleetTransportError",
    "Liveness",
    "NotApplicable",
    "NotificationEntry",
    "NotificationLevel",
    "ParsedTopic",
    "SeriesPoint",
    "SeriesStore",
    "TopicKind",
    "UpdateScheduler",
    "build_command_envelope",
    "build_topic",
    "decode_payload",
    "parse_topic",
]
