"""Inbound message normalisation.

Turns one ``(topic, bytes)`` delivery into an :class:`InboundMessage` and
derives the metric samples and device events it carries.
"""

from __future__ import annotations

from dataclasses import dataclass

from pulsarfleet.ingestion.normalize import extract_numeric_fields, extract_timestamp_ms, safe_float
from pulsarfleet.ingestion.payload import DecodedPayload, decode_payload
from pulsarfleet.models._base import new_id
from pulsarfleet.models.event import DeviceEvent
from pulsarfleet.models.series import SeriesKey, SeriesPoint
from pulsarfleet.topic import DEFAULT_ROOT, NotApplicable, ParsedTopic, TopicKind, parse_topic


@dataclass(frozen=True, slots=True)
class InboundMessage:
    id: str
    topic: str
    parsed: ParsedTopic | NotApplicable
    payload: DecodedPayload
    payload_len: int
    received_at: int

    @property
    def device_id(self) -> str | None:
        return self.parsed.device_id if isinstance(self.parsed, ParsedTopic) else None

    @property
    def kind(self) -> TopicKind | None:
        return self.parsed.kind if isinstance(self.parsed, ParsedTopic) else None


def build_inbound(
    topic: str,
    payload: bytes | bytearray | str | None,
    *,
    received_at: int,
    root: str = DEFAULT_ROOT,
    max_bytes: int | None = None,
) -> InboundMessage:
    return InboundMessage(
        id=new_id(),
        topic=topic,
        parsed=parse_topic(topic, root=root),
        payload=decode_payload(payload, max_bytes=max_bytes),
        payload_len=len(payload) if payload is not None else 0,
        received_at=received_at,
    )


def build_samples(message: InboundMessage) -> list[tuple[SeriesKey, SeriesPoint]]:
    """Metric samples carried by a telemetry or event message.

    JSON payloads contribute every numeric field. On ``telemetry/<metric>``
    topics the generic ``value`` field, or a bare numeric text payload, is
    stored under ``<metric>``.
    """
    parsed = message.parsed
    if not isinstance(parsed, ParsedTopic) or parsed.kind not in (TopicKind.TELEMETRY, TopicKind.EVENT):
        return []

    metric_path = parsed.path if parsed.kind == TopicKind.TELEMETRY else ""
    obj = message.payload.json_object

    if obj is None:
        if message.payload.kind != "text" or not metric_path:
            return []
        value = safe_float(message.payload.text)
        if value is None:
            return []
        return [((parsed.device_id, metric_path), SeriesPoint(t=message.received_at, v=value))]

    t = extract_timestamp_ms(obj, message.received_at)
    samples: list[tuple[SeriesKey, SeriesPoint]] = []
    for field_name, value in extract_numeric_fields(obj):
        metric = metric_path if (field_name == "value" and metric_path) else field_name
        samples.append(((parsed.device_id, metric), SeriesPoint(t=t, v=value)))
    return samples


def build_device_event(message: InboundMessage) -> DeviceEvent | None:
    """Normalise an ``event`` message; ``None`` for any other kind."""
    parsed = message.parsed
    if not isinstance(parsed, ParsedTopic) or parsed.kind != TopicKind.EVENT:
        return None

    name = parsed.path or "unknown"
    obj = message.payload.json_object
    if obj is not None:
        data = obj.get("data")
        return DeviceEvent(
            id=str(obj.get("id") or new_id()),
            device_id=parsed.device_id,
            name=name,
            t=extract_timestamp_ms(obj, message.received_at),
            severity=str(obj.get("severity") or "info"),
            msg=str(obj.get("msg") or obj.get("message") or "Event occurred"),
            data=data if isinstance(data, dict) else {},
        )

    return DeviceEvent(
        id=new_id(),
        device_id=parsed.device_id,
        name=name,
        t=message.received_at,
        msg=message.payload.text.strip() or "Event occurred",
    )
