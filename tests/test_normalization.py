from __future__ import annotations

import math

from pulsarfleet.ingestion.inbound import build_device_event, build_inbound, build_samples
from pulsarfleet.ingestion.normalize import (
    extract_numeric_fields,
    extract_timestamp_ms,
    normalize_timestamp_ms,
    safe_float,
)
from pulsarfleet.models.series import SeriesPoint


def test_numeric_fields_skip_envelope_keys_and_non_numbers() -> None:
    payload = {
        "t_ms": 1_700_000_000_000,
        "seq": 4,
        "temp": 21.5,
        "ok": True,
        "label": "north",
        "bad": math.nan,
        "fields": {"rssi": -60},
        "value": 3,
    }

    assert extract_numeric_fields(payload) == [("value", 3), ("rssi", -60), ("temp", 21.5)]


def test_numeric_fields_first_occurrence_wins() -> None:
    assert extract_numeric_fields({"fields": {"temp": 1}, "temp": 2}) == [("temp", 1)]


def test_numeric_fields_of_non_object_is_empty() -> None:
    assert extract_numeric_fields([1, 2]) == []


def test_timestamp_seconds_are_converted_to_ms() -> None:
    assert normalize_timestamp_ms(1_700_000_000) == 1_700_000_000_000
    assert normalize_timestamp_ms(1_700_000_000_123) == 1_700_000_000_123
    assert normalize_timestamp_ms(0) is None
    assert normalize_timestamp_ms("soon") is None


def test_timestamp_key_precedence_and_default() -> None:
    payload = {"ts": 1_600_000_000, "t_ms": 1_700_000_000_000, "ts_unix_ms": 1_800_000_000_000}

    assert extract_timestamp_ms(payload, 5) == 1_800_000_000_000
    assert extract_timestamp_ms({"ts": 1_600_000_000, "t_ms": 1_700_000_000_000}, 5) == 1_700_000_000_000
    assert extract_timestamp_ms({}, 5) == 5


def test_uptime_ts_field_is_not_used_as_sample_time() -> None:
    message = build_inbound("pulsar/pump-07/telemetry", b'{"ts": 3600, "temp": 20}', received_at=1_700_000_000_000)

    assert extract_timestamp_ms({"ts": 3600}, 5) == 5
    assert build_samples(message) == [(("pump-07", "temp"), SeriesPoint(t=1_700_000_000_000, v=20))]


def test_safe_float() -> None:
    assert safe_float(" 2.5 ") == 2.5
    assert safe_float("") is None
    assert safe_float(True) is None
    assert safe_float("inf") is None


def test_telemetry_object_yields_samples_at_payload_time() -> None:
    message = build_inbound(
        "pulsar/pump-07/telemetry",
        b'{"temp": 21.5, "t_ms": 1700000000000}',
        received_at=5,
    )

    assert build_samples(message) == [(("pump-07", "temp"), SeriesPoint(t=1_700_000_000_000, v=21.5))]


def test_metric_topic_maps_value_and_bare_numbers_to_metric_name() -> None:
    as_text = build_inbound("pulsar/pump-07/telemetry/flow", b"12.5", received_at=7)
    as_value = build_inbound("pulsar/pump-07/telemetry/flow", b'{"value": 3, "rssi": -61}', received_at=8)

    assert build_samples(as_text) == [(("pump-07", "flow"), SeriesPoint(t=7, v=12.5))]
    assert build_samples(as_value) == [
        (("pump-07", "flow"), SeriesPoint(t=8, v=3)),
        (("pump-07", "rssi"), SeriesPoint(t=8, v=-61)),
    ]


def test_non_metric_kinds_yield_no_samples() -> None:
    status = build_inbound("pulsar/pump-07/status", b'{"uptime": 10}', received_at=1)
    foreign = build_inbound("other/pump-07/telemetry", b'{"temp": 1}', received_at=1)

    assert build_samples(status) == []
    assert build_samples(foreign) == []


def test_device_event_from_json_and_text() -> None:
    message = build_inbound(
        "pulsar/pump-07/event/overheat",
        b'{"severity": "warn", "msg": "hot", "data": {"c": 90}}',
        received_at=11,
    )
    event = build_device_event(message)

    assert event is not None
    assert event.device_id == "pump-07"
    assert event.name == "overheat"
    assert event.severity == "warn"
    assert event.msg == "hot"
    assert event.data == {"c": 90}
    assert event.t == 11

    text_event = build_device_event(build_inbound("pulsar/pump-07/event", b"boom", received_at=12))
    assert text_event is not None
    assert text_event.name == "unknown"
    assert text_event.msg == "boom"
    assert text_event.severity == "info"


def test_device_event_is_none_for_other_kinds() -> None:
    assert build_device_event(build_inbound("pulsar/pump-07/status", b"{}", received_at=1)) is None
