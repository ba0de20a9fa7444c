from __future__ import annotations

from pulsarfleet._redact import redact_for_log


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "ssid": "plant-floor",
        "psk": "hunter2",
        "Token": {"value": "abc"},
        "password": "pw",
        "nested": {"api_key": "k", "gain": 2},
    }

    redacted = redact_for_log(payload)
    assert redacted["ssid"] == "plant-floor"
    assert redacted["psk"] == "<redacted>"
    assert redacted["Token"] == "<redacted>"
    assert redacted["password"] == "<redacted>"
    assert redacted["nested"] == {"api_key": "<redacted>", "gain": 2}


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_for_log_limits_collections_and_bytes() -> None:
    assert redact_for_log(list(range(5)), max_items=2) == [0, 1, "<3 more>"]
    assert redact_for_log(b"\x00\x01") == "<bytes:2b>"
