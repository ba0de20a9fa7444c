"""Normalization helpers.

Centralizes numeric-field extraction and timestamp handling for telemetry
and event payloads.
"""

from __future__ import annotations

import math
from typing import Any

# Envelope fields that are numeric but are not metrics.
_IGNORED_NUMERIC_KEYS = frozenset({"t_ms", "ts_unix_ms", "ts", "seq", "uptime_ms", "ts_uptime_ms", "v"})

# Epoch timestamps only; "ts" may carry device uptime.
_TIMESTAMP_KEYS = ("ts_unix_ms", "t_ms")

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1e11


def is_finite_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def safe_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(result):
        return None
    return result


def extract_numeric_fields(obj: Any) -> list[tuple[str, float]]:
    """Return ``(field, value)`` pairs for the numeric metrics in *obj*.

    Looks at ``value``, then the nested ``fields`` object, then top-level
    keys, skipping envelope keys. The first occurrence of a name wins.
    """
    if not isinstance(obj, dict):
        return []

    out: list[tuple[str, float]] = []
    if is_finite_number(obj.get("value")):
        out.append(("value", obj["value"]))

    fields_obj = obj.get("fields")
    if isinstance(fields_obj, dict):
        for key, value in fields_obj.items():
            if is_finite_number(value):
                out.append((str(key), value))

    for key, value in obj.items():
        if key in _IGNORED_NUMERIC_KEYS or key == "fields":
            continue
        if is_finite_number(value):
            out.append((str(key), value))

    seen: set[str] = set()
    deduped: list[tuple[str, float]] = []
    for key, value in out:
        if key in seen:
            continue
        seen.add(key)
        deduped.append((key, value))
    return deduped


def normalize_timestamp_ms(value: Any) -> int | None:
    """Normalize payload timestamps to epoch milliseconds.

    - Missing/non-numeric/<= 0 -> None
    - Seconds (< 1e11) -> milliseconds
    """
    ts = safe_float(value)
    if ts is None or ts <= 0:
        return None
    if ts < _MS_THRESHOLD:
        ts *= 1000.0
    return int(ts)


def extract_timestamp_ms(obj: Any, default: int) -> int:
    """Sample timestamp from ``ts_unix_ms`` or ``t_ms``, falling back to *default*."""
    if isinstance(obj, dict):
        for key in _TIMESTAMP_KEYS:
            ts = normalize_timestamp_ms(obj.get(key))
            if ts is not None:
                return ts
    return default
