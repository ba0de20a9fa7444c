"""Pure derivation rules for device records.

Nothing here mutates a record; the registry calls these during its
recompute pass and callers may use them as read-only projections.
"""

from __future__ import annotations

from typing import Any

from pulsarfleet.models.device import DeviceRecord, Liveness

MIN_OFFLINE_AFTER_MS = 15_000


def offline_after_ms(stale_after_ms: int) -> int:
    return max(stale_after_ms * 3, MIN_OFFLINE_AFTER_MS)


def derive_liveness(last_seen_at: int | None, now: int, stale_after_ms: int) -> Liveness:
    """Classify a device from the age of its last inbound message.

    - never seen -> offline
    - age < stale_after_ms -> online
    - age < max(3 * stale_after_ms, 15s) -> stale
    - otherwise -> offline
    """
    if last_seen_at is None:
        return Liveness.OFFLINE
    age = now - last_seen_at
    if age < stale_after_ms:
        return Liveness.ONLINE
    if age < offline_after_ms(stale_after_ms):
        return Liveness.STALE
    return Liveness.OFFLINE


def infer_role(record: DeviceRecord) -> str:
    """Device type advertised in ``meta.capabilities.device_type``, else ``"unknown"``."""
    caps = record.meta.get("capabilities")
    if not isinstance(caps, dict):
        return "unknown"
    device_type = caps.get("device_type")
    if device_type is None or device_type == "":
        return "unknown"
    return str(device_type)


def friendly_name(record: DeviceRecord) -> str | None:
    """Human name from ``meta.name``/``friendly_name``/``label`` or capabilities."""
    for key in ("name", "friendly_name", "label"):
        value: Any = record.meta.get(key)
        if isinstance(value, dict):
            # Text payloads are retained as {"text": ...}.
            value = value.get("text")
        if isinstance(value, str) and value.strip():
            return value.strip()
    caps = record.meta.get("capabilities")
    if isinstance(caps, dict):
        name = caps.get("friendly_name")
        if isinstance(name, str) and name:
            return name
    return None
