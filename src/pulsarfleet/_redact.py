"""Helpers for safe debug logging.

Device payloads can carry provisioning secrets (Wi-Fi keys, API tokens)
and command envelopes can be large. This module redacts sensitive fields
and truncates long values before they reach DEBUG logs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SENSITIVE_VALUE_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "passwd",
        "psk",
        "wifi_password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "access_token",
        "refresh_token",
        "authorization",
        "cookie",
        "private_key",
    }
)


def redact_for_log(value: Any, *, max_string: int = 256, max_items: int = 50, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for index, (k, v) in enumerate(value.items()):
            if index >= max_items:
                redacted["…"] = f"<{len(value) - max_items} more>"
                break
            key = str(k)
            if key.lower() in _SENSITIVE_VALUE_KEYS:
                redacted[key] = "<redacted>"
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence):
        items = [
            redact_for_log(v, max_string=max_string, max_items=max_items, _depth=_depth + 1)
            for v in list(value)[:max_items]
        ]
        if len(value) > max_items:
            items.append(f"<{len(value) - max_items} more>")
        return items

    # Fallback: represent unknown objects without dumping internals.
    return repr(value)
