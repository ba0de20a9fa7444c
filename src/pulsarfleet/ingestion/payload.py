"""Best-effort payload decoding.

Contract: :func:`decode_payload` never raises. It returns a tagged
:class:`DecodedPayload` whose ``kind`` is ``json``, ``text`` or ``empty``.
Undecodable (binary) and oversized payloads are reported as ``empty``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal

_logger = logging.getLogger(__name__)

PayloadKind = Literal["json", "text", "empty"]


@dataclass(frozen=True, slots=True)
class DecodedPayload:
    kind: PayloadKind
    text: str = ""
    data: Any = None

    @property
    def is_json(self) -> bool:
        return self.kind == "json"

    @property
    def json_object(self) -> dict[str, Any] | None:
        """The payload if it decoded to a JSON object, else ``None``."""
        if self.kind == "json" and isinstance(self.data, dict):
            return self.data
        return None

    def as_value(self) -> Any:
        """Value stored for retained state/meta keys."""
        if self.kind == "json":
            return self.data
        return {"text": self.text}


EMPTY = DecodedPayload("empty")


def _looks_like_json(text: str) -> bool:
    return (text.startswith("{") and text.endswith("}")) or (text.startswith("[") and text.endswith("]"))


def decode_payload(payload: bytes | bytearray | memoryview | str | None, *, max_bytes: int | None = None) -> DecodedPayload:
    """Decode an inbound payload as UTF-8 JSON, then UTF-8 text."""
    if payload is None:
        return EMPTY

    if isinstance(payload, str):
        text = payload
    else:
        if max_bytes is not None and len(payload) > max_bytes:
            _logger.debug("Payload of %d bytes exceeds %d, not decoded", len(payload), max_bytes)
            return EMPTY
        try:
            text = bytes(payload).decode("utf-8")
        except UnicodeDecodeError:
            return EMPTY

    trimmed = text.strip()
    if not trimmed:
        return EMPTY

    if _looks_like_json(trimmed):
        try:
            return DecodedPayload("json", trimmed, json.loads(trimmed))
        except (ValueError, RecursionError):
            pass

    return DecodedPayload("text", text)
