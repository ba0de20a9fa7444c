"""Capped log of raw inbound messages (newest first).

Payloads longer than ``preview_chars`` are kept as a truncated text
preview without their decoded value, so each entry stays small even when
the payload is close to the decode cap.
"""

from __future__ import annotations

import dataclasses
from collections import deque

from pulsarfleet.ingestion.inbound import InboundMessage
from pulsarfleet.ingestion.payload import DecodedPayload
from pulsarfleet.topic import TopicKind

TRUNCATION_MARKER = "...<truncated>"


class MessageLog:
    def __init__(self, max_messages: int = 1000, *, preview_chars: int = 2048) -> None:
        if max_messages <= 0:
            raise ValueError("max_messages must be positive")
        if preview_chars <= 0:
            raise ValueError("preview_chars must be positive")
        self._messages: deque[InboundMessage] = deque(maxlen=max_messages)
        self._preview_chars = preview_chars
        self.paused = False

    def __len__(self) -> int:
        return len(self._messages)

    def add(self, message: InboundMessage) -> bool:
        if self.paused:
            return False
        self._messages.appendleft(self._preview(message))
        return True

    def _preview(self, message: InboundMessage) -> InboundMessage:
        payload = message.payload
        if len(payload.text) <= self._preview_chars:
            return message
        text = payload.text[: self._preview_chars] + TRUNCATION_MARKER
        # payload_len keeps the original size.
        return dataclasses.replace(message, payload=DecodedPayload(payload.kind, text, None))

    def clear(self) -> None:
        self._messages.clear()

    def messages(
        self,
        *,
        device_id: str | None = None,
        kind: TopicKind | str | None = None,
        topic: str | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[InboundMessage]:
        """Filtered copy; ``topic`` and ``search`` are case-insensitive substrings."""
        kind_value = TopicKind(kind) if kind is not None else None
        topic_needle = topic.lower() if topic else None
        search_needle = search.lower() if search else None

        out: list[InboundMessage] = []
        for message in self._messages:
            if device_id is not None and message.device_id != device_id:
                continue
            if kind_value is not None and message.kind != kind_value:
                continue
            if topic_needle is not None and topic_needle not in message.topic.lower():
                continue
            if search_needle is not None and (
                search_needle not in message.topic.lower() and search_needle not in message.payload.text.lower()
            ):
                continue
            out.append(message)
            if limit is not None and len(out) >= limit:
                break
        return out
