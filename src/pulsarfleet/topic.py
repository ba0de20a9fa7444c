"""Fleet topic codec.

Topics have the shape ``root/{device_id}/{kind}/{optional/path}``, e.g.::

    pulsar/pump-07/telemetry
    pulsar/pump-07/state/calibration
    pulsar/pump-07/cmd/relay.set

Parsing never raises: anything that does not match yields a
:class:`NotApplicable` value which callers treat as opaque.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Literal

DEFAULT_ROOT = "pulsar"


class TopicKind(StrEnum):
    TELEMETRY = "telemetry"
    STATUS = "status"
    STATE = "state"
    META = "meta"
    ACK = "ack"
    EVENT = "event"
    CMD = "cmd"


@dataclass(frozen=True)
class ParsedTopic:
    """Structured identifier extracted from a fleet topic."""

    raw: str
    device_id: str
    kind: TopicKind
    path: str = ""

    applicable: Literal[True] = True


@dataclass(frozen=True)
class NotApplicable:
    """Parse result for topics outside the fleet topic shape."""

    raw: str
    reason: str

    applicable: Literal[False] = False


def parse_topic(topic: str, *, root: str = DEFAULT_ROOT) -> ParsedTopic | NotApplicable:
    """Parse *topic* into a :class:`ParsedTopic`.

    Empty segments (``a//b``) are ignored. The remainder after the kind
    segment is joined back with ``/`` and returned as ``path``.
    """
    raw = topic if isinstance(topic, str) else ""
    parts = [part for part in raw.split("/") if part]

    if not parts:
        return NotApplicable(raw, "empty topic")
    if parts[0] != root:
        return NotApplicable(raw, f"root {parts[0]!r} != {root!r}")
    if len(parts) < 3:
        return NotApplicable(raw, "missing device or kind segment")

    try:
        kind = TopicKind(parts[2])
    except ValueError:
        return NotApplicable(raw, f"unknown kind {parts[2]!r}")

    return ParsedTopic(raw=raw, device_id=parts[1], kind=kind, path="/".join(parts[3:]))


def build_topic(
    device_id: str,
    kind: TopicKind | str,
    path: str | None = None,
    *,
    root: str = DEFAULT_ROOT,
) -> str:
    """Build a fleet topic; the inverse of :func:`parse_topic`."""
    if not device_id or "/" in device_id:
        raise ValueError(f"Invalid device id for topic: {device_id!r}")
    kind_value = TopicKind(kind)
    parts = [root, device_id, kind_value.value]
    if path:
        parts.extend(part for part in path.split("/") if part)
    return "/".join(parts)
