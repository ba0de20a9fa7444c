"""Time-series point model."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SeriesPoint:
    """One metric sample: ``t`` in epoch ms, ``v`` as provided."""

    t: int
    v: float


SeriesKey = tuple[str, str]
"""``(device_id, metric)``."""
