"""Device event model (``root/{device}/event/{name}`` messages)."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from pulsarfleet.models._base import FleetModel


class DeviceEvent(FleetModel):
    id: str
    device_id: str
    name: str = "unknown"
    t: int
    severity: str = "info"
    msg: str = "Event occurred"
    data: dict[str, Any] = Field(default_factory=dict)
