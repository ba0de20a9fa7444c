"""Base model and shared helpers for pulsarfleet data models.

Every wire-facing model inherits from :class:`FleetModel`:

* frozen, so snapshots handed to callers cannot mutate registry state
* ``extra="ignore"`` so devices may add fields without breaking validation
* ``populate_by_name`` so aliased fields accept both spellings
"""

from __future__ import annotations

import time
import uuid

from pydantic import BaseModel, ConfigDict


def now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


class FleetModel(BaseModel):
    """Base for pulsarfleet value models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )
