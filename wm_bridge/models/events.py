"""
Typed events published by the window-manager bridge.

Consumers subscribe to these classes on the EventChannel instead of matching
notification names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .snapshot import Snapshot


class BridgeState(str, Enum):
    """Lifecycle state of the bridge."""

    IDLE = "idle"
    REFRESHING = "refreshing"
    MUTATING = "mutating"
    ERROR = "error"


class BridgeEvent(BaseModel):
    """Base class for all channel events."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}


class SnapshotPublished(BridgeEvent):
    """A new Snapshot became current."""

    snapshot: Snapshot
    previous_generation: int = 0


class StateChanged(BridgeEvent):
    """Bridge moved between lifecycle states."""

    old_state: BridgeState
    new_state: BridgeState


class BridgeErrorEvent(BridgeEvent):
    """A surfaced failure (tool missing, unparseable output)."""

    error: dict
    operation: str = "refresh"


class ChangeNotification(BridgeEvent):
    """External hint that window-manager state changed.

    Attributes:
        source: Where the hint came from (signal name, timer, caller)
    """

    source: str = "external"
    detail: Optional[str] = None
