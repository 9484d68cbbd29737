"""
Pydantic models for the window-manager bridge.

- snapshot: displays, spaces, windows and the immutable Snapshot aggregate
- command: mutation requests and their outcomes
- events: typed events published on the EventChannel
"""

from .snapshot import (
    Display,
    EMPTY_SNAPSHOT,
    Frame,
    Snapshot,
    Space,
    SpaceType,
    Window,
)
from .command import (
    CommandKind,
    CommandRequest,
    MutationOutcome,
    SwapDirection,
)
from .events import (
    BridgeErrorEvent,
    BridgeEvent,
    BridgeState,
    ChangeNotification,
    SnapshotPublished,
    StateChanged,
)

__all__ = [
    "Display",
    "EMPTY_SNAPSHOT",
    "Frame",
    "Snapshot",
    "Space",
    "SpaceType",
    "Window",
    "CommandKind",
    "CommandRequest",
    "MutationOutcome",
    "SwapDirection",
    "BridgeErrorEvent",
    "BridgeEvent",
    "BridgeState",
    "ChangeNotification",
    "SnapshotPublished",
    "StateChanged",
]
