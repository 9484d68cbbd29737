"""Read-only helpers over a Snapshot.

Pure functions: they never touch the store, so any number of callers can use
them concurrently on the Snapshot they hold.
"""

from typing import List, Optional

from .models.snapshot import Display, Snapshot, Space, Window


def spaces_for_display(snapshot: Snapshot, display_index: int) -> List[Space]:
    """Spaces owned by a display, in index order."""
    return [space for space in snapshot.spaces if space.display == display_index]


def windows_for_space(snapshot: Snapshot, space_index: int) -> List[Window]:
    """Listed (not minimized, not hidden) windows on a space, sticky included."""
    return [
        window for window in snapshot.windows
        if window.space == space_index and window.is_listed
    ]


def non_sticky_windows_for_space(snapshot: Snapshot, space_index: int) -> List[Window]:
    """Listed windows on a space, excluding sticky windows."""
    return [
        window for window in windows_for_space(snapshot, space_index)
        if not window.sticky
    ]


def sticky_windows(snapshot: Snapshot) -> List[Window]:
    """Listed windows visible on every space."""
    return [window for window in snapshot.windows if window.sticky and window.is_listed]


def focused_space(snapshot: Snapshot) -> Optional[Space]:
    return next((space for space in snapshot.spaces if space.focused), None)


def focused_window(snapshot: Snapshot) -> Optional[Window]:
    return next((window for window in snapshot.windows if window.focused), None)


def space_by_index(snapshot: Snapshot, space_index: int) -> Optional[Space]:
    return next((space for space in snapshot.spaces if space.index == space_index), None)


def window_by_id(snapshot: Snapshot, window_id: int) -> Optional[Window]:
    return next((window for window in snapshot.windows if window.id == window_id), None)


def display_for_space(snapshot: Snapshot, space_index: int) -> Optional[Display]:
    """Display that owns a space, if both are known."""
    space = space_by_index(snapshot, space_index)
    if space is None:
        return None
    return next((d for d in snapshot.displays if d.index == space.display), None)


def unique_apps_for_space(
    snapshot: Snapshot,
    space_index: int,
    excluding_sticky: bool = True,
) -> List[Window]:
    """First listed window of each application on a space.

    Used for icon strips where one icon per app is shown.
    """
    if excluding_sticky:
        candidates = non_sticky_windows_for_space(snapshot, space_index)
    else:
        candidates = windows_for_space(snapshot, space_index)

    seen = set()
    unique: List[Window] = []
    for window in candidates:
        if window.app in seen:
            continue
        seen.add(window.app)
        unique.append(window)
    return unique
