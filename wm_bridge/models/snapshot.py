"""
Snapshot models for the window-manager bridge.

Pydantic models for displays, spaces and windows as reported by yabai, and
the immutable Snapshot aggregate published by the StateStore. Field aliases
follow yabai's kebab-case JSON keys; unknown keys are ignored so newer yabai
releases that add fields still parse.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


_ENTITY_CONFIG = {
    "frozen": True,
    "populate_by_name": True,
    "extra": "ignore",
}


class SpaceType(str, Enum):
    """Space layout type."""

    BSP = "bsp"
    STACK = "stack"
    FLOAT = "float"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


class Frame(BaseModel):
    """Rectangle in screen coordinates."""

    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0

    model_config = _ENTITY_CONFIG


class Display(BaseModel):
    """A monitor known to the window manager."""

    id: int = Field(..., description="Display id")
    index: int = Field(..., ge=0, description="Display index (mission-control order)")
    uuid: Optional[str] = None
    label: Optional[str] = None
    frame: Frame = Field(default_factory=Frame)
    spaces: Tuple[int, ...] = Field(default=(), description="Space indices on this display")
    focused: bool = Field(default=False, alias="has-focus")

    model_config = _ENTITY_CONFIG


class Space(BaseModel):
    """A workspace / virtual desktop."""

    id: int = Field(default=0, description="Window-manager internal space id")
    uuid: Optional[str] = None
    index: int = Field(..., ge=1, description="Space index, unique within the manager")
    label: str = Field(default="", description="User-assigned label")
    type: SpaceType = Field(default=SpaceType.UNKNOWN, description="Layout type")
    display: int = Field(..., ge=0, description="Owning display index")
    windows: Tuple[int, ...] = Field(default=(), description="Window ids in stacking order")
    focused: bool = Field(default=False, alias="has-focus")
    visible: bool = Field(default=False, alias="is-visible")
    native_fullscreen: bool = Field(default=False, alias="is-native-fullscreen")

    model_config = _ENTITY_CONFIG

    @field_validator("label", mode="before")
    @classmethod
    def validate_label(cls, v):
        """yabai reports unlabeled spaces with an empty string or null."""
        return v or ""

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v):
        """Unrecognized layout names map to UNKNOWN."""
        if isinstance(v, SpaceType):
            return v
        return SpaceType(v) if v else SpaceType.UNKNOWN

    @property
    def display_label(self) -> str:
        """Label for display; falls back to the index."""
        return self.label if self.label else str(self.index)


class Window(BaseModel):
    """An application window."""

    id: int = Field(..., description="Window id, unique")
    pid: int = Field(default=0)
    app: str = Field(default="", description="Owning application name")
    title: str = Field(default="")
    space: int = Field(..., description="Owning space index")
    display: int = Field(default=0, description="Display index")
    frame: Frame = Field(default_factory=Frame)
    stack_index: Optional[int] = Field(default=None, alias="stack-index")
    focused: bool = Field(default=False, alias="has-focus")
    sticky: bool = Field(default=False, alias="is-sticky")
    minimized: bool = Field(default=False, alias="is-minimized")
    hidden: bool = Field(default=False, alias="is-hidden")
    floating: bool = Field(default=False, alias="is-floating")

    model_config = _ENTITY_CONFIG

    @field_validator("stack_index", mode="before")
    @classmethod
    def validate_stack_index(cls, v):
        """yabai reports 0 for windows that are not part of a stack."""
        if v is None or v == 0:
            return None
        return v

    @field_validator("title", "app", mode="before")
    @classmethod
    def validate_text(cls, v):
        return v or ""

    @property
    def is_listed(self) -> bool:
        """Whether the window should appear in per-space listings."""
        return not self.minimized and not self.hidden


class Snapshot(BaseModel):
    """Immutable capture of all displays, spaces and windows.

    A Snapshot is built from one query cycle and published whole. Every
    window must reference a space present in the same Snapshot; sticky
    windows keep their nominal space and are still checked.
    """

    displays: Tuple[Display, ...] = ()
    spaces: Tuple[Space, ...] = ()
    windows: Tuple[Window, ...] = ()
    generation: int = Field(default=0, ge=0)
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_references(self):
        """Check identity uniqueness and window -> space references."""
        space_indices = [space.index for space in self.spaces]
        if len(space_indices) != len(set(space_indices)):
            raise ValueError(f"Duplicate space indices: {sorted(space_indices)}")

        window_ids = [window.id for window in self.windows]
        if len(window_ids) != len(set(window_ids)):
            raise ValueError("Duplicate window ids in snapshot")

        known = set(space_indices)
        dangling = [w.id for w in self.windows if w.space not in known]
        if dangling:
            raise ValueError(f"Windows reference unknown spaces: {dangling}")

        return self

    def with_generation(self, generation: int) -> "Snapshot":
        """Copy of this snapshot stamped with a store generation."""
        return self.model_copy(update={"generation": generation})

    def same_entities(self, other: "Snapshot") -> bool:
        """Entity data equality, ignoring generation and capture time."""
        return (
            self.displays == other.displays
            and self.spaces == other.spaces
            and self.windows == other.windows
        )

    def summary(self) -> dict:
        return {
            "generation": self.generation,
            "captured_at": self.captured_at.isoformat(),
            "displays": len(self.displays),
            "spaces": len(self.spaces),
            "windows": len(self.windows),
        }


EMPTY_SNAPSHOT = Snapshot()
