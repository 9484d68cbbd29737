"""
Mutation command models for the window-manager bridge.

Each CommandRequest maps to exactly one yabai invocation. Requests are
immutable so they can be queued and compared safely.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, model_validator


class CommandKind(str, Enum):
    """Type of mutating window-manager operation."""

    FOCUS_WINDOW = "focus_window"
    FOCUS_SPACE = "focus_space"
    LABEL_SPACE = "label_space"
    SWAP_SPACE = "swap_space"
    CREATE_SPACE = "create_space"
    DESTROY_SPACE = "destroy_space"


class SwapDirection(str, Enum):
    """Direction for swapping a space with its neighbour."""

    LEFT = "left"
    RIGHT = "right"


COALESCABLE_KINDS = frozenset({
    CommandKind.FOCUS_WINDOW,
    CommandKind.FOCUS_SPACE,
    CommandKind.LABEL_SPACE,
})


class CommandRequest(BaseModel):
    """Single queued mutation.

    Attributes:
        kind: Operation to perform
        target: Window id, space index, or display index depending on kind
        label: New label (LABEL_SPACE only)
        direction: Swap direction (SWAP_SPACE only)

    Example:
        >>> req = CommandRequest(kind=CommandKind.LABEL_SPACE, target=2, label="code")
        >>> req.to_cli_args("yabai")
        ['yabai', '-m', 'space', '2', '--label', 'code']
    """

    kind: CommandKind = Field(..., description="Type of command")
    target: int = Field(..., ge=1, description="Window id, space index or display index")
    label: Optional[str] = Field(default=None, description="Space label (label_space)")
    direction: Optional[SwapDirection] = Field(default=None, description="Swap direction (swap_space)")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_parameters(self):
        """Check that each kind carries exactly the parameters it needs."""
        if self.kind == CommandKind.LABEL_SPACE:
            if self.label is None:
                raise ValueError("label_space requires 'label'")
        elif self.label is not None:
            raise ValueError(f"{self.kind.value} does not take 'label'")

        if self.kind == CommandKind.SWAP_SPACE:
            if self.direction is None:
                raise ValueError("swap_space requires 'direction'")
            if self.direction == SwapDirection.LEFT and self.target <= 1:
                raise ValueError("Cannot swap the first space to the left")
        elif self.direction is not None:
            raise ValueError(f"{self.kind.value} does not take 'direction'")

        return self

    @property
    def coalesce_key(self) -> Optional[Tuple[Any, ...]]:
        """Requests sharing a key may replace one another while queued.

        Only idempotent kinds coalesce. Swap, create and destroy each change
        the space layout relative to the previous call, so they return None.
        """
        if self.kind in COALESCABLE_KINDS:
            return (self.kind, self.target)
        return None

    def to_cli_args(self, tool: str = "yabai") -> List[str]:
        """Build the argv for this request.

        Args:
            tool: yabai executable name or path

        Returns:
            Argument list for the CommandRunner
        """
        match self.kind:
            case CommandKind.FOCUS_WINDOW:
                return [tool, "-m", "window", "--focus", str(self.target)]

            case CommandKind.FOCUS_SPACE:
                return [tool, "-m", "space", "--focus", str(self.target)]

            case CommandKind.LABEL_SPACE:
                return [tool, "-m", "space", str(self.target), "--label", self.label]

            case CommandKind.SWAP_SPACE:
                offset = -1 if self.direction == SwapDirection.LEFT else 1
                return [tool, "-m", "space", str(self.target), "--swap", str(self.target + offset)]

            case CommandKind.CREATE_SPACE:
                return [tool, "-m", "space", "--create", str(self.target)]

            case CommandKind.DESTROY_SPACE:
                return [tool, "-m", "space", str(self.target), "--destroy"]

    def describe(self) -> str:
        if self.kind == CommandKind.LABEL_SPACE:
            return f"{self.kind.value}({self.target}, {self.label!r})"
        if self.kind == CommandKind.SWAP_SPACE:
            return f"{self.kind.value}({self.target}, {self.direction.value})"
        return f"{self.kind.value}({self.target})"


class MutationOutcome(BaseModel):
    """Result of a queued mutation after it reached the window manager.

    Attributes:
        request: The request that was executed (the latest one when coalesced)
        success: Whether the command ran and exited cleanly
        output: Combined stdout/stderr of the command
        error: Error dictionary when the command failed
        coalesced: True when this caller's request was replaced by a later one
    """

    request: CommandRequest
    success: bool
    output: str = ""
    error: Optional[dict] = None
    coalesced: bool = False

    model_config = {"frozen": True}
