"""
Error handling for the window-manager bridge.

Structured error codes so failures can be reported to observers and logged
with enough context to act on them.
"""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """
    Error codes for the window-manager bridge.

    Ranges:
    - 1000-1099: External tool errors
    - 1100-1199: Output parsing errors
    - 1200-1299: Icon lookup errors
    - 1500-1599: Bridge state errors
    """

    # External tool errors (1000-1099)
    TOOL_NOT_FOUND = 1000
    COMMAND_FAILED = 1001
    COMMAND_TIMEOUT = 1002

    # Parsing errors (1100-1199)
    PARSE_ERROR = 1100

    # Icon lookup errors (1200-1299)
    LOOKUP_NOT_FOUND = 1200

    # State errors (1500-1599)
    BRIDGE_NOT_RUNNING = 1500


class BridgeError(Exception):
    """Base exception for window-manager bridge errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize bridge error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            suggestion: Suggested recovery action
            context: Additional context for debugging
        """
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to a dictionary for observers and logs.

        Returns:
            Error dictionary with code, message, suggestion, and context
        """
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message
        }

        if self.suggestion:
            result["suggestion"] = self.suggestion

        if self.context:
            result["context"] = self.context

        return result


class ToolNotFoundError(BridgeError):
    """The external executable could not be located."""

    def __init__(self, tool: str, search_path: Optional[str] = None):
        context = {"tool": tool}
        if search_path:
            context["search_path"] = search_path

        super().__init__(
            code=ErrorCode.TOOL_NOT_FOUND,
            message=f"Executable not found: {tool}",
            suggestion="Install the tool or set its absolute path in the bridge configuration",
            context=context
        )


class CommandFailedError(BridgeError):
    """External command could not be run, or exited with an error."""

    def __init__(self, command: str, reason: str, returncode: Optional[int] = None):
        context: Dict[str, Any] = {"command": command, "reason": reason}
        if returncode is not None:
            context["returncode"] = returncode

        super().__init__(
            code=ErrorCode.COMMAND_FAILED,
            message=f"Command failed: {command}: {reason}",
            context=context
        )


class CommandTimeoutError(BridgeError):
    """External command was killed after exceeding its timeout."""

    def __init__(self, command: str, timeout: float):
        super().__init__(
            code=ErrorCode.COMMAND_TIMEOUT,
            message=f"Command timed out after {timeout:.1f}s: {command}",
            suggestion="The next scheduled refresh will retry",
            context={"command": command, "timeout": timeout}
        )


class ParseError(BridgeError):
    """Tool output did not match the expected schema."""

    def __init__(self, source: str, reason: str, excerpt: Optional[str] = None):
        context = {"source": source, "reason": reason}
        if excerpt:
            context["excerpt"] = excerpt[:200]

        super().__init__(
            code=ErrorCode.PARSE_ERROR,
            message=f"Failed to parse {source} output: {reason}",
            suggestion="Check that the installed window manager version is supported",
            context=context
        )


class LookupNotFoundError(BridgeError):
    """Icon search found no application bundle."""

    def __init__(self, app_name: str):
        super().__init__(
            code=ErrorCode.LOOKUP_NOT_FOUND,
            message=f"No application bundle found for {app_name!r}",
            context={"app_name": app_name}
        )


class BridgeNotRunningError(BridgeError):
    """Operation requires a started bridge."""

    def __init__(self, operation: str):
        super().__init__(
            code=ErrorCode.BRIDGE_NOT_RUNNING,
            message=f"Cannot {operation}: bridge is not running",
            suggestion="Call start() before submitting mutations",
            context={"operation": operation}
        )
