"""
Pytest configuration and fixtures for window-manager bridge tests.

Provides canned yabai output and a FakeRunner that records every invocation
instead of spawning processes.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

# Add repository root to path for imports
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from wm_bridge.config import BridgeConfig
from wm_bridge.events import EventChannel
from wm_bridge.runner import CommandResult, CommandRunner
from wm_bridge.store import StateStore

QUERY_DISPLAYS = "-m query --displays"
QUERY_SPACES = "-m query --spaces"
QUERY_WINDOWS = "-m query --windows"

Response = Union[Tuple[str, int], Tuple[str, int, bool], Callable[[List[str]], Tuple[str, int]]]


class FakeRunner(CommandRunner):
    """CommandRunner double keyed by the arguments after the tool name.

    Responses are ``(output, returncode)`` or ``(output, returncode,
    timed_out)``. hold() makes the next matching call wait for an event.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None, tool_available: bool = True):
        super().__init__(path_prefix=[])
        self.responses: Dict[str, Response] = dict(responses or {})
        self.tool_available = tool_available
        self.calls: List[List[str]] = []
        self._holds: Dict[str, List[asyncio.Event]] = {}

    def which(self, executable: str) -> Optional[str]:
        return executable if self.tool_available else None

    def hold(self, key: str) -> asyncio.Event:
        """Block the next call matching key until the returned event is set."""
        event = asyncio.Event()
        self._holds.setdefault(key, []).append(event)
        return event

    def calls_for(self, prefix: str) -> List[List[str]]:
        return [call for call in self.calls if " ".join(call[1:]).startswith(prefix)]

    def _respond(self, argv: List[str]) -> CommandResult:
        key = " ".join(argv[1:])
        response = self.responses.get(key, ("", 0))
        if callable(response):
            response = response(argv)
        output, returncode, *rest = response
        timed_out = rest[0] if rest else False
        return CommandResult(argv, output, None if timed_out else returncode, timed_out, 1.0)

    async def execute(self, command, timeout=None) -> CommandResult:
        argv = self.normalize(command)
        self.calls.append(argv)
        holds = self._holds.get(" ".join(argv[1:]))
        if holds:
            await holds.pop(0).wait()
        return self._respond(argv)

    def execute_sync(self, command, timeout=None) -> CommandResult:
        argv = self.normalize(command)
        self.calls.append(argv)
        return self._respond(argv)


def make_space(index, label="", display=1, windows=(), focused=False, visible=None, layout="bsp"):
    return {
        "id": index + 100,
        "uuid": f"space-{index}",
        "index": index,
        "label": label,
        "type": layout,
        "display": display,
        "windows": list(windows),
        "first-window": windows[0] if windows else 0,
        "last-window": windows[-1] if windows else 0,
        "has-focus": focused,
        "is-visible": focused if visible is None else visible,
        "is-native-fullscreen": False,
    }


def make_window(wid, app, space, title="", focused=False, sticky=False, minimized=False,
                hidden=False, stack_index=0, display=1):
    return {
        "id": wid,
        "pid": wid * 10,
        "app": app,
        "title": title,
        "frame": {"x": 0.0, "y": 25.0, "w": 1440.0, "h": 875.0},
        "role": "AXWindow",
        "subrole": "AXStandardWindow",
        "display": display,
        "space": space,
        "level": 0,
        "opacity": 1.0,
        "stack-index": stack_index,
        "has-focus": focused,
        "is-sticky": sticky,
        "is-minimized": minimized,
        "is-hidden": hidden,
        "is-floating": False,
        "is-visible": not (minimized or hidden),
    }


def make_display(index=1, spaces=(1, 2)):
    return {
        "id": index,
        "uuid": f"display-{index}",
        "index": index,
        "label": "",
        "frame": {"x": 0.0, "y": 0.0, "w": 1440.0, "h": 900.0},
        "spaces": list(spaces),
        "has-focus": index == 1,
    }


@pytest.fixture
def displays_json() -> str:
    return json.dumps([make_display(1, (1, 2))])


@pytest.fixture
def spaces_json() -> str:
    """Two spaces on monitor 1: "web" (focused) and "code"."""
    return json.dumps([
        make_space(1, "web", windows=(10, 11), focused=True),
        make_space(2, "code", windows=(12,)),
    ])


@pytest.fixture
def windows_json() -> str:
    """Windows 10 and 11 on space 1 (10 focused), window 12 on space 2."""
    return json.dumps([
        make_window(10, "Safari", 1, title="Apple", focused=True),
        make_window(11, "Terminal", 1, title="zsh"),
        make_window(12, "Code", 2, title="bridge.py"),
    ])


@pytest.fixture
def query_responses(displays_json, spaces_json, windows_json) -> Dict[str, Response]:
    return {
        QUERY_DISPLAYS: (displays_json, 0),
        QUERY_SPACES: (spaces_json, 0),
        QUERY_WINDOWS: (windows_json, 0),
    }


@pytest.fixture
def fake_runner(query_responses) -> FakeRunner:
    return FakeRunner(query_responses)


@pytest.fixture
def bridge_config(tmp_path) -> BridgeConfig:
    """Config with the timer disabled and a short debounce window."""
    return BridgeConfig(
        refresh_interval=0,
        debounce_ms=50,
        register_signals=False,
        signal_dir=tmp_path / "signals",
        icon_search_dirs=[str(tmp_path / "Applications")],
    )


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel()


@pytest.fixture
def store() -> StateStore:
    return StateStore()
