"""
Change notifications from yabai signals.

yabai runs a shell action when one of its events fires. Each registered
signal touches a trigger file named after the event; a watchdog observer on
the trigger directory turns file events into ``bridge.notify_change()``
calls. The bridge debounces them into refreshes.
"""

import asyncio
import logging
import shlex
from pathlib import Path
from typing import List, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .bridge import WindowManagerBridge
from .config import BridgeConfig
from .errors import BridgeError
from .runner import CommandRunner

logger = logging.getLogger(__name__)

SIGNAL_LABEL_PREFIX = "wm-bridge-"


def signal_label(event: str) -> str:
    return f"{SIGNAL_LABEL_PREFIX}{event}"


class SignalTriggerHandler(FileSystemEventHandler):
    """Forwards touches of trigger files to the bridge."""

    def __init__(self, bridge: WindowManagerBridge, events: List[str]):
        super().__init__()
        self.bridge = bridge
        self.events = set(events)
        self.trigger_count = 0

    def on_created(self, event: FileSystemEvent):
        self._handle(event)

    def on_modified(self, event: FileSystemEvent):
        self._handle(event)

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        name = Path(event.src_path).name
        if name not in self.events:
            return

        self.trigger_count += 1
        logger.debug(f"Signal fired: {name}")
        self.bridge.notify_change(source="signal", detail=name)


class SignalWatcher:
    """Registers yabai signals and watches their trigger files."""

    def __init__(
        self,
        bridge: WindowManagerBridge,
        runner: CommandRunner,
        config: Optional[BridgeConfig] = None,
    ):
        """
        Initialize signal watcher.

        Args:
            bridge: Bridge notified when a signal fires
            runner: CommandRunner used for ``yabai -m signal``
            config: Bridge configuration (signal_dir, signal_events, yabai_path)
        """
        self.bridge = bridge
        self.runner = runner
        self.config = config or bridge.config
        self.signal_dir = Path(self.config.signal_dir).expanduser()
        self.events = list(self.config.signal_events)

        self.observer: Optional[Observer] = None
        self.handler: Optional[SignalTriggerHandler] = None
        self.registered: List[str] = []
        self.running = False

    def signal_command(self, tool: str, event: str) -> List[str]:
        """argv registering one signal."""
        trigger = self.signal_dir / event
        return [
            tool, "-m", "signal", "--add",
            f"event={event}",
            f"label={signal_label(event)}",
            f"action=touch {shlex.quote(str(trigger))}",
        ]

    async def start(self) -> None:
        """Create the trigger directory, start watching, register signals."""
        if self.running:
            logger.warning("Signal watcher already running")
            return

        self.signal_dir.mkdir(parents=True, exist_ok=True)

        self.handler = SignalTriggerHandler(self.bridge, self.events)
        self.observer = Observer()
        self.observer.schedule(self.handler, path=str(self.signal_dir), recursive=False)
        self.observer.start()
        self.running = True
        logger.info(f"Watching signal triggers in {self.signal_dir}")

        await self.register()

    async def register(self) -> None:
        """Add one yabai signal per configured event.

        Failures are logged; the periodic refresh still keeps the bridge
        current without signals.
        """
        tool = self.runner.which(self.config.yabai_path)
        if tool is None:
            logger.warning(f"Cannot register signals: {self.config.yabai_path} not found")
            return

        for event in self.events:
            try:
                result = await self.runner.execute(self.signal_command(tool, event))
            except BridgeError as e:
                logger.warning(f"Failed to register signal {event}: {e.message}")
                continue

            if result.success:
                self.registered.append(event)
            else:
                logger.warning(
                    f"yabai rejected signal {event}: {result.output.strip() or result.returncode}"
                )

        logger.info(f"Registered {len(self.registered)}/{len(self.events)} yabai signals")

    async def unregister(self) -> None:
        """Remove the signals added by register()."""
        tool = self.runner.which(self.config.yabai_path)
        if tool is None:
            self.registered.clear()
            return

        for event in list(self.registered):
            try:
                await self.runner.execute([tool, "-m", "signal", "--remove", signal_label(event)])
            except BridgeError as e:
                logger.warning(f"Failed to remove signal {event}: {e.message}")
        self.registered.clear()

    async def stop(self) -> None:
        """Remove signals and stop the observer."""
        if not self.running:
            return

        logger.info("Stopping signal watcher")
        await self.unregister()

        if self.observer:
            self.observer.stop()
            await asyncio.to_thread(self.observer.join)
            self.observer = None

        self.running = False
        logger.info("Signal watcher stopped")
