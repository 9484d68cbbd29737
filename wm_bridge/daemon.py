"""
Window-Manager Bridge Daemon

Constructs the runner, store, event channel, bridge, icon cache and signal
watcher explicitly, runs them until SIGINT/SIGTERM and tears them down in
reverse order.
"""
# Module can be run with: python -m wm_bridge

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Set

from wm_bridge.bridge import WindowManagerBridge
from wm_bridge.config import BridgeConfig, load_config
from wm_bridge.events import EventChannel, Subscription
from wm_bridge.icons import IconResolutionCache
from wm_bridge.models.events import BridgeErrorEvent, SnapshotPublished, StateChanged
from wm_bridge.models.snapshot import Snapshot
from wm_bridge.queries import focused_space, focused_window, unique_apps_for_space
from wm_bridge.runner import CommandRunner
from wm_bridge.signals import SignalWatcher
from wm_bridge.store import StateStore

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class BridgeDaemon:
    """Owns every bridge service for one process."""

    def __init__(self, config: Optional[BridgeConfig] = None, runner: Optional[CommandRunner] = None):
        """
        Initialize the daemon.

        Args:
            config: Bridge configuration (defaults if None)
            runner: Command runner (built from config if None)
        """
        self.config = config or BridgeConfig()
        self.runner = runner or CommandRunner.from_config(self.config)
        self.store = StateStore()
        self.channel = EventChannel()
        self.bridge = WindowManagerBridge(self.runner, self.store, self.channel, self.config)
        self.icons = IconResolutionCache.from_config(self.runner, self.config)
        self.signals: Optional[SignalWatcher] = None

        self.running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._subscriptions: List[Subscription] = []
        self._warmed: Set[str] = set()
        self._last_snapshot: Optional[Snapshot] = None

    async def start(self):
        """Start the bridge and, if enabled, the signal watcher."""
        logger.info("Starting window-manager bridge daemon")
        self._stop_event = asyncio.Event()

        self._subscriptions = [
            self.channel.subscribe(SnapshotPublished, self._on_snapshot),
            self.channel.subscribe(StateChanged, self._on_state_changed),
            self.channel.subscribe(BridgeErrorEvent, self._on_error),
        ]

        await self.bridge.start()

        if self.config.register_signals:
            self.signals = SignalWatcher(self.bridge, self.runner, self.config)
            try:
                await self.signals.start()
            except OSError as e:
                logger.error(f"Signal watcher unavailable, relying on periodic refresh: {e}")
                self.signals = None

        self.running = True
        logger.info("Daemon started successfully")

    async def stop(self):
        """Stop all services."""
        if not self.running:
            return
        logger.info("Stopping daemon...")
        self.running = False

        if self.signals:
            await self.signals.stop()
            self.signals = None

        await self.bridge.stop()
        self.icons.close(wait=False)

        for subscription in self._subscriptions:
            subscription.cancel()
        self._subscriptions.clear()

        logger.info("Daemon stopped")

    def request_stop(self):
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_forever(self):
        """Start, wait for request_stop(), then stop."""
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()

    async def run_once(self) -> int:
        """Refresh once and print the Snapshot as JSON.

        Returns:
            Process exit code
        """
        snapshot = await self.bridge.refresh(reason="once")
        self.icons.close(wait=False)

        if snapshot is None:
            error = self.bridge.last_error
            message = error.message if error else "refresh failed"
            logger.error(message)
            if error and error.suggestion:
                logger.error(f"Suggestion: {error.suggestion}")
            return 1

        print(snapshot.model_dump_json(indent=2))
        return 0

    async def _on_snapshot(self, event: SnapshotPublished):
        snapshot = event.snapshot
        previous, self._last_snapshot = self._last_snapshot, snapshot
        if previous is not None and snapshot.same_entities(previous):
            logger.debug(f"Snapshot generation {snapshot.generation}: no changes")
            return

        space = focused_space(snapshot)
        window = focused_window(snapshot)
        logger.info(
            f"Snapshot generation {snapshot.generation}: "
            f"{len(snapshot.spaces)} spaces, {len(snapshot.windows)} windows, "
            f"focus=space {space.display_label if space else '-'}, "
            f"window {window.app if window else '-'}"
        )

        apps = {
            w.app
            for s in snapshot.spaces
            for w in unique_apps_for_space(snapshot, s.index)
        } - self._warmed
        if apps:
            self._warmed.update(apps)
            await asyncio.to_thread(self._warm_icons, sorted(apps))

    def _warm_icons(self, apps: List[str]):
        for app in apps:
            lookup = self.icons.icon(app)
            if lookup.path:
                logger.debug(f"Icon for {app}: {lookup.path}")

    def _on_state_changed(self, event: StateChanged):
        logger.debug(f"Bridge state: {event.old_state.value} -> {event.new_state.value}")

    def _on_error(self, event: BridgeErrorEvent):
        error = event.error
        logger.error(f"Bridge {event.operation} error [{error.get('name')}]: {error.get('message')}")
        if error.get("suggestion"):
            logger.error(f"Suggestion: {error['suggestion']}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wm-bridge",
        description="Mirror yabai window-manager state and log every published snapshot",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.json (default: $WM_BRIDGE_CONFIG or ~/.config/wm-bridge/config.json)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Refresh once, print the snapshot as JSON and exit",
    )
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    config = load_config(args.config)
    daemon = BridgeDaemon(config)

    if args.once:
        return await daemon.run_once()

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        daemon.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await daemon.run_forever()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    return 0


def run():
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
