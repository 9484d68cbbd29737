"""
Window-manager bridge.

Owns the authoritative Snapshot of displays, spaces and windows, refreshes it
from ``yabai -m query`` and sends mutating commands back through a FIFO queue.

Refresh triggers:
- explicit refresh() calls
- the periodic timer (refresh_interval)
- change notifications, debounced so a burst produces one refresh
- the reconciliation refresh after a burst of mutations drains

The bridge is constructed explicitly with its collaborators; there are no
module-level instances.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, List, Optional, Set

from .config import BridgeConfig
from .errors import (
    BridgeError,
    BridgeNotRunningError,
    CommandFailedError,
    CommandTimeoutError,
    ParseError,
    ToolNotFoundError,
)
from .events import Debouncer, EventChannel, Subscription
from .models.command import CommandKind, CommandRequest, MutationOutcome, SwapDirection
from .models.events import (
    BridgeErrorEvent,
    BridgeState,
    ChangeNotification,
    SnapshotPublished,
    StateChanged,
)
from .models.snapshot import Display, Snapshot, Space, Window
from .parser import parse_snapshot
from . import queries
from .runner import CommandResult, CommandRunner
from .store import StateStore

logger = logging.getLogger(__name__)

QUERY_DISPLAYS = ("-m", "query", "--displays")
QUERY_SPACES = ("-m", "query", "--spaces")
QUERY_WINDOWS = ("-m", "query", "--windows")


class _QueuedMutation:
    """A queued request and every caller waiting on it."""

    def __init__(self, request: CommandRequest, waiter: asyncio.Future):
        self.request = request
        self.waiters: List[asyncio.Future] = [waiter]
        self.outcome: Optional[MutationOutcome] = None

    def replace(self, request: CommandRequest, waiter: asyncio.Future) -> None:
        self.request = request
        self.waiters.append(waiter)

    def resolve(self, outcome: MutationOutcome) -> None:
        latest = self.waiters[-1]
        for waiter in self.waiters:
            if waiter.done():
                continue
            if waiter is latest:
                waiter.set_result(outcome)
            else:
                waiter.set_result(outcome.model_copy(update={"coalesced": True}))


class WindowManagerBridge:
    """Mirror of window-manager state plus the mutation API.

    Reads are lock-free: ``snapshot`` returns the current immutable Snapshot.
    Writes go through a single worker task, one command at a time, in
    submission order.

    Example:
        >>> bridge = WindowManagerBridge(runner, store, channel, config)
        >>> await bridge.start()
        >>> outcome = await bridge.rename_space(2, "code")
        >>> queries.focused_space(bridge.snapshot)
    """

    def __init__(
        self,
        runner: CommandRunner,
        store: Optional[StateStore] = None,
        channel: Optional[EventChannel] = None,
        config: Optional[BridgeConfig] = None,
    ):
        """Initialize the bridge.

        Args:
            runner: CommandRunner used for queries and mutations
            store: Snapshot holder (a fresh StateStore if None)
            channel: Event channel for observers (a fresh one if None)
            config: Bridge configuration (defaults if None)
        """
        self.config = config or BridgeConfig()
        self.runner = runner
        self.store = store or StateStore()
        self.channel = channel or EventChannel()

        self.running = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._state = BridgeState.IDLE
        self._last_error: Optional[BridgeError] = None
        self._refreshes_in_flight = 0
        self._mutating = False
        self._mutation_epoch = 0

        self._queue: Deque[_QueuedMutation] = deque()
        self._queue_ready = asyncio.Event()
        self._current_batch: List[_QueuedMutation] = []

        self._debouncer = Debouncer(self._debounced_refresh, self.config.debounce_seconds)
        self._notification_sub: Optional[Subscription] = None
        self._worker_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        self._refresh_count = 0
        self._mutation_count = 0
        self._coalesced_count = 0
        self._error_count = 0
        self._stale_count = 0

    # Lifecycle

    async def start(self) -> None:
        """Start the mutation worker, timer and notification handling, then refresh."""
        if self.running:
            logger.warning("Bridge already running")
            return

        self._loop = asyncio.get_running_loop()
        self.running = True

        self._notification_sub = self.channel.subscribe(
            ChangeNotification, self._on_change_notification
        )
        self._worker_task = asyncio.create_task(self._mutation_worker())
        if self.config.refresh_interval > 0:
            self._timer_task = asyncio.create_task(self._timer_loop())

        logger.info(
            f"Bridge started (tool={self.config.yabai_path}, "
            f"refresh_interval={self.config.refresh_interval}s, "
            f"debounce={self.config.debounce_ms}ms)"
        )
        await self.refresh(reason="startup")

    async def stop(self) -> None:
        """Stop all background work. Queued mutations resolve as failed."""
        if not self.running:
            return
        self.running = False

        if self._notification_sub:
            self._notification_sub.cancel()
            self._notification_sub = None

        await self._debouncer.cancel()

        for task in (self._timer_task, self._worker_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._timer_task = None
        self._worker_task = None

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

        abandoned = list(self._current_batch) + list(self._queue)
        self._current_batch.clear()
        self._queue.clear()
        for entry in abandoned:
            if entry.outcome is None:
                error = BridgeNotRunningError(entry.request.describe())
                entry.outcome = MutationOutcome(
                    request=entry.request,
                    success=False,
                    error=error.to_dict(),
                )
            entry.resolve(entry.outcome)
        if abandoned:
            logger.info(f"Released {len(abandoned)} pending mutation(s) on shutdown")

        self._mutating = False
        await self._update_state()
        logger.info("Bridge stopped")

    # Read API

    @property
    def snapshot(self) -> Snapshot:
        return self.store.current

    @property
    def state(self) -> BridgeState:
        return self._state

    @property
    def last_error(self) -> Optional[BridgeError]:
        return self._last_error

    def spaces_for_display(self, display_index: int) -> List[Space]:
        return queries.spaces_for_display(self.store.current, display_index)

    def windows_for_space(self, space_index: int) -> List[Window]:
        return queries.windows_for_space(self.store.current, space_index)

    def non_sticky_windows_for_space(self, space_index: int) -> List[Window]:
        return queries.non_sticky_windows_for_space(self.store.current, space_index)

    def sticky_windows(self) -> List[Window]:
        return queries.sticky_windows(self.store.current)

    def focused_space(self) -> Optional[Space]:
        return queries.focused_space(self.store.current)

    def focused_window(self) -> Optional[Window]:
        return queries.focused_window(self.store.current)

    def display_for_space(self, space_index: int) -> Optional[Display]:
        return queries.display_for_space(self.store.current, space_index)

    def unique_apps_for_space(self, space_index: int, excluding_sticky: bool = True) -> List[Window]:
        return queries.unique_apps_for_space(self.store.current, space_index, excluding_sticky)

    # Refresh

    async def refresh(self, reason: str = "explicit") -> Optional[Snapshot]:
        """Query the window manager and publish a new Snapshot.

        Failures never raise: timeouts and non-zero exits are logged and the
        previous Snapshot is kept; a missing tool or unparseable output moves
        the bridge to the error state and emits a BridgeErrorEvent.

        Args:
            reason: Trigger name for logging

        Returns:
            The published Snapshot, or None when the refresh failed or was
            superseded by a newer one
        """
        base_generation = self.store.generation
        mutation_epoch = self._mutation_epoch
        self._refreshes_in_flight += 1
        self._refresh_count += 1
        await self._update_state()

        try:
            return await self._refresh(base_generation, mutation_epoch, reason)
        finally:
            self._refreshes_in_flight = max(0, self._refreshes_in_flight - 1)
            await self._update_state()

    async def _refresh(self, base_generation: int, mutation_epoch: int, reason: str) -> Optional[Snapshot]:
        logger.debug(f"Refreshing ({reason}, base generation {base_generation})")

        try:
            tool = self._resolve_tool()
            results = await asyncio.gather(
                self.runner.execute([tool, *QUERY_DISPLAYS]),
                self.runner.execute([tool, *QUERY_SPACES]),
                self.runner.execute([tool, *QUERY_WINDOWS]),
            )
        except ToolNotFoundError as e:
            await self._surface(e, "refresh")
            return None
        except CommandFailedError as e:
            logger.warning(f"Refresh ({reason}) failed: {e.message}")
            return None

        displays, spaces, windows = results

        timed_out = [r for r in results if r.timed_out]
        if timed_out:
            error = CommandTimeoutError(timed_out[0].command_line, self.runner.default_timeout)
            logger.warning(f"Refresh ({reason}) abandoned: {error.message}")
            return None

        try:
            candidate = parse_snapshot(spaces.output, windows.output, displays.output)
        except ParseError as e:
            failed = [r for r in results if r.returncode != 0]
            if failed:
                # Unparseable output from a failing command is the command's error
                error = CommandFailedError(
                    failed[0].command_line,
                    failed[0].output.strip()[:200] or "no output",
                    failed[0].returncode,
                )
                logger.warning(f"Refresh ({reason}) failed: {error.message}")
                return None
            await self._surface(e, "refresh")
            return None

        if mutation_epoch != self._mutation_epoch:
            # Queried before the last mutation completed; its reconciliation wins
            self._stale_count += 1
            logger.debug(f"Refresh ({reason}) predates a completed mutation, discarding")
            return None

        published = self.store.publish(candidate, base_generation)
        if published is None:
            logger.debug(f"Refresh ({reason}) superseded by a newer snapshot")
            return None

        if self._last_error is not None:
            logger.info(f"Bridge recovered after: {self._last_error.message}")
        self._last_error = None

        await self.channel.publish(SnapshotPublished(
            snapshot=published,
            previous_generation=base_generation,
        ))
        return published

    def request_refresh(self) -> None:
        """Schedule a debounced refresh (bursts coalesce into one)."""
        self._debouncer.trigger()

    def notify_change(self, source: str = "external", detail: Optional[str] = None) -> None:
        """Report that window-manager state changed.

        Safe to call from any thread; the notification is published on the
        bridge's event loop. Ignored when the bridge is not running.
        """
        loop = self._loop
        if loop is None or not self.running or loop.is_closed():
            logger.debug(f"Ignoring change notification from {source}: bridge not running")
            return

        event = ChangeNotification(source=source, detail=detail)

        def dispatch() -> None:
            task = loop.create_task(self.channel.publish(event))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

        try:
            current = asyncio.get_running_loop()
        except RuntimeError:
            current = None

        if current is loop:
            dispatch()
        else:
            loop.call_soon_threadsafe(dispatch)

    def _on_change_notification(self, event: ChangeNotification) -> None:
        logger.debug(f"Change notification from {event.source}")
        if self.running:
            self._debouncer.trigger()

    async def _debounced_refresh(self) -> None:
        await self.refresh(reason="notification")

    async def _timer_loop(self) -> None:
        interval = self.config.refresh_interval
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh(reason="timer")
            except Exception as e:
                logger.error(f"Periodic refresh failed: {e}", exc_info=True)

    # Mutations

    async def focus_window(self, window_id: int) -> MutationOutcome:
        return await self.submit(CommandRequest(kind=CommandKind.FOCUS_WINDOW, target=window_id))

    async def focus_space(self, space_index: int) -> MutationOutcome:
        return await self.submit(CommandRequest(kind=CommandKind.FOCUS_SPACE, target=space_index))

    async def rename_space(self, space_index: int, label: str) -> MutationOutcome:
        return await self.submit(
            CommandRequest(kind=CommandKind.LABEL_SPACE, target=space_index, label=label)
        )

    async def swap_space(self, space_index: int, direction: SwapDirection) -> MutationOutcome:
        """Swap a space with its left or right neighbour.

        Raises:
            ValueError: Moving the first space to the left
        """
        return await self.submit(
            CommandRequest(
                kind=CommandKind.SWAP_SPACE,
                target=space_index,
                direction=SwapDirection(direction),
            )
        )

    async def create_space(self, display_index: int) -> MutationOutcome:
        return await self.submit(CommandRequest(kind=CommandKind.CREATE_SPACE, target=display_index))

    async def destroy_space(self, space_index: int) -> MutationOutcome:
        return await self.submit(CommandRequest(kind=CommandKind.DESTROY_SPACE, target=space_index))

    async def submit(self, request: CommandRequest) -> MutationOutcome:
        """Queue a request and wait for its outcome."""
        return await self.enqueue(request)

    def enqueue(self, request: CommandRequest) -> asyncio.Future:
        """Queue a request without waiting.

        Returns:
            Future resolving to the MutationOutcome once the command ran and
            the following reconciliation refresh completed

        Raises:
            BridgeNotRunningError: start() has not been called
        """
        if not self.running:
            raise BridgeNotRunningError(request.describe())

        waiter = asyncio.get_running_loop().create_future()

        tail = self._queue[-1] if self._queue else None
        key = request.coalesce_key
        if (
            self.config.coalesce_mutations
            and tail is not None
            and key is not None
            and tail.request.coalesce_key == key
        ):
            logger.debug(f"Coalescing {tail.request.describe()} -> {request.describe()}")
            tail.replace(request, waiter)
            self._coalesced_count += 1
        else:
            self._queue.append(_QueuedMutation(request, waiter))

        self._queue_ready.set()
        return waiter

    async def _mutation_worker(self) -> None:
        """Execute queued mutations one at a time, in FIFO order."""
        logger.debug("Mutation worker started")
        while True:
            while not self._queue:
                self._queue_ready.clear()
                await self._queue_ready.wait()

            entry = self._queue.popleft()
            self._current_batch.append(entry)
            self._mutating = True
            await self._update_state()

            try:
                outcome = await self._execute_mutation(entry.request)
            except Exception as e:
                logger.error(f"Mutation {entry.request.describe()} failed: {e}", exc_info=True)
                outcome = MutationOutcome(
                    request=entry.request,
                    success=False,
                    error={"message": str(e)},
                )
            entry.outcome = outcome
            self._mutation_epoch += 1

            if self._queue and len(self._current_batch) < self.config.max_mutation_batch:
                continue

            # Burst drained or batch full: reconcile once, then release its waiters
            self._mutating = False
            try:
                await self.refresh(reason="reconcile")
            except Exception as e:
                logger.error(f"Reconciliation refresh failed: {e}", exc_info=True)

            batch, self._current_batch = self._current_batch, []
            for done in batch:
                done.resolve(done.outcome)

    async def _execute_mutation(self, request: CommandRequest) -> MutationOutcome:
        self._mutation_count += 1

        try:
            argv = request.to_cli_args(self._resolve_tool())
            result: CommandResult = await self.runner.execute(argv)
        except ToolNotFoundError as e:
            await self._surface(e, "mutation")
            return MutationOutcome(request=request, success=False, error=e.to_dict())
        except CommandFailedError as e:
            logger.warning(f"{request.describe()} could not run: {e.message}")
            return MutationOutcome(request=request, success=False, error=e.to_dict())

        if result.timed_out:
            error = CommandTimeoutError(result.command_line, self.runner.default_timeout)
            logger.warning(f"{request.describe()}: {error.message}")
            return MutationOutcome(
                request=request, success=False, output=result.output, error=error.to_dict()
            )

        if result.returncode != 0:
            error = CommandFailedError(
                result.command_line, result.output.strip() or "non-zero exit", result.returncode
            )
            logger.warning(f"{request.describe()} failed: {error.message}")
            return MutationOutcome(
                request=request, success=False, output=result.output, error=error.to_dict()
            )

        logger.info(f"Applied {request.describe()} ({result.duration_ms:.0f}ms)")
        return MutationOutcome(request=request, success=True, output=result.output)

    # State

    def _resolve_tool(self) -> str:
        tool = self.runner.which(self.config.yabai_path)
        if tool is None:
            raise ToolNotFoundError(
                self.config.yabai_path, self.runner.build_environment().get("PATH")
            )
        return tool

    async def _surface(self, error: BridgeError, operation: str) -> None:
        """Record a failure that observers must see."""
        self._last_error = error
        self._error_count += 1
        logger.error(f"{operation} failed: {error.message}")
        await self.channel.publish(BridgeErrorEvent(error=error.to_dict(), operation=operation))

    def _compute_state(self) -> BridgeState:
        if self._mutating:
            return BridgeState.MUTATING
        if self._refreshes_in_flight:
            return BridgeState.REFRESHING
        if self._last_error is not None:
            return BridgeState.ERROR
        return BridgeState.IDLE

    async def _update_state(self) -> None:
        new_state = self._compute_state()
        if new_state == self._state:
            return
        old_state, self._state = self._state, new_state
        logger.debug(f"State {old_state.value} -> {new_state.value}")
        await self.channel.publish(StateChanged(old_state=old_state, new_state=new_state))

    def get_stats(self) -> dict:
        """Bridge, store and runner statistics."""
        return {
            "state": self._state.value,
            "running": self.running,
            "refreshes": self._refresh_count,
            "mutations": self._mutation_count,
            "coalesced": self._coalesced_count,
            "stale_refreshes": self._stale_count,
            "queued": len(self._queue),
            "errors": self._error_count,
            "last_error": self._last_error.to_dict() if self._last_error else None,
            "store": self.store.get_stats(),
            "runner": self.runner.get_stats(),
            "debouncer": self._debouncer.get_stats(),
        }
