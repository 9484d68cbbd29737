"""Event channel and debouncing for the window-manager bridge.

EventChannel is a typed publish/subscribe hub: subscribers register for an
event class and receive that class and its subclasses. Debouncer coalesces
bursts of triggers into one callback.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Type, TypeVar, Union

from .models.events import BridgeEvent

logger = logging.getLogger(__name__)

EventT = TypeVar("EventT", bound=BridgeEvent)
Callback = Callable[[EventT], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by EventChannel.subscribe()."""

    def __init__(self, channel: "EventChannel", event_type: Type[BridgeEvent], callback: Callback):
        self.channel = channel
        self.event_type = event_type
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        """Stop receiving events."""
        if self.active:
            self.channel._remove(self)
            self.active = False


class EventChannel:
    """Typed pub/sub with explicit subscriber registration.

    Callbacks may be plain functions or coroutines. A failing subscriber is
    logged and does not affect other subscribers or the publisher.

    Example:
        >>> channel = EventChannel()
        >>> sub = channel.subscribe(SnapshotPublished, on_snapshot)
        >>> await channel.publish(SnapshotPublished(snapshot=snap))
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[Type[BridgeEvent], List[Subscription]] = {}
        self._published_count = 0

    def subscribe(self, event_type: Type[EventT], callback: Callback) -> Subscription:
        """Register a callback for an event class.

        Args:
            event_type: BridgeEvent subclass to receive
            callback: Function or coroutine function taking the event

        Returns:
            Subscription that can be cancelled
        """
        if not (isinstance(event_type, type) and issubclass(event_type, BridgeEvent)):
            raise TypeError(f"Can only subscribe to BridgeEvent subclasses, got {event_type!r}")

        subscription = Subscription(self, event_type, callback)
        self._subscriptions.setdefault(event_type, []).append(subscription)
        logger.debug(f"Subscribed {getattr(callback, '__name__', callback)} to {event_type.__name__}")
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.event_type, [])
        if subscription in subscribers:
            subscribers.remove(subscription)

    def subscriber_count(self, event_type: Optional[Type[BridgeEvent]] = None) -> int:
        if event_type is None:
            return sum(len(subs) for subs in self._subscriptions.values())
        return len(self._subscriptions.get(event_type, []))

    async def publish(self, event: BridgeEvent) -> None:
        """Deliver an event to every matching subscriber, in registration order."""
        self._published_count += 1
        matching: List[Subscription] = []
        for event_type, subscribers in self._subscriptions.items():
            if isinstance(event, event_type):
                matching.extend(subscribers)

        for subscription in matching:
            if not subscription.active:
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Subscriber {getattr(subscription.callback, '__name__', subscription.callback)} "
                    f"failed on {type(event).__name__}: {e}",
                    exc_info=True,
                )


class Debouncer:
    """Coalesces rapid triggers into one callback after a quiet period.

    Each trigger restarts the delay. Once the delay elapses the callback runs
    in its own task, so later triggers never cancel a callback that already
    started.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay_seconds: float = 0.2):
        """Initialize debouncer.

        Args:
            callback: Coroutine function to run after the quiet period
            delay_seconds: Quiet period in seconds
        """
        self.callback = callback
        self.delay_seconds = delay_seconds
        self._debounce_task: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()
        self._trigger_count = 0
        self._fire_count = 0

    @property
    def pending(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    def trigger(self) -> None:
        """Schedule the callback, restarting the quiet period."""
        self._trigger_count += 1
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_callback())

    async def _debounced_callback(self) -> None:
        try:
            await asyncio.sleep(self.delay_seconds)
        except asyncio.CancelledError:
            logger.debug("Debounced callback cancelled (burst continues)")
            return

        self._fire_count += 1
        task = asyncio.get_running_loop().create_task(self.callback())
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def cancel(self) -> None:
        """Drop any pending trigger and wait for running callbacks."""
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
            try:
                await self._debounce_task
            except asyncio.CancelledError:
                pass
        self._debounce_task = None

        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def get_stats(self) -> dict:
        return {
            "triggers": self._trigger_count,
            "fired": self._fire_count,
            "pending": self.pending,
        }
