"""
EventBus Module

Asynchronous publish/subscribe hub used for user-visible notices, queue change
notifications and requests coming from the host window. Handlers run on the
asyncio event loop; a failing handler is logged and reported as an
``error.occurred`` event instead of propagating to the emitter.
"""

import asyncio
import logging
import time
import traceback
import weakref
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set
from uuid import uuid4

logger = logging.getLogger(__name__)

ERROR_EVENT = "error.occurred"
NOTICE_EVENT = "notice.shown"


@dataclass
class EventData:
    """Container for event information."""
    event_type: str
    data: Any = None
    timestamp: float = field(default_factory=time.time)
    source: Optional[str] = None
    correlation_id: Optional[str] = None


@dataclass
class EventSubscription:
    """A registered handler for one event type."""
    subscription_id: str
    event_type: str
    handler: Callable
    priority: int = 0
    once: bool = False
    weak_ref: bool = False

    def resolve(self) -> Optional[Callable]:
        """Return the live handler, or None when a weak reference has died."""
        if self.weak_ref:
            return self.handler()
        return self.handler


class EventBusError(Exception):
    """Base exception for EventBus related errors."""
    pass


class EventBus:
    """
    Asynchronous event distribution system.

    Emitted events are queued and drained by a single background task so that
    an emitter never waits for its subscribers. ``emit_and_wait`` is available
    when the caller needs the handlers' return values.
    """

    def __init__(self, max_queue_size: int = 1000, enable_metrics: bool = True):
        """
        Initialize EventBus.

        Args:
            max_queue_size: Maximum number of queued events
            enable_metrics: Whether to collect event metrics
        """
        self._subscribers: Dict[str, List[EventSubscription]] = defaultdict(list)
        self._event_queue: deque = deque()
        self._max_queue_size = max_queue_size
        self._drain_task: Optional[asyncio.Task] = None
        self._shutdown_requested = False
        self._enable_metrics = enable_metrics

        self._metrics = {
            'events_emitted': 0,
            'events_processed': 0,
            'handlers_called': 0,
            'handler_errors': 0,
            'queue_overflows': 0
        } if enable_metrics else {}

        self._event_history: deque = deque(maxlen=100)
        self._lock = asyncio.Lock()

        logger.debug("EventBus created with max_queue_size=%d", max_queue_size)

    async def subscribe(
        self,
        event_type: str,
        handler: Callable,
        priority: int = 0,
        once: bool = False,
        weak_ref: bool = False
    ) -> str:
        """
        Subscribe to an event type.

        Args:
            event_type: Type of event to subscribe to
            handler: Sync or async callable receiving an EventData
            priority: Handler priority (higher = called first)
            once: If True, unsubscribe after first call
            weak_ref: If True, hold the handler weakly (bound methods use WeakMethod)

        Returns:
            Subscription ID for later unsubscription

        Raises:
            EventBusError: If handler is not callable
        """
        if not callable(handler):
            raise EventBusError(f"Handler must be callable, got {type(handler)}")

        stored: Callable = handler
        if weak_ref:
            try:
                if hasattr(handler, '__self__') and hasattr(handler, '__func__'):
                    stored = weakref.WeakMethod(handler)
                else:
                    stored = weakref.ref(handler)
            except TypeError:
                logger.debug("Handler %r does not support weak references", handler)
                weak_ref = False
                stored = handler

        subscription = EventSubscription(
            subscription_id=str(uuid4()),
            event_type=event_type,
            handler=stored,
            priority=priority,
            once=once,
            weak_ref=weak_ref
        )

        async with self._lock:
            subscriptions = self._subscribers[event_type]
            subscriptions.append(subscription)
            subscriptions.sort(key=lambda s: s.priority, reverse=True)

        logger.debug("Subscribed to '%s' (priority %d, ID: %s)",
                     event_type, priority, subscription.subscription_id)
        return subscription.subscription_id

    async def unsubscribe(self, subscription_id: str) -> bool:
        """
        Remove a subscription.

        Args:
            subscription_id: ID returned from subscribe()

        Returns:
            True if the subscription was found and removed
        """
        async with self._lock:
            for event_type, subscriptions in self._subscribers.items():
                for i, subscription in enumerate(subscriptions):
                    if subscription.subscription_id == subscription_id:
                        del subscriptions[i]
                        logger.debug("Unsubscribed from '%s' (ID: %s)", event_type, subscription_id)
                        return True

        logger.debug("Subscription ID not found: %s", subscription_id)
        return False

    @asynccontextmanager
    async def subscription(
        self,
        event_type: str,
        handler: Callable,
        priority: int = 0
    ) -> AsyncIterator[str]:
        """Subscribe for the duration of an ``async with`` block."""
        subscription_id = await self.subscribe(event_type, handler, priority=priority)
        try:
            yield subscription_id
        finally:
            await self.unsubscribe(subscription_id)

    async def emit(
        self,
        event_type: str,
        data: Any = None,
        source: Optional[str] = None,
        correlation_id: Optional[str] = None
    ) -> None:
        """
        Queue an event for asynchronous delivery.

        Args:
            event_type: Type of event to emit
            data: Event payload
            source: Source identifier for debugging
            correlation_id: Correlation ID for event tracking
        """
        if self._shutdown_requested:
            logger.debug("Ignoring event emission during shutdown: %s", event_type)
            return

        if len(self._event_queue) >= self._max_queue_size:
            if self._enable_metrics:
                self._metrics['queue_overflows'] += 1
            logger.warning("Event queue overflow, dropping event: %s", event_type)
            return

        self._event_queue.append(EventData(
            event_type=event_type,
            data=data,
            source=source,
            correlation_id=correlation_id
        ))
        if self._enable_metrics:
            self._metrics['events_emitted'] += 1

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain_queue())

    async def notify(
        self,
        title: str,
        message: str,
        level: str = "info",
        source: Optional[str] = None
    ) -> None:
        """Emit a user-visible notice (toast/alert) on ``notice.shown``."""
        await self.emit(
            NOTICE_EVENT,
            {'title': title, 'message': message, 'level': level},
            source=source
        )

    async def emit_and_wait(
        self,
        event_type: str,
        data: Any = None,
        source: Optional[str] = None,
        correlation_id: Optional[str] = None,
        timeout: float = 5.0
    ) -> List[Any]:
        """
        Deliver an event immediately and wait for every handler.

        Returns:
            List of return values from handlers

        Raises:
            asyncio.TimeoutError: If handlers don't complete within timeout
        """
        event_data = EventData(
            event_type=event_type,
            data=data,
            source=source,
            correlation_id=correlation_id
        )
        return await asyncio.wait_for(self._dispatch(event_data), timeout=timeout)

    async def _drain_queue(self) -> None:
        """Deliver queued events in emission order."""
        while self._event_queue and not self._shutdown_requested:
            event_data = self._event_queue.popleft()
            try:
                await self._dispatch(event_data)
            except Exception as e:
                logger.error("Error dispatching event '%s': %s", event_data.event_type, e)
                logger.debug("Dispatch error details:", exc_info=True)

            if self._enable_metrics:
                self._metrics['events_processed'] += 1
            self._event_history.append(event_data)

            await asyncio.sleep(0)

    async def _dispatch(self, event_data: EventData) -> List[Any]:
        """Call every subscriber of one event."""
        results = []
        finished: Set[str] = set()

        async with self._lock:
            subscriptions = list(self._subscribers.get(event_data.event_type, []))

        for subscription in subscriptions:
            handler = subscription.resolve()
            if handler is None:
                finished.add(subscription.subscription_id)
                continue

            try:
                result = handler(event_data)
                if asyncio.iscoroutine(result):
                    result = await result
                results.append(result)

                if self._enable_metrics:
                    self._metrics['handlers_called'] += 1
            except Exception as e:
                if self._enable_metrics:
                    self._metrics['handler_errors'] += 1
                logger.error("Error in event handler for '%s': %s", event_data.event_type, e)
                logger.debug("Handler error details:", exc_info=True)

                if event_data.event_type != ERROR_EVENT:
                    await self.emit(
                        ERROR_EVENT,
                        {
                            'error': str(e),
                            'original_event': event_data.event_type,
                            'handler': repr(handler),
                            'traceback': traceback.format_exc()
                        },
                        source="EventBus"
                    )
            finally:
                if subscription.once:
                    finished.add(subscription.subscription_id)

        for subscription_id in finished:
            await self.unsubscribe(subscription_id)

        return results

    async def get_metrics(self) -> Dict[str, Any]:
        """Return counters plus per-event subscription counts."""
        if not self._enable_metrics:
            return {}

        async with self._lock:
            subscription_counts = {
                event_type: len(subscriptions)
                for event_type, subscriptions in self._subscribers.items()
                if subscriptions
            }

        return {
            **self._metrics,
            'queue_size': len(self._event_queue),
            'subscription_counts': subscription_counts
        }

    def subscriber_count(self, event_type: str) -> int:
        """Number of live subscriptions for an event type."""
        return len(self._subscribers.get(event_type, []))

    async def get_event_history(self, limit: int = 50) -> List[EventData]:
        """Recently delivered events, oldest first."""
        return list(self._event_history)[-limit:]

    async def shutdown(self, timeout: float = 5.0) -> None:
        """
        Drain pending events (bounded by timeout) and drop all subscriptions.

        Args:
            timeout: Maximum time to wait for queue processing
        """
        logger.info("Shutting down EventBus...")

        if self._drain_task is not None and not self._drain_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._drain_task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("EventBus drain timed out with %d events pending", len(self._event_queue))
                self._drain_task.cancel()

        self._shutdown_requested = True

        async with self._lock:
            self._subscribers.clear()
            self._event_queue.clear()
            self._event_history.clear()

        logger.info("EventBus shutdown complete")

    def __len__(self) -> int:
        """Return number of queued events."""
        return len(self._event_queue)

    def is_shutdown(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested
