"""
Event Bus - Pub/sub event system for flow execution.

Lets any number of consumers follow a run without the runner knowing
about them:
- A results panel subscribes to step events
- A recorder keeps the event history for later inspection
- A test awaits FLOW_COMPLETED with wait_for()

``EventBusObserver`` bridges the runner's synchronous observer hooks onto
the bus.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from flowrunner.flow.observer import FlowObserver

logger = logging.getLogger(__name__)


class FlowEventType(StrEnum):
    """Types of events that can be published."""

    # Step lifecycle
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"

    # Flow lifecycle
    FLOW_COMPLETED = "flow_completed"
    FLOW_STOPPED = "flow_stopped"

    # State changes
    CONTEXT_CHANGED = "context_changed"
    RUNNER_IDLE = "runner_idle"

    # Host-facing messages
    MESSAGE = "message"


@dataclass
class FlowEvent:
    """An event emitted during flow execution."""

    type: FlowEventType
    step_id: str | None = None
    token: Any = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "step_id": self.step_id,
            "token": self.token,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[FlowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[FlowEventType]
    handler: EventHandler
    filter_step: str | None = None  # Only receive events for this step


class EventBus:
    """
    Pub/sub event bus for flow events.

    Example:
        bus = EventBus()

        async def on_step(event: FlowEvent):
            print(f"{event.step_id}: {event.data['status']}")

        bus.subscribe([FlowEventType.STEP_COMPLETED], on_step)
        runner = FlowRunner(observer=EventBusObserver(bus))
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[FlowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._pending: set[asyncio.Task] = set()

    def subscribe(
        self,
        event_types: list[FlowEventType],
        handler: EventHandler,
        filter_step: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"
        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_step=filter_step,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: FlowEvent) -> None:
        """Publish an event and wait for all matching handlers."""
        handlers = self._record(event)
        if handlers:
            await self._execute_handlers(event, handlers)

    def publish_nowait(self, event: FlowEvent) -> None:
        """Record an event now and schedule its handlers on the running loop.

        History is updated synchronously, so event order always matches
        publish order. Without a running loop only history is updated.
        """
        handlers = self._record(event)
        if not handlers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop; {event.type} handlers skipped")
            return
        task = loop.create_task(self._execute_handlers(event, handlers))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every handler scheduled by publish_nowait() has run."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _record(self, event: FlowEvent) -> list[EventHandler]:
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history :]
        return [
            sub.handler for sub in self._subscriptions.values() if self._matches(sub, event)
        ]

    def _matches(self, subscription: Subscription, event: FlowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_step and subscription.filter_step != event.step_id:
            return False
        return True

    async def _execute_handlers(self, event: FlowEvent, handlers: list[EventHandler]) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: FlowEventType | None = None,
        step_id: str | None = None,
        limit: int = 100,
    ) -> list[FlowEvent]:
        """Event history with optional filtering, most recent first."""
        events = self._event_history[::-1]
        if event_type:
            events = [e for e in events if e.type == event_type]
        if step_id:
            events = [e for e in events if e.step_id == step_id]
        return events[:limit]

    def get_stats(self) -> dict:
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1
        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: FlowEventType,
        step_id: str | None = None,
        timeout: float | None = None,
    ) -> FlowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: FlowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: FlowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(event_types=[event_type], handler=handler, filter_step=step_id)
        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()
            return result
        finally:
            self.unsubscribe(sub_id)


class EventBusObserver(FlowObserver):
    """Publishes every runner notification to an EventBus."""

    def __init__(self, bus: EventBus):
        super().__init__()
        self.bus = bus

    def _emit(self, event_type: FlowEventType, step_id=None, token=None, **data) -> None:
        self.bus.publish_nowait(FlowEvent(type=event_type, step_id=step_id, token=token, data=data))

    def on_step_start(self, step, path):
        token = super().on_step_start(step, path)
        self._emit(
            FlowEventType.STEP_STARTED,
            step.id,
            token,
            name=step.name,
            step_type=step.type,
            path=path,
        )
        return token

    def on_step_complete(self, token, step, result, context, path):
        self._emit(
            FlowEventType.STEP_COMPLETED,
            step.id,
            token,
            status=str(result.status),
            output=result.output,
            error=result.error,
            path=path,
        )

    def on_error(self, token, step, error, context, path):
        self._emit(FlowEventType.STEP_FAILED, getattr(step, "id", None), token, error=str(error))

    def on_flow_complete(self, context, results):
        self._emit(FlowEventType.FLOW_COMPLETED, context=dict(context), result_count=len(results))

    def on_flow_stopped(self, context, results):
        self._emit(FlowEventType.FLOW_STOPPED, context=dict(context), result_count=len(results))

    def on_message(self, text, severity):
        self._emit(FlowEventType.MESSAGE, text=text, severity=str(severity))

    def on_context_changed(self, context):
        self._emit(FlowEventType.CONTEXT_CHANGED, context=dict(context))

    def on_refresh(self):
        self._emit(FlowEventType.RUNNER_IDLE)
