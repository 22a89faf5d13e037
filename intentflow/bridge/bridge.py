"""Event bridge between the intent executor and the workflow engine.

Flow:
1. ``IntentExecutor.execute`` returns an ``IntentResult`` with events
2. ``EventBridge.publish`` notifies local subscribers synchronously
3. mapped events are forwarded in emission order in a background task
4. the sink hands each trigger to workflow ingestion
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from pydantic import BaseModel

from ..contracts import EmittedEvent, ErrorKind, ForwardResult, TriggerEvent, utcnow
from .mapping import build_trigger
from .sinks import TriggerSink

logger = logging.getLogger(__name__)

EventHandler = Callable[[EmittedEvent], Any]

WILDCARD = "*"


class BridgeContext(BaseModel):
    """Fixed contextual fields merged into every trigger payload."""

    business_id: str = "default"
    source: str = "intent-executor"
    site_id: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None

    def extras(self) -> Dict[str, Any]:
        values = {
            "siteId": self.site_id,
            "userId": self.user_id,
            "sessionId": self.session_id,
        }
        return {k: v for k, v in values.items() if v is not None}


class BridgeStats(BaseModel):
    """Delivery counters; failures are visible here and in the logs."""

    sent: int = 0
    failed: int = 0
    unmapped: int = 0
    handler_errors: int = 0


class EventBridge:
    """Map emitted events to triggers and deliver them without blocking."""

    def __init__(
        self,
        sink: Optional[TriggerSink] = None,
        context: Optional[BridgeContext] = None,
        clock: Callable[[], Any] = utcnow,
    ) -> None:
        self._sink = sink
        self._context = context or BridgeContext()
        self._clock = clock
        self._subscribers: Dict[str, Set[EventHandler]] = defaultdict(set)
        self._tasks: Set[asyncio.Task] = set()
        self.stats = BridgeStats()

    @property
    def context(self) -> BridgeContext:
        return self._context

    def attach(self, sink: TriggerSink) -> None:
        """Set the delivery sink (used when the engine is built after the bridge)."""
        self._sink = sink

    # ------------------------------------------------------------------
    # Local subscriptions
    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``event_name`` (``"*"`` for every event).

        Returns a function that removes the subscription.
        """
        self._subscribers[event_name].add(handler)

        def unsubscribe() -> None:
            self._subscribers[event_name].discard(handler)

        return unsubscribe

    def _notify_local(self, event: EmittedEvent) -> None:
        handlers = [*self._subscribers.get(event.name, ()), *self._subscribers.get(WILDCARD, ())]
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.stats.handler_errors += 1
                logger.error(f"Local handler for {event.name} failed: {e}")

    # ------------------------------------------------------------------
    # Forwarding
    async def forward(
        self, event: EmittedEvent, context: Optional[BridgeContext] = None
    ) -> ForwardResult:
        """Forward one event to workflow ingestion."""
        try:
            trigger = build_trigger(event, context or self._context, self._clock())
        except Exception as e:
            self.stats.failed += 1
            logger.error(f"Failed to map event {event.name}: {e}")
            return ForwardResult(sent=False, error=f"mapping error: {e}")

        if trigger is None:
            self.stats.unmapped += 1
            logger.debug(f"No trigger mapping for event: {event.name}")
            return ForwardResult(sent=False, error=ErrorKind.MAPPING_MISS.value)

        return await self._deliver(trigger, origin=event.name)

    async def forward_all(
        self, events: Sequence[EmittedEvent], context: Optional[BridgeContext] = None
    ) -> List[ForwardResult]:
        """Forward ``events`` one after another, preserving their order."""
        results = []
        for event in events:
            results.append(await self.forward(event, context))
        return results

    async def _deliver(self, trigger: TriggerEvent, origin: str) -> ForwardResult:
        if self._sink is None:
            self.stats.failed += 1
            logger.error(f"No sink attached; dropping trigger {trigger.name} from {origin}")
            return ForwardResult(
                sent=False, trigger_id=trigger.id, trigger_name=trigger.name, error="no sink attached"
            )
        logger.info(f"Forwarding {origin} -> {trigger.name} ({trigger.id})")
        try:
            await self._sink.send(trigger)
        except Exception as e:
            self.stats.failed += 1
            logger.error(f"Failed to deliver trigger {trigger.name} ({trigger.id}): {e}")
            return ForwardResult(
                sent=False, trigger_id=trigger.id, trigger_name=trigger.name, error=str(e)
            )
        self.stats.sent += 1
        return ForwardResult(sent=True, trigger_id=trigger.id, trigger_name=trigger.name)

    # ------------------------------------------------------------------
    # Non-blocking entry points
    def publish(
        self, events: Sequence[EmittedEvent], context: Optional[BridgeContext] = None
    ) -> Optional[asyncio.Task]:
        """Notify subscribers now and forward ``events`` in the background.

        Must be called from a running event loop. The returned task resolves to
        the list of :class:`ForwardResult`; callers are not expected to await it.
        """
        events = list(events)
        for event in events:
            logger.debug(f"Event emitted: {event.name}")
            self._notify_local(event)
        if not events:
            return None
        return self._spawn(self.forward_all(events, context))

    def dispatch_trigger(self, trigger: TriggerEvent) -> asyncio.Task:
        """Deliver an already-built trigger in the background."""
        return self._spawn(self._deliver(trigger, origin="workflow step"))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.stats.failed += 1
            logger.error(f"Background delivery failed: {exc}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every background delivery (including nested ones) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
