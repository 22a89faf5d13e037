"""Delivery targets for triggers leaving the bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional, Protocol

from ..contracts import IngestResult, TriggerEvent
from ..errors import PublishError
from ..transports import BaseTransport
from ..utils.retry import retry_async

if TYPE_CHECKING:
    from ..workflows.engine import WorkflowEngine

logger = logging.getLogger(__name__)


class TriggerSink(Protocol):
    """Ingestion boundary as seen from the bridge."""

    async def send(self, trigger: TriggerEvent) -> Optional[IngestResult]:
        """Deliver ``trigger``; raise on failure."""


class EngineSink:
    """Deliver triggers to an in-process :class:`WorkflowEngine`."""

    def __init__(self, engine: "WorkflowEngine") -> None:
        self._engine = engine

    async def send(self, trigger: TriggerEvent) -> IngestResult:
        return await self._engine.ingest(trigger)


class TransportSink:
    """Publish triggers on a transport topic for an :class:`IngestionWorker`.

    Transient publish failures are retried with exponential backoff before
    the error is surfaced to the bridge.
    """

    def __init__(
        self,
        transport: BaseTransport,
        topic: str = "triggers",
        attempts: int = 3,
        base_delay: float = 0.5,
        sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._topic = topic
        self._attempts = attempts
        self._base_delay = base_delay
        self._sleeper = sleeper

    async def send(self, trigger: TriggerEvent) -> None:
        try:
            await retry_async(
                lambda: self._transport.publish(self._topic, trigger),
                attempts=self._attempts,
                base=self._base_delay,
                sleeper=self._sleeper,
            )
        except Exception as e:
            raise PublishError(
                f"Failed to publish trigger {trigger.name} ({trigger.id}) "
                f"after {self._attempts} attempts: {e}"
            ) from e


class IngestionWorker:
    """Consume triggers from a transport topic and feed them to the engine.

    A trigger whose ingestion keeps raising is requeued at most
    ``max_deliveries - 1`` times and then dropped (counted in ``dropped``).
    """

    def __init__(
        self,
        transport: BaseTransport,
        engine: "WorkflowEngine",
        topic: str = "triggers",
        max_deliveries: int = 5,
    ) -> None:
        self._transport = transport
        self._engine = engine
        self._topic = topic
        self._max_deliveries = max_deliveries
        self._failures: Dict[str, int] = {}
        self.processed = 0
        self.dropped = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Start consuming until ``lifespan`` seconds elapse (forever if None)."""
        async for raw_message, trigger in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            try:
                result = await self._engine.ingest(trigger)
            except Exception as e:
                failures = self._failures.get(trigger.id, 0) + 1
                requeue = failures < self._max_deliveries
                logger.error(
                    f"Failed to ingest trigger {trigger.name} ({trigger.id}), "
                    f"delivery {failures}/{self._max_deliveries}: {e}"
                )
                if requeue:
                    self._failures[trigger.id] = failures
                else:
                    self._failures.pop(trigger.id, None)
                    self.dropped += 1
                    logger.error(f"Dropping trigger {trigger.name} ({trigger.id}) after {failures} deliveries")
                await self._transport.nack(raw_message, requeue=requeue)
                continue
            self._failures.pop(trigger.id, None)
            await self._transport.ack(raw_message)
            self.processed += 1
            if result.accepted:
                logger.info(
                    f"Ingested trigger {trigger.name} ({trigger.id}) -> runs {result.run_ids}"
                )
            else:
                logger.debug(f"Trigger {trigger.name} ({trigger.id}) not accepted: {result.reason}")
