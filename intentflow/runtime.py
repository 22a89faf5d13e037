"""Explicit construction of the executor, bridge, engine and scheduler."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional

from .bridge import (
    BridgeContext,
    EngineSink,
    EventBridge,
    IngestionWorker,
    TransportSink,
    validate_mapping,
)
from .capabilities import CapabilityRegistry, in_memory_registry
from .config import IntentflowConfig, load_config
from .intents import IntentExecutor
from .persistence import WorkflowRepository, get_repository
from .scheduler import Scheduler
from .transports import BaseTransport, get_transport
from .workflows import (
    LoggingNotifier,
    Notifier,
    StepServices,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowRegistry,
    default_registry,
)

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Every long-lived component of one process, wired together."""

    config: IntentflowConfig
    capabilities: CapabilityRegistry
    repository: WorkflowRepository
    registry: WorkflowRegistry
    engine: WorkflowEngine
    bridge: EventBridge
    executor: IntentExecutor
    scheduler: Scheduler
    transport: Optional[BaseTransport] = None

    def ingestion_worker(self) -> IngestionWorker:
        """Consumer feeding triggers published by other processes into the engine."""
        transport = self.transport or get_transport(config=self.config)
        self.transport = transport
        return IngestionWorker(transport, self.engine, topic=self.config.transport.topic)

    async def drain(self) -> None:
        """Wait until the bridge and engine have no background work left."""
        await self.bridge.drain()
        await self.engine.drain()


def _as_registry(
    workflows: Optional[WorkflowRegistry | Iterable[WorkflowDefinition]],
) -> WorkflowRegistry:
    if workflows is None:
        return default_registry()
    if isinstance(workflows, WorkflowRegistry):
        return workflows
    return WorkflowRegistry(list(workflows))


def build_runtime(
    config: Optional[IntentflowConfig] = None,
    capabilities: Optional[CapabilityRegistry] = None,
    workflows: Optional[WorkflowRegistry | Iterable[WorkflowDefinition]] = None,
    notifier: Optional[Notifier] = None,
    repository: Optional[WorkflowRepository] = None,
    transport: Optional[BaseTransport] = None,
    clock: Optional[Callable[[], datetime]] = None,
    sleeper: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Runtime:
    """Build a fully wired runtime; every dependency can be injected."""
    config = config or load_config()
    repository = repository or get_repository(config=config)
    registry = _as_registry(workflows)

    engine = WorkflowEngine(
        registry,
        repository,
        services=StepServices(notifier=notifier or LoggingNotifier()),
        config=config.engine,
        clock=clock,
        sleeper=sleeper,
    )

    if config.bridge.delivery == "transport":
        transport = transport or get_transport(config=config)
        sink = TransportSink(
            transport,
            topic=config.transport.topic,
            attempts=config.bridge.publish_attempts,
            sleeper=sleeper or asyncio.sleep,
        )
    else:
        sink = EngineSink(engine)

    context = BridgeContext(business_id=config.bridge.business_id, source=config.bridge.source)
    bridge = EventBridge(sink=sink, context=context, clock=engine.now)
    engine.set_dispatcher(bridge.dispatch_trigger)

    capabilities = capabilities if capabilities is not None else in_memory_registry()
    executor = IntentExecutor(capabilities, bridge=bridge, context=context)

    scheduler = Scheduler(
        engine,
        repository,
        interval=config.scheduler.interval,
        batch_size=config.scheduler.batch_size,
        stale_after=config.scheduler.stale_after,
    )

    for trigger in validate_mapping(registry.trigger_names()):
        logger.warning(f"Trigger {trigger} is mapped but no workflow listens to it")

    return Runtime(
        config=config,
        capabilities=capabilities,
        repository=repository,
        registry=registry,
        engine=engine,
        bridge=bridge,
        executor=executor,
        scheduler=scheduler,
        transport=transport,
    )
