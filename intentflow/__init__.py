"""intentflow: intent execution and durable workflow orchestration."""

from .bridge import BridgeContext, EventBridge
from .capabilities import CapabilityRegistry, in_memory_registry
from .contracts import (
    EmittedEvent,
    ErrorKind,
    IngestResult,
    Intent,
    IntentResult,
    TriggerEvent,
)
from .intents import IntentExecutor
from .persistence import RunStatus, WorkflowRun, get_repository
from .runtime import Runtime, build_runtime
from .scheduler import Scheduler
from .transports import get_transport
from .workflows import WorkflowDefinition, WorkflowEngine, WorkflowRegistry, default_registry

__version__ = "0.1.0"
__all__ = [
    "BridgeContext",
    "CapabilityRegistry",
    "EmittedEvent",
    "ErrorKind",
    "EventBridge",
    "IngestResult",
    "Intent",
    "IntentExecutor",
    "IntentResult",
    "RunStatus",
    "Runtime",
    "Scheduler",
    "TriggerEvent",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowRegistry",
    "WorkflowRun",
    "build_runtime",
    "default_registry",
    "get_repository",
    "get_transport",
    "in_memory_registry",
]
