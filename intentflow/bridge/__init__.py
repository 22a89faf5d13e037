"""Event bridge: emitted events -> workflow triggers."""

from __future__ import annotations

from .bridge import BridgeContext, BridgeStats, EventBridge
from .mapping import (
    EVENT_TRIGGER_MAP,
    TriggerName,
    build_trigger,
    transform_payload,
    trigger_for,
    validate_mapping,
)
from .sinks import EngineSink, IngestionWorker, TransportSink, TriggerSink

__all__ = [
    "BridgeContext",
    "BridgeStats",
    "EVENT_TRIGGER_MAP",
    "EngineSink",
    "EventBridge",
    "IngestionWorker",
    "TransportSink",
    "TriggerName",
    "TriggerSink",
    "build_trigger",
    "transform_payload",
    "trigger_for",
    "validate_mapping",
]
