"""Durable workflow definitions and the engine that runs them."""

from .context import StepContext, StepServices
from .definitions import (
    StepKind,
    StepSpec,
    WorkflowDefinition,
    WorkflowRegistry,
    run,
    send_event,
    sleep,
    sleep_until,
)
from .durations import parse_duration
from .engine import WorkflowEngine
from .notifier import LoggingNotifier, Notifier
from .templates import BUILTIN_WORKFLOWS, default_registry

__all__ = [
    "BUILTIN_WORKFLOWS",
    "LoggingNotifier",
    "Notifier",
    "StepContext",
    "StepKind",
    "StepServices",
    "StepSpec",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowRegistry",
    "default_registry",
    "parse_duration",
    "run",
    "send_event",
    "sleep",
    "sleep_until",
]
