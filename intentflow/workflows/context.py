"""Execution context handed to step bodies, predicates and finalizers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .notifier import LoggingNotifier, Notifier


@dataclass
class StepServices:
    """Side-effecting providers available to step bodies."""

    notifier: Notifier = field(default_factory=LoggingNotifier)


@dataclass
class StepContext:
    run_id: str
    definition_id: str
    payload: Dict[str, Any]
    results: Dict[str, Any]
    now: datetime
    attempt: int = 0
    started_at: Optional[datetime] = None
    services: StepServices = field(default_factory=StepServices)

    @property
    def origin(self) -> datetime:
        """When the run was created; stable across resumptions, unlike ``now``."""
        return self.started_at or self.now

    @property
    def notifier(self) -> Notifier:
        return self.services.notifier

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)

    def result(self, step_id: str, default: Optional[Any] = None) -> Any:
        return self.results.get(step_id, default)
