"""Data models for persisted workflow state."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from ..contracts import ErrorKind, utcnow


class RunStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SLEEPING = "SLEEPING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({RunStatus.PENDING, RunStatus.RUNNING, RunStatus.SLEEPING})


class RunError(BaseModel):
    """Last fatal error of a failed run."""

    kind: ErrorKind
    message: str
    step_id: Optional[str] = None
    attempt: int = 0


class WorkflowRun(BaseModel):
    """Durable state of one workflow execution.

    ``step_results`` is insertion ordered and holds exactly the results of
    steps ``0..cursor-1``; ``cursor`` is re-derived from it whenever a run is
    loaded. ``version`` is bumped by every successful conditional update.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    definition_id: str
    trigger_event: str
    trigger_payload: Dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.PENDING
    cursor: int = 0
    step_results: Dict[str, Any] = Field(default_factory=dict)
    wake_at: Optional[datetime] = None
    attempt: int = 0
    error: Optional[RunError] = None
    output: Optional[Any] = None
    version: int = 0
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _derive_cursor(self) -> "WorkflowRun":
        self.cursor = len(self.step_results)
        return self

    def record_result(self, step_id: str, value: Any) -> None:
        """Append the memoized result of the step at ``cursor``."""
        if step_id in self.step_results:
            raise ValueError(f"Step {step_id!r} already has a recorded result")
        self.step_results[step_id] = value
        self.cursor = len(self.step_results)
        self.attempt = 0


class StepAttempt(BaseModel):
    """Record of an individual step attempt."""

    id: Optional[int] = None
    run_id: str
    step_id: str
    attempt: int = 0
    status: str = "started"  # started, completed, failed, retrying, skipped
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
