"""Core message contracts shared by the executor, bridge and engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorKind(str, Enum):
    """Error taxonomy for intents, bridge delivery and workflow steps."""

    UNKNOWN_INTENT = "UNKNOWN_INTENT"
    MANAGER_FAILURE = "MANAGER_FAILURE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    MAPPING_MISS = "MAPPING_MISS"
    STEP_TRANSIENT_FAILURE = "STEP_TRANSIENT_FAILURE"
    STEP_FATAL_FAILURE = "STEP_FATAL_FAILURE"
    DEFINITION_MISSING = "DEFINITION_MISSING"


class Intent(BaseModel):
    """A named, payload-carrying request for a domain action."""

    model_config = ConfigDict(frozen=True)

    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class EmittedEvent(BaseModel):
    """Side-effect signal produced while executing an intent."""

    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class IntentError(BaseModel):
    kind: ErrorKind
    message: str


class IntentResult(BaseModel):
    """Structured outcome of one ``IntentExecutor.execute`` call.

    Never persisted. ``events`` keeps the order in which the handler emitted
    them; ``directives`` are the follow-up UI intents dispatched for this
    result (toast, overlay, navigation).
    """

    success: bool
    data: Optional[Dict[str, Any]] = None
    events: List[EmittedEvent] = Field(default_factory=list)
    error: Optional[IntentError] = None
    missing: List[str] = Field(default_factory=list)
    directives: List[Intent] = Field(default_factory=list)
    intent: Optional[str] = None

    @classmethod
    def ok(
        cls,
        data: Optional[Dict[str, Any]] = None,
        events: Optional[List[EmittedEvent]] = None,
        directives: Optional[List[Intent]] = None,
    ) -> "IntentResult":
        return cls(
            success=True,
            data=data,
            events=events or [],
            directives=directives or [],
        )

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        message: str,
        missing: Optional[List[str]] = None,
        directives: Optional[List[Intent]] = None,
    ) -> "IntentResult":
        return cls(
            success=False,
            error=IntentError(kind=kind, message=message),
            missing=missing or [],
            directives=directives or [],
        )

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None


class TriggerEvent(BaseModel):
    """Envelope accepted by the workflow ingestion boundary."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize trigger to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "TriggerEvent":
        """Deserialize trigger from JSON."""
        return cls.model_validate_json(data)


class IngestResult(BaseModel):
    """Answer of the ingestion boundary for one trigger."""

    accepted: bool
    run_ids: List[str] = Field(default_factory=list)
    reason: Optional[str] = None

    @property
    def run_id(self) -> Optional[str]:
        return self.run_ids[0] if self.run_ids else None


class ForwardResult(BaseModel):
    """Outcome of forwarding one emitted event through the bridge."""

    sent: bool
    trigger_id: Optional[str] = None
    trigger_name: Optional[str] = None
    error: Optional[str] = None
