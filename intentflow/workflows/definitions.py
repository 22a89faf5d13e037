"""Workflow definitions: ordered steps bound to one trigger event."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..contracts import TriggerEvent
from ..errors import ConfigurationError, DefinitionNotFound
from .context import StepContext

StepBody = Callable[[StepContext], Any]
StepPredicate = Callable[[StepContext], bool]


class StepKind(str, Enum):
    RUN = "RUN"
    SLEEP = "SLEEP"
    SLEEP_UNTIL = "SLEEP_UNTIL"
    SEND_EVENT = "SEND_EVENT"


class StepSpec(BaseModel):
    """One unit of work in a definition.

    ``body`` depends on ``kind``: a callable for ``RUN``; a ``timedelta``,
    duration string or callable for ``SLEEP``; a ``datetime`` or callable for
    ``SLEEP_UNTIL``; a ``TriggerEvent`` or callable returning one for
    ``SEND_EVENT``. Callables receive the :class:`StepContext`. ``when``
    skips the step when it returns false.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str
    kind: StepKind
    body: Any = None
    when: Optional[StepPredicate] = None

    def applies(self, ctx: StepContext) -> bool:
        return self.when is None or bool(self.when(ctx))


def run(step_id: str, body: StepBody, when: Optional[StepPredicate] = None) -> StepSpec:
    return StepSpec(id=step_id, kind=StepKind.RUN, body=body, when=when)


def sleep(
    step_id: str,
    duration: str | timedelta | Callable[[StepContext], Any],
    when: Optional[StepPredicate] = None,
) -> StepSpec:
    return StepSpec(id=step_id, kind=StepKind.SLEEP, body=duration, when=when)


def sleep_until(
    step_id: str,
    until: datetime | Callable[[StepContext], Any],
    when: Optional[StepPredicate] = None,
) -> StepSpec:
    return StepSpec(id=step_id, kind=StepKind.SLEEP_UNTIL, body=until, when=when)


def send_event(
    step_id: str,
    event: TriggerEvent | Callable[[StepContext], TriggerEvent],
    when: Optional[StepPredicate] = None,
) -> StepSpec:
    return StepSpec(id=step_id, kind=StepKind.SEND_EVENT, body=event, when=when)


class WorkflowDefinition(BaseModel):
    """Named, ordered sequence of steps started by ``trigger_event``."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str
    name: str = ""
    trigger_event: str
    max_retries: int = 3
    retry_base_delay: Optional[float] = None
    steps: List[StepSpec] = Field(default_factory=list)
    finalize: Optional[Callable[[StepContext], Any]] = None

    @model_validator(mode="after")
    def _check_steps(self) -> "WorkflowDefinition":
        if not self.steps:
            raise ValueError(f"Workflow {self.id} has no steps")
        seen = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"Workflow {self.id} repeats step id {step.id!r}")
            seen.add(step.id)
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        return self

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def step_at(self, cursor: int) -> Optional[StepSpec]:
        return self.steps[cursor] if cursor < len(self.steps) else None


class WorkflowRegistry:
    """Workflow definitions indexed by id and by trigger event."""

    def __init__(self, definitions: Optional[List[WorkflowDefinition]] = None) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        if definition.id in self._definitions:
            raise ConfigurationError(f"Workflow {definition.id} is already registered")
        self._definitions[definition.id] = definition
        return definition

    def unregister(self, definition_id: str) -> None:
        self._definitions.pop(definition_id, None)

    def get(self, definition_id: str) -> WorkflowDefinition:
        try:
            return self._definitions[definition_id]
        except KeyError:
            raise DefinitionNotFound(definition_id) from None

    def find(self, definition_id: str) -> Optional[WorkflowDefinition]:
        return self._definitions.get(definition_id)

    def for_trigger(self, trigger_event: str) -> List[WorkflowDefinition]:
        return [d for d in self._definitions.values() if d.trigger_event == trigger_event]

    def trigger_names(self) -> List[str]:
        return sorted({d.trigger_event for d in self._definitions.values()})

    def __iter__(self) -> Iterator[WorkflowDefinition]:
        return iter(list(self._definitions.values()))

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, definition_id: object) -> bool:
        return definition_id in self._definitions
