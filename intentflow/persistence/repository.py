"""Repository abstraction for workflow run persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from .models import RunStatus, StepAttempt, WorkflowRun


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends."""

    async def create_run(self, run: WorkflowRun) -> None:
        """Persist a new run."""

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        """Retrieve the run by id."""

    async def update_run(self, run: WorkflowRun, expected_version: int) -> bool:
        """Write ``run`` if the stored version still equals ``expected_version``.

        On success ``run.version`` is set to ``expected_version + 1`` and
        ``True`` is returned; on a conflict nothing is written.
        """

    async def acquire_lease(
        self, run_id: str, owner: str, until: datetime, now: datetime
    ) -> WorkflowRun | None:
        """Take the exclusive execution lease of a runnable run.

        Pending and running runs qualify, and sleeping runs once ``wake_at``
        has passed. Succeeds only when the run has no lease or its lease
        expired before ``now``. Returns the leased run, or ``None``.
        """

    async def list_due_runs(self, now: datetime, limit: int = 100) -> list[WorkflowRun]:
        """Sleeping runs with ``wake_at <= now`` and no live lease."""

    async def list_stalled_runs(
        self, now: datetime, stale_before: datetime, limit: int = 100
    ) -> list[WorkflowRun]:
        """Pending/running runs without a live lease not touched since ``stale_before``."""

    async def list_runs(
        self, status: Optional[RunStatus] = None, limit: Optional[int] = None
    ) -> list[WorkflowRun]:
        """Return persisted runs, newest first."""

    async def record_step_attempt(self, attempt: StepAttempt) -> None:
        """Append one step attempt to the run history."""

    async def list_step_attempts(self, run_id: str) -> list[StepAttempt]:
        """Return the step history of a run in recording order."""
