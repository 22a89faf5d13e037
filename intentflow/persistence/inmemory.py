"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from .models import ACTIVE_STATUSES, RunStatus, StepAttempt, WorkflowRun
from .repository import WorkflowRepository


def _lease_free(run: WorkflowRun, now: datetime) -> bool:
    return run.lease_owner is None or (
        run.lease_expires_at is not None and run.lease_expires_at <= now
    )


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored runs are copies, so callers
    only observe changes they wrote back through :meth:`update_run`.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, WorkflowRun] = {}
        self._attempts: Dict[str, List[StepAttempt]] = {}
        self._attempt_id = 0
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def create_run(self, run: WorkflowRun) -> None:
        async with self._lock:
            if run.id in self._runs:
                raise ValueError(f"Run {run.id} already exists")
            self._runs[run.id] = run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        stored = self._runs.get(run_id)
        return stored.model_copy(deep=True) if stored else None

    async def update_run(self, run: WorkflowRun, expected_version: int) -> bool:
        async with self._lock:
            stored = self._runs.get(run.id)
            if stored is None or stored.version != expected_version:
                return False
            run.version = expected_version + 1
            self._runs[run.id] = run.model_copy(deep=True)
            return True

    async def acquire_lease(
        self, run_id: str, owner: str, until: datetime, now: datetime
    ) -> WorkflowRun | None:
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is None or stored.status not in ACTIVE_STATUSES:
                return None
            if stored.status == RunStatus.SLEEPING and (
                stored.wake_at is None or stored.wake_at > now
            ):
                return None
            if not _lease_free(stored, now):
                return None
            stored.lease_owner = owner
            stored.lease_expires_at = until
            stored.version += 1
            stored.updated_at = now
            return stored.model_copy(deep=True)

    async def list_due_runs(self, now: datetime, limit: int = 100) -> list[WorkflowRun]:
        due = [
            run
            for run in self._runs.values()
            if run.status == RunStatus.SLEEPING
            and run.wake_at is not None
            and run.wake_at <= now
            and _lease_free(run, now)
        ]
        due.sort(key=lambda r: r.wake_at)
        return [run.model_copy(deep=True) for run in due[:limit]]

    async def list_stalled_runs(
        self, now: datetime, stale_before: datetime, limit: int = 100
    ) -> list[WorkflowRun]:
        stalled = [
            run
            for run in self._runs.values()
            if run.status in (RunStatus.PENDING, RunStatus.RUNNING)
            and _lease_free(run, now)
            and run.updated_at <= stale_before
        ]
        stalled.sort(key=lambda r: r.updated_at)
        return [run.model_copy(deep=True) for run in stalled[:limit]]

    async def list_runs(
        self, status: Optional[RunStatus] = None, limit: Optional[int] = None
    ) -> list[WorkflowRun]:
        runs = [r for r in self._runs.values() if status is None or r.status == status]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        if limit is not None:
            runs = runs[:limit]
        return [run.model_copy(deep=True) for run in runs]

    async def record_step_attempt(self, attempt: StepAttempt) -> None:
        async with self._lock:
            self._attempt_id += 1
            self._attempts.setdefault(attempt.run_id, []).append(
                attempt.model_copy(update={"id": self._attempt_id})
            )

    async def list_step_attempts(self, run_id: str) -> list[StepAttempt]:
        return [a.model_copy() for a in self._attempts.get(run_id, [])]
