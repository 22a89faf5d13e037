"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

import asyncpg

from .models import RunStatus, StepAttempt, WorkflowRun
from .repository import WorkflowRepository

_RUN_COLUMNS = (
    "id, definition_id, trigger_event, trigger_payload, status, step_results, "
    "wake_at, attempt, error, output, version, lease_owner, lease_expires_at, "
    "created_at, updated_at"
)


def _loads(value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    return json.loads(value)


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                definition_id TEXT NOT NULL,
                trigger_event TEXT NOT NULL,
                trigger_payload JSONB NOT NULL,
                status TEXT NOT NULL,
                cursor INTEGER NOT NULL DEFAULT 0,
                step_results JSONB NOT NULL,
                wake_at TIMESTAMPTZ,
                attempt INTEGER NOT NULL DEFAULT 0,
                error JSONB,
                output JSONB,
                version INTEGER NOT NULL DEFAULT 0,
                lease_owner TEXT,
                lease_expires_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflow_runs_wake ON workflow_runs (status, wake_at)"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_attempts (
                id SERIAL PRIMARY KEY,
                run_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                attempt INTEGER NOT NULL,
                status TEXT NOT NULL,
                error TEXT,
                started_at TIMESTAMPTZ,
                finished_at TIMESTAMPTZ
            )
            """
        )

    @staticmethod
    def _row_to_run(row: asyncpg.Record) -> WorkflowRun:
        return WorkflowRun(
            id=row["id"],
            definition_id=row["definition_id"],
            trigger_event=row["trigger_event"],
            trigger_payload=_loads(row["trigger_payload"]) or {},
            status=row["status"],
            # JSONB does not keep key order, so results travel as a list of pairs
            step_results=dict(_loads(row["step_results"]) or []),
            wake_at=row["wake_at"],
            attempt=row["attempt"],
            error=_loads(row["error"]),
            output=_loads(row["output"]),
            version=row["version"],
            lease_owner=row["lease_owner"],
            lease_expires_at=row["lease_expires_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _json_fields(run: WorkflowRun) -> dict[str, Optional[str]]:
        data = run.model_dump(mode="json")
        return {
            "trigger_payload": json.dumps(data["trigger_payload"]),
            "step_results": json.dumps([[k, v] for k, v in data["step_results"].items()]),
            "error": None if data["error"] is None else json.dumps(data["error"]),
            "output": None if data["output"] is None else json.dumps(data["output"]),
        }

    # ------------------------------------------------------------------
    async def create_run(self, run: WorkflowRun) -> None:
        j = self._json_fields(run)
        conn = await self._connect()
        try:
            await conn.execute(
                f"""
                INSERT INTO workflow_runs ({_RUN_COLUMNS}, cursor)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                """,
                run.id,
                run.definition_id,
                run.trigger_event,
                j["trigger_payload"],
                run.status.value,
                j["step_results"],
                run.wake_at,
                run.attempt,
                j["error"],
                j["output"],
                run.version,
                run.lease_owner,
                run.lease_expires_at,
                run.created_at,
                run.updated_at,
                run.cursor,
            )
        finally:
            await conn.close()

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {_RUN_COLUMNS} FROM workflow_runs WHERE id = $1", run_id
            )
        finally:
            await conn.close()
        return self._row_to_run(row) if row else None

    async def update_run(self, run: WorkflowRun, expected_version: int) -> bool:
        j = self._json_fields(run)
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE workflow_runs
                SET status = $1, cursor = $2, step_results = $3, wake_at = $4,
                    attempt = $5, error = $6, output = $7, lease_owner = $8,
                    lease_expires_at = $9, updated_at = $10, version = $11
                WHERE id = $12 AND version = $13
                """,
                run.status.value,
                run.cursor,
                j["step_results"],
                run.wake_at,
                run.attempt,
                j["error"],
                j["output"],
                run.lease_owner,
                run.lease_expires_at,
                run.updated_at,
                expected_version + 1,
                run.id,
                expected_version,
            )
        finally:
            await conn.close()
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        if status.split()[-1] != "1":
            return False
        run.version = expected_version + 1
        return True

    async def acquire_lease(
        self, run_id: str, owner: str, until: datetime, now: datetime
    ) -> WorkflowRun | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"""
                UPDATE workflow_runs
                SET lease_owner = $1, lease_expires_at = $2, version = version + 1, updated_at = $3
                WHERE id = $4
                  AND (status IN ('PENDING', 'RUNNING') OR (status = 'SLEEPING' AND wake_at <= $3))
                  AND (lease_owner IS NULL OR lease_expires_at <= $3)
                RETURNING {_RUN_COLUMNS}
                """,
                owner,
                until,
                now,
                run_id,
            )
        finally:
            await conn.close()
        return self._row_to_run(row) if row else None

    async def list_due_runs(self, now: datetime, limit: int = 100) -> list[WorkflowRun]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"""
                SELECT {_RUN_COLUMNS} FROM workflow_runs
                WHERE status = 'SLEEPING' AND wake_at <= $1
                  AND (lease_owner IS NULL OR lease_expires_at <= $1)
                ORDER BY wake_at
                LIMIT $2
                """,
                now,
                limit,
            )
        finally:
            await conn.close()
        return [self._row_to_run(r) for r in rows]

    async def list_stalled_runs(
        self, now: datetime, stale_before: datetime, limit: int = 100
    ) -> list[WorkflowRun]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"""
                SELECT {_RUN_COLUMNS} FROM workflow_runs
                WHERE status IN ('PENDING', 'RUNNING')
                  AND (lease_owner IS NULL OR lease_expires_at <= $1)
                  AND updated_at <= $2
                ORDER BY updated_at
                LIMIT $3
                """,
                now,
                stale_before,
                limit,
            )
        finally:
            await conn.close()
        return [self._row_to_run(r) for r in rows]

    async def list_runs(
        self, status: Optional[RunStatus] = None, limit: Optional[int] = None
    ) -> list[WorkflowRun]:
        query = f"SELECT {_RUN_COLUMNS} FROM workflow_runs"
        params: list[Any] = []
        if status is not None:
            params.append(RunStatus(status).value)
            query += f" WHERE status = ${len(params)}"
        query += " ORDER BY created_at DESC"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [self._row_to_run(r) for r in rows]

    async def record_step_attempt(self, attempt: StepAttempt) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO step_attempts
                    (run_id, step_id, attempt, status, error, started_at, finished_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                attempt.run_id,
                attempt.step_id,
                attempt.attempt,
                attempt.status,
                attempt.error,
                attempt.started_at,
                attempt.finished_at,
            )
        finally:
            await conn.close()

    async def list_step_attempts(self, run_id: str) -> list[StepAttempt]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT id, run_id, step_id, attempt, status, error, started_at, finished_at "
                "FROM step_attempts WHERE run_id = $1 ORDER BY id",
                run_id,
            )
        finally:
            await conn.close()
        return [StepAttempt(**dict(r)) for r in rows]
