"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .models import RunStatus, StepAttempt, WorkflowRun
from .repository import WorkflowRepository

_RUN_COLUMNS = (
    "id, definition_id, trigger_event, trigger_payload, status, step_results, "
    "wake_at, attempt, error, output, version, lease_owner, lease_expires_at, "
    "created_at, updated_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    # fixed precision keeps lexicographic order equal to time order
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _dumps(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value)


def _loads(value: Optional[str]) -> Any:
    return None if value is None else json.loads(value)


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                definition_id TEXT NOT NULL,
                trigger_event TEXT NOT NULL,
                trigger_payload TEXT NOT NULL,
                status TEXT NOT NULL,
                cursor INTEGER NOT NULL DEFAULT 0,
                step_results TEXT NOT NULL,
                wake_at TEXT,
                attempt INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                output TEXT,
                version INTEGER NOT NULL DEFAULT 0,
                lease_owner TEXT,
                lease_expires_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflow_runs_wake ON workflow_runs (status, wake_at)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_attempts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                run_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                attempt INTEGER NOT NULL,
                status TEXT NOT NULL,
                error TEXT,
                started_at TEXT,
                finished_at TEXT
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _update_then_fetch(self, update: str, params: tuple, run_id: str) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(update, params)
            self._conn.commit()
            if cur.rowcount != 1:
                return None
            cur.execute(f"SELECT {_RUN_COLUMNS} FROM workflow_runs WHERE id = ?", (run_id,))
            return cur.fetchone()

    @staticmethod
    def _row_to_run(row: sqlite3.Row) -> WorkflowRun:
        return WorkflowRun(
            id=row["id"],
            definition_id=row["definition_id"],
            trigger_event=row["trigger_event"],
            trigger_payload=_loads(row["trigger_payload"]) or {},
            status=row["status"],
            step_results=_loads(row["step_results"]) or {},
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
    def _run_params(run: WorkflowRun) -> dict[str, Any]:
        data = run.model_dump(mode="json")
        return {
            "trigger_payload": json.dumps(data["trigger_payload"]),
            "status": run.status.value,
            "cursor": run.cursor,
            "step_results": json.dumps(data["step_results"]),
            "wake_at": _ts(run.wake_at),
            "attempt": run.attempt,
            "error": _dumps(data["error"]),
            "output": _dumps(data["output"]),
            "lease_owner": run.lease_owner,
            "lease_expires_at": _ts(run.lease_expires_at),
            "updated_at": _ts(run.updated_at),
        }

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(self, run: WorkflowRun) -> None:
        p = self._run_params(run)
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_runs ({_RUN_COLUMNS}, cursor) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            run.id,
            run.definition_id,
            run.trigger_event,
            p["trigger_payload"],
            p["status"],
            p["step_results"],
            p["wake_at"],
            p["attempt"],
            p["error"],
            p["output"],
            run.version,
            p["lease_owner"],
            p["lease_expires_at"],
            _ts(run.created_at),
            p["updated_at"],
            p["cursor"],
        )

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_RUN_COLUMNS} FROM workflow_runs WHERE id = ?",
            run_id,
        )
        return self._row_to_run(row) if row else None

    async def update_run(self, run: WorkflowRun, expected_version: int) -> bool:
        p = self._run_params(run)
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_runs
            SET status = ?, cursor = ?, step_results = ?, wake_at = ?, attempt = ?,
                error = ?, output = ?, lease_owner = ?, lease_expires_at = ?,
                updated_at = ?, version = ?
            WHERE id = ? AND version = ?
            """,
            p["status"],
            p["cursor"],
            p["step_results"],
            p["wake_at"],
            p["attempt"],
            p["error"],
            p["output"],
            p["lease_owner"],
            p["lease_expires_at"],
            p["updated_at"],
            expected_version + 1,
            run.id,
            expected_version,
        )
        if updated != 1:
            return False
        run.version = expected_version + 1
        return True

    async def acquire_lease(
        self, run_id: str, owner: str, until: datetime, now: datetime
    ) -> WorkflowRun | None:
        row = await asyncio.to_thread(
            self._update_then_fetch,
            """
            UPDATE workflow_runs
            SET lease_owner = ?, lease_expires_at = ?, version = version + 1, updated_at = ?
            WHERE id = ?
              AND (status IN ('PENDING', 'RUNNING') OR (status = 'SLEEPING' AND wake_at <= ?))
              AND (lease_owner IS NULL OR lease_expires_at <= ?)
            """,
            (owner, _ts(until), _ts(now), run_id, _ts(now), _ts(now)),
            run_id,
        )
        return self._row_to_run(row) if row else None

    async def list_due_runs(self, now: datetime, limit: int = 100) -> list[WorkflowRun]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"""
            SELECT {_RUN_COLUMNS} FROM workflow_runs
            WHERE status = 'SLEEPING' AND wake_at <= ?
              AND (lease_owner IS NULL OR lease_expires_at <= ?)
            ORDER BY wake_at
            LIMIT ?
            """,
            _ts(now),
            _ts(now),
            limit,
        )
        return [self._row_to_run(r) for r in rows]

    async def list_stalled_runs(
        self, now: datetime, stale_before: datetime, limit: int = 100
    ) -> list[WorkflowRun]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"""
            SELECT {_RUN_COLUMNS} FROM workflow_runs
            WHERE status IN ('PENDING', 'RUNNING')
              AND (lease_owner IS NULL OR lease_expires_at <= ?)
              AND updated_at <= ?
            ORDER BY updated_at
            LIMIT ?
            """,
            _ts(now),
            _ts(stale_before),
            limit,
        )
        return [self._row_to_run(r) for r in rows]

    async def list_runs(
        self, status: Optional[RunStatus] = None, limit: Optional[int] = None
    ) -> list[WorkflowRun]:
        query = f"SELECT {_RUN_COLUMNS} FROM workflow_runs"
        params: list[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(RunStatus(status).value)
        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [self._row_to_run(r) for r in rows]

    async def record_step_attempt(self, attempt: StepAttempt) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO step_attempts
                (run_id, step_id, attempt, status, error, started_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            attempt.run_id,
            attempt.step_id,
            attempt.attempt,
            attempt.status,
            attempt.error,
            _ts(attempt.started_at),
            _ts(attempt.finished_at),
        )

    async def list_step_attempts(self, run_id: str) -> list[StepAttempt]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT id, run_id, step_id, attempt, status, error, started_at, finished_at "
            "FROM step_attempts WHERE run_id = ? ORDER BY id",
            run_id,
        )
        return [
            StepAttempt(
                id=r["id"],
                run_id=r["run_id"],
                step_id=r["step_id"],
                attempt=r["attempt"],
                status=r["status"],
                error=r["error"],
                started_at=r["started_at"],
                finished_at=r["finished_at"],
            )
            for r in rows
        ]

    def close(self) -> None:
        self._conn.close()
