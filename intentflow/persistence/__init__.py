"""Persistence layer for durable workflow runs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import IntentflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    RunError,
    RunStatus,
    StepAttempt,
    WorkflowRun,
)
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[IntentflowConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``INTENTFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned. Every call builds a new
    repository; callers that need to share one pass it along explicitly.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("INTENTFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        return InMemoryWorkflowRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteWorkflowRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith("postgresql://"):
        from .postgres import PostgresWorkflowRepository

        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "RunError",
    "RunStatus",
    "StepAttempt",
    "WorkflowRun",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "InMemoryWorkflowRepository",
    "get_repository",
]
