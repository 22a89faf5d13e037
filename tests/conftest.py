"""Shared fixtures: a controllable clock and a sleeper that never waits."""

from datetime import datetime, timedelta, timezone

import pytest

from intentflow.config import EngineConfig
from intentflow.persistence import InMemoryWorkflowRepository
from intentflow.workflows import LoggingNotifier, StepServices, WorkflowEngine, WorkflowRegistry


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


class RecordingSleeper:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def notifier() -> LoggingNotifier:
    return LoggingNotifier()


@pytest.fixture
def make_engine(repository, clock, sleeper, notifier):
    """Build an engine over the shared repository for the given definitions."""

    def factory(*definitions, registry=None, owner=None, dispatcher=None, **config):
        registry = registry or WorkflowRegistry(list(definitions))
        return WorkflowEngine(
            registry,
            repository,
            services=StepServices(notifier=notifier),
            dispatcher=dispatcher,
            config=EngineConfig(**config),
            clock=clock,
            sleeper=sleeper,
            owner=owner,
        )

    return factory
