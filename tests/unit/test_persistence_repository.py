from datetime import datetime, timedelta, timezone

import pytest

from intentflow.contracts import ErrorKind
from intentflow.persistence import (
    InMemoryWorkflowRepository,
    RunError,
    RunStatus,
    SQLiteWorkflowRepository,
    StepAttempt,
    WorkflowRun,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["inmemory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryWorkflowRepository()
        return
    repo = SQLiteWorkflowRepository(tmp_path / "wf.db")
    yield repo
    repo.close()


def _run(**kwargs) -> WorkflowRun:
    kwargs.setdefault("created_at", NOW)
    kwargs.setdefault("updated_at", NOW)
    return WorkflowRun(definition_id="wf", trigger_event="test/wf", **kwargs)


@pytest.mark.asyncio
async def test_repository_crud(repo):
    run = _run(trigger_payload={"cartId": "c1", "items": [{"sku": "a", "qty": 2}]})
    await repo.create_run(run)

    loaded = await repo.get_run(run.id)
    assert loaded is not None
    assert loaded.status == RunStatus.PENDING
    assert loaded.trigger_payload == {"cartId": "c1", "items": [{"sku": "a", "qty": 2}]}
    assert loaded.created_at == NOW
    assert loaded.version == 0

    loaded.record_result("first", {"ok": True})
    loaded.status = RunStatus.SLEEPING
    loaded.wake_at = NOW + timedelta(hours=1)
    assert await repo.update_run(loaded, 0)
    assert loaded.version == 1

    again = await repo.get_run(run.id)
    assert again.step_results == {"first": {"ok": True}}
    assert again.cursor == 1
    assert again.wake_at == NOW + timedelta(hours=1)
    assert again.version == 1

    assert await repo.get_run("missing") is None


@pytest.mark.asyncio
async def test_step_results_keep_their_order(repo):
    run = _run()
    for step_id in ["zeta", "alpha", "mid", "beta"]:
        run.record_result(step_id, step_id.upper())
    await repo.create_run(run)

    loaded = await repo.get_run(run.id)
    assert list(loaded.step_results) == ["zeta", "alpha", "mid", "beta"]
    assert loaded.cursor == 4


@pytest.mark.asyncio
async def test_update_with_stale_version_is_rejected(repo):
    run = _run()
    await repo.create_run(run)

    first = await repo.get_run(run.id)
    second = await repo.get_run(run.id)

    first.status = RunStatus.CANCELLED
    assert await repo.update_run(first, first.version)

    second.record_result("late", 1)
    assert not await repo.update_run(second, second.version)

    stored = await repo.get_run(run.id)
    assert stored.status == RunStatus.CANCELLED
    assert stored.step_results == {}


@pytest.mark.asyncio
async def test_error_and_output_roundtrip(repo):
    run = _run(status=RunStatus.FAILED)
    run.error = RunError(kind=ErrorKind.STEP_FATAL_FAILURE, message="bad", step_id="s", attempt=2)
    run.output = {"result": [1, 2]}
    await repo.create_run(run)

    loaded = await repo.get_run(run.id)
    assert loaded.error.kind == ErrorKind.STEP_FATAL_FAILURE
    assert loaded.error.step_id == "s"
    assert loaded.error.attempt == 2
    assert loaded.output == {"result": [1, 2]}


@pytest.mark.asyncio
async def test_lease_is_exclusive_until_it_expires(repo):
    run = _run()
    await repo.create_run(run)

    leased = await repo.acquire_lease(run.id, "a", NOW + timedelta(minutes=5), NOW)
    assert leased.lease_owner == "a"
    assert leased.version == 1

    assert await repo.acquire_lease(run.id, "b", NOW + timedelta(minutes=5), NOW) is None
    later = NOW + timedelta(minutes=4)
    assert await repo.acquire_lease(run.id, "b", later + timedelta(minutes=5), later) is None

    expired = NOW + timedelta(minutes=5)
    taken = await repo.acquire_lease(run.id, "b", expired + timedelta(minutes=5), expired)
    assert taken.lease_owner == "b"
    assert taken.version == 2


@pytest.mark.asyncio
async def test_lease_refused_for_terminal_and_not_yet_due_runs(repo):
    done = _run(status=RunStatus.COMPLETED)
    asleep = _run(status=RunStatus.SLEEPING, wake_at=NOW + timedelta(hours=1))
    await repo.create_run(done)
    await repo.create_run(asleep)

    until = NOW + timedelta(minutes=5)
    assert await repo.acquire_lease(done.id, "a", until, NOW) is None
    assert await repo.acquire_lease(asleep.id, "a", until, NOW) is None
    assert await repo.acquire_lease("missing", "a", until, NOW) is None

    woken = NOW + timedelta(hours=1)
    leased = await repo.acquire_lease(asleep.id, "a", woken + timedelta(minutes=5), woken)
    assert leased is not None
    assert leased.status == RunStatus.SLEEPING


@pytest.mark.asyncio
async def test_due_runs_are_ordered_by_wake_time(repo):
    late = _run(status=RunStatus.SLEEPING, wake_at=NOW - timedelta(minutes=1))
    early = _run(status=RunStatus.SLEEPING, wake_at=NOW - timedelta(hours=1))
    future = _run(status=RunStatus.SLEEPING, wake_at=NOW + timedelta(seconds=1))
    pending = _run()
    for run in (late, early, future, pending):
        await repo.create_run(run)

    due = await repo.list_due_runs(NOW)
    assert [r.id for r in due] == [early.id, late.id]
    assert [r.id for r in await repo.list_due_runs(NOW, limit=1)] == [early.id]

    await repo.acquire_lease(early.id, "a", NOW + timedelta(minutes=5), NOW)
    assert [r.id for r in await repo.list_due_runs(NOW)] == [late.id]


@pytest.mark.asyncio
async def test_stalled_runs_need_an_old_update_and_a_free_lease(repo):
    stale = _run(updated_at=NOW - timedelta(hours=1))
    fresh = _run(status=RunStatus.RUNNING)
    asleep = _run(status=RunStatus.SLEEPING, updated_at=NOW - timedelta(hours=1))
    for run in (stale, fresh, asleep):
        await repo.create_run(run)

    stalled = await repo.list_stalled_runs(NOW, NOW - timedelta(minutes=10))
    assert [r.id for r in stalled] == [stale.id]


@pytest.mark.asyncio
async def test_list_runs_filters_by_status_newest_first(repo):
    older = _run(created_at=NOW - timedelta(minutes=2))
    newer = _run(created_at=NOW - timedelta(minutes=1))
    finished = _run(status=RunStatus.COMPLETED)
    for run in (older, newer, finished):
        await repo.create_run(run)

    assert [r.id for r in await repo.list_runs()] == [finished.id, newer.id, older.id]
    pending = await repo.list_runs(status=RunStatus.PENDING)
    assert [r.id for r in pending] == [newer.id, older.id]
    assert len(await repo.list_runs(limit=1)) == 1


@pytest.mark.asyncio
async def test_step_attempts_are_listed_in_insertion_order(repo):
    run = _run()
    await repo.create_run(run)
    for attempt, status in enumerate(["retrying", "retrying", "completed"]):
        await repo.record_step_attempt(
            StepAttempt(
                run_id=run.id,
                step_id="send",
                attempt=attempt,
                status=status,
                error=None if status == "completed" else "timeout",
                started_at=NOW,
                finished_at=NOW,
            )
        )

    attempts = await repo.list_step_attempts(run.id)
    assert [(a.attempt, a.status) for a in attempts] == [
        (0, "retrying"),
        (1, "retrying"),
        (2, "completed"),
    ]
    assert attempts[0].error == "timeout"
    assert attempts[0].id is not None
    assert await repo.list_step_attempts("other") == []
