"""Workflow engine behaviour: memoization, sleeps, retries, fan-out, cancel."""

from datetime import timedelta

import pytest

from intentflow.config import EngineConfig
from intentflow.contracts import ErrorKind, TriggerEvent
from intentflow.errors import FatalStepError
from intentflow.persistence import RunStatus, WorkflowRun
from intentflow.workflows import (
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowRegistry,
    run,
    send_event,
    sleep,
    sleep_until,
)


class Recorder:
    """Step bodies that log their invocations."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def step(self, name: str, result=None):
        async def body(ctx):
            self.calls.append(name)
            return result if result is not None else {"step": name}

        return body


def _ordered(recorder: Recorder) -> WorkflowDefinition:
    async def b(ctx):
        # B only ever sees A's recorded result
        assert ctx.results["a"] == {"step": "a"}
        recorder.calls.append("b")
        return {"step": "b"}

    return WorkflowDefinition(
        id="ordered",
        trigger_event="test/ordered",
        steps=[run("a", recorder.step("a")), sleep("wait", "1h"), run("b", b)],
    )


@pytest.mark.asyncio
async def test_run_sleeps_between_steps_and_completes_in_order(make_engine, clock):
    recorder = Recorder()
    engine = make_engine(_ordered(recorder))

    result = await engine.ingest(TriggerEvent(name="test/ordered"))
    assert result.accepted

    stored = await engine.get_run(result.run_id)
    assert stored.status == RunStatus.SLEEPING
    assert stored.wake_at == clock() + timedelta(hours=1)
    assert list(stored.step_results) == ["a"]
    assert stored.cursor == 1
    assert stored.lease_owner is None
    assert recorder.calls == ["a"]

    clock.advance(minutes=59)
    assert await engine.resume(stored.id) is None
    assert recorder.calls == ["a"]

    clock.advance(minutes=1)
    done = await engine.resume(stored.id)
    assert done.status == RunStatus.COMPLETED
    assert list(done.step_results) == ["a", "wait", "b"]
    assert done.step_results["wait"] == {"sleptUntil": stored.wake_at.isoformat()}
    assert done.cursor == 3
    assert recorder.calls == ["a", "b"]


@pytest.mark.asyncio
async def test_resumption_reuses_recorded_results(make_engine, repository):
    recorder = Recorder()
    definition = WorkflowDefinition(
        id="replay",
        trigger_event="test/replay",
        steps=[run("a", recorder.step("a")), run("b", recorder.step("b"))],
    )
    engine = make_engine(definition)

    # state left behind by a worker that crashed after recording step "a"
    crashed = WorkflowRun(
        definition_id="replay",
        trigger_event="test/replay",
        status=RunStatus.RUNNING,
        step_results={"a": {"original": True}},
    )
    await repository.create_run(crashed)
    assert crashed.cursor == 1

    done = await engine.resume(crashed.id)
    assert done.status == RunStatus.COMPLETED
    assert done.step_results["a"] == {"original": True}
    assert done.step_results["b"] == {"step": "b"}
    assert recorder.calls == ["b"]

    # a terminal run cannot be advanced again
    assert await engine.resume(crashed.id) is None
    assert recorder.calls == ["b"]


def test_recorded_results_cannot_be_overwritten():
    run_state = WorkflowRun(definition_id="d", trigger_event="t")
    run_state.record_result("a", 1)
    with pytest.raises(ValueError):
        run_state.record_result("a", 2)
    assert run_state.step_results == {"a": 1}
    assert run_state.cursor == 1


@pytest.mark.asyncio
async def test_transient_failures_retry_until_max_retries(make_engine, sleeper):
    attempts = []

    async def flaky(ctx):
        attempts.append(ctx.attempt)
        raise RuntimeError("provider unavailable")

    definition = WorkflowDefinition(
        id="always-fails",
        trigger_event="test/fail",
        max_retries=3,
        steps=[run("send", flaky)],
    )
    engine = make_engine(definition, retry_base_delay=2.0, retry_max_delay=45.0, retry_jitter=0.0)

    result = await engine.ingest(TriggerEvent(name="test/fail"))
    failed = await engine.get_run(result.run_id)

    assert attempts == [0, 1, 2, 3]
    assert failed.status == RunStatus.FAILED
    assert failed.error.kind == ErrorKind.STEP_TRANSIENT_FAILURE
    assert failed.error.step_id == "send"
    assert failed.error.attempt == 3
    assert failed.step_results == {}
    assert sleeper.delays == [2.0, 4.0, 8.0]

    history = await engine.step_history(failed.id)
    assert [h.status for h in history] == ["retrying", "retrying", "retrying", "failed"]


@pytest.mark.asyncio
async def test_retry_backoff_stays_below_a_minute(make_engine, sleeper):
    async def flaky(ctx):
        raise RuntimeError("boom")

    definition = WorkflowDefinition(
        id="many-retries",
        trigger_event="test/many",
        max_retries=8,
        steps=[run("send", flaky)],
    )
    engine = make_engine(definition)
    await engine.ingest(TriggerEvent(name="test/many"))

    assert len(sleeper.delays) == 8
    assert max(sleeper.delays) < 60


@pytest.mark.asyncio
async def test_fatal_failure_stops_after_one_attempt(make_engine, sleeper):
    calls = []

    async def malformed(ctx):
        calls.append(1)
        raise FatalStepError("payload is missing email")

    definition = WorkflowDefinition(
        id="fatal",
        trigger_event="test/fatal",
        max_retries=5,
        steps=[run("validate", malformed), run("never", malformed)],
    )
    engine = make_engine(definition)
    result = await engine.ingest(TriggerEvent(name="test/fatal"))
    failed = await engine.get_run(result.run_id)

    assert len(calls) == 1
    assert sleeper.delays == []
    assert failed.status == RunStatus.FAILED
    assert failed.error.kind == ErrorKind.STEP_FATAL_FAILURE
    assert failed.error.message == "payload is missing email"


@pytest.mark.asyncio
async def test_attempt_resets_after_a_successful_retry(make_engine):
    failures = {"left": 2}

    async def eventually(ctx):
        if failures["left"]:
            failures["left"] -= 1
            raise RuntimeError("try again")
        return {"ok": True, "attempt": ctx.attempt}

    definition = WorkflowDefinition(
        id="eventually",
        trigger_event="test/eventually",
        steps=[run("send", eventually), run("after", lambda ctx: {"attempt": ctx.attempt})],
    )
    engine = make_engine(definition)
    result = await engine.ingest(TriggerEvent(name="test/eventually"))
    done = await engine.get_run(result.run_id)

    assert done.status == RunStatus.COMPLETED
    assert done.step_results["send"] == {"ok": True, "attempt": 2}
    assert done.step_results["after"] == {"attempt": 0}
    assert done.attempt == 0


@pytest.mark.asyncio
async def test_one_trigger_fans_out_to_every_listening_definition(make_engine):
    recorder = Recorder()
    first = WorkflowDefinition(
        id="first", trigger_event="test/shared", steps=[run("a", recorder.step("first"))]
    )
    second = WorkflowDefinition(
        id="second", trigger_event="test/shared", steps=[run("a", recorder.step("second"))]
    )
    engine = make_engine(first, second)

    result = await engine.ingest({"triggerEvent": "test/shared", "payload": {"x": 1}})

    assert result.accepted
    assert len(result.run_ids) == 2
    runs = [await engine.get_run(run_id) for run_id in result.run_ids]
    assert {r.definition_id for r in runs} == {"first", "second"}
    assert all(r.status == RunStatus.COMPLETED for r in runs)
    assert all(r.trigger_payload == {"x": 1} for r in runs)
    assert sorted(recorder.calls) == ["first", "second"]


@pytest.mark.asyncio
async def test_unmatched_trigger_is_rejected(make_engine, repository):
    engine = make_engine(
        WorkflowDefinition(id="only", trigger_event="test/only", steps=[run("a", lambda ctx: 1)])
    )
    result = await engine.ingest(TriggerEvent(name="test/other"))
    assert not result.accepted
    assert result.run_id is None
    assert await repository.list_runs() == []


@pytest.mark.asyncio
async def test_cancel_sleeping_run(make_engine, clock):
    recorder = Recorder()
    engine = make_engine(_ordered(recorder))
    result = await engine.ingest(TriggerEvent(name="test/ordered"))

    assert await engine.cancel(result.run_id) is True
    cancelled = await engine.get_run(result.run_id)
    assert cancelled.status == RunStatus.CANCELLED
    assert cancelled.wake_at is None

    clock.advance(hours=2)
    assert await engine.resume(result.run_id) is None
    assert recorder.calls == ["a"]
    assert await engine.cancel(result.run_id) is False


@pytest.mark.asyncio
async def test_cancel_during_a_step_stops_before_the_next_one(make_engine):
    calls = []

    async def cancelled_meanwhile(ctx):
        calls.append("a")
        assert await engine.cancel(ctx.run_id)
        return {"sent": True}

    async def never(ctx):
        calls.append("b")

    definition = WorkflowDefinition(
        id="cancel-mid-step",
        trigger_event="test/cancel",
        steps=[run("a", cancelled_meanwhile), run("b", never)],
    )
    engine = make_engine(definition)
    result = await engine.ingest(TriggerEvent(name="test/cancel"))
    stored = await engine.get_run(result.run_id)

    assert calls == ["a"]
    assert stored.status == RunStatus.CANCELLED
    assert stored.step_results == {}


@pytest.mark.asyncio
async def test_cancel_during_retry_backoff_prevents_another_attempt(repository, clock):
    calls = []

    async def flaky(ctx):
        calls.append(ctx.attempt)
        raise ConnectionError("smtp timeout")

    definition = WorkflowDefinition(
        id="cancel-in-backoff",
        trigger_event="test/backoff",
        max_retries=3,
        steps=[run("send", flaky)],
    )

    async def cancelling_sleeper(delay):
        for stored in await repository.list_runs():
            await engine.cancel(stored.id)

    engine = WorkflowEngine(
        WorkflowRegistry([definition]),
        repository,
        config=EngineConfig(retry_jitter=0.0),
        clock=clock,
        sleeper=cancelling_sleeper,
    )
    result = await engine.ingest(TriggerEvent(name="test/backoff"))
    stored = await engine.get_run(result.run_id)

    assert calls == [0]
    assert stored.status == RunStatus.CANCELLED
    assert stored.step_results == {}


@pytest.mark.asyncio
async def test_raising_condition_fails_the_run(make_engine):
    recorder = Recorder()
    definition = WorkflowDefinition(
        id="bad-condition",
        trigger_event="test/condition",
        steps=[run("a", recorder.step("a"), when=lambda ctx: ctx.payload["missing"])],
    )
    engine = make_engine(definition)

    result = await engine.ingest(TriggerEvent(name="test/condition"))
    stored = await engine.get_run(result.run_id)

    assert result.accepted
    assert recorder.calls == []
    assert stored.status == RunStatus.FAILED
    assert stored.error.kind == ErrorKind.STEP_FATAL_FAILURE
    assert stored.error.step_id == "a"
    assert stored.lease_owner is None


@pytest.mark.asyncio
async def test_ingest_reports_runs_even_when_one_of_them_errors(make_engine, repository):
    recorder = Recorder()
    healthy = WorkflowDefinition(
        id="healthy", trigger_event="test/partial", steps=[run("ok", recorder.step("ok"))]
    )
    broken = WorkflowDefinition(
        id="broken", trigger_event="test/partial", steps=[run("boom", recorder.step("boom"))]
    )
    engine = make_engine(healthy, broken)

    original = repository.record_step_attempt

    async def record_step_attempt(attempt):
        if attempt.step_id == "boom":
            raise RuntimeError("history table unavailable")
        await original(attempt)

    repository.record_step_attempt = record_step_attempt

    result = await engine.ingest(TriggerEvent(name="test/partial"))

    assert result.accepted
    assert len(result.run_ids) == 2
    statuses = {r.definition_id: r.status for r in await engine.list_runs()}
    assert statuses["healthy"] == RunStatus.COMPLETED
    assert statuses["broken"] == RunStatus.RUNNING


@pytest.mark.asyncio
async def test_send_event_starts_another_workflow(make_engine):
    recorder = Recorder()
    parent = WorkflowDefinition(
        id="parent",
        trigger_event="test/parent",
        steps=[
            send_event(
                "notify-child",
                lambda ctx: TriggerEvent(name="test/child", data={"from": ctx.run_id}),
            ),
            run("after-send", recorder.step("parent")),
        ],
    )
    child = WorkflowDefinition(
        id="child", trigger_event="test/child", steps=[run("child-step", recorder.step("child"))]
    )
    engine = make_engine(parent, child)

    result = await engine.ingest(TriggerEvent(name="test/parent"))
    await engine.drain()

    parent_run = await engine.get_run(result.run_id)
    assert parent_run.status == RunStatus.COMPLETED
    assert parent_run.step_results["notify-child"]["sent"] == "test/child"

    child_runs = [r for r in await engine.list_runs() if r.definition_id == "child"]
    assert len(child_runs) == 1
    assert child_runs[0].trigger_payload == {"from": parent_run.id}
    assert child_runs[0].status == RunStatus.COMPLETED
    assert sorted(recorder.calls) == ["child", "parent"]


@pytest.mark.asyncio
async def test_send_event_goes_through_dispatcher(make_engine):
    dispatched = []
    definition = WorkflowDefinition(
        id="dispatching",
        trigger_event="test/dispatching",
        steps=[send_event("emit", TriggerEvent(name="test/elsewhere", data={"k": "v"}))],
    )
    engine = make_engine(definition, dispatcher=dispatched.append)
    await engine.ingest(TriggerEvent(name="test/dispatching"))

    assert [t.name for t in dispatched] == ["test/elsewhere"]
    assert dispatched[0].data == {"k": "v"}


@pytest.mark.asyncio
async def test_skipped_steps_keep_cursor_in_step_with_results(make_engine):
    recorder = Recorder()
    definition = WorkflowDefinition(
        id="branching",
        trigger_event="test/branch",
        steps=[
            run("always", recorder.step("always")),
            run("vip-only", recorder.step("vip"), when=lambda ctx: ctx.get("vip")),
            sleep("vip-wait", "1d", when=lambda ctx: ctx.get("vip")),
            run("last", recorder.step("last")),
        ],
    )
    engine = make_engine(definition)
    result = await engine.ingest(TriggerEvent(name="test/branch", data={"vip": False}))
    done = await engine.get_run(result.run_id)

    assert done.status == RunStatus.COMPLETED
    assert done.step_results["vip-only"] == {"skipped": True}
    assert done.step_results["vip-wait"] == {"skipped": True}
    assert done.cursor == len(done.step_results) == 4
    assert recorder.calls == ["always", "last"]


@pytest.mark.asyncio
async def test_sleep_until_in_the_past_does_not_suspend(make_engine, clock):
    definition = WorkflowDefinition(
        id="past",
        trigger_event="test/past",
        steps=[
            sleep_until("wait", lambda ctx: ctx.now - timedelta(minutes=5)),
            run("go", lambda ctx: "went"),
        ],
    )
    engine = make_engine(definition)
    result = await engine.ingest(TriggerEvent(name="test/past"))
    done = await engine.get_run(result.run_id)

    assert done.status == RunStatus.COMPLETED
    assert done.step_results["go"] == "went"


@pytest.mark.asyncio
async def test_missing_definition_fails_the_run(make_engine, repository):
    engine = make_engine(
        WorkflowDefinition(id="kept", trigger_event="test/kept", steps=[run("a", lambda ctx: 1)])
    )
    orphan = WorkflowRun(definition_id="removed", trigger_event="test/removed")
    await repository.create_run(orphan)

    failed = await engine.resume(orphan.id)
    assert failed.status == RunStatus.FAILED
    assert failed.error.kind == ErrorKind.DEFINITION_MISSING


@pytest.mark.asyncio
async def test_changed_definition_fails_the_run(make_engine, repository):
    engine = make_engine(
        WorkflowDefinition(
            id="changed",
            trigger_event="test/changed",
            steps=[run("renamed", lambda ctx: 1), run("b", lambda ctx: 2)],
        )
    )
    stale = WorkflowRun(
        definition_id="changed",
        trigger_event="test/changed",
        status=RunStatus.RUNNING,
        step_results={"original": 1},
    )
    await repository.create_run(stale)

    failed = await engine.resume(stale.id)
    assert failed.status == RunStatus.FAILED
    assert failed.error.kind == ErrorKind.DEFINITION_MISSING
    assert failed.step_results == {"original": 1}


@pytest.mark.asyncio
async def test_resume_skips_runs_leased_by_another_worker(make_engine, repository, clock):
    recorder = Recorder()
    definition = WorkflowDefinition(
        id="leased", trigger_event="test/leased", steps=[run("a", recorder.step("a"))]
    )
    engine = make_engine(definition, owner="worker-a")
    pending = WorkflowRun(definition_id="leased", trigger_event="test/leased")
    await repository.create_run(pending)

    leased = await repository.acquire_lease(
        pending.id, "worker-b", clock() + timedelta(minutes=5), clock()
    )
    assert leased.lease_owner == "worker-b"

    assert await engine.resume(pending.id) is None
    assert recorder.calls == []

    # once the other worker's lease expires the run is recoverable
    clock.advance(minutes=6)
    done = await engine.resume(pending.id)
    assert done.status == RunStatus.COMPLETED
    assert recorder.calls == ["a"]


@pytest.mark.asyncio
async def test_finalize_output_is_stored(make_engine):
    definition = WorkflowDefinition(
        id="with-output",
        trigger_event="test/output",
        steps=[run("a", lambda ctx: {"n": 2})],
        finalize=lambda ctx: {"double": ctx.results["a"]["n"] * 2, "id": ctx.get("id")},
    )
    engine = make_engine(definition)
    result = await engine.ingest(TriggerEvent(name="test/output", data={"id": "x"}))
    done = await engine.get_run(result.run_id)
    assert done.output == {"double": 4, "id": "x"}
