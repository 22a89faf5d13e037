"""Durable workflow engine.

Flow:
1. ``ingest`` creates one PENDING run per definition listening to the trigger
2. ``resume`` takes the run's lease and advances it from ``cursor``
3. each step result is memoized in ``step_results`` with a conditional write
4. sleep steps persist ``wake_at`` and release the lease; the scheduler
   calls ``resume`` again once the run is due
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from pydantic import TypeAdapter

from ..config import EngineConfig
from ..contracts import ErrorKind, IngestResult, TriggerEvent, utcnow
from ..errors import FatalStepError
from ..persistence import RunError, RunStatus, StepAttempt, WorkflowRepository, WorkflowRun
from ..utils.aio import maybe_await
from ..utils.retry import compute_backoff
from .context import StepContext, StepServices
from .definitions import StepKind, StepSpec, WorkflowDefinition, WorkflowRegistry
from .durations import parse_duration

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleeper = Callable[[float], Awaitable[None]]
Dispatcher = Callable[[TriggerEvent], Any]

_json = TypeAdapter(Any)


class _RunSuperseded(Exception):
    """A conditional write lost; ``current`` is the stored run."""

    def __init__(self, current: Optional[WorkflowRun]) -> None:
        super().__init__("run changed concurrently")
        self.current = current


def _coerce_trigger(trigger: TriggerEvent | Mapping[str, Any]) -> TriggerEvent:
    if isinstance(trigger, TriggerEvent):
        return trigger
    name = trigger.get("triggerEvent") or trigger.get("name")
    data = trigger.get("payload") or trigger.get("data") or {}
    return TriggerEvent(name=name, data=dict(data))


class WorkflowEngine:
    """Create, advance and cancel durable workflow runs."""

    def __init__(
        self,
        registry: WorkflowRegistry,
        repository: WorkflowRepository,
        services: Optional[StepServices] = None,
        dispatcher: Optional[Dispatcher] = None,
        config: Optional[EngineConfig] = None,
        clock: Optional[Clock] = None,
        sleeper: Optional[Sleeper] = None,
        owner: Optional[str] = None,
    ) -> None:
        self.registry = registry
        self.repository = repository
        self.services = services or StepServices()
        self.config = config or EngineConfig()
        self.owner = owner or f"engine-{uuid.uuid4().hex[:8]}"
        self._dispatcher = dispatcher
        self._clock = clock or utcnow
        self._sleeper = sleeper or asyncio.sleep
        self._semaphore = asyncio.Semaphore(self.config.max_concurrency)
        self._background: Set[asyncio.Task] = set()

    def set_dispatcher(self, dispatcher: Optional[Dispatcher]) -> None:
        """Route ``SEND_EVENT`` triggers through ``dispatcher`` (normally the bridge)."""
        self._dispatcher = dispatcher

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Ingestion boundary
    async def ingest(self, trigger: TriggerEvent | Mapping[str, Any]) -> IngestResult:
        """Start one run per definition registered for the trigger's name."""
        trigger = _coerce_trigger(trigger)
        definitions = self.registry.for_trigger(trigger.name)
        if not definitions:
            logger.info(f"No workflow listens to {trigger.name}; trigger {trigger.id} ignored")
            return IngestResult(accepted=False, reason=f"No workflow for {trigger.name}")

        runs: List[WorkflowRun] = []
        for definition in definitions:
            now = self.now()
            run = WorkflowRun(
                definition_id=definition.id,
                trigger_event=trigger.name,
                trigger_payload=dict(trigger.data),
                created_at=now,
                updated_at=now,
            )
            await self.repository.create_run(run)
            logger.info(f"Created run {run.id} of {definition.id} for {trigger.name}")
            runs.append(run)

        outcomes = await asyncio.gather(
            *(self.resume(run.id) for run in runs), return_exceptions=True
        )
        for run, outcome in zip(runs, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Run {run.id} of {run.definition_id} stopped with an error: {outcome}")
        return IngestResult(accepted=True, run_ids=[run.id for run in runs])

    async def send(self, name: str, data: Optional[Dict[str, Any]] = None) -> IngestResult:
        return await self.ingest(TriggerEvent(name=name, data=data or {}))

    # ------------------------------------------------------------------
    # Run control
    async def resume(self, run_id: str) -> WorkflowRun | None:
        """Advance a run under an exclusive lease.

        Returns the run as left by this call, or ``None`` when another worker
        holds the lease, the run is not due yet, or it is already terminal.
        """
        async with self._semaphore:
            now = self.now()
            run = await self.repository.acquire_lease(
                run_id, self.owner, now + timedelta(seconds=self.config.lease_seconds), now
            )
            if run is None:
                logger.debug(f"Run {run_id} not leased by {self.owner}")
                return None
            try:
                return await self._advance(run)
            except _RunSuperseded as e:
                current = e.current
                status = current.status.value if current else "missing"
                logger.info(f"Run {run_id} changed concurrently ({status}); {self.owner} stops")
                return current
            except Exception:
                await self._release_after_error(run_id)
                raise

    async def cancel(self, run_id: str) -> bool:
        """Move a non-terminal run to CANCELLED."""
        while True:
            run = await self.repository.get_run(run_id)
            if run is None or run.status.is_terminal:
                return False
            expected = run.version
            run.status = RunStatus.CANCELLED
            run.wake_at = None
            run.lease_owner = None
            run.lease_expires_at = None
            run.updated_at = self.now()
            if await self.repository.update_run(run, expected):
                logger.info(f"Run {run_id} cancelled")
                return True

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        return await self.repository.get_run(run_id)

    async def list_runs(
        self, status: Optional[RunStatus] = None, limit: Optional[int] = None
    ) -> List[WorkflowRun]:
        return await self.repository.list_runs(status=status, limit=limit)

    async def step_history(self, run_id: str) -> List[StepAttempt]:
        return await self.repository.list_step_attempts(run_id)

    # ------------------------------------------------------------------
    # Background dispatch for SEND_EVENT without a bridge
    def _dispatch(self, trigger: TriggerEvent) -> None:
        if self._dispatcher is not None:
            self._dispatcher(trigger)
            return
        task = asyncio.create_task(self.ingest(trigger))
        self._background.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background ingestion failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for triggers sent by ``SEND_EVENT`` steps to be ingested."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Step execution
    async def _advance(self, run: WorkflowRun) -> WorkflowRun:
        definition = self.registry.find(run.definition_id)
        if definition is None:
            return await self._fail(
                run, ErrorKind.DEFINITION_MISSING, f"Workflow {run.definition_id} is not registered"
            )
        if list(run.step_results) != definition.step_ids[: len(run.step_results)]:
            return await self._fail(
                run,
                ErrorKind.DEFINITION_MISSING,
                f"Workflow {definition.id} no longer matches the recorded steps of run {run.id}",
            )

        # a pending wake_at means the sleep at cursor was already decided
        waking = run.wake_at is not None
        run.status = RunStatus.RUNNING
        await self._persist(run)

        while True:
            step = definition.step_at(run.cursor)
            if step is None:
                return await self._complete(run, definition)

            ctx = self._context(run)
            if not waking:
                try:
                    applies = step.applies(ctx)
                except Exception as e:
                    return await self._fail(
                        run,
                        ErrorKind.STEP_FATAL_FAILURE,
                        f"Cannot evaluate condition of {step.id}: {e}",
                        step_id=step.id,
                    )
                if not applies:
                    await self._skip(run, step)
                    continue
            waking = False

            if step.kind in (StepKind.SLEEP, StepKind.SLEEP_UNTIL):
                try:
                    if await self._sleep(run, step, ctx):
                        return run
                except FatalStepError as e:
                    return await self._fail(run, ErrorKind.STEP_FATAL_FAILURE, str(e), step_id=step.id)
            elif step.kind == StepKind.SEND_EVENT:
                try:
                    await self._send_event(run, step, ctx)
                except FatalStepError as e:
                    return await self._fail(run, ErrorKind.STEP_FATAL_FAILURE, str(e), step_id=step.id)
            else:
                failed = await self._run_step(run, definition, step)
                if failed is not None:
                    return failed

    def _context(self, run: WorkflowRun) -> StepContext:
        return StepContext(
            run_id=run.id,
            definition_id=run.definition_id,
            payload=dict(run.trigger_payload),
            results=dict(run.step_results),
            now=self.now(),
            attempt=run.attempt,
            started_at=run.created_at,
            services=self.services,
        )

    async def _skip(self, run: WorkflowRun, step: StepSpec) -> None:
        run.record_result(step.id, {"skipped": True})
        await self._persist(run)
        await self._record_attempt(run, step.id, "skipped")
        logger.debug(f"Run {run.id} skipped step {step.id}")

    async def _sleep(self, run: WorkflowRun, step: StepSpec, ctx: StepContext) -> bool:
        """Suspend until the step's wake time; ``True`` when the run went to sleep."""
        wake_at = run.wake_at or self._wake_time(step, ctx)
        if wake_at > ctx.now:
            run.status = RunStatus.SLEEPING
            run.wake_at = wake_at
            self._release(run)
            await self._persist(run)
            logger.info(f"Run {run.id} sleeping at {step.id} until {wake_at.isoformat()}")
            return True
        run.wake_at = None
        run.record_result(step.id, {"sleptUntil": wake_at.isoformat()})
        await self._persist(run)
        return False

    def _wake_time(self, step: StepSpec, ctx: StepContext) -> datetime:
        try:
            value = step.body(ctx) if callable(step.body) else step.body
            if step.kind == StepKind.SLEEP:
                return ctx.now + parse_duration(value)
            if isinstance(value, str):
                return datetime.fromisoformat(value.replace("Z", "+00:00"))
            if not isinstance(value, datetime):
                raise TypeError(f"expected a datetime, got {type(value).__name__}")
            return value
        except Exception as e:
            raise FatalStepError(f"Cannot compute wake time of {step.id}: {e}") from e

    async def _send_event(self, run: WorkflowRun, step: StepSpec, ctx: StepContext) -> None:
        try:
            value = step.body(ctx) if callable(step.body) else step.body
            trigger = _coerce_trigger(value)
        except Exception as e:
            raise FatalStepError(f"Cannot build trigger of {step.id}: {e}") from e
        self._dispatch(trigger)
        run.record_result(step.id, {"sent": trigger.name, "triggerId": trigger.id})
        await self._persist(run)
        await self._record_attempt(run, step.id, "completed")
        logger.info(f"Run {run.id} sent {trigger.name} from step {step.id}")

    async def _run_step(
        self, run: WorkflowRun, definition: WorkflowDefinition, step: StepSpec
    ) -> Optional[WorkflowRun]:
        """Execute a RUN step with retries; returns the run only if it failed."""
        while True:
            ctx = self._context(run)
            started = ctx.now
            try:
                value = await maybe_await(step.body(ctx))
            except FatalStepError as e:
                await self._record_attempt(run, step.id, "failed", str(e), started)
                return await self._fail(
                    run, ErrorKind.STEP_FATAL_FAILURE, str(e), step_id=step.id
                )
            except Exception as e:
                if run.attempt >= definition.max_retries:
                    await self._record_attempt(run, step.id, "failed", str(e), started)
                    return await self._fail(
                        run, ErrorKind.STEP_TRANSIENT_FAILURE, str(e), step_id=step.id
                    )
                await self._record_attempt(run, step.id, "retrying", str(e), started)
                run.attempt += 1
                await self._persist(run)
                delay = compute_backoff(
                    run.attempt,
                    base=definition.retry_base_delay or self.config.retry_base_delay,
                    jitter=self.config.retry_jitter,
                    cap=self.config.retry_max_delay,
                )
                logger.warning(
                    f"Run {run.id} step {step.id} failed (attempt {run.attempt}/"
                    f"{definition.max_retries + 1}): {e}; retrying in {delay:.2f}s"
                )
                await self._sleeper(delay)
                # a cancel during the backoff makes this write lose
                await self._persist(run)
                continue

            await self._record_attempt(run, step.id, "completed", None, started)
            run.record_result(step.id, _json.dump_python(value, mode="json"))
            await self._persist(run)
            return None

    async def _complete(self, run: WorkflowRun, definition: WorkflowDefinition) -> WorkflowRun:
        if definition.finalize is not None:
            try:
                output = await maybe_await(definition.finalize(self._context(run)))
            except Exception as e:
                return await self._fail(run, ErrorKind.STEP_FATAL_FAILURE, f"finalize: {e}")
            run.output = _json.dump_python(output, mode="json")
        run.status = RunStatus.COMPLETED
        run.wake_at = None
        self._release(run)
        await self._persist(run)
        logger.info(f"Run {run.id} of {definition.id} completed")
        return run

    async def _fail(
        self,
        run: WorkflowRun,
        kind: ErrorKind,
        message: str,
        step_id: Optional[str] = None,
    ) -> WorkflowRun:
        run.status = RunStatus.FAILED
        run.error = RunError(kind=kind, message=message, step_id=step_id, attempt=run.attempt)
        run.wake_at = None
        self._release(run)
        await self._persist(run)
        logger.error(f"Run {run.id} failed with {kind.value}: {message}")
        return run

    # ------------------------------------------------------------------
    # Persistence helpers
    @staticmethod
    def _release(run: WorkflowRun) -> None:
        run.lease_owner = None
        run.lease_expires_at = None

    async def _persist(self, run: WorkflowRun) -> None:
        now = self.now()
        expected = run.version
        run.updated_at = now
        if run.lease_owner == self.owner:
            run.lease_expires_at = now + timedelta(seconds=self.config.lease_seconds)
        if not await self.repository.update_run(run, expected):
            raise _RunSuperseded(await self.repository.get_run(run.id))

    async def _release_after_error(self, run_id: str) -> None:
        current = await self.repository.get_run(run_id)
        if current is None or current.lease_owner != self.owner:
            return
        expected = current.version
        self._release(current)
        current.updated_at = self.now()
        await self.repository.update_run(current, expected)

    async def _record_attempt(
        self,
        run: WorkflowRun,
        step_id: str,
        status: str,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
    ) -> None:
        now = self.now()
        await self.repository.record_step_attempt(
            StepAttempt(
                run_id=run.id,
                step_id=step_id,
                attempt=run.attempt,
                status=status,
                error=error,
                started_at=started_at or now,
                finished_at=now,
            )
        )
