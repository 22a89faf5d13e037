"""Command line interface for intentflow workers and run inspection."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from .config import load_config
from .contracts import TriggerEvent
from .persistence import RunStatus, get_repository
from .runtime import build_runtime
from .workflows import default_registry

app = typer.Typer(help="CLI for intentflow intents and durable workflows")

# Command groups
scheduler_app = typer.Typer(help="Commands for the wake-up scheduler")
worker_app = typer.Typer(help="Commands for trigger ingestion workers")
runs_app = typer.Typer(help="Commands for inspecting workflow runs")
workflows_app = typer.Typer(help="Commands for workflow definitions")
trigger_app = typer.Typer(help="Commands for sending triggers")
intent_app = typer.Typer(help="Commands for executing intents")

app.add_typer(scheduler_app, name="scheduler")
app.add_typer(worker_app, name="worker")
app.add_typer(runs_app, name="runs")
app.add_typer(workflows_app, name="workflows")
app.add_typer(trigger_app, name="trigger")
app.add_typer(intent_app, name="intent")


def _parse_payload(payload: Optional[str]) -> dict:
    if not payload:
        return {}
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        typer.secho(f"Invalid JSON payload: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    if not isinstance(data, dict):
        typer.secho("Payload must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=2)
    return data


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, help="Logging level (default from config)"),
) -> None:
    """intentflow CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@scheduler_app.command("run")
def scheduler_run(
    interval: Optional[float] = typer.Option(None, help="Seconds between scans"),
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
) -> None:
    """
    Run the scheduler loop.

    Resumes sleeping runs whose wake time has passed and recovers runs left
    behind by crashed workers. Several schedulers may run side by side.

    Example:
        intentflow scheduler run --interval 10
    """
    runtime = build_runtime()
    if interval is not None:
        runtime.scheduler.interval = interval
    typer.echo(f"Starting scheduler (interval={runtime.scheduler.interval}s)")
    asyncio.run(runtime.scheduler.start(lifespan=lifespan))


@worker_app.command("ingest")
def worker_ingest(
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
    requeue_inflight: bool = typer.Option(
        False, help="Return triggers left unacknowledged by a dead worker before consuming"
    ),
) -> None:
    """
    Consume triggers from the configured transport and start workflow runs.

    Example:
        INTENTFLOW_TRANSPORT=redis intentflow worker ingest
    """
    runtime = build_runtime()
    worker = runtime.ingestion_worker()

    async def _run() -> None:
        async with runtime.transport as transport:
            if requeue_inflight:
                moved = await transport.requeue_inflight(runtime.config.transport.topic)
                typer.echo(f"Requeued {moved} in-flight trigger(s)")
            await worker.start(lifespan=lifespan)

    typer.echo(f"Starting ingestion worker on topic {runtime.config.transport.topic}")
    asyncio.run(_run())
    typer.echo(f"Processed {worker.processed} trigger(s)")


@runs_app.command("list")
def runs_list(
    status: Optional[RunStatus] = typer.Option(None, help="Only runs with this status"),
    limit: Optional[int] = typer.Option(None, help="Maximum number of runs"),
) -> None:
    """
    List workflow runs, newest first.

    Example:
        intentflow runs list --status SLEEPING
        # Output: 0b7c...    cart-abandonment-workflow    SLEEPING    2/6
    """
    repo = get_repository()
    runs = asyncio.run(repo.list_runs(status=status, limit=limit))
    if not runs:
        typer.echo("No runs found")
        return
    registry = default_registry()
    for run in runs:
        definition = registry.find(run.definition_id)
        total = len(definition.steps) if definition else "?"
        typer.echo(f"{run.id}\t{run.definition_id}\t{run.status.value}\t{run.cursor}/{total}")


@runs_app.command("show")
def runs_show(run_id: str) -> None:
    """
    Show one run with its memoized step results and attempt history.

    Example:
        intentflow runs show 0b7c...
    """
    repo = get_repository()

    async def _load():
        return await repo.get_run(run_id), await repo.list_step_attempts(run_id)

    run, attempts = asyncio.run(_load())
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run.id}: {run.status.value}")
    typer.echo(f"Workflow: {run.definition_id} (trigger {run.trigger_event})")
    if run.wake_at:
        typer.echo(f"Wakes at: {run.wake_at.isoformat()}")
    if run.error:
        typer.echo(f"Error: {run.error.kind.value}: {run.error.message}")
    for step_id, result in run.step_results.items():
        typer.echo(f"- {step_id}: {json.dumps(result, default=str)}")
    for attempt in attempts:
        typer.echo(
            f"  attempt {attempt.attempt} of {attempt.step_id}: {attempt.status}"
            + (f" ({attempt.error})" if attempt.error else "")
        )
    if run.output is not None:
        typer.echo(f"Output: {json.dumps(run.output, default=str)}")


@runs_app.command("cancel")
def runs_cancel(run_id: str) -> None:
    """
    Cancel a pending, running or sleeping run.

    Example:
        intentflow runs cancel 0b7c...
    """
    runtime = build_runtime()
    cancelled = asyncio.run(runtime.engine.cancel(run_id))
    if not cancelled:
        typer.echo("Run not found or already finished")
        raise typer.Exit(code=1)
    typer.echo(f"Run {run_id} cancelled")


@workflows_app.command("list")
def workflows_list() -> None:
    """List built-in workflow definitions and the triggers that start them."""
    for definition in default_registry():
        typer.echo(
            f"{definition.id}\t{definition.trigger_event}\t{len(definition.steps)} steps"
            f"\tretries={definition.max_retries}"
        )


@trigger_app.command("send")
def trigger_send(
    event: str,
    payload: Optional[str] = typer.Option(None, help="Trigger data as a JSON object"),
) -> None:
    """
    Send a trigger to workflow ingestion.

    With transport delivery configured the trigger is published for an
    ingestion worker; otherwise it is ingested in this process.

    Example:
        intentflow trigger send cart/abandoned --payload '{"cartId": "c1", "customerEmail": "a@b.com"}'
    """
    data = _parse_payload(payload)
    runtime = build_runtime()
    trigger = TriggerEvent(name=event, data=data)

    async def _send():
        if runtime.config.bridge.delivery == "transport":
            async with runtime.transport as transport:
                await transport.publish(runtime.config.transport.topic, trigger)
            return None
        result = await runtime.engine.ingest(trigger)
        await runtime.drain()
        return result

    result = asyncio.run(_send())
    if result is None:
        typer.echo(f"Published trigger {trigger.id} ({event})")
        return
    if not result.accepted:
        typer.echo(f"Trigger not accepted: {result.reason}")
        raise typer.Exit(code=1)
    for run_id in result.run_ids:
        typer.echo(f"Started run {run_id}")


@intent_app.command("exec")
def intent_exec(
    name: str,
    payload: Optional[str] = typer.Option(None, help="Intent payload as a JSON object"),
) -> None:
    """
    Execute one intent against in-memory managers and print the result.

    Example:
        intentflow intent exec newsletter.subscribe --payload '{"email": "a@b.com"}'
    """
    data = _parse_payload(payload)
    runtime = build_runtime()

    async def _exec():
        result = await runtime.executor.execute(name, data)
        await runtime.drain()
        return result

    result = asyncio.run(_exec())
    typer.echo(result.model_dump_json(indent=2, exclude_none=True))
    if not result.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
