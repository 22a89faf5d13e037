"""Intents flowing through the bridge into durable workflow runs."""

import asyncio
from datetime import timedelta

import pytest

from intentflow.config import BridgeConfig, IntentflowConfig
from intentflow.persistence import RunStatus
from intentflow.runtime import build_runtime
from intentflow.transports import InMemoryTransport
from intentflow.workflows import StepKind, default_registry


@pytest.fixture
def runtime(repository, clock, sleeper, notifier):
    return build_runtime(
        config=IntentflowConfig(),
        repository=repository,
        notifier=notifier,
        clock=clock,
        sleeper=sleeper,
    )


def _run_results(run) -> int:
    """Number of recorded results that belong to RUN steps."""
    definition = default_registry().get(run.definition_id)
    kinds = {step.id: step.kind for step in definition.steps}
    return sum(1 for step_id in run.step_results if kinds[step_id] == StepKind.RUN)


def _only(runs, definition_id):
    matching = [r for r in runs if r.definition_id == definition_id]
    assert len(matching) == 1, f"expected one {definition_id} run, got {len(matching)}"
    return matching[0]


@pytest.mark.asyncio
async def test_abandoned_cart_sends_three_reminders(runtime, clock, notifier):
    start = clock()
    result = await runtime.executor.execute(
        "cart.abandoned",
        {"cartId": "cart_1", "email": "shopper@example.com", "items": [{"sku": "a"}], "total": 40},
    )
    assert result.success
    await runtime.drain()

    cart = _only(await runtime.engine.list_runs(), "cart-abandonment-workflow")
    assert cart.status == RunStatus.SLEEPING
    assert cart.wake_at == start + timedelta(hours=1)
    assert cart.trigger_payload["customerEmail"] == "shopper@example.com"
    assert notifier.templates("email") == []
    assert _run_results(cart) == 0

    for expected in (1, 2, 3):
        clock.set(cart.wake_at)
        assert await runtime.scheduler.tick() == 1
        cart = await runtime.engine.get_run(cart.id)
        assert _run_results(cart) == expected
        assert cart.cursor == len(cart.step_results)

    assert cart.status == RunStatus.COMPLETED
    assert notifier.templates("email") == [
        "cart.reminder.first",
        "cart.reminder.discount",
        "cart.reminder.final",
    ]
    assert cart.step_results["send-discount-reminder"]["discountCode"] == "COMEBACK10"
    assert cart.output["remindersSequence"] == ["first", "discount", "final"]
    assert clock() == start + timedelta(hours=1 + 24, days=3)


@pytest.mark.asyncio
async def test_sleeping_run_survives_a_new_runtime(repository, clock, sleeper, notifier):
    first = build_runtime(
        config=IntentflowConfig(), repository=repository, notifier=notifier, clock=clock, sleeper=sleeper
    )
    await first.executor.execute("newsletter.subscribe", {"email": "reader@example.com"})
    await first.drain()
    welcome = _only(await repository.list_runs(), "newsletter-welcome-workflow")
    assert welcome.status == RunStatus.SLEEPING

    # a fresh process picks the run up from the shared store
    second = build_runtime(
        config=IntentflowConfig(), repository=repository, notifier=notifier, clock=clock, sleeper=sleeper
    )
    clock.advance(days=3)
    assert await second.scheduler.tick() == 1
    clock.advance(days=7)
    assert await second.scheduler.tick() == 1

    done = await repository.get_run(welcome.id)
    assert done.status == RunStatus.COMPLETED
    assert notifier.templates("email") == [
        "newsletter.welcome",
        "newsletter.value",
        "newsletter.engagement",
    ]
    assert done.output["email"] == "reader@example.com"


@pytest.mark.asyncio
async def test_contact_form_starts_lead_follow_up(runtime, notifier):
    result = await runtime.executor.execute(
        "lead.submit", {"email": "lead@example.com", "name": "Lee", "message": "Hi"}
    )
    await runtime.drain()

    assert result.intent == "contact.submit"
    lead = _only(await runtime.engine.list_runs(), "lead-follow-up-workflow")
    assert lead.trigger_payload["leadId"] == result.data["leadId"]
    assert lead.trigger_payload["email"] == "lead@example.com"
    assert lead.status == RunStatus.SLEEPING
    assert notifier.templates("email") == ["lead.acknowledge"]
    assert runtime.bridge.stats.sent == 1


@pytest.mark.asyncio
async def test_booking_intent_schedules_reminders(runtime, clock, notifier):
    scheduled = clock() + timedelta(days=2)
    result = await runtime.executor.execute(
        "booking.create",
        {
            "serviceId": "svc_1",
            "datetime": scheduled.isoformat(),
            "customerEmail": "guest@example.com",
            "customerPhone": "+15550100",
        },
    )
    await runtime.drain()

    booking = _only(await runtime.engine.list_runs(), "booking-reminder-workflow")
    assert booking.trigger_payload["bookingId"] == result.data["bookingId"]
    assert booking.wake_at == scheduled - timedelta(hours=24)
    assert notifier.templates("email") == ["booking.confirmation"]


@pytest.mark.asyncio
async def test_payment_success_starts_order_fulfillment(runtime, notifier):
    await runtime.executor.execute(
        "pay.success", {"orderId": "order_9", "customerEmail": "buyer@example.com", "total": 99}
    )
    await runtime.drain()

    runs = await runtime.engine.list_runs()
    automation = _only(runs, "automation-trigger-workflow")
    order = _only(runs, "order-fulfillment-workflow")

    assert automation.status == RunStatus.COMPLETED
    assert automation.step_results["trigger-order-fulfillment"]["sent"] == "order/created"
    assert order.trigger_payload["orderId"] == "order_9"
    assert order.status == RunStatus.SLEEPING
    assert notifier.templates("email") == ["order.confirmation"]


@pytest.mark.asyncio
async def test_failed_intent_starts_nothing(runtime):
    result = await runtime.executor.execute("newsletter.subscribe", {})
    await runtime.drain()

    assert not result.success
    assert await runtime.engine.list_runs() == []
    assert runtime.bridge.stats.sent == 0


@pytest.mark.asyncio
async def test_transport_delivery_goes_through_ingestion_worker(repository, clock, sleeper, notifier):
    transport = InMemoryTransport(poll_interval=0.01)
    runtime = build_runtime(
        config=IntentflowConfig(bridge=BridgeConfig(delivery="transport")),
        repository=repository,
        notifier=notifier,
        transport=transport,
        clock=clock,
        sleeper=sleeper,
    )

    await runtime.executor.execute("newsletter.subscribe", {"email": "queued@example.com"})
    await runtime.drain()
    assert transport.pending("triggers") == 1
    assert await repository.list_runs() == []

    worker = runtime.ingestion_worker()
    await asyncio.wait_for(worker.start(lifespan=0.1), timeout=2)

    assert worker.processed == 1
    welcome = _only(await repository.list_runs(), "newsletter-welcome-workflow")
    assert welcome.trigger_payload["email"] == "queued@example.com"
