"""Built-in automation workflows for CRM, booking, commerce and newsletters."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..contracts import TriggerEvent
from .context import StepContext
from .definitions import (
    WorkflowDefinition,
    WorkflowRegistry,
    run,
    send_event,
    sleep,
    sleep_until,
)

logger = logging.getLogger(__name__)


def _business(ctx: StepContext) -> str:
    return ctx.get("businessId") or "default"


# ----------------------------------------------------------------------
# Deal stage changes
def _stage_is(*stages: str):
    def predicate(ctx: StepContext) -> bool:
        return ctx.get("newStage") in stages

    return predicate


def _won_with_contact(ctx: StepContext) -> bool:
    return ctx.get("newStage") == "closed_won" and bool(ctx.get("contactEmail"))


async def _log_stage_change(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.record(
        "deal.stage_changed",
        {
            "dealId": ctx.get("dealId"),
            "from": ctx.get("previousStage"),
            "to": ctx.get("newStage"),
        },
    )
    return {"logged": True}


async def _negotiation_actions(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.notify_business(
        _business(ctx), "deal.negotiation", {"dealId": ctx.get("dealId")}
    )
    return {"notified": True}


async def _follow_up_reminder(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.notify_business(
        _business(ctx), "deal.follow_up", {"dealId": ctx.get("dealId")}
    )
    return {"reminded": True}


async def _closed_won_actions(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.send_email(
        ctx.get("contactEmail"), "deal.congratulations", {"dealId": ctx.get("dealId")}
    )
    return {"processed": True}


async def _request_review(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.send_email(
        ctx.get("contactEmail"), "review.request", {"dealId": ctx.get("dealId")}
    )
    return {"reviewRequested": True}


async def _closed_lost_actions(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.record("deal.lost", {"dealId": ctx.get("dealId")})
    return {"processed": True}


async def _re_engage(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.send_email(
        ctx.get("contactEmail"), "deal.re_engage", {"dealId": ctx.get("dealId")}
    )
    return {"reengaged": True}


deal_stage_workflow = WorkflowDefinition(
    id="deal-stage-workflow",
    name="Deal Stage Change Handler",
    trigger_event="crm/deal.stage.changed",
    max_retries=3,
    steps=[
        run("log-stage-change", _log_stage_change),
        run("negotiation-actions", _negotiation_actions, when=_stage_is("negotiation")),
        sleep("wait-for-follow-up", "1d", when=_stage_is("negotiation")),
        run("send-follow-up-reminder", _follow_up_reminder, when=_stage_is("negotiation")),
        run("closed-won-actions", _closed_won_actions, when=_stage_is("closed_won")),
        sleep("wait-for-review-request", "7d", when=_won_with_contact),
        run("request-review", _request_review, when=_won_with_contact),
        run("closed-lost-actions", _closed_lost_actions, when=_stage_is("closed_lost")),
        sleep("wait-for-reengagement", "30d", when=_stage_is("closed_lost")),
        run("re-engage-contact", _re_engage, when=_stage_is("closed_lost")),
    ],
    finalize=lambda ctx: {
        "dealId": ctx.get("dealId"),
        "newStage": ctx.get("newStage"),
        "completed": True,
        "timestamp": ctx.now.isoformat(),
    },
)


# ----------------------------------------------------------------------
# Lead nurture sequence
def _lead_email(template: str, result: Dict[str, Any]):
    async def body(ctx: StepContext) -> Dict[str, Any]:
        await ctx.notifier.send_email(
            ctx.get("email"), template, {"leadId": ctx.get("leadId"), "name": ctx.get("name")}
        )
        return result

    return body


lead_follow_up_workflow = WorkflowDefinition(
    id="lead-follow-up-workflow",
    name="Lead Follow-up Sequence",
    trigger_event="crm/lead.created",
    max_retries=3,
    steps=[
        run("acknowledge-lead", _lead_email("lead.acknowledge", {"acknowledged": True})),
        sleep("wait-first-follow-up", "30m"),
        run("first-follow-up", _lead_email("lead.follow_up.first", {"firstFollowUp": True})),
        sleep("wait-second-follow-up", "1d"),
        run("second-follow-up", _lead_email("lead.follow_up.second", {"secondFollowUp": True})),
        sleep("wait-final-follow-up", "3d"),
        run("final-follow-up", _lead_email("lead.follow_up.final", {"finalFollowUp": True})),
    ],
    finalize=lambda ctx: {
        "leadId": ctx.get("leadId"),
        "completed": True,
        "sequence": ["acknowledge", "first", "second", "final"],
    },
)


# ----------------------------------------------------------------------
# Booking reminders
def _scheduled_at(ctx: StepContext) -> Optional[datetime]:
    value = ctx.get("scheduledAt")
    if isinstance(value, datetime):
        scheduled = value
    elif isinstance(value, str):
        try:
            scheduled = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Run {ctx.run_id}: unparseable scheduledAt {value!r}")
            return None
    else:
        return None
    if scheduled.tzinfo is None:
        scheduled = scheduled.replace(tzinfo=timezone.utc)
    return scheduled


def _booked_more_than(hours: int):
    # measured from run creation, so the decision is stable across wakes
    def predicate(ctx: StepContext) -> bool:
        scheduled = _scheduled_at(ctx)
        return scheduled is not None and scheduled - ctx.origin > timedelta(hours=hours)

    return predicate


def _before_booking(hours: int):
    def wake(ctx: StepContext) -> datetime:
        return _scheduled_at(ctx) - timedelta(hours=hours)

    return wake


def _booking_message(channel: str, template: str, result: Dict[str, Any]):
    async def body(ctx: StepContext) -> Dict[str, Any]:
        data = {
            "bookingId": ctx.get("bookingId"),
            "service": ctx.get("service"),
            "scheduledAt": ctx.get("scheduledAt"),
        }
        if channel == "sms":
            await ctx.notifier.send_sms(ctx.get("contactPhone"), template, data)
        else:
            await ctx.notifier.send_email(ctx.get("contactEmail"), template, data)
        return result

    return body


booking_reminder_workflow = WorkflowDefinition(
    id="booking-reminder-workflow",
    name="Booking Reminder Sequence",
    trigger_event="booking/created",
    max_retries=3,
    steps=[
        run("send-confirmation", _booking_message("email", "booking.confirmation", {"confirmed": True})),
        sleep_until("wait-for-24h-reminder", _before_booking(24), when=_booked_more_than(24)),
        run(
            "send-24h-reminder",
            _booking_message("email", "booking.reminder.24h", {"reminded24h": True}),
            when=_booked_more_than(24),
        ),
        sleep_until("wait-for-2h-reminder", _before_booking(2), when=_booked_more_than(2)),
        run(
            "send-2h-reminder",
            _booking_message("sms", "booking.reminder.2h", {"reminded2h": True}),
            when=_booked_more_than(2),
        ),
    ],
    finalize=lambda ctx: {
        "bookingId": ctx.get("bookingId"),
        "service": ctx.get("service"),
        "scheduledAt": ctx.get("scheduledAt"),
        "remindersComplete": True,
    },
)


review_request_workflow = WorkflowDefinition(
    id="review-request-workflow",
    name="Post-Service Review Request",
    trigger_event="booking/completed",
    max_retries=2,
    steps=[
        sleep("wait-for-review-timing", "2h"),
        run(
            "send-review-request",
            _booking_message("email", "review.request", {"reviewRequested": True}),
        ),
        sleep("wait-for-review-reminder", "3d"),
        run(
            "send-review-reminder",
            _booking_message("email", "review.reminder", {"reminderSent": True}),
        ),
    ],
    finalize=lambda ctx: {"bookingId": ctx.get("bookingId"), "reviewSequenceComplete": True},
)


no_show_follow_up_workflow = WorkflowDefinition(
    id="no-show-follow-up-workflow",
    name="No-Show Follow-up",
    trigger_event="booking/no.show",
    max_retries=2,
    steps=[
        sleep("wait-after-no-show", "1h"),
        run(
            "send-no-show-follow-up",
            _booking_message("email", "booking.no_show", {"followUpSent": True}),
        ),
    ],
    finalize=lambda ctx: {"bookingId": ctx.get("bookingId"), "noShowHandled": True},
)


# ----------------------------------------------------------------------
# Form submissions
async def _create_lead(ctx: StepContext) -> Dict[str, Any]:
    submission_id = ctx.get("submissionId") or ctx.run_id
    await ctx.notifier.record("form.lead", {"submissionId": submission_id, "email": ctx.get("email")})
    return {"leadId": f"lead_{submission_id}"}


async def _form_confirmation(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.send_email(ctx.get("email"), "form.confirmation", {"formId": ctx.get("formId")})
    return {"confirmed": True}


async def _notify_owner(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.notify_business(
        _business(ctx), "form.new_submission", {"submissionId": ctx.get("submissionId")}
    )
    return {"notified": True}


def _lead_created_trigger(ctx: StepContext) -> TriggerEvent:
    return TriggerEvent(
        name="crm/lead.created",
        data={
            "leadId": ctx.result("create-lead", {}).get("leadId"),
            "businessId": _business(ctx),
            "email": ctx.get("email"),
            "source": "form",
        },
    )


form_submission_workflow = WorkflowDefinition(
    id="form-submission-workflow",
    name="Form Submission Handler",
    trigger_event="form/submitted",
    max_retries=3,
    steps=[
        run("create-lead", _create_lead),
        run("send-confirmation", _form_confirmation),
        run("notify-owner", _notify_owner),
        send_event("trigger-lead-follow-up", _lead_created_trigger),
    ],
    finalize=lambda ctx: {
        "submissionId": ctx.get("submissionId"),
        "leadCreated": ctx.result("create-lead", {}).get("leadId"),
        "processed": True,
    },
)


# ----------------------------------------------------------------------
# Commerce
def _has_customer_email(ctx: StepContext) -> bool:
    return bool(ctx.get("customerEmail"))


def _cart_email(template: str, result: Dict[str, Any]):
    async def body(ctx: StepContext) -> Dict[str, Any]:
        await ctx.notifier.send_email(
            ctx.get("customerEmail"),
            template,
            {"cartId": ctx.get("cartId"), "items": ctx.get("items") or [], "total": ctx.get("total")},
        )
        return result

    return body


def _cart_outcome(ctx: StepContext) -> Dict[str, Any]:
    if not _has_customer_email(ctx):
        return {"cartId": ctx.get("cartId"), "skipped": True, "reason": "no_email"}
    return {
        "cartId": ctx.get("cartId"),
        "customerEmail": ctx.get("customerEmail"),
        "itemsCount": len(ctx.get("items") or []),
        "total": ctx.get("total"),
        "remindersSequence": ["first", "discount", "final"],
        "completed": True,
    }


cart_abandonment_workflow = WorkflowDefinition(
    id="cart-abandonment-workflow",
    name="Cart Abandonment Recovery",
    trigger_event="cart/abandoned",
    max_retries=3,
    steps=[
        sleep("wait-first-reminder", "1h", when=_has_customer_email),
        run(
            "send-first-reminder",
            _cart_email("cart.reminder.first", {"sent": True, "type": "first"}),
            when=_has_customer_email,
        ),
        sleep("wait-discount-reminder", "24h", when=_has_customer_email),
        run(
            "send-discount-reminder",
            _cart_email(
                "cart.reminder.discount",
                {"sent": True, "type": "discount", "discountCode": "COMEBACK10"},
            ),
            when=_has_customer_email,
        ),
        sleep("wait-final-reminder", "3d", when=_has_customer_email),
        run(
            "send-final-reminder",
            _cart_email("cart.reminder.final", {"sent": True, "type": "final"}),
            when=_has_customer_email,
        ),
    ],
    finalize=_cart_outcome,
)


async def _order_confirmation(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.send_email(
        ctx.get("customerEmail"),
        "order.confirmation",
        {"orderId": ctx.get("orderId"), "items": ctx.get("items") or [], "total": ctx.get("total")},
    )
    return {"confirmed": True}


async def _order_notify_business(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.notify_business(_business(ctx), "order.new", {"orderId": ctx.get("orderId")})
    return {"notified": True}


async def _shipping_check(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.notify_business(
        _business(ctx), "order.shipping_check", {"orderId": ctx.get("orderId")}
    )
    return {"checked": True}


order_fulfillment_workflow = WorkflowDefinition(
    id="order-fulfillment-workflow",
    name="Order Fulfillment Sequence",
    trigger_event="order/created",
    max_retries=3,
    steps=[
        run("send-order-confirmation", _order_confirmation),
        run("notify-business", _order_notify_business),
        sleep("wait-for-shipping", "3d"),
        run("shipping-reminder-check", _shipping_check),
    ],
    finalize=lambda ctx: {
        "orderId": ctx.get("orderId"),
        "customerEmail": ctx.get("customerEmail"),
        "itemsCount": len(ctx.get("items") or []),
        "total": ctx.get("total"),
        "fulfilled": True,
    },
)


# ----------------------------------------------------------------------
# Newsletter
def _newsletter_email(template: str, kind: str):
    async def body(ctx: StepContext) -> Dict[str, Any]:
        await ctx.notifier.send_email(
            ctx.get("email"), template, {"subscriptionId": ctx.get("subscriptionId")}
        )
        return {"sent": True, "type": kind}

    return body


newsletter_welcome_workflow = WorkflowDefinition(
    id="newsletter-welcome-workflow",
    name="Newsletter Welcome Sequence",
    trigger_event="newsletter/subscribed",
    max_retries=3,
    steps=[
        run("send-welcome-email", _newsletter_email("newsletter.welcome", "welcome")),
        sleep("wait-value-email", "3d"),
        run("send-value-email", _newsletter_email("newsletter.value", "value")),
        sleep("wait-engagement-email", "7d"),
        run("send-engagement-email", _newsletter_email("newsletter.engagement", "engagement")),
    ],
    finalize=lambda ctx: {
        "subscriptionId": ctx.get("subscriptionId"),
        "email": ctx.get("email"),
        "source": ctx.get("subscriptionSource") or ctx.get("source"),
        "welcomeSequenceComplete": True,
    },
)


# ----------------------------------------------------------------------
# Generic automation triggers
_ROUTED_TRIGGER_TYPES = ("checkout", "cart_abandoned", "order.created", "button.clicked")


def _trigger_type_is(trigger_type: str):
    def predicate(ctx: StepContext) -> bool:
        return ctx.get("triggerType") == trigger_type

    return predicate


def _unrouted(ctx: StepContext) -> bool:
    return ctx.get("triggerType") not in _ROUTED_TRIGGER_TYPES


def _inner(ctx: StepContext) -> Dict[str, Any]:
    return ctx.get("payload") or {}


async def _log_trigger(ctx: StepContext) -> Dict[str, Any]:
    await ctx.notifier.record(
        "automation.trigger",
        {
            "triggerType": ctx.get("triggerType"),
            "triggerId": ctx.get("triggerId"),
            "businessId": _business(ctx),
        },
    )
    return {"logged": True}


def _handled(kind: str):
    async def body(ctx: StepContext) -> Dict[str, Any]:
        await ctx.notifier.record(f"automation.{kind}", _inner(ctx))
        return {"handled": True, "type": kind}

    return body


def _cart_abandoned_trigger(ctx: StepContext) -> TriggerEvent:
    payload = _inner(ctx)
    return TriggerEvent(
        name="cart/abandoned",
        data={
            "cartId": payload.get("cartId") or ctx.get("triggerId"),
            "businessId": _business(ctx),
            "customerEmail": payload.get("email"),
            "items": payload.get("items") or [],
            "total": payload.get("total"),
            "lastActivityAt": ctx.now.isoformat(),
        },
    )


def _order_created_trigger(ctx: StepContext) -> TriggerEvent:
    payload = _inner(ctx)
    return TriggerEvent(
        name="order/created",
        data={
            "orderId": payload.get("orderId") or ctx.get("triggerId"),
            "businessId": _business(ctx),
            "customerEmail": payload.get("customerEmail") or payload.get("email"),
            "items": payload.get("items") or [],
            "total": payload.get("total"),
        },
    )


automation_trigger_workflow = WorkflowDefinition(
    id="automation-trigger-workflow",
    name="Automation Trigger Handler",
    trigger_event="automation/trigger",
    max_retries=3,
    steps=[
        run("log-trigger", _log_trigger),
        run("handle-checkout-trigger", _handled("checkout"), when=_trigger_type_is("checkout")),
        send_event(
            "trigger-cart-abandonment",
            _cart_abandoned_trigger,
            when=_trigger_type_is("cart_abandoned"),
        ),
        send_event(
            "trigger-order-fulfillment",
            _order_created_trigger,
            when=_trigger_type_is("order.created"),
        ),
        run("handle-button-click", _handled("button_click"), when=_trigger_type_is("button.clicked")),
        run("handle-generic-trigger", _handled("generic"), when=_unrouted),
    ],
    finalize=lambda ctx: {
        "automationId": ctx.get("automationId"),
        "triggerId": ctx.get("triggerId"),
        "triggerType": ctx.get("triggerType"),
        "processed": True,
    },
)


BUILTIN_WORKFLOWS: List[WorkflowDefinition] = [
    deal_stage_workflow,
    lead_follow_up_workflow,
    booking_reminder_workflow,
    review_request_workflow,
    no_show_follow_up_workflow,
    form_submission_workflow,
    cart_abandonment_workflow,
    order_fulfillment_workflow,
    newsletter_welcome_workflow,
    automation_trigger_workflow,
]


def default_registry() -> WorkflowRegistry:
    """Registry holding every built-in workflow."""
    return WorkflowRegistry(BUILTIN_WORKFLOWS)
