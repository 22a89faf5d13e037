"""Static table from emitted event names to workflow triggers.

Every entry is explicit: an event either maps to one :class:`TriggerName`
or has no downstream automation. Payload transforms merge the base fields
(business id, timestamp, source tag) with event-specific fields.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional

from ..contracts import EmittedEvent, TriggerEvent, utcnow

if TYPE_CHECKING:
    from .bridge import BridgeContext


class TriggerName(str, Enum):
    LEAD_CREATED = "crm/lead.created"
    CONTACT_CREATED = "crm/contact.created"
    DEAL_STAGE_CHANGED = "crm/deal.stage.changed"
    BOOKING_CREATED = "booking/created"
    BOOKING_REMINDED = "booking/reminded"
    BOOKING_NO_SHOW = "booking/no.show"
    BOOKING_COMPLETED = "booking/completed"
    FORM_SUBMITTED = "form/submitted"
    AUTOMATION_TRIGGER = "automation/trigger"
    CART_ABANDONED = "cart/abandoned"
    ORDER_CREATED = "order/created"
    NEWSLETTER_SUBSCRIBED = "newsletter/subscribed"


EVENT_TRIGGER_MAP: Dict[str, TriggerName] = {
    # lead / contact
    "lead.submitted": TriggerName.LEAD_CREATED,
    "lead.captured": TriggerName.LEAD_CREATED,
    "contact.submitted": TriggerName.CONTACT_CREATED,
    # booking
    "booking.requested": TriggerName.BOOKING_CREATED,
    "booking.confirmed": TriggerName.BOOKING_CREATED,
    "booking.reminder": TriggerName.BOOKING_REMINDED,
    "booking.noshow": TriggerName.BOOKING_NO_SHOW,
    "booking.completed": TriggerName.BOOKING_COMPLETED,
    # forms
    "form.submitted": TriggerName.FORM_SUBMITTED,
    # pipeline
    "deal.won": TriggerName.DEAL_STAGE_CHANGED,
    "deal.lost": TriggerName.DEAL_STAGE_CHANGED,
    # newsletter
    "newsletter.subscribed": TriggerName.NEWSLETTER_SUBSCRIBED,
    # checkout / orders
    "checkout.started": TriggerName.AUTOMATION_TRIGGER,
    "order.created": TriggerName.AUTOMATION_TRIGGER,
    "order.shipped": TriggerName.AUTOMATION_TRIGGER,
    "order.delivered": TriggerName.AUTOMATION_TRIGGER,
    # generic buttons and cart
    "button.clicked": TriggerName.AUTOMATION_TRIGGER,
    "cart.item_added": TriggerName.AUTOMATION_TRIGGER,
    "cart.abandoned": TriggerName.AUTOMATION_TRIGGER,
}


def _stamp(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def _lead(payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {
        "leadId": payload.get("leadId") or f"lead_{_stamp(now)}",
        "email": payload.get("email"),
        "phone": payload.get("phone"),
        "name": payload.get("name"),
        "leadSource": payload.get("source") or "website",
    }


def _booking(payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {
        "bookingId": payload.get("bookingId") or f"booking_{_stamp(now)}",
        "contactEmail": payload.get("customerEmail") or payload.get("contactEmail"),
        "contactPhone": payload.get("customerPhone") or payload.get("contactPhone"),
        "service": payload.get("serviceName") or "General Appointment",
        "scheduledAt": payload.get("datetime") or payload.get("scheduledAt") or now.isoformat(),
    }


def _deal(new_stage: str) -> Callable[[Dict[str, Any], datetime], Dict[str, Any]]:
    def transform(payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        return {
            "dealId": payload.get("dealId") or f"deal_{_stamp(now)}",
            "previousStage": payload.get("previousStage") or "negotiation",
            "newStage": new_stage,
            "contactEmail": payload.get("contactEmail"),
        }

    return transform


def _newsletter(payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    return {
        "subscriptionId": payload.get("subscriptionId"),
        "email": payload.get("email"),
        "subscriptionSource": payload.get("source") or "website",
    }


def _envelope(
    automation_id: str, trigger_type: str, prefix: str, fields: Optional[Iterable[str]] = None
) -> Callable[[Dict[str, Any], datetime], Dict[str, Any]]:
    """``automation/trigger`` envelope with a ``triggerType`` discriminator."""

    def transform(payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        inner = dict(payload) if fields is None else {f: payload.get(f) for f in fields}
        return {
            "automationId": automation_id,
            "triggerId": f"{prefix}_{_stamp(now)}",
            "triggerType": trigger_type,
            "payload": inner,
        }

    return transform


PayloadTransform = Callable[[Dict[str, Any], datetime], Dict[str, Any]]

PAYLOAD_TRANSFORMS: Dict[str, PayloadTransform] = {
    "lead.submitted": _lead,
    "lead.captured": _lead,
    "booking.requested": _booking,
    "booking.confirmed": _booking,
    "deal.won": _deal("closed_won"),
    "deal.lost": _deal("closed_lost"),
    "newsletter.subscribed": _newsletter,
    "checkout.started": _envelope("checkout-started", "checkout", "checkout", ("items", "total")),
    "cart.abandoned": _envelope(
        "cart-abandoned", "cart_abandoned", "cart", ("cartId", "items", "email", "total")
    ),
}


def _default_transform(event_name: str) -> PayloadTransform:
    trigger = EVENT_TRIGGER_MAP.get(event_name)
    if trigger is TriggerName.AUTOMATION_TRIGGER:
        return _envelope(event_name.replace(".", "-"), event_name, "trigger")

    def passthrough(payload: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        return dict(payload)

    return passthrough


def trigger_for(event_name: str) -> Optional[TriggerName]:
    return EVENT_TRIGGER_MAP.get(event_name)


def transform_payload(
    event: EmittedEvent,
    context: Optional["BridgeContext"] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build the trigger data for ``event``."""
    now = now or utcnow()
    base: Dict[str, Any] = {
        "businessId": (context.business_id if context else None) or "default",
        "timestamp": now.isoformat(),
        "source": (context.source if context else None) or "intent-executor",
    }
    if context is not None:
        base.update(context.extras())
    transform = PAYLOAD_TRANSFORMS.get(event.name) or _default_transform(event.name)
    return {**base, **transform(dict(event.payload), now)}


def build_trigger(
    event: EmittedEvent,
    context: Optional["BridgeContext"] = None,
    now: Optional[datetime] = None,
) -> Optional[TriggerEvent]:
    """Return the trigger for ``event``, or ``None`` when it has no mapping."""
    trigger = trigger_for(event.name)
    if trigger is None:
        return None
    now = now or utcnow()
    return TriggerEvent(
        name=trigger.value,
        data=transform_payload(event, context, now),
        timestamp=now,
    )


def validate_mapping(registered_triggers: Iterable[str]) -> List[str]:
    """Return mapped trigger names that no workflow definition listens to."""
    registered = set(registered_triggers)
    mapped = {trigger.value for trigger in EVENT_TRIGGER_MAP.values()}
    return sorted(mapped - registered)
