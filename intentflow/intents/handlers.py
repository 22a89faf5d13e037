"""Canonical intent handlers.

Each handler talks to the capabilities it needs through the
:class:`IntentContext`, and describes its outcome as an
:class:`IntentResult`: data for the caller, events for automations, and UI
directives that the executor dispatches as follow-up intents.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..capabilities import (
    BookingData,
    Capability,
    CartItem,
    CheckoutOptions,
    LeadData,
    ToastDirective,
)
from ..contracts import ErrorKind, IntentResult
from .aliases import INTENT_ALIASES
from .routes import (
    IntentContext,
    IntentRoute,
    IntentRouteTable,
    close_overlay,
    navigate,
    open_overlay,
    scroll_to,
    toast,
)

logger = logging.getLogger(__name__)


def _dump(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if hasattr(value, "model_dump"):
        return value.model_dump()
    return dict(value)


def _missing(fields: List[str], prompt: str, *directives) -> IntentResult:
    return IntentResult.fail(
        ErrorKind.INVALID_PAYLOAD, prompt, missing=fields, directives=list(directives)
    )


# ============ NAVIGATION / UI ============

async def nav_goto(ctx: IntentContext) -> IntentResult:
    path = ctx.payload.get("path") or "/"
    await ctx.call(Capability.NAVIGATION, "goto", path, ctx.payload)
    return IntentResult.ok(data={"path": path})


async def nav_external(ctx: IntentContext) -> IntentResult:
    url = ctx.payload.get("url")
    if not url:
        return _missing(["url"], "No URL provided")
    await ctx.call(Capability.NAVIGATION, "external", url)
    return IntentResult.ok(data={"url": url})


async def nav_anchor(ctx: IntentContext) -> IntentResult:
    anchor = ctx.payload.get("anchor") or "#"
    await ctx.call(Capability.NAVIGATION, "scroll_to", anchor)
    return IntentResult.ok(data={"anchor": anchor})


async def nav_back(ctx: IntentContext) -> IntentResult:
    await ctx.call(Capability.NAVIGATION, "back")
    return IntentResult.ok()


async def overlay_open(ctx: IntentContext) -> IntentResult:
    overlay_id = ctx.payload.get("id")
    if not overlay_id:
        return _missing(["id"], "No overlay id provided")
    extra = {k: v for k, v in ctx.payload.items() if k != "id"}
    await ctx.call(Capability.OVERLAY, "open", overlay_id, extra)
    return IntentResult.ok(data={"id": overlay_id})


async def overlay_close(ctx: IntentContext) -> IntentResult:
    await ctx.call(Capability.OVERLAY, "close", ctx.payload.get("id"))
    return IntentResult.ok()


async def toast_show(ctx: IntentContext) -> IntentResult:
    if not ctx.payload.get("message"):
        return _missing(["message"], "No toast message provided")
    await ctx.call(Capability.TOAST, "show", ToastDirective(**ctx.payload))
    return IntentResult.ok()


# ============ PAYMENT ============

async def pay_checkout(ctx: IntentContext) -> IntentResult:
    payments = ctx.manager(Capability.PAYMENTS)
    if not payments.is_configured():
        await ctx.call(Capability.PAYMENTS, "show_setup")
        return IntentResult.fail(
            ErrorKind.MANAGER_FAILURE,
            "Payment processor is not connected",
            missing=["stripeKey"],
            directives=[
                open_overlay("payments-setup"),
                toast("Let's connect your payment processor", "info"),
            ],
        )

    raw_items = ctx.payload.get("items")
    if raw_items is None and ctx.optional(Capability.CART) is not None:
        cart = await ctx.call(Capability.CART, "get")
        raw_items = [_dump(item) for item in cart.items] if cart else []
    items = [CartItem(**_dump(item)) for item in raw_items or []]
    if not items:
        return IntentResult.fail(
            ErrorKind.INVALID_PAYLOAD,
            "Cart is empty",
            directives=[toast("Your cart is empty", "error")],
        )

    options = CheckoutOptions(
        successUrl=ctx.payload.get("successUrl"),
        cancelUrl=ctx.payload.get("cancelUrl"),
    )
    session = _dump(await ctx.call(Capability.PAYMENTS, "create_checkout", items, options))
    total = round(sum(item.price * item.quantity for item in items), 2)
    return IntentResult.ok(
        data=session,
        events=[
            ctx.event(
                "checkout.started",
                {"items": [item.model_dump() for item in items], "total": total},
            )
        ],
        directives=[navigate(session["url"])] if session.get("url") else [],
    )


async def pay_success(ctx: IntentContext) -> IntentResult:
    return IntentResult.ok(
        events=[ctx.event("order.created")],
        directives=[
            toast("Payment successful!", "success"),
            open_overlay("order-confirmation"),
        ],
    )


async def pay_cancel(ctx: IntentContext) -> IntentResult:
    return IntentResult.ok(
        directives=[toast("Payment cancelled", "info"), navigate("/cart")]
    )


# ============ CONTACT / LEAD ============

async def contact_submit(ctx: IntentContext) -> IntentResult:
    payload = ctx.payload
    email = payload.get("email")
    if not email:
        return _missing(
            ["email"], "Please enter your email address", scroll_to('input[name="email"]')
        )

    pipeline = await ctx.call(Capability.CRM, "get_pipeline")
    if pipeline is None:
        logger.info("No pipeline found, creating default")
        pipeline = await ctx.call(Capability.CRM, "create_default_pipeline")

    lead = LeadData(
        email=email,
        name=payload.get("name"),
        phone=payload.get("phone"),
        message=payload.get("message"),
        source=payload.get("source") or "website",
        metadata={"pipelineId": pipeline.id if pipeline else None},
    )
    result = _dump(await ctx.call(Capability.CRM, "submit_lead", lead))
    return IntentResult.ok(
        data=result,
        events=[
            ctx.event(
                "lead.submitted",
                {
                    "leadId": result.get("leadId"),
                    "pipelineId": result.get("pipelineId"),
                    "email": email,
                    "phone": lead.phone,
                    "name": lead.name,
                    "source": lead.source,
                },
            )
        ],
        directives=[
            toast("Message sent successfully!", "success"),
            close_overlay("contact"),
        ],
    )


async def lead_capture(ctx: IntentContext) -> IntentResult:
    result = await contact_submit(ctx.with_payload({**ctx.payload, "source": "lead_capture"}))
    if not result.success:
        return result
    captured = {**ctx.payload, "source": "lead_capture", "leadId": (result.data or {}).get("leadId")}
    return result.model_copy(update={"events": [ctx.event("lead.captured", captured)]})


async def newsletter_subscribe(ctx: IntentContext) -> IntentResult:
    email = ctx.payload.get("email")
    if not email:
        return _missing(["email"], "Enter your email to subscribe")
    result = _dump(
        await ctx.call(Capability.NEWSLETTER, "subscribe", email, ctx.payload.get("lists"))
    )
    return IntentResult.ok(
        data=result,
        events=[
            ctx.event(
                "newsletter.subscribed",
                {
                    "email": email,
                    "subscriptionId": result.get("subscriptionId"),
                    "source": ctx.payload.get("source") or "website",
                },
            )
        ],
        directives=[toast("You're subscribed!", "success")],
    )


async def quote_request(ctx: IntentContext) -> IntentResult:
    return IntentResult.ok(directives=[open_overlay("quote")])


# ============ BOOKING ============

async def booking_create(ctx: IntentContext) -> IntentResult:
    payload = ctx.payload
    services = list(await ctx.call(Capability.BOOKING, "get_services") or [])
    if not services:
        logger.info("No services found, creating default")
        services = [await ctx.call(Capability.BOOKING, "create_default_service")]

    service_id = payload.get("serviceId")
    if not service_id:
        return IntentResult.ok(
            data={"services": [_dump(s) for s in services], "step": "select-service"},
            directives=[open_overlay("booking")],
        )

    service = next((s for s in services if s.id == service_id), None)
    booking = BookingData(
        serviceId=service_id,
        datetime=payload.get("datetime"),
        customerName=payload.get("customerName"),
        customerEmail=payload.get("customerEmail"),
        customerPhone=payload.get("customerPhone"),
        notes=payload.get("notes"),
    )
    result = _dump(await ctx.call(Capability.BOOKING, "create_booking", booking))
    return IntentResult.ok(
        data=result,
        events=[
            ctx.event(
                "booking.requested",
                {
                    "bookingId": result.get("bookingId"),
                    "serviceId": service_id,
                    "serviceName": service.name if service else None,
                    "datetime": booking.datetime,
                    "customerName": booking.customerName,
                    "customerEmail": booking.customerEmail,
                    "customerPhone": booking.customerPhone,
                },
            )
        ],
        directives=[
            toast("Booking confirmed!", "success"),
            close_overlay("booking"),
            open_overlay("booking-confirmation"),
        ],
    )


# ============ CART ============

async def cart_add(ctx: IntentContext) -> IntentResult:
    payload = ctx.payload
    product_id = payload.get("productId")
    if not product_id:
        return _missing(
            ["productId"], "Product not found", toast("Unable to add item to cart", "error")
        )
    name = payload.get("productName")
    quantity = int(payload.get("quantity") or 1)
    item = CartItem(
        productId=product_id,
        name=name,
        price=float(payload.get("price") or 0),
        quantity=quantity,
    )
    result = _dump(await ctx.call(Capability.CART, "add", item))
    return IntentResult.ok(
        data=result,
        events=[
            ctx.event(
                "cart.item_added",
                {"productId": product_id, "quantity": quantity, "cartId": result.get("cartId")},
            )
        ],
        directives=[
            toast(f"{name or 'Item'} added to cart", "success"),
            open_overlay("cart-toast"),
        ],
    )


async def cart_checkout(ctx: IntentContext) -> IntentResult:
    cart = await ctx.call(Capability.CART, "get")
    if cart is None or not cart.items:
        return IntentResult.fail(
            ErrorKind.INVALID_PAYLOAD,
            "Cart is empty",
            directives=[toast("Your cart is empty", "error")],
        )
    return await pay_checkout(ctx)


async def cart_abandoned(ctx: IntentContext) -> IntentResult:
    return IntentResult.ok(events=[ctx.event("cart.abandoned")])


# ============ AUTH ============

async def auth_login(ctx: IntentContext) -> IntentResult:
    if ctx.manager(Capability.AUTH).is_authenticated():
        return IntentResult.ok(directives=[toast("You're already signed in", "info")])
    await ctx.call(Capability.AUTH, "show_login")
    return IntentResult.ok(directives=[open_overlay("auth-login")])


async def auth_register(ctx: IntentContext) -> IntentResult:
    if ctx.manager(Capability.AUTH).is_authenticated():
        return IntentResult.ok(directives=[toast("You're already signed in", "info")])
    await ctx.call(Capability.AUTH, "show_register")
    return IntentResult.ok(directives=[open_overlay("auth-register")])


# ============ GENERIC BUTTON / FORM ============

async def button_click(ctx: IntentContext) -> IntentResult:
    href = ctx.payload.get("href") or ""
    if href.startswith(("tel:", "mailto:")):
        if ctx.optional(Capability.NAVIGATION) is not None:
            await ctx.call(Capability.NAVIGATION, "external", href)
        return IntentResult.ok(data={"href": href})
    return IntentResult.ok(events=[ctx.event("button.clicked")])


_FORM_HANDLERS = {
    "contact": contact_submit,
    "lead": contact_submit,
    "booking": booking_create,
    "newsletter": newsletter_subscribe,
    "quote": quote_request,
}


async def form_submit(ctx: IntentContext) -> IntentResult:
    form_type = ctx.payload.get("formType")
    handler = _FORM_HANDLERS.get(form_type, contact_submit)
    return await handler(ctx)


def emit_only(event_name: str):
    """Build a handler that only emits ``event_name`` with the intent payload."""

    async def handler(ctx: IntentContext) -> IntentResult:
        return IntentResult.ok(events=[ctx.event(event_name)])

    handler.__name__ = f"emit_{event_name.replace('.', '_')}"
    return handler


AUTOMATION_EVENT_INTENTS = (
    "booking.confirmed",
    "booking.reminder",
    "booking.cancelled",
    "booking.noshow",
    "booking.completed",
    "order.created",
    "order.shipped",
    "order.delivered",
    "deal.won",
    "deal.lost",
    "proposal.sent",
    "job.completed",
)


def default_routes() -> List[IntentRoute]:
    nav = (Capability.NAVIGATION,)
    routes = [
        IntentRoute("nav.goto", nav_goto, nav),
        IntentRoute("nav.external", nav_external, nav),
        IntentRoute("nav.anchor", nav_anchor, nav),
        IntentRoute("nav.back", nav_back, nav),
        IntentRoute("overlay.open", overlay_open, (Capability.OVERLAY,)),
        IntentRoute("overlay.close", overlay_close, (Capability.OVERLAY,)),
        IntentRoute("toast.show", toast_show, (Capability.TOAST,)),
        IntentRoute("pay.checkout", pay_checkout, (Capability.PAYMENTS,)),
        IntentRoute("pay.success", pay_success),
        IntentRoute("pay.cancel", pay_cancel),
        IntentRoute("contact.submit", contact_submit, (Capability.CRM,)),
        IntentRoute("lead.capture", lead_capture, (Capability.CRM,)),
        IntentRoute("newsletter.subscribe", newsletter_subscribe, (Capability.NEWSLETTER,)),
        IntentRoute("quote.request", quote_request),
        IntentRoute("booking.create", booking_create, (Capability.BOOKING,)),
        IntentRoute("cart.add", cart_add, (Capability.CART,)),
        IntentRoute("cart.checkout", cart_checkout, (Capability.CART, Capability.PAYMENTS)),
        IntentRoute("cart.abandoned", cart_abandoned),
        IntentRoute("auth.login", auth_login, (Capability.AUTH,)),
        IntentRoute("auth.register", auth_register, (Capability.AUTH,)),
        IntentRoute("button.click", button_click),
        IntentRoute("form.submit", form_submit),
    ]
    routes.extend(IntentRoute(name, emit_only(name)) for name in AUTOMATION_EVENT_INTENTS)
    return routes


def default_route_table(extra: Optional[List[IntentRoute]] = None) -> IntentRouteTable:
    return IntentRouteTable([*default_routes(), *(extra or [])], aliases=INTENT_ALIASES)
