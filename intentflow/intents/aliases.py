"""Alternate intent names emitted by templates, mapped to canonical names."""

from __future__ import annotations

import logging
from typing import Container, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


INTENT_ALIASES: Dict[str, str] = {
    # navigation
    "nav.goto_page": "nav.goto",
    "nav.to": "nav.goto",
    "nav.navigate": "nav.goto",
    "nav.page": "nav.goto",
    "nav.internal": "nav.goto",
    "nav.route": "nav.goto",
    "nav.open": "nav.goto",
    "nav.scroll": "nav.anchor",
    "nav.external_link": "nav.external",
    "nav.open_external": "nav.external",
    "nav.open_overlay": "overlay.open",
    # payment / checkout
    "shop.checkout": "pay.checkout",
    "checkout.start": "pay.checkout",
    "checkout.begin": "pay.checkout",
    "payment.start": "pay.checkout",
    "payment.checkout": "pay.checkout",
    "stripe.checkout": "pay.checkout",
    "pay.start": "pay.checkout",
    "pay.begin": "pay.checkout",
    "checkout.complete": "pay.success",
    "payment.success": "pay.success",
    "checkout.cancel": "pay.cancel",
    "payment.cancel": "pay.cancel",
    # contact / lead
    "lead.submit": "contact.submit",
    "lead.submit_form": "contact.submit",
    "lead.capture_form": "lead.capture",
    "lead.open_form": "contact.submit",
    "contact.send": "contact.submit",
    "contact.form": "contact.submit",
    "contact.message": "contact.submit",
    "inquiry.submit": "contact.submit",
    "inquiry.send": "contact.submit",
    "message.send": "contact.submit",
    "sales.contact": "contact.submit",
    "project.inquire": "contact.submit",
    # newsletter
    "newsletter.submit": "newsletter.subscribe",
    "newsletter.signup": "newsletter.subscribe",
    "newsletter.join": "newsletter.subscribe",
    "email.subscribe": "newsletter.subscribe",
    "subscribe": "newsletter.subscribe",
    "waitlist.join": "newsletter.subscribe",
    "waitlist.submit": "newsletter.subscribe",
    # booking
    "booking.open": "booking.create",
    "booking.start": "booking.create",
    "booking.new": "booking.create",
    "booking.submit": "booking.create",
    "booking.request": "booking.create",
    "booking.select_service": "booking.create",
    "calendar.book": "booking.create",
    "calendar.schedule": "booking.create",
    "appointment.book": "booking.create",
    "appointment.create": "booking.create",
    "appointment.schedule": "booking.create",
    "reserve": "booking.create",
    "reservation.create": "booking.create",
    "reservation.make": "booking.create",
    "demo.request": "booking.create",
    "demo.book": "booking.create",
    "demo.start": "booking.create",
    "call.schedule": "booking.create",
    "consultation.book": "booking.create",
    # quote
    "quote.submit": "quote.request",
    "quote.open": "quote.request",
    "quote.get": "quote.request",
    "estimate.request": "quote.request",
    "estimate.get": "quote.request",
    "pricing.request": "quote.request",
    # cart
    "shop.add_to_cart": "cart.add",
    "cart.add_item": "cart.add",
    "product.add_to_cart": "cart.add",
    "checkout.open": "cart.checkout",
    # auth
    "auth.sign_in": "auth.login",
    "auth.signin": "auth.login",
    "login": "auth.login",
    "signin": "auth.login",
    "user.login": "auth.login",
    "auth.sign_up": "auth.register",
    "auth.signup": "auth.register",
    "signup": "auth.register",
    "register": "auth.register",
    "user.register": "auth.register",
    "trial.start": "auth.register",
    "trial.begin": "auth.register",
    "trial.signup": "auth.register",
    "get.started": "auth.register",
    # communication / sharing
    "call.now": "button.click",
    "phone.call": "button.click",
    "email.open": "button.click",
    "sms.send": "button.click",
    "social.share": "button.click",
    "share": "button.click",
    # form specific
    "form.contact": "contact.submit",
    "form.lead": "lead.capture",
    "form.booking": "booking.create",
    "form.quote": "quote.request",
    "form.newsletter": "newsletter.subscribe",
    # misc
    "portfolio.view": "nav.goto",
    "pricing.view": "nav.goto",
    "learn.more": "nav.goto",
    "view.more": "nav.goto",
    "demo.watch": "nav.goto",
    "resume.download": "nav.external",
    "download": "nav.external",
}


def normalize_intent(
    name: str,
    canonical: Optional[Container[str]] = None,
    aliases: Optional[Mapping[str, str]] = None,
) -> str:
    """Return the canonical intent name for ``name``.

    Canonical names win over aliases. Lookup falls back to a case-insensitive
    match; unknown names are returned unchanged so the caller can report them.
    """
    aliases = INTENT_ALIASES if aliases is None else aliases
    name = name.strip()
    if canonical is not None and name in canonical:
        return name
    if name in aliases:
        logger.debug(f"Normalized intent {name!r} -> {aliases[name]!r}")
        return aliases[name]
    lowered = name.lower()
    if canonical is not None and lowered in canonical:
        return lowered
    if lowered in aliases:
        logger.debug(f"Normalized intent {name!r} -> {aliases[lowered]!r} (case-insensitive)")
        return aliases[lowered]
    return name
