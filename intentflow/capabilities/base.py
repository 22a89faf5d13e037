"""Manager interfaces the host application supplies to the executor.

Methods may be plain functions or coroutines; the executor awaits whatever
is awaitable. Return values are dictionaries or the models in
:mod:`intentflow.capabilities.models`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Union

from .models import (
    BookingData,
    Cart,
    CartItem,
    CheckoutOptions,
    LeadData,
    Pipeline,
    Service,
    ToastDirective,
    User,
)

MaybeAwaitable = Union[Any, Awaitable[Any]]


class Capability(str, Enum):
    """Names of the domain managers an intent can require."""

    CRM = "crm"
    BOOKING = "booking"
    CART = "cart"
    PAYMENTS = "payments"
    NEWSLETTER = "newsletter"
    NAVIGATION = "navigation"
    OVERLAY = "overlay"
    TOAST = "toast"
    AUTH = "auth"


class CrmManager(Protocol):
    def submit_lead(self, lead: LeadData) -> MaybeAwaitable:
        """Create or upsert a lead; returns ``{leadId, pipelineId}``."""

    def get_pipeline(self, pipeline_id: Optional[str] = None) -> MaybeAwaitable:
        """Return the :class:`Pipeline` or ``None``."""

    def create_default_pipeline(self) -> MaybeAwaitable:
        """Create and return a default :class:`Pipeline`."""


class BookingManager(Protocol):
    def create_booking(self, data: BookingData) -> MaybeAwaitable:
        """Create a booking; returns ``{bookingId}``."""

    def get_services(self) -> MaybeAwaitable:
        """Return the list of bookable :class:`Service` objects."""

    def create_default_service(self) -> MaybeAwaitable:
        """Create and return a default :class:`Service`."""


class CartManager(Protocol):
    def add(self, item: CartItem) -> MaybeAwaitable:
        """Add an item; returns ``{cartId, itemCount}``."""

    def get(self) -> MaybeAwaitable:
        """Return the current :class:`Cart` or ``None``."""

    def checkout(self) -> MaybeAwaitable:
        """Return ``{checkoutUrl}``."""


class PaymentsManager(Protocol):
    def create_checkout(
        self, items: List[CartItem], options: CheckoutOptions
    ) -> MaybeAwaitable:
        """Create a hosted checkout session; returns ``{url}``."""

    def is_configured(self) -> bool: ...

    def show_setup(self) -> MaybeAwaitable: ...


class NewsletterManager(Protocol):
    def subscribe(self, email: str, lists: Optional[List[str]] = None) -> MaybeAwaitable:
        """Subscribe ``email``; returns ``{subscriptionId}``."""


class NavigationManager(Protocol):
    def goto(self, path: str, payload: Optional[Dict[str, Any]] = None) -> MaybeAwaitable: ...

    def external(self, url: str) -> MaybeAwaitable: ...

    def back(self) -> MaybeAwaitable: ...

    def scroll_to(self, anchor: str) -> MaybeAwaitable: ...


class OverlayManager(Protocol):
    def open(self, overlay_id: str, payload: Optional[Dict[str, Any]] = None) -> MaybeAwaitable: ...

    def close(self, overlay_id: Optional[str] = None) -> MaybeAwaitable: ...

    def is_open(self, overlay_id: str) -> bool: ...


class ToastManager(Protocol):
    def show(self, toast: ToastDirective) -> MaybeAwaitable: ...


class AuthManager(Protocol):
    def is_authenticated(self) -> bool: ...

    def get_current_user(self) -> Optional[User]: ...

    def show_login(self) -> MaybeAwaitable: ...

    def show_register(self) -> MaybeAwaitable: ...


CAPABILITY_PROTOCOLS: Dict[Capability, type] = {
    Capability.CRM: CrmManager,
    Capability.BOOKING: BookingManager,
    Capability.CART: CartManager,
    Capability.PAYMENTS: PaymentsManager,
    Capability.NEWSLETTER: NewsletterManager,
    Capability.NAVIGATION: NavigationManager,
    Capability.OVERLAY: OverlayManager,
    Capability.TOAST: ToastManager,
    Capability.AUTH: AuthManager,
}

__all__ = [
    "Capability",
    "CrmManager",
    "BookingManager",
    "CartManager",
    "PaymentsManager",
    "NewsletterManager",
    "NavigationManager",
    "OverlayManager",
    "ToastManager",
    "AuthManager",
    "CAPABILITY_PROTOCOLS",
    "Cart",
    "Pipeline",
    "Service",
]
