"""Capability registry and manager interfaces."""

from __future__ import annotations

from .base import (
    AuthManager,
    BookingManager,
    Capability,
    CartManager,
    CrmManager,
    NavigationManager,
    NewsletterManager,
    OverlayManager,
    PaymentsManager,
    ToastManager,
)
from .memory import in_memory_registry
from .models import (
    BookingData,
    Cart,
    CartItem,
    CheckoutOptions,
    LeadData,
    Pipeline,
    Service,
    ToastDirective,
)
from .registry import CapabilityRegistry

__all__ = [
    "AuthManager",
    "BookingData",
    "BookingManager",
    "Capability",
    "CapabilityRegistry",
    "Cart",
    "CartItem",
    "CartManager",
    "CheckoutOptions",
    "CrmManager",
    "LeadData",
    "NavigationManager",
    "NewsletterManager",
    "OverlayManager",
    "PaymentsManager",
    "Pipeline",
    "Service",
    "ToastDirective",
    "ToastManager",
    "in_memory_registry",
]
