"""In-memory managers.

Useful for tests, local demos and the CLI when no host application is wired
in. State lives in process memory and is lost on restart; production hosts
register managers backed by their own storage.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, List, Optional

from .base import Capability
from .models import (
    BookingData,
    Cart,
    CartItem,
    CheckoutOptions,
    LeadData,
    Pipeline,
    PipelineStage,
    Service,
    ToastDirective,
    User,
)
from .registry import CapabilityRegistry


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class InMemoryCrm:
    def __init__(self) -> None:
        self.pipelines: Dict[str, Pipeline] = {}
        self.leads: Dict[str, Dict[str, Any]] = {}

    async def submit_lead(self, lead: LeadData) -> Dict[str, Any]:
        # upsert by email so a replayed submission does not duplicate the lead
        for lead_id, existing in self.leads.items():
            if existing["email"] == lead.email:
                existing.update(lead.model_dump(exclude_none=True))
                return {"leadId": lead_id, "pipelineId": existing["metadata"].get("pipelineId")}
        lead_id = _short_id("lead")
        self.leads[lead_id] = lead.model_dump()
        return {"leadId": lead_id, "pipelineId": lead.metadata.get("pipelineId")}

    async def get_pipeline(self, pipeline_id: Optional[str] = None) -> Optional[Pipeline]:
        if pipeline_id:
            return self.pipelines.get(pipeline_id)
        return next(iter(self.pipelines.values()), None)

    async def create_default_pipeline(self) -> Pipeline:
        pipeline = Pipeline(
            id=_short_id("pipeline"),
            name="Sales",
            stages=[
                PipelineStage(id="new", name="New"),
                PipelineStage(id="qualified", name="Qualified"),
                PipelineStage(id="negotiation", name="Negotiation"),
                PipelineStage(id="closed_won", name="Won"),
                PipelineStage(id="closed_lost", name="Lost"),
            ],
        )
        self.pipelines[pipeline.id] = pipeline
        return pipeline


class InMemoryBooking:
    def __init__(self) -> None:
        self.services: List[Service] = []
        self.bookings: Dict[str, BookingData] = {}

    async def create_booking(self, data: BookingData) -> Dict[str, Any]:
        booking_id = _short_id("booking")
        self.bookings[booking_id] = data
        return {"bookingId": booking_id}

    async def get_services(self) -> List[Service]:
        return list(self.services)

    async def create_default_service(self) -> Service:
        service = Service(id=_short_id("service"), name="General Appointment", duration=60)
        self.services.append(service)
        return service


class InMemoryCart:
    def __init__(self) -> None:
        self.cart = Cart(id=_short_id("cart"))

    async def add(self, item: CartItem) -> Dict[str, Any]:
        for existing in self.cart.items:
            if existing.productId == item.productId:
                existing.quantity += item.quantity
                break
        else:
            self.cart.items.append(item)
        return {"cartId": self.cart.id, "itemCount": sum(i.quantity for i in self.cart.items)}

    async def get(self) -> Optional[Cart]:
        return self.cart

    async def checkout(self) -> Dict[str, Any]:
        return {"checkoutUrl": f"/checkout/{self.cart.id}"}


class InMemoryPayments:
    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.sessions: List[Dict[str, Any]] = []
        self.setup_shown = 0

    async def create_checkout(
        self, items: List[CartItem], options: CheckoutOptions
    ) -> Dict[str, Any]:
        session_id = _short_id("cs")
        self.sessions.append({"id": session_id, "items": items, "options": options})
        return {"url": f"https://checkout.example/{session_id}"}

    def is_configured(self) -> bool:
        return self.configured

    def show_setup(self) -> None:
        self.setup_shown += 1


class InMemoryNewsletter:
    def __init__(self) -> None:
        self.subscriptions: Dict[str, Dict[str, Any]] = {}

    async def subscribe(self, email: str, lists: Optional[List[str]] = None) -> Dict[str, Any]:
        for sub_id, sub in self.subscriptions.items():
            if sub["email"] == email:
                return {"subscriptionId": sub_id}
        sub_id = _short_id("sub")
        self.subscriptions[sub_id] = {"email": email, "lists": lists or []}
        return {"subscriptionId": sub_id}


class InMemoryNavigation:
    def __init__(self) -> None:
        self.history: List[str] = []

    def goto(self, path: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self.history.append(path)

    def external(self, url: str) -> None:
        self.history.append(url)

    def back(self) -> None:
        if self.history:
            self.history.pop()

    def scroll_to(self, anchor: str) -> None:
        self.history.append(anchor)


class InMemoryOverlay:
    def __init__(self) -> None:
        self.open_ids: List[str] = []

    def open(self, overlay_id: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if overlay_id not in self.open_ids:
            self.open_ids.append(overlay_id)

    def close(self, overlay_id: Optional[str] = None) -> None:
        if overlay_id is None:
            self.open_ids.clear()
        elif overlay_id in self.open_ids:
            self.open_ids.remove(overlay_id)

    def is_open(self, overlay_id: str) -> bool:
        return overlay_id in self.open_ids


class InMemoryToast:
    def __init__(self) -> None:
        self.shown: List[ToastDirective] = []

    def show(self, toast: ToastDirective) -> None:
        self.shown.append(toast)


class InMemoryAuth:
    def __init__(self, user: Optional[User] = None) -> None:
        self.user = user
        self.prompts: List[str] = []

    def is_authenticated(self) -> bool:
        return self.user is not None

    def get_current_user(self) -> Optional[User]:
        return self.user

    def show_login(self) -> None:
        self.prompts.append("login")

    def show_register(self) -> None:
        self.prompts.append("register")


def in_memory_registry() -> CapabilityRegistry:
    """Return a registry with every capability backed by memory."""

    return CapabilityRegistry(
        {
            Capability.CRM: InMemoryCrm(),
            Capability.BOOKING: InMemoryBooking(),
            Capability.CART: InMemoryCart(),
            Capability.PAYMENTS: InMemoryPayments(),
            Capability.NEWSLETTER: InMemoryNewsletter(),
            Capability.NAVIGATION: InMemoryNavigation(),
            Capability.OVERLAY: InMemoryOverlay(),
            Capability.TOAST: InMemoryToast(),
            Capability.AUTH: InMemoryAuth(),
        }
    )
