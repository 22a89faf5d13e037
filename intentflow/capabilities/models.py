"""Pydantic models exchanged with capability managers."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class CartItem(BaseModel):
    productId: str
    name: Optional[str] = None
    price: float = 0.0
    quantity: int = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Cart(BaseModel):
    id: str
    items: List[CartItem] = Field(default_factory=list)

    @property
    def total(self) -> float:
        return round(sum(item.price * item.quantity for item in self.items), 2)


class LeadData(BaseModel):
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    source: str = "website"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PipelineStage(BaseModel):
    id: str
    name: str


class Pipeline(BaseModel):
    id: str
    name: str
    stages: List[PipelineStage] = Field(default_factory=list)


class BookingData(BaseModel):
    serviceId: Optional[str] = None
    datetime: Optional[str] = None
    customerName: Optional[str] = None
    customerEmail: Optional[str] = None
    customerPhone: Optional[str] = None
    notes: Optional[str] = None


class Service(BaseModel):
    id: str
    name: str
    duration: int = 60
    price: Optional[float] = None


class CheckoutOptions(BaseModel):
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None
    mode: Literal["payment", "subscription"] = "payment"


class ToastDirective(BaseModel):
    """Toast notification shown by the host UI."""

    type: Literal["success", "error", "info", "warning"] = "info"
    message: str
    duration: Optional[int] = None


class User(BaseModel):
    id: str
    email: str
