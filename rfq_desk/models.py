from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from shared.models_db import Currency, RFQStatus


class Role(Enum):
    SUPER_ADMIN = 'SUPER_ADMIN'
    ADMIN = 'ADMIN'
    PARTNER = 'PARTNER'
    MANAGER = 'MANAGER'
    SELLER = 'SELLER'
    BUYER = 'BUYER'
    GUEST = 'GUEST'


# Roles allowed to answer an RFQ with a quote
QUOTING_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.SELLER})

# Roles that see and manage every RFQ, not only their own
STAFF_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN, Role.MANAGER})


class Actor(BaseModel):
    userId: str
    role: Role = Role.BUYER

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def can_view_all(self) -> bool:
        # Sellers quote from the open list, so they read every RFQ too
        return self.is_staff or self.role is Role.SELLER


# Request payloads. Quantities and item counts are checked by RFQService so
# callers get a structured validation error rather than a bare schema error.
class CreateRFQItem(BaseModel):
    productId: str
    quantity: int
    notes: Optional[str] = None


class CreateRFQData(BaseModel):
    subject: str
    message: Optional[str] = None
    targetPrice: Optional[float] = None
    items: List[CreateRFQItem]
    expiresAt: Optional[datetime] = None


class SubmitQuote(BaseModel):
    price: float = Field(..., gt=0)
    currency: Currency = Currency.USD
    terms: str = Field(..., min_length=1)
    validUntil: Optional[date] = None


class Decision(Enum):
    ACCEPT = 'accept'
    REJECT = 'reject'


class RespondRFQ(BaseModel):
    decision: Decision


# Read models
class RFQItem(BaseModel):
    id: str
    productId: str
    productName: str
    productImage: Optional[str] = None
    unitPrice: Optional[float] = None
    quantity: int
    notes: Optional[str] = None

    @computed_field
    @property
    def totalPrice(self) -> Optional[float]:
        if self.unitPrice is None:
            return None
        return self.quantity * self.unitPrice


class Quote(BaseModel):
    supplierId: str
    price: float
    currency: Currency
    terms: str
    validUntil: Optional[date] = None
    submittedAt: datetime


class RFQ(BaseModel):
    id: str
    rfqNumber: str
    userId: str
    subject: str
    message: Optional[str] = None
    targetPrice: Optional[float] = None
    status: RFQStatus
    items: List[RFQItem]
    quote: Optional[Quote] = None
    expiresAt: Optional[datetime] = None
    createdAt: datetime
    updatedAt: datetime

    @computed_field
    @property
    def totalItems(self) -> int:
        return len(self.items)

    @computed_field
    @property
    def totalQuantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @computed_field
    @property
    def estimatedValue(self) -> float:
        # Valued at the catalog prices captured when the RFQ was raised; unpriced items count as 0
        return sum(item.totalPrice or 0.0 for item in self.items)


class ProductSnapshot(BaseModel):
    productId: str
    name: str
    image: Optional[str] = None
    unitPrice: Optional[float] = None


class RFQTransition(BaseModel):
    """Announced to the notifier once per committed transition."""
    rfqId: str
    rfqNumber: str
    userId: str
    fromStatus: RFQStatus
    toStatus: RFQStatus
    occurredAt: datetime


class SweepResult(BaseModel):
    expired: int
