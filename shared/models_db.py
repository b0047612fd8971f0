from sqlmodel import Field, SQLModel, Column, Relationship
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy import DateTime, String, UniqueConstraint
from datetime import datetime, date, timezone
from typing import List, Optional
from enum import Enum
# Validation happens in the service layer before DB interaction.

# DO NOT import from rfq_desk here to avoid circular dependencies.


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column in this schema is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Enum for currency of a submitted quote
class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    JPY = "JPY"

# Enum for RFQ Status
class RFQStatus(str, Enum):
    PENDING = "pending"
    QUOTED = "quoted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


# Catalog products. Only the fields the RFQ snapshot needs are kept here;
# the storefront owns the rest of the product record.
class ProductTable(SQLModel, table=True):
    __tablename__ = "product_table"
    id: str = Field(primary_key=True)
    name: str
    image_url: Optional[str] = Field(default=None)
    wholesale_price: Optional[float] = Field(default=None)
    is_active: bool = Field(default=True)


# Base for RFQ, defining common fields
class RFQBase(SQLModel):
    user_id: str = Field(index=True)
    subject: str
    message: Optional[str] = Field(default=None)
    target_price: Optional[float] = Field(default=None)
    status: RFQStatus = Field(
        default=RFQStatus.PENDING,
        sa_column=Column(SQLAlchemyEnum(RFQStatus, name="rfqstatus"), nullable=False, index=True)
    )
    expires_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True, index=True))

# RFQ table model
class RFQTable(RFQBase, table=True):
    __tablename__ = "rfq_table"
    __table_args__ = (UniqueConstraint("rfq_number", name="uq_rfq_table_rfq_number"),)
    id: str = Field(primary_key=True)
    rfq_number: str = Field(sa_column=Column(String(32), nullable=False))
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    # Written explicitly on every transition; no onupdate so the service owns monotonicity
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)

    items: List["RFQItemTable"] = Relationship(
        back_populates="rfq",
        sa_relationship_kwargs={"order_by": "RFQItemTable.position"}
    )
    quote: Optional["QuoteTable"] = Relationship(
        back_populates="rfq",
        sa_relationship_kwargs={"uselist": False}
    )

# Line items. product_name / product_image are copied from the catalog at
# creation and never refreshed from it.
class RFQItemTable(SQLModel, table=True):
    __tablename__ = "rfq_item_table"
    id: str = Field(primary_key=True)
    rfq_id: str = Field(foreign_key="rfq_table.id", index=True)
    position: int
    product_id: str = Field(index=True)
    product_name: str
    product_image: Optional[str] = Field(default=None)
    unit_price: Optional[float] = Field(default=None)
    quantity: int
    notes: Optional[str] = Field(default=None)

    rfq: "RFQTable" = Relationship(back_populates="items")

# Base for Quote, defining common fields
class QuoteBase(SQLModel):
    rfq_id: str = Field(foreign_key="rfq_table.id", index=True, unique=True)
    supplier_id: str = Field(index=True)
    price: float
    currency: Currency = Field(default=Currency.USD)
    terms: str
    valid_until: Optional[date] = Field(default=None)

# Quote table model, at most one per RFQ
class QuoteTable(QuoteBase, table=True):
    __tablename__ = "quote_table"
    id: Optional[int] = Field(default=None, primary_key=True)
    submitted_at: datetime = Field(default_factory=utcnow, nullable=False)

    rfq: "RFQTable" = Relationship(back_populates="quote")
