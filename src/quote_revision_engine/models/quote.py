from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence

from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field

from ..totals import round_currency

DEFAULT_VALIDITY_DAYS = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_valid_until() -> datetime:
    return utcnow() + timedelta(days=DEFAULT_VALIDITY_DAYS)


class QuoteStatus(str, Enum):
    draft = "draft"
    review = "review"
    sent = "sent"
    accepted = "accepted"
    rejected = "rejected"


STATUS_TRANSITIONS: Mapping[QuoteStatus, frozenset[QuoteStatus]] = {
    QuoteStatus.draft: frozenset({QuoteStatus.review}),
    QuoteStatus.review: frozenset({QuoteStatus.sent}),
    QuoteStatus.sent: frozenset({QuoteStatus.accepted, QuoteStatus.rejected}),
    QuoteStatus.accepted: frozenset(),
    QuoteStatus.rejected: frozenset(),
}

EDITABLE_STATUSES = frozenset({QuoteStatus.draft, QuoteStatus.review})


class ItemUnit(str, Enum):
    each = "each"
    hour = "hour"
    sqft = "sqft"
    lf = "lf"
    job = "job"


class ItemCategory(str, Enum):
    labor = "labor"
    material = "material"
    equipment = "equipment"
    other = "other"


class QuoteItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    quote_id: str
    item_code: str | None = None
    description: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    unit: ItemUnit = ItemUnit.each
    unit_price: Decimal = Field(ge=0)
    category: ItemCategory = ItemCategory.other
    notes: str | None = None
    display_order: int = Field(ge=0)

    @computed_field  # type: ignore[misc]
    @property
    def total_price(self) -> Decimal:
        return round_currency(self.quantity * self.unit_price)


class Quote(BaseModel):
    id: str
    contractor_id: str
    customer_name: str
    customer_email: EmailStr | None = None
    customer_phone: str
    customer_address: str
    project_description: str
    status: QuoteStatus = QuoteStatus.draft
    version: int = Field(default=1, ge=1)
    total_amount: Decimal = Decimal("0.00")
    valid_until: datetime = Field(default_factory=default_valid_until)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    accepted_at: datetime | None = None

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    def can_transition_to(self, status: QuoteStatus) -> bool:
        return status in STATUS_TRANSITIONS[self.status]


class QuoteDocument(BaseModel):
    """A quote together with its line items in presentation order."""

    quote: Quote
    items: Sequence[QuoteItem] = Field(default_factory=list)


class QuoteTemplate(BaseModel):
    business_name: str
    business_phone: str
    business_email: str
    business_address: str
    license_number: str | None = None
    insurance_info: str | None = None
    logo_url: str | None = None
    terms_and_conditions: str
    payment_terms: str
    warranty_info: str | None = None


__all__ = [
    "DEFAULT_VALIDITY_DAYS",
    "EDITABLE_STATUSES",
    "STATUS_TRANSITIONS",
    "ItemCategory",
    "ItemUnit",
    "Quote",
    "QuoteDocument",
    "QuoteItem",
    "QuoteStatus",
    "QuoteTemplate",
    "default_valid_until",
    "utcnow",
]
