from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .command import BulkOperation
from .quote import ItemCategory, utcnow


class EditType(str, Enum):
    price_change = "price_change"
    add_item = "add_item"
    remove_item = "remove_item"
    quantity_change = "quantity_change"
    bulk_change = "bulk_change"
    batch = "batch"


class _Change(BaseModel):
    model_config = ConfigDict(frozen=True)


class PriceChange(_Change):
    kind: Literal["price_change"] = "price_change"
    item_id: str
    description: str
    old_unit_price: Decimal
    new_unit_price: Decimal


class ItemAdded(_Change):
    kind: Literal["add_item"] = "add_item"
    item_id: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    category: ItemCategory


class ItemRemoved(_Change):
    kind: Literal["remove_item"] = "remove_item"
    item_id: str
    description: str
    total_price: Decimal


class QuantityChange(_Change):
    kind: Literal["quantity_change"] = "quantity_change"
    item_id: str
    description: str
    old_quantity: Decimal
    new_quantity: Decimal


class BulkChange(_Change):
    kind: Literal["bulk_change"] = "bulk_change"
    operation: BulkOperation
    scope: str
    percentage: Decimal
    item_ids: Sequence[str]


QuoteChange = Annotated[
    Union[PriceChange, ItemAdded, ItemRemoved, QuantityChange, BulkChange],
    Field(discriminator="kind"),
]


class QuoteEdit(BaseModel):
    """Audit record of one committed version transition."""

    model_config = ConfigDict(frozen=True)

    id: str
    quote_id: str
    version_from: int = Field(ge=1)
    version_to: int
    edit_type: EditType
    voice_transcript: str | None = None
    changes: Sequence[QuoteChange] = Field(default_factory=list)
    confidence_score: float = Field(ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_single_step(self) -> "QuoteEdit":
        if self.version_to != self.version_from + 1:
            raise ValueError("version_to must be exactly version_from + 1")
        return self


__all__ = [
    "BulkChange",
    "EditType",
    "ItemAdded",
    "ItemRemoved",
    "PriceChange",
    "QuantityChange",
    "QuoteChange",
    "QuoteEdit",
]
