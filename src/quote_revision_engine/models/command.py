from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .quote import ItemCategory, ItemUnit


class CommandType(str, Enum):
    change_price = "CHANGE_PRICE"
    add_item = "ADD_ITEM"
    remove_item = "REMOVE_ITEM"
    change_quantity = "CHANGE_QUANTITY"
    bulk_change = "BULK_CHANGE"


class BulkOperation(str, Enum):
    add_percentage = "add_percentage"
    subtract_percentage = "subtract_percentage"
    set_total = "set_total"


class VoiceEditCommand(BaseModel):
    """One interpreted edit instruction, held by a review session until applied."""

    model_config = ConfigDict(frozen=True)

    type: CommandType
    target: str | None = Field(default=None, description="Item description or code to match")
    value: Decimal | None = Field(default=None, description="New price, quantity or percentage")
    description: str | None = Field(default=None, description="Description for ADD_ITEM")
    operation: BulkOperation | None = None
    scope: str | None = Field(default=None, description="Category for BULK_CHANGE, or 'all'")
    quantity: Decimal | None = Field(default=None, gt=0, description="Quantity for ADD_ITEM")
    unit: ItemUnit | None = None
    category: ItemCategory | None = None
    confidence: float = Field(ge=0.0, le=1.0)

    def is_low_confidence(self, threshold: float) -> bool:
        return self.confidence < threshold


__all__ = ["BulkOperation", "CommandType", "VoiceEditCommand"]
