from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Sequence

from .dictionaries import SCOPE_ALL, normalize_scope
from .errors import (
    CommandError,
    InvalidCommand,
    InvalidQuantity,
    TargetNotFound,
    UnsupportedBulkOperation,
)
from .matching import SimilarityMatcher, TargetMatcher
from .models.command import BulkOperation, CommandType, VoiceEditCommand
from .models.edit import (
    BulkChange,
    EditType,
    ItemAdded,
    ItemRemoved,
    PriceChange,
    QuantityChange,
    QuoteChange,
)
from .models.quote import ItemCategory, ItemUnit, QuoteItem
from .totals import calculate_total, round_currency

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
MAX_COMMAND_AMOUNT = Decimal("1000000000")

EDIT_TYPES: dict[CommandType, EditType] = {
    CommandType.change_price: EditType.price_change,
    CommandType.add_item: EditType.add_item,
    CommandType.remove_item: EditType.remove_item,
    CommandType.change_quantity: EditType.quantity_change,
    CommandType.bulk_change: EditType.bulk_change,
}

_TARGETED = frozenset(
    {CommandType.change_price, CommandType.remove_item, CommandType.change_quantity}
)


def edit_type_for(commands: Sequence[VoiceEditCommand]) -> EditType:
    kinds = {command.type for command in commands}
    if len(kinds) == 1:
        return EDIT_TYPES[kinds.pop()]
    return EditType.batch


def validate_command(command: VoiceEditCommand) -> None:
    """Check the parts of a command that do not depend on the quote's items."""
    for name in ("value", "quantity"):
        amount = getattr(command, name)
        if amount is not None and abs(amount) > MAX_COMMAND_AMOUNT:
            raise InvalidCommand(f"{name} {amount} is larger than {MAX_COMMAND_AMOUNT}")

    if command.type in _TARGETED and not (command.target or "").strip():
        raise InvalidCommand(f"{command.type.value} needs a target item")

    if command.type in (CommandType.change_price, CommandType.add_item):
        if command.value is None:
            raise InvalidCommand(f"{command.type.value} needs a price value")
        if command.value < 0:
            raise InvalidCommand(f"Price cannot be negative, got {command.value}")

    if command.type is CommandType.add_item and not (command.description or "").strip():
        raise InvalidCommand("ADD_ITEM needs a description")

    if command.type is CommandType.change_quantity and (command.value is None or command.value <= 0):
        raise InvalidQuantity(f"Quantity must be greater than zero, got {command.value}")

    if command.type is CommandType.bulk_change:
        if command.operation is None:
            raise InvalidCommand("BULK_CHANGE needs an operation")
        if command.operation is BulkOperation.set_total:
            raise UnsupportedBulkOperation(
                "set_total cannot be spread over several items; change item prices instead"
            )
        if command.value is None or command.value < 0:
            raise InvalidCommand(f"Percentage must be zero or more, got {command.value}")
        if command.operation is BulkOperation.subtract_percentage and command.value > HUNDRED:
            raise InvalidCommand(f"Cannot take {command.value}% off a price")


def _money(value: Decimal) -> Decimal:
    try:
        return round_currency(value)
    except InvalidOperation as exc:
        raise InvalidCommand(f"Amount {value} is out of range") from exc


def _total(items: Sequence[QuoteItem]) -> Decimal:
    try:
        return calculate_total(items)
    except InvalidOperation as exc:
        raise InvalidCommand("Quote total is out of range") from exc


def _new_item_id() -> str:
    return f"item_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class AppliedBatch:
    items: list[QuoteItem]
    changes: list[QuoteChange]
    total_amount: Decimal


class EditApplier:
    """Applies edit commands to a quote's items without touching the input.

    A batch is all-or-nothing: the first command that fails validation
    aborts it and the raised error records the command's position.
    """

    def __init__(
        self,
        *,
        matcher: TargetMatcher | None = None,
        id_factory: Callable[[], str] = _new_item_id,
    ) -> None:
        self._matcher = matcher or SimilarityMatcher()
        self._id_factory = id_factory

    @property
    def matcher(self) -> TargetMatcher:
        return self._matcher

    def apply(
        self,
        items: Sequence[QuoteItem],
        commands: Sequence[VoiceEditCommand],
        *,
        quote_id: str | None = None,
    ) -> AppliedBatch:
        working = sorted(items, key=lambda item: item.display_order)
        changes: list[QuoteChange] = []
        total_amount = calculate_total(working)
        for index, command in enumerate(commands):
            try:
                working, change = self.apply_command(working, command, quote_id=quote_id)
                total_amount = _total(working)
            except CommandError as exc:
                exc.command_index = index
                logger.info(
                    "Rejected edit batch",
                    extra={
                        "command_index": index,
                        "command_type": command.type.value,
                        "error": exc.code,
                    },
                )
                raise
            changes.append(change)
        return AppliedBatch(items=working, changes=changes, total_amount=total_amount)

    def apply_command(
        self,
        items: Sequence[QuoteItem],
        command: VoiceEditCommand,
        *,
        quote_id: str | None = None,
    ) -> tuple[list[QuoteItem], QuoteChange]:
        validate_command(command)
        if command.type is CommandType.add_item:
            return self._add_item(list(items), command, quote_id=quote_id)
        handler = {
            CommandType.change_price: self._change_price,
            CommandType.remove_item: self._remove_item,
            CommandType.change_quantity: self._change_quantity,
            CommandType.bulk_change: self._bulk_change,
        }[command.type]
        return handler(list(items), command)

    def _change_price(
        self, items: list[QuoteItem], command: VoiceEditCommand
    ) -> tuple[list[QuoteItem], QuoteChange]:
        price = _money(command.value)
        target = self._matcher.match(command.target, items)
        change = PriceChange(
            item_id=target.id,
            description=target.description,
            old_unit_price=target.unit_price,
            new_unit_price=price,
        )
        return _replace(items, target.model_copy(update={"unit_price": price})), change

    def _add_item(
        self,
        items: list[QuoteItem],
        command: VoiceEditCommand,
        *,
        quote_id: str | None = None,
    ) -> tuple[list[QuoteItem], QuoteChange]:
        owner = quote_id or (items[0].quote_id if items else None)
        if owner is None:
            raise InvalidCommand("ADD_ITEM on an empty item list needs a quote id")

        # max existing + 1; removed items' positions are never compacted
        next_order = max((item.display_order for item in items), default=-1) + 1
        item = QuoteItem(
            id=self._id_factory(),
            quote_id=owner,
            description=command.description.strip(),
            quantity=command.quantity or Decimal("1"),
            unit=command.unit or ItemUnit.each,
            unit_price=_money(command.value),
            category=command.category or ItemCategory.other,
            display_order=next_order,
        )
        change = ItemAdded(
            item_id=item.id,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            category=item.category,
        )
        return [*items, item], change

    def _remove_item(
        self, items: list[QuoteItem], command: VoiceEditCommand
    ) -> tuple[list[QuoteItem], QuoteChange]:
        target = self._matcher.match(command.target, items)
        change = ItemRemoved(
            item_id=target.id,
            description=target.description,
            total_price=target.total_price,
        )
        return [item for item in items if item.id != target.id], change

    def _change_quantity(
        self, items: list[QuoteItem], command: VoiceEditCommand
    ) -> tuple[list[QuoteItem], QuoteChange]:
        target = self._matcher.match(command.target, items)
        change = QuantityChange(
            item_id=target.id,
            description=target.description,
            old_quantity=target.quantity,
            new_quantity=command.value,
        )
        return _replace(items, target.model_copy(update={"quantity": command.value})), change

    def _bulk_change(
        self, items: list[QuoteItem], command: VoiceEditCommand
    ) -> tuple[list[QuoteItem], QuoteChange]:
        percentage = command.value
        if command.operation is BulkOperation.add_percentage:
            factor = 1 + percentage / HUNDRED
        else:
            factor = 1 - percentage / HUNDRED

        scope = normalize_scope(command.scope)
        in_scope = [item.id for item in items if scope == SCOPE_ALL or item.category.value == scope]
        if not in_scope:
            raise TargetNotFound(scope)

        scaled = set(in_scope)
        updated = [
            item.model_copy(update={"unit_price": _money(item.unit_price * factor)})
            if item.id in scaled
            else item
            for item in items
        ]
        change = BulkChange(
            operation=command.operation,
            scope=scope,
            percentage=percentage,
            item_ids=in_scope,
        )
        return updated, change


def _replace(items: list[QuoteItem], updated: QuoteItem) -> list[QuoteItem]:
    return [updated if item.id == updated.id else item for item in items]


__all__ = ["AppliedBatch", "EditApplier", "edit_type_for", "validate_command"]
