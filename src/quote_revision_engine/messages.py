from __future__ import annotations

import re
from decimal import Decimal
from typing import Sequence

from .applier import EditApplier
from .dictionaries import (
    CANCEL_REPLIES,
    CHANGE_ICONS,
    CONFIRMATION_REPLIES,
    SEND_PHRASES,
    normalize_scope,
)
from .errors import CommandError
from .matching import SimilarityMatcher, TargetMatcher
from .models.command import CommandType, VoiceEditCommand
from .models.quote import Quote, QuoteItem, QuoteTemplate
from .totals import calculate_total


def money(value: Decimal) -> str:
    return f"${value:,.2f}"


def _number(value: Decimal | None) -> str:
    if value is None:
        return "?"
    return f"{value.normalize():f}"


def _resolve(matcher: TargetMatcher, target: str | None, items: Sequence[QuoteItem]) -> QuoteItem | None:
    try:
        return matcher.match(target, items)
    except CommandError:
        return None


def describe_command(
    command: VoiceEditCommand,
    items: Sequence[QuoteItem],
    *,
    matcher: TargetMatcher | None = None,
) -> str:
    matcher = matcher or SimilarityMatcher()
    icon = CHANGE_ICONS[command.type]
    if command.type is CommandType.add_item:
        price = money(command.value) if command.value is not None else "?"
        return f"{icon} Add {command.description}: {price}"
    if command.type is CommandType.bulk_change:
        scope = normalize_scope(command.scope)
        label = "all items" if scope == "all" else f"{scope} items"
        operation = command.operation.value if command.operation else "?"
        if operation == "set_total":
            return f"💰 Set total to {money(command.value) if command.value is not None else '?'}"
        verb = "Add" if operation == "add_percentage" else "Take"
        joiner = "to" if operation == "add_percentage" else "off"
        return f"{icon} {verb} {_number(command.value)}% {joiner} {label}"

    item = _resolve(matcher, command.target, items)
    name = item.description if item else command.target
    if command.type is CommandType.remove_item:
        removed = f": -{money(item.total_price)}" if item else ""
        return f"{icon} Remove {name}{removed}"
    if command.type is CommandType.change_quantity:
        old = f"{_number(item.quantity)} → " if item else ""
        unit = f" {item.unit.value}" if item else ""
        return f"{icon} {name}: {old}{_number(command.value)}{unit}"
    old_price = f"{money(item.unit_price)} → " if item else ""
    new_price = money(command.value) if command.value is not None else "?"
    return f"{icon} {name}: {old_price}{new_price}"


def format_change_summary(
    items: Sequence[QuoteItem],
    commands: Sequence[VoiceEditCommand],
    *,
    confidence_threshold: float,
    applier: EditApplier | None = None,
    quote_id: str | None = None,
) -> str:
    """Render pending commands as a confirmation prompt for the contractor.

    The projected total comes from a dry run of the batch; when the dry run
    fails the prompt says which change cannot be applied instead.
    """
    if not commands:
        return "I couldn't understand your changes. Please try again with specific items and amounts."

    applier = applier or EditApplier()
    count = len(commands)
    lines = [f"I'll make these {count} change{'s' if count > 1 else ''}:", ""]
    for command in commands:
        line = describe_command(command, items, matcher=applier.matcher)
        if command.is_low_confidence(confidence_threshold):
            line += " ⚠️ (not sure I heard this right)"
        lines.append(line)

    lines.append("")
    try:
        batch = applier.apply(items, commands, quote_id=quote_id)
    except CommandError as exc:
        position = (exc.command_index or 0) + 1
        lines.append(f"⚠️ Change {position} can't be applied: {exc.message}")
    else:
        lines.append(f"New total will be: {money(batch.total_amount)}")

    lines.extend(["", "Reply '👍' to confirm or send a voice message to adjust"])
    return "\n".join(lines)


def format_quote_overview(
    quote: Quote,
    items: Sequence[QuoteItem],
    template: QuoteTemplate | None = None,
) -> str:
    lines: list[str] = []
    if template:
        lines.append(template.business_name)
        contact = f"{template.business_phone} · {template.business_email}"
        if template.license_number:
            contact += f" · Lic. {template.license_number}"
        lines.extend([contact, ""])

    lines.append(f"Quote {quote.id} for {quote.customer_name} (version {quote.version})")
    lines.append(quote.project_description)
    lines.append("")
    for position, item in enumerate(sorted(items, key=lambda i: i.display_order), start=1):
        lines.append(
            f"{position}. {item.description} - {_number(item.quantity)} {item.unit.value}"
            f" x {money(item.unit_price)} = {money(item.total_price)}"
        )
    lines.append("")
    lines.append(f"Total: {money(calculate_total(items))}")
    lines.append(f"Valid until {quote.valid_until:%b %d, %Y}")
    if template:
        lines.extend(["", f"Payment terms: {template.payment_terms}"])
        if template.warranty_info:
            lines.append(f"Warranty: {template.warranty_info}")
    return "\n".join(lines)


_CLAUSE_BREAK = re.compile(r"[,;.!?]")


def _clean_reply(text: str | None) -> str:
    return " ".join((text or "").split()).strip(" .!").lower()


def is_confirmation_reply(text: str | None) -> bool:
    return _clean_reply(text) in CONFIRMATION_REPLIES


def is_cancel_reply(text: str | None) -> bool:
    return _clean_reply(text) in CANCEL_REPLIES


def is_send_instruction(text: str | None) -> bool:
    """True when the message opens with a send phrase ("send it", "looks good, ...")."""
    lead = _CLAUSE_BREAK.split(_clean_reply(text), maxsplit=1)[0].strip()
    return any(lead == phrase or lead.startswith(f"{phrase} ") for phrase in SEND_PHRASES)


__all__ = [
    "describe_command",
    "format_change_summary",
    "format_quote_overview",
    "is_cancel_reply",
    "is_confirmation_reply",
    "is_send_instruction",
    "money",
]
