from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping, Sequence

from .models.command import BulkOperation, CommandType


SCOPE_ALL = "all"

SCOPE_ALIASES: Mapping[str, str] = {
    "all": SCOPE_ALL,
    "everything": SCOPE_ALL,
    "all items": SCOPE_ALL,
    "the whole quote": SCOPE_ALL,
    "labor": "labor",
    "labour": "labor",
    "labor items": "labor",
    "material": "material",
    "materials": "material",
    "material items": "material",
    "parts": "material",
    "equipment": "equipment",
    "tools": "equipment",
    "other": "other",
}

CONFIRMATION_REPLIES: Sequence[str] = ("👍", "yes", "y", "confirm", "ok", "okay", "yep")

CANCEL_REPLIES: Sequence[str] = ("no", "cancel", "undo", "scratch that")

SEND_PHRASES: Sequence[str] = ("send it", "looks good", "perfect")

CHANGE_ICONS: Mapping[CommandType, str] = {
    CommandType.change_price: "✏️",
    CommandType.add_item: "➕",
    CommandType.remove_item: "❌",
    CommandType.change_quantity: "📦",
    CommandType.bulk_change: "📈",
}


def normalize_scope(scope: str | None) -> str:
    key = " ".join((scope or SCOPE_ALL).split()).lower()
    return SCOPE_ALIASES.get(key, key)


@dataclass(frozen=True)
class CommandPattern:
    """A transcript pattern the keyword interpreter turns into a command.

    Named groups ``target``, ``value`` and ``description`` feed the matching
    command fields; ``scope`` feeds bulk changes.
    """

    name: str
    command_type: CommandType
    pattern: re.Pattern[str]
    confidence: float
    operation: BulkOperation | None = None


_AMOUNT = r"\$?(?P<value>\d+(?:,\d{3})*(?:\.\d+)?)"

DEFAULT_COMMAND_PATTERNS: Sequence[CommandPattern] = (
    CommandPattern(
        name="change_quantity",
        command_type=CommandType.change_quantity,
        pattern=re.compile(
            r"(?:change|set|make)\s+(?:the\s+)?(?:quantity|qty)\s+(?:of|for)\s+(?:the\s+)?"
            r"(?P<target>.+?)\s+to\s+(?P<value>\d+(?:\.\d+)?)",
            re.IGNORECASE,
        ),
        confidence=0.85,
    ),
    CommandPattern(
        name="add_percentage",
        command_type=CommandType.bulk_change,
        pattern=re.compile(
            r"(?:add|increase|raise|bump)\s+(?:by\s+)?(?P<value>\d+(?:\.\d+)?)\s*(?:%|percent)"
            r"(?:\s+(?:to|on)\s+(?:the\s+)?(?P<scope>[a-z ]+?))?(?:[.,!]|$)",
            re.IGNORECASE,
        ),
        confidence=0.85,
        operation=BulkOperation.add_percentage,
    ),
    CommandPattern(
        name="subtract_percentage",
        command_type=CommandType.bulk_change,
        pattern=re.compile(
            r"(?:take|knock|subtract|discount|reduce)\s+(?:by\s+)?(?P<value>\d+(?:\.\d+)?)\s*(?:%|percent)"
            r"(?:\s+off)?(?:(?:\s+(?:of|on|from))?\s+(?:the\s+)?(?P<scope>[a-z ]+?))?(?:[.,!]|$)",
            re.IGNORECASE,
        ),
        confidence=0.85,
        operation=BulkOperation.subtract_percentage,
    ),
    CommandPattern(
        name="change_price",
        command_type=CommandType.change_price,
        pattern=re.compile(
            r"(?:change|set|make)\s+(?:the\s+)?(?:price\s+of\s+(?:the\s+)?)?(?P<target>.+?)\s+to\s+" + _AMOUNT,
            re.IGNORECASE,
        ),
        confidence=0.9,
    ),
    CommandPattern(
        name="add_item",
        command_type=CommandType.add_item,
        pattern=re.compile(
            r"add\s+(?:a\s+|an\s+|the\s+)?(?P<description>.+?)\s+(?:for|at)\s+" + _AMOUNT,
            re.IGNORECASE,
        ),
        confidence=0.85,
    ),
    CommandPattern(
        name="remove_item",
        command_type=CommandType.remove_item,
        pattern=re.compile(
            r"(?:remove|delete|drop|take\s+out)\s+(?:the\s+)?(?P<target>[^.,!]+)",
            re.IGNORECASE,
        ),
        confidence=0.8,
    ),
)


__all__ = [
    "CANCEL_REPLIES",
    "CHANGE_ICONS",
    "CONFIRMATION_REPLIES",
    "CommandPattern",
    "DEFAULT_COMMAND_PATTERNS",
    "SCOPE_ALIASES",
    "SCOPE_ALL",
    "SEND_PHRASES",
    "normalize_scope",
]
