from __future__ import annotations

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Protocol, Sequence

from pydantic import ValidationError

from .dictionaries import DEFAULT_COMMAND_PATTERNS, CommandPattern, normalize_scope
from .errors import CommandParseError
from .models.command import VoiceEditCommand
from .models.quote import QuoteItem
from .totals import calculate_total

if TYPE_CHECKING:
    from .vertex_ai_adapter import VertexAIAdapter

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8

EDIT_SYSTEM_PROMPT = """You turn a contractor's spoken instructions about a quote into structured edits.

Each edit is a JSON object with a "type" of:
- CHANGE_PRICE: set the unit price of an existing item ("target", "value")
- ADD_ITEM: add a new item ("description", "value" as unit price, optional "quantity", "unit", "category")
- REMOVE_ITEM: remove an existing item ("target")
- CHANGE_QUANTITY: set the quantity of an existing item ("target", "value")
- BULK_CHANGE: scale prices of many items ("operation" of add_percentage or subtract_percentage,
  "value" as the percentage, "scope" of all, labor, material, equipment or other)

"target" must repeat the description of the matching quote item as closely as possible.
Every edit carries a "confidence" between 0 and 1 for how sure you are of the interpretation.
If the contractor asks for a specific overall total, use "operation": "set_total".
Return a JSON array of edits and nothing else.
"""


class CommandInterpreter(Protocol):
    def interpret(self, transcript: str, items: Sequence[QuoteItem]) -> list[VoiceEditCommand]:
        ...


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def build_edit_prompt(transcript: str, items: Sequence[QuoteItem]) -> str:
    lines = [
        f"{position}. {item.description} - Qty: {item.quantity} {item.unit.value}"
        f" - ${item.unit_price} each - Category: {item.category.value}"
        for position, item in enumerate(sorted(items, key=lambda i: i.display_order), start=1)
    ]
    listing = "\n".join(lines) or "(no items yet)"
    return (
        f"Current quote items:\n{listing}\n\n"
        f"Current total: ${calculate_total(items)}\n\n"
        f'Contractor\'s instruction:\n"{transcript}"\n'
    )


def _clean_value(raw: Any) -> Any:
    if isinstance(raw, str):
        text = raw.replace("$", "").replace(",", "").replace("%", "").strip()
        try:
            return Decimal(text)
        except InvalidOperation:
            return raw
    return raw


def commands_from_payload(payload: Any) -> list[VoiceEditCommand]:
    """Validate a decoded model response into commands.

    Accepts a list of edit objects or ``{"commands": [...]}``.
    """
    if isinstance(payload, dict) and "commands" in payload:
        payload = payload["commands"]
    if not isinstance(payload, list):
        raise CommandParseError(f"Expected a list of edits, got {type(payload).__name__}")

    commands: list[VoiceEditCommand] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, dict):
            raise CommandParseError(f"Edit {index} is not an object")
        fields = {key: value for key, value in entry.items() if value not in (None, "")}
        if isinstance(fields.get("type"), str):
            fields["type"] = fields["type"].strip().upper()
        if "value" in fields:
            fields["value"] = _clean_value(fields["value"])
        if fields.get("confidence") is None:
            fields["confidence"] = DEFAULT_CONFIDENCE
        try:
            commands.append(VoiceEditCommand.model_validate(fields))
        except ValidationError as exc:
            raise CommandParseError(f"Edit {index} is invalid: {exc.errors()[0]['msg']}") from exc
    return commands


def parse_command_response(text: str) -> list[VoiceEditCommand]:
    try:
        payload = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        raise CommandParseError(f"Interpreter response is not JSON: {exc}") from exc
    return commands_from_payload(payload)


_CLAUSE_SPLIT = re.compile(r"\s*(?:[,;!?]|\.(?!\d)|\band then\b|\bthen\b|\band\b|\balso\b)\s*", re.IGNORECASE)


class KeywordCommandInterpreter:
    """Rule-based interpreter for dev and offline use.

    The transcript is split into clauses; the first pattern that matches a
    clause produces its command.
    """

    def __init__(self, patterns: Sequence[CommandPattern] = DEFAULT_COMMAND_PATTERNS) -> None:
        self._patterns = tuple(patterns)

    def interpret(self, transcript: str, items: Sequence[QuoteItem] = ()) -> list[VoiceEditCommand]:
        commands: list[VoiceEditCommand] = []
        for clause in _CLAUSE_SPLIT.split(transcript):
            if not clause.strip():
                continue
            command = self._match_clause(clause.strip())
            if command is not None:
                commands.append(command)
        logger.info(
            "Interpreted transcript with keyword rules",
            extra={"transcript_length": len(transcript), "commands_found": len(commands)},
        )
        return commands

    def _match_clause(self, clause: str) -> VoiceEditCommand | None:
        for pattern in self._patterns:
            match = pattern.pattern.search(clause)
            if not match:
                continue
            groups = match.groupdict()
            fields: dict[str, Any] = {"type": pattern.command_type, "confidence": pattern.confidence}
            if groups.get("target"):
                fields["target"] = groups["target"].strip()
            if groups.get("description"):
                fields["description"] = groups["description"].strip()
            if groups.get("value"):
                fields["value"] = Decimal(groups["value"].replace(",", ""))
            if pattern.operation is not None:
                fields["operation"] = pattern.operation
                fields["scope"] = normalize_scope(groups.get("scope"))
            return VoiceEditCommand(**fields)
        return None


class VertexCommandInterpreter:
    """Interprets transcripts with a Gemini model on Vertex AI."""

    def __init__(self, adapter: "VertexAIAdapter") -> None:
        self._adapter = adapter

    def interpret(self, transcript: str, items: Sequence[QuoteItem]) -> list[VoiceEditCommand]:
        prompt = build_edit_prompt(transcript, items)
        try:
            payload = self._adapter.generate_json(prompt)
        except ValueError as exc:
            raise CommandParseError(str(exc)) from exc
        commands = commands_from_payload(payload)
        logger.info(
            "Interpreted transcript with Vertex AI",
            extra={"transcript_length": len(transcript), "commands_found": len(commands)},
        )
        return commands


__all__ = [
    "CommandInterpreter",
    "DEFAULT_CONFIDENCE",
    "EDIT_SYSTEM_PROMPT",
    "KeywordCommandInterpreter",
    "VertexCommandInterpreter",
    "build_edit_prompt",
    "commands_from_payload",
    "parse_command_response",
    "strip_code_fences",
]
