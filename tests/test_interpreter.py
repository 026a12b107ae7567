from decimal import Decimal

import pytest

from quote_revision_engine.errors import CommandParseError
from quote_revision_engine.interpreter import (
    DEFAULT_CONFIDENCE,
    KeywordCommandInterpreter,
    build_edit_prompt,
    parse_command_response,
)
from quote_revision_engine.models.command import BulkOperation, CommandType


def test_parse_fenced_json_response():
    text = '```json\n[{"type": "change_price", "target": "Paint", "value": "$1,045.50"}]\n```'

    commands = parse_command_response(text)

    assert len(commands) == 1
    assert commands[0].type is CommandType.change_price
    assert commands[0].value == Decimal("1045.50")
    assert commands[0].confidence == DEFAULT_CONFIDENCE


def test_parse_wrapped_commands_object():
    text = (
        '{"commands": [{"type": "BULK_CHANGE", "operation": "add_percentage", '
        '"value": "15%", "scope": "labor", "confidence": 0.6}]}'
    )
    command = parse_command_response(text)[0]

    assert command.operation is BulkOperation.add_percentage
    assert command.value == Decimal("15")
    assert command.confidence == pytest.approx(0.6)


@pytest.mark.parametrize(
    "text",
    [
        "not json at all",
        '{"type": "CHANGE_PRICE"}',
        '[{"type": "REPAINT_HOUSE", "confidence": 0.9}]',
        '["CHANGE_PRICE"]',
    ],
)
def test_malformed_responses_raise(text):
    with pytest.raises(CommandParseError):
        parse_command_response(text)


def test_keyword_interpreter_splits_clauses(items):
    commands = KeywordCommandInterpreter().interpret(
        "Change the price of paint to $45 and add a ceiling fan for $120", items
    )

    assert [command.type for command in commands] == [CommandType.change_price, CommandType.add_item]
    assert commands[0].target == "paint"
    assert commands[0].value == Decimal("45")
    assert commands[1].description == "ceiling fan"
    assert commands[1].value == Decimal("120")


def test_keyword_interpreter_quantity_and_removal(items):
    commands = KeywordCommandInterpreter().interpret(
        "Change the quantity of paint to 3. Remove the toilet install", items
    )

    assert commands[0].type is CommandType.change_quantity
    assert commands[0].target == "paint"
    assert commands[0].value == Decimal("3")
    assert commands[1].type is CommandType.remove_item
    assert commands[1].target == "toilet install"


def test_keyword_interpreter_bulk_changes(items):
    discount = KeywordCommandInterpreter().interpret("Take 10% off everything", items)[0]
    markup = KeywordCommandInterpreter().interpret("Add 15% to labour", items)[0]

    assert discount.operation is BulkOperation.subtract_percentage
    assert discount.scope == "all"
    assert discount.value == Decimal("10")
    assert markup.operation is BulkOperation.add_percentage
    assert markup.scope == "labor"


def test_keyword_interpreter_ignores_chatter(items):
    assert KeywordCommandInterpreter().interpret("hello there", items) == []


def test_edit_prompt_lists_items_in_order(items):
    prompt = build_edit_prompt("bump the paint", list(reversed(items)))

    assert prompt.index("1. Toilet install") < prompt.index("5. Painting labor")
    assert "Current total: $1284.00" in prompt
    assert '"bump the paint"' in prompt
