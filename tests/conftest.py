from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from quote_revision_engine.models.command import CommandType, VoiceEditCommand
from quote_revision_engine.models.quote import QuoteDocument, QuoteItem
from quote_revision_engine.quote_repository import LocalQuoteRepository
from quote_revision_engine.quote_store import QuoteStore

FIXTURES_PATH = Path(__file__).resolve().parent.parent / "data" / "quotes"
QUOTE_ID = "Q-2025-001"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 11, 3, 16, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_item(item_id: str, description: str, quantity: str, unit_price: str, **fields) -> QuoteItem:
    fields.setdefault("display_order", 0)
    fields.setdefault("quote_id", QUOTE_ID)
    return QuoteItem(
        id=item_id,
        description=description,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        **fields,
    )


def command(kind: CommandType, *, confidence: float = 0.95, **fields) -> VoiceEditCommand:
    if "value" in fields and fields["value"] is not None:
        fields["value"] = Decimal(str(fields["value"]))
    return VoiceEditCommand(type=kind, confidence=confidence, **fields)


@pytest.fixture
def document() -> QuoteDocument:
    return LocalQuoteRepository(base_path=FIXTURES_PATH).get(record_id=QUOTE_ID)


@pytest.fixture
def items(document: QuoteDocument) -> list[QuoteItem]:
    return list(document.items)


@pytest.fixture
def store() -> QuoteStore:
    quote_store = QuoteStore()
    LocalQuoteRepository(base_path=FIXTURES_PATH).seed(quote_store)
    return quote_store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
