from decimal import Decimal

import pytest

from quote_revision_engine.errors import (
    DuplicateQuote,
    InvalidStatusTransition,
    QuoteNotFound,
    StaleQuoteVersion,
)
from quote_revision_engine.models.edit import EditType, ItemRemoved, QuoteEdit
from quote_revision_engine.models.quote import Quote, QuoteStatus
from quote_revision_engine.quote_store import QuoteStore, generate_quote_id, order_items

from conftest import QUOTE_ID, make_item


def _remove_paint_edit(version_from: int = 1) -> QuoteEdit:
    return QuoteEdit(
        id=f"edit_v{version_from}",
        quote_id=QUOTE_ID,
        version_from=version_from,
        version_to=version_from + 1,
        edit_type=EditType.remove_item,
        changes=[ItemRemoved(item_id="item_paint", description="Paint", total_price=Decimal("100.00"))],
        confidence_score=0.9,
    )


def test_create_quote_derives_total_and_version(document):
    store = QuoteStore()
    stale = document.quote.model_copy(update={"version": 7, "total_amount": Decimal("1")})

    stored = store.create_quote(stale, document.items)

    assert stored.version == 1
    assert stored.total_amount == Decimal("1284.00")
    with pytest.raises(DuplicateQuote):
        store.create_quote(stale, document.items)


def test_commit_replaces_items_and_records_edit(store, items):
    remaining = [item for item in items if item.id != "item_paint"]

    new_version = store.commit_quote_version(QUOTE_ID, 1, remaining, _remove_paint_edit())

    quote, stored_items = store.load_quote(QUOTE_ID)
    assert new_version == 2
    assert quote.version == 2
    assert quote.total_amount == Decimal("1184.00")
    assert [item.id for item in stored_items] == [item.id for item in remaining]
    assert [edit.id for edit in store.list_edits(QUOTE_ID)] == ["edit_v1"]


def test_commit_with_stale_version_changes_nothing(store, items):
    store.commit_quote_version(QUOTE_ID, 1, items, _remove_paint_edit())

    with pytest.raises(StaleQuoteVersion):
        store.commit_quote_version(QUOTE_ID, 1, items[:1], _remove_paint_edit())

    quote, stored_items = store.load_quote(QUOTE_ID)
    assert quote.version == 2
    assert len(stored_items) == 5


def test_edit_must_advance_a_single_version():
    with pytest.raises(ValueError):
        QuoteEdit(
            id="bad",
            quote_id=QUOTE_ID,
            version_from=1,
            version_to=3,
            edit_type=EditType.batch,
            confidence_score=0.5,
        )


def test_status_moves_forward_only(store):
    with pytest.raises(InvalidStatusTransition):
        store.advance_status(QUOTE_ID, QuoteStatus.sent)

    store.advance_status(QUOTE_ID, QuoteStatus.review)
    sent = store.advance_status(QUOTE_ID, QuoteStatus.sent)

    assert sent.sent_at is not None
    assert not sent.is_editable
    with pytest.raises(InvalidStatusTransition):
        store.advance_status(QUOTE_ID, QuoteStatus.review)


def test_unknown_quote(store):
    with pytest.raises(QuoteNotFound):
        store.load_quote("Q-missing")


def test_order_items_rejects_duplicate_positions():
    items = [
        make_item("a", "Trim", "1", "5", display_order=1),
        make_item("b", "Caulk", "1", "5", display_order=1),
    ]
    with pytest.raises(ValueError):
        order_items(QUOTE_ID, items)


def test_generated_quote_ids_are_unique():
    assert generate_quote_id() != generate_quote_id()


def test_quote_defaults():
    quote = Quote(
        id="Q-new",
        contractor_id="c",
        customer_name="Sam",
        customer_phone="+15125550100",
        customer_address="1 Main St",
        project_description="Patch drywall",
    )
    assert quote.status is QuoteStatus.draft
    assert quote.version == 1
    assert quote.valid_until > quote.created_at
