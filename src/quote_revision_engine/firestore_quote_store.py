from __future__ import annotations

import logging
from typing import Any, Sequence

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from .errors import DuplicateQuote, InvalidStatusTransition, QuoteNotFound
from .models.edit import QuoteEdit
from .models.quote import Quote, QuoteItem, QuoteStatus, utcnow
from .quote_store import check_commit, order_items, status_timestamps
from .totals import calculate_total

logger = logging.getLogger(__name__)


@firestore.transactional
def _commit_in_transaction(
    transaction: firestore.Transaction,
    doc_ref: firestore.DocumentReference,
    edit_ref: firestore.DocumentReference,
    *,
    expected_version: int,
    items: list[QuoteItem],
    edit: QuoteEdit,
) -> int:
    snapshot = doc_ref.get(transaction=transaction)
    if not snapshot.exists:
        raise QuoteNotFound(doc_ref.id)

    check_commit(doc_ref.id, expected_version, snapshot.get("version"), edit)
    new_version = expected_version + 1
    transaction.update(
        doc_ref,
        {
            "version": new_version,
            "total_amount": str(calculate_total(items)),
            "updated_at": utcnow(),
            "items": [item.model_dump(mode="json") for item in items],
        },
    )
    transaction.create(edit_ref, edit.model_dump(mode="json"))
    return new_version


@firestore.transactional
def _advance_in_transaction(
    transaction: firestore.Transaction,
    doc_ref: firestore.DocumentReference,
    *,
    status: QuoteStatus,
) -> dict[str, Any]:
    snapshot = doc_ref.get(transaction=transaction)
    if not snapshot.exists:
        raise QuoteNotFound(doc_ref.id)

    data = snapshot.to_dict()
    quote = Quote.model_validate(_quote_fields(data))
    if not quote.can_transition_to(status):
        raise InvalidStatusTransition(doc_ref.id, quote.status.value, status.value)

    now = utcnow()
    update = {"status": status.value, "updated_at": now, **status_timestamps(status, now)}
    transaction.update(doc_ref, update)
    return {**data, **update}


def _quote_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key != "items"}


class FirestoreQuoteStore:
    """Firestore-backed quote store for production use.

    Each quote is one document holding its line items; committed edits live
    in the document's ``edits`` sub-collection.
    """

    COLLECTION_NAME = "quotes"
    EDITS_COLLECTION = "edits"

    def __init__(self, project_id: str | None = None) -> None:
        self._db = firestore.Client(project=project_id)
        self._collection = self._db.collection(self.COLLECTION_NAME)

    def create_quote(self, quote: Quote, items: Sequence[QuoteItem]) -> Quote:
        """Create a quote at version 1 with its derived total."""
        ordered = order_items(quote.id, items)
        stored = quote.model_copy(update={"version": 1, "total_amount": calculate_total(ordered)})

        doc_ref = self._collection.document(quote.id)
        try:
            doc_ref.create(self._to_firestore_dict(stored, ordered))
        except google_exceptions.AlreadyExists as exc:
            raise DuplicateQuote(quote.id) from exc

        logger.info(
            "Created quote",
            extra={
                "quote_id": quote.id,
                "contractor_id": quote.contractor_id,
                "items_count": len(ordered),
            },
        )
        return stored

    def load_quote(self, quote_id: str) -> tuple[Quote, list[QuoteItem]]:
        """Read a quote and its items in display order."""
        doc = self._collection.document(quote_id).get()
        if not doc.exists:
            raise QuoteNotFound(quote_id)
        return self._from_firestore_dict(doc.to_dict())

    def commit_quote_version(
        self,
        quote_id: str,
        expected_version: int,
        new_items: Sequence[QuoteItem],
        edit: QuoteEdit,
    ) -> int:
        """Replace the item set and record ``edit`` if the stored version still matches."""
        doc_ref = self._collection.document(quote_id)
        edit_ref = doc_ref.collection(self.EDITS_COLLECTION).document(edit.id)
        new_version = _commit_in_transaction(
            self._db.transaction(),
            doc_ref,
            edit_ref,
            expected_version=expected_version,
            items=order_items(quote_id, new_items),
            edit=edit,
        )

        logger.info(
            "Committed quote version",
            extra={
                "quote_id": quote_id,
                "version_from": expected_version,
                "version_to": new_version,
                "edit_type": edit.edit_type.value,
            },
        )
        return new_version

    def list_edits(self, quote_id: str) -> list[QuoteEdit]:
        doc_ref = self._collection.document(quote_id)
        if not doc_ref.get().exists:
            raise QuoteNotFound(quote_id)
        query = doc_ref.collection(self.EDITS_COLLECTION).order_by("version_from")
        return [QuoteEdit.model_validate(doc.to_dict()) for doc in query.stream()]

    def advance_status(self, quote_id: str, status: QuoteStatus) -> Quote:
        doc_ref = self._collection.document(quote_id)
        data = _advance_in_transaction(self._db.transaction(), doc_ref, status=status)

        logger.info("Advanced quote status", extra={"quote_id": quote_id, "status": status.value})
        quote, _ = self._from_firestore_dict(data)
        return quote

    def _to_firestore_dict(self, quote: Quote, items: Sequence[QuoteItem]) -> dict[str, Any]:
        """Convert a quote and its items to a Firestore document dict."""
        data = quote.model_dump(mode="json")
        data["items"] = [item.model_dump(mode="json") for item in items]
        return data

    def _from_firestore_dict(self, data: dict[str, Any]) -> tuple[Quote, list[QuoteItem]]:
        """Convert a Firestore document dict to a quote and its items."""
        quote = Quote.model_validate(_quote_fields(data))
        items = [QuoteItem.model_validate(item) for item in data.get("items", [])]
        items.sort(key=lambda item: item.display_order)
        return quote, items


__all__ = ["FirestoreQuoteStore"]
