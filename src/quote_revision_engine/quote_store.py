from __future__ import annotations

import threading
import uuid
from datetime import datetime
from typing import Dict, List, Protocol, Sequence

from .errors import DuplicateQuote, InvalidStatusTransition, QuoteNotFound, StaleQuoteVersion
from .models.edit import QuoteEdit
from .models.quote import Quote, QuoteItem, QuoteStatus, utcnow
from .totals import calculate_total


class QuoteStorage(Protocol):
    def create_quote(self, quote: Quote, items: Sequence[QuoteItem]) -> Quote:
        ...

    def load_quote(self, quote_id: str) -> tuple[Quote, list[QuoteItem]]:
        ...

    def commit_quote_version(
        self,
        quote_id: str,
        expected_version: int,
        new_items: Sequence[QuoteItem],
        edit: QuoteEdit,
    ) -> int:
        ...

    def list_edits(self, quote_id: str) -> list[QuoteEdit]:
        ...

    def advance_status(self, quote_id: str, status: QuoteStatus) -> Quote:
        ...


def generate_quote_id() -> str:
    ts = utcnow().strftime("%Y%m%d%H%M%S")
    return f"quote_{ts}_{uuid.uuid4().hex[:6]}"


def generate_edit_id(quote_id: str, version_from: int) -> str:
    return f"{quote_id}_v{version_from}_{uuid.uuid4().hex[:6]}"


def status_timestamps(status: QuoteStatus, at: datetime) -> dict[str, datetime]:
    if status is QuoteStatus.sent:
        return {"sent_at": at}
    if status is QuoteStatus.accepted:
        return {"accepted_at": at}
    return {}


def check_commit(quote_id: str, expected_version: int, actual_version: int, edit: QuoteEdit) -> None:
    if actual_version != expected_version:
        raise StaleQuoteVersion(quote_id, expected_version, actual_version)
    if edit.quote_id != quote_id or edit.version_from != expected_version:
        raise ValueError(
            f"Edit {edit.id} describes {edit.quote_id} v{edit.version_from}, "
            f"not {quote_id} v{expected_version}"
        )


def order_items(quote_id: str, items: Sequence[QuoteItem]) -> list[QuoteItem]:
    ordered = sorted(items, key=lambda item: item.display_order)
    orders = [item.display_order for item in ordered]
    if len(set(orders)) != len(orders):
        raise ValueError(f"Quote {quote_id} has duplicate display_order values")
    return [
        item if item.quote_id == quote_id else item.model_copy(update={"quote_id": quote_id})
        for item in ordered
    ]


class QuoteStore:
    """In-memory quote store for dev and tests."""

    def __init__(self) -> None:
        self._quotes: Dict[str, Quote] = {}
        self._items: Dict[str, List[QuoteItem]] = {}
        self._edits: Dict[str, List[QuoteEdit]] = {}
        self._lock = threading.Lock()

    def create_quote(self, quote: Quote, items: Sequence[QuoteItem]) -> Quote:
        ordered = order_items(quote.id, items)
        with self._lock:
            if quote.id in self._quotes:
                raise DuplicateQuote(quote.id)
            stored = quote.model_copy(
                update={"version": 1, "total_amount": calculate_total(ordered)}
            )
            self._quotes[quote.id] = stored
            self._items[quote.id] = ordered
            self._edits[quote.id] = []
            return stored.model_copy()

    def load_quote(self, quote_id: str) -> tuple[Quote, list[QuoteItem]]:
        with self._lock:
            quote = self._get(quote_id)
            return quote.model_copy(), list(self._items[quote_id])

    def commit_quote_version(
        self,
        quote_id: str,
        expected_version: int,
        new_items: Sequence[QuoteItem],
        edit: QuoteEdit,
    ) -> int:
        ordered = order_items(quote_id, new_items)
        with self._lock:
            quote = self._get(quote_id)
            check_commit(quote_id, expected_version, quote.version, edit)
            new_version = expected_version + 1
            self._quotes[quote_id] = quote.model_copy(
                update={
                    "version": new_version,
                    "total_amount": calculate_total(ordered),
                    "updated_at": utcnow(),
                }
            )
            self._items[quote_id] = ordered
            self._edits[quote_id].append(edit)
            return new_version

    def list_edits(self, quote_id: str) -> list[QuoteEdit]:
        with self._lock:
            self._get(quote_id)
            return sorted(self._edits[quote_id], key=lambda edit: edit.version_from)

    def advance_status(self, quote_id: str, status: QuoteStatus) -> Quote:
        with self._lock:
            quote = self._get(quote_id)
            if not quote.can_transition_to(status):
                raise InvalidStatusTransition(quote_id, quote.status.value, status.value)
            now = utcnow()
            updated = quote.model_copy(
                update={"status": status, "updated_at": now, **status_timestamps(status, now)}
            )
            self._quotes[quote_id] = updated
            return updated.model_copy()

    def _get(self, quote_id: str) -> Quote:
        quote = self._quotes.get(quote_id)
        if quote is None:
            raise QuoteNotFound(quote_id)
        return quote


__all__ = [
    "QuoteStorage",
    "QuoteStore",
    "check_commit",
    "generate_edit_id",
    "generate_quote_id",
    "order_items",
    "status_timestamps",
]
