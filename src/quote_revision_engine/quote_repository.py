from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator, Protocol

from .models.quote import QuoteDocument
from .quote_store import QuoteStorage

logger = logging.getLogger(__name__)


class QuoteRepository(Protocol):
    def get(self, *, record_id: str) -> QuoteDocument:
        ...


class LocalQuoteRepository:
    """Reads quote documents from ``<record_id>.json`` files."""

    def __init__(self, *, base_path: Path) -> None:
        self._base_path = base_path

    def get(self, *, record_id: str) -> QuoteDocument:
        file_path = self._base_path / f"{record_id}.json"
        if not file_path.exists():
            raise FileNotFoundError(f"Quote payload not found: {file_path}")
        with file_path.open("r", encoding="utf-8") as fp:
            data = json.load(fp)
        return QuoteDocument.model_validate(data)

    def iter_documents(self) -> Iterator[QuoteDocument]:
        for file_path in sorted(self._base_path.glob("*.json")):
            yield self.get(record_id=file_path.stem)

    def seed(self, store: QuoteStorage) -> int:
        count = 0
        for document in self.iter_documents():
            store.create_quote(document.quote, document.items)
            count += 1
        logger.info("Seeded quotes", extra={"count": count, "base_path": str(self._base_path)})
        return count


__all__ = ["LocalQuoteRepository", "QuoteRepository"]
