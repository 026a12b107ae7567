from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .command import VoiceEditCommand
from .quote import utcnow


class SessionState(str, Enum):
    initial = "INITIAL"
    reviewing_quote = "REVIEWING_QUOTE"
    confirming_changes = "CONFIRMING_CHANGES"
    finalized = "FINALIZED"


class SessionOutcome(str, Enum):
    committed = "committed"
    discarded = "discarded"
    expired = "expired"
    sent = "sent"


class QuoteReviewSession(BaseModel):
    id: str
    quote_id: str
    contractor_id: str
    state: SessionState = SessionState.initial
    current_version: int = 0
    pending_changes: list[VoiceEditCommand] = Field(default_factory=list)
    transcripts: list[str] = Field(default_factory=list)
    thread_id: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)
    finalized_at: datetime | None = None
    outcome: SessionOutcome | None = None

    @property
    def is_live(self) -> bool:
        return self.state is not SessionState.finalized

    def low_confidence_indexes(self, threshold: float) -> list[int]:
        return [
            index
            for index, command in enumerate(self.pending_changes)
            if command.is_low_confidence(threshold)
        ]


__all__ = ["QuoteReviewSession", "SessionOutcome", "SessionState"]
