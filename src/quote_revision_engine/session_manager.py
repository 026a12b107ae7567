"""Review sessions: the conversational state machine around quote edits.

A session moves ``INITIAL -> REVIEWING_QUOTE -> CONFIRMING_CHANGES -> FINALIZED``.
Commands queue up while reviewing, freeze once confirmation is requested and
are committed as exactly one new quote version on approval. Only one live
session may exist per quote; the quote store's version number is the
serialisation point between sessions.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterator, Protocol, Sequence

from .applier import EditApplier, edit_type_for, validate_command
from .config import EngineSettings
from .errors import (
    CommandError,
    InvalidCommand,
    InvalidSessionState,
    LowConfidenceRequiresConfirmation,
    NoActiveSession,
    QuoteNotEditable,
    SessionAlreadyActive,
    StaleQuoteVersion,
)
from .messages import format_change_summary
from .models.command import VoiceEditCommand
from .models.edit import QuoteEdit
from .models.quote import Quote, QuoteItem, QuoteStatus, utcnow
from .models.session import QuoteReviewSession, SessionOutcome, SessionState
from .quote_store import QuoteStorage, generate_edit_id

logger = logging.getLogger(__name__)


class QuoteEventPublisher(Protocol):
    def publish_version_committed(self, *, quote: Quote, edit: QuoteEdit) -> str:
        ...

    def publish_quote_sent(self, *, quote: Quote) -> str:
        ...


@dataclass(frozen=True)
class CommitResult:
    quote: Quote
    items: list[QuoteItem]
    edit: QuoteEdit | None


class SessionTable:
    """Live review sessions keyed by quote id."""

    def __init__(self) -> None:
        self._sessions: Dict[str, QuoteReviewSession] = {}

    def get(self, quote_id: str) -> QuoteReviewSession | None:
        return self._sessions.get(quote_id)

    def claim(self, session: QuoteReviewSession) -> None:
        holder = self._sessions.get(session.quote_id)
        if holder is not None:
            raise SessionAlreadyActive(session.quote_id, holder.contractor_id)
        self._sessions[session.quote_id] = session

    def release(self, quote_id: str) -> QuoteReviewSession | None:
        return self._sessions.pop(quote_id, None)

    def __iter__(self) -> Iterator[QuoteReviewSession]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)


def _new_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


class ReviewSessionManager:
    def __init__(
        self,
        store: QuoteStorage,
        *,
        settings: EngineSettings | None = None,
        applier: EditApplier | None = None,
        publisher: QuoteEventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
        table: SessionTable | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or EngineSettings()
        self._applier = applier or EditApplier()
        self._publisher = publisher
        self._clock = clock
        self._table = table if table is not None else SessionTable()
        self._lock = threading.RLock()

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    def get_session(self, quote_id: str) -> QuoteReviewSession | None:
        with self._lock:
            session = self._live(quote_id, self._clock())
            return session.model_copy(deep=True) if session else None

    def open_session(
        self,
        quote_id: str,
        contractor_id: str,
        *,
        thread_id: str | None = None,
    ) -> QuoteReviewSession:
        with self._lock:
            now = self._clock()
            holder = self._live(quote_id, now)
            if holder is not None:
                raise SessionAlreadyActive(quote_id, holder.contractor_id)
            return self._open(quote_id, contractor_id, thread_id, now).model_copy(deep=True)

    def submit_command(
        self,
        quote_id: str,
        contractor_id: str,
        command: VoiceEditCommand,
        *,
        transcript: str | None = None,
        thread_id: str | None = None,
    ) -> QuoteReviewSession:
        """Queue ``command`` on the quote's session, opening one if needed."""
        return self.submit_commands(
            quote_id, contractor_id, [command], transcript=transcript, thread_id=thread_id
        )

    def submit_commands(
        self,
        quote_id: str,
        contractor_id: str,
        commands: Sequence[VoiceEditCommand],
        *,
        transcript: str | None = None,
        thread_id: str | None = None,
        replace_pending: bool = False,
    ) -> QuoteReviewSession:
        """Queue the commands of one utterance together.

        Every command is validated before anything is queued, so a bad
        command leaves the session as it was. With ``replace_pending`` a
        queue awaiting confirmation is swapped for ``commands`` and the
        session goes back to ``REVIEWING_QUOTE``; otherwise it is rejected.
        """
        if not commands:
            raise InvalidCommand("No edit commands to queue")
        for index, command in enumerate(commands):
            try:
                validate_command(command)
            except CommandError as exc:
                exc.command_index = index
                raise

        with self._lock:
            now = self._clock()
            session = self._live(quote_id, now)
            if session is None:
                session = self._open(quote_id, contractor_id, thread_id, now)
            else:
                self._check_holder(session, contractor_id)
                replacing = replace_pending and session.state is SessionState.confirming_changes
                if session.state is not SessionState.reviewing_quote and not replacing:
                    raise InvalidSessionState(
                        f"Pending changes on quote {quote_id} are awaiting confirmation; "
                        "approve or cancel them first"
                    )
                self._check_version(session)
                if replacing:
                    self._discard_pending(session)
                    session.state = SessionState.reviewing_quote

            session.pending_changes = [*session.pending_changes, *commands]
            if transcript:
                session.transcripts = [*session.transcripts, transcript]
            session.last_activity = now

            logger.info(
                "Queued edit commands",
                extra={
                    "quote_id": quote_id,
                    "session_id": session.id,
                    "command_types": [command.type.value for command in commands],
                    "low_confidence_indexes": session.low_confidence_indexes(
                        self._settings.confidence_threshold
                    ),
                    "pending_count": len(session.pending_changes),
                },
            )
            return session.model_copy(deep=True)

    def request_confirmation(self, quote_id: str, contractor_id: str) -> str:
        """Freeze the pending queue and return the summary to show the contractor."""
        with self._lock:
            now = self._clock()
            session = self._require(quote_id, contractor_id, now)
            if session.state is not SessionState.reviewing_quote:
                raise InvalidSessionState(
                    f"Session for quote {quote_id} is {session.state.value}, not REVIEWING_QUOTE"
                )
            _, items = self._check_version(session)
            session.state = SessionState.confirming_changes
            session.last_activity = now
            return format_change_summary(
                items,
                session.pending_changes,
                confidence_threshold=self._settings.confidence_threshold,
                applier=self._applier,
                quote_id=quote_id,
            )

    def pending_summary(self, quote_id: str, contractor_id: str) -> str:
        with self._lock:
            session = self._require(quote_id, contractor_id, self._clock())
            _, items = self._store.load_quote(quote_id)
            return format_change_summary(
                items,
                session.pending_changes,
                confidence_threshold=self._settings.confidence_threshold,
                applier=self._applier,
                quote_id=quote_id,
            )

    def cancel_changes(self, quote_id: str, contractor_id: str) -> QuoteReviewSession:
        with self._lock:
            now = self._clock()
            session = self._require(quote_id, contractor_id, now)
            if session.state is not SessionState.confirming_changes:
                raise InvalidSessionState(
                    f"Session for quote {quote_id} has no changes awaiting confirmation"
                )
            discarded = len(session.pending_changes)
            self._discard_pending(session)
            session.state = SessionState.reviewing_quote
            session.last_activity = now
            logger.info(
                "Cancelled pending changes",
                extra={"quote_id": quote_id, "session_id": session.id, "discarded_count": discarded},
            )
            return session.model_copy(deep=True)

    def approve(self, quote_id: str, contractor_id: str) -> CommitResult:
        """Commit the pending queue as one new quote version and finalize the session.

        Validation failures and stale versions leave the session in its
        current state with its queue untouched.
        """
        with self._lock:
            now = self._clock()
            session = self._require(quote_id, contractor_id, now)
            threshold = self._settings.confidence_threshold

            if session.state is SessionState.reviewing_quote:
                if not self._settings.auto_confirm:
                    raise InvalidSessionState(
                        f"Request confirmation for quote {quote_id} before approving"
                    )
                low_confidence = session.low_confidence_indexes(threshold)
                if low_confidence:
                    raise LowConfidenceRequiresConfirmation(quote_id, low_confidence)
            elif session.state is not SessionState.confirming_changes:
                raise InvalidSessionState(
                    f"Session for quote {quote_id} is {session.state.value}, not CONFIRMING_CHANGES"
                )

            quote, items = self._check_version(session)
            session.last_activity = now
            commands = list(session.pending_changes)
            if not commands:
                self._finalize(session, SessionOutcome.committed, now)
                return CommitResult(quote=quote, items=items, edit=None)

            batch = self._applier.apply(items, commands, quote_id=quote_id)
            edit = QuoteEdit(
                id=generate_edit_id(quote_id, session.current_version),
                quote_id=quote_id,
                version_from=session.current_version,
                version_to=session.current_version + 1,
                edit_type=edit_type_for(commands),
                voice_transcript="\n".join(session.transcripts) or None,
                changes=batch.changes,
                confidence_score=min(command.confidence for command in commands),
                created_at=now,
            )
            new_version = self._store.commit_quote_version(
                quote_id, session.current_version, batch.items, edit
            )

            session.current_version = new_version
            self._discard_pending(session)
            self._finalize(session, SessionOutcome.committed, now)
            quote, items = self._store.load_quote(quote_id)

            logger.info(
                "Committed quote edits",
                extra={
                    "quote_id": quote_id,
                    "session_id": session.id,
                    "version_from": edit.version_from,
                    "version_to": edit.version_to,
                    "changes_count": len(edit.changes),
                    "total_amount": str(quote.total_amount),
                },
            )
            self._publish("publish_version_committed", quote=quote, edit=edit)
            return CommitResult(quote=quote, items=items, edit=edit)

    def reload(self, quote_id: str, contractor_id: str) -> list[VoiceEditCommand]:
        """Adopt the stored quote version; returns the dropped commands so they can be replayed."""
        with self._lock:
            now = self._clock()
            session = self._require(quote_id, contractor_id, now)
            quote, _ = self._store.load_quote(quote_id)
            if not quote.is_editable:
                raise QuoteNotEditable(quote_id, quote.status.value)

            dropped = list(session.pending_changes)
            self._discard_pending(session)
            session.current_version = quote.version
            session.state = SessionState.reviewing_quote
            session.last_activity = now
            logger.info(
                "Reloaded review session",
                extra={
                    "quote_id": quote_id,
                    "session_id": session.id,
                    "version": quote.version,
                    "dropped_count": len(dropped),
                },
            )
            return dropped

    def close_session(self, quote_id: str, contractor_id: str) -> QuoteReviewSession:
        with self._lock:
            now = self._clock()
            session = self._require(quote_id, contractor_id, now)
            self._discard_pending(session)
            self._finalize(session, SessionOutcome.discarded, now)
            return session.model_copy(deep=True)

    def send_quote(self, quote_id: str, contractor_id: str) -> Quote:
        """Deliver the quote as it stands: moves it to ``sent`` and ends any live session."""
        with self._lock:
            now = self._clock()
            session = self._live(quote_id, now)
            if session is not None:
                self._check_holder(session, contractor_id)
                if session.pending_changes:
                    raise InvalidSessionState(
                        f"Quote {quote_id} has unapproved changes; approve or cancel them before sending"
                    )

            quote, _ = self._store.load_quote(quote_id)
            if quote.status is QuoteStatus.draft:
                self._store.advance_status(quote_id, QuoteStatus.review)
            quote = self._store.advance_status(quote_id, QuoteStatus.sent)

            if session is not None:
                self._finalize(session, SessionOutcome.sent, now)
            logger.info("Quote sent", extra={"quote_id": quote_id, "version": quote.version})
            self._publish("publish_quote_sent", quote=quote)
            return quote

    def expire_idle_sessions(self) -> list[QuoteReviewSession]:
        with self._lock:
            now = self._clock()
            expired = [session for session in self._table if self._is_idle(session, now)]
            for session in expired:
                self._expire(session, now)
            return [session.model_copy(deep=True) for session in expired]

    def _open(
        self,
        quote_id: str,
        contractor_id: str,
        thread_id: str | None,
        now: datetime,
    ) -> QuoteReviewSession:
        session = QuoteReviewSession(
            id=_new_session_id(),
            quote_id=quote_id,
            contractor_id=contractor_id,
            thread_id=thread_id,
            started_at=now,
            last_activity=now,
        )

        quote, _ = self._store.load_quote(quote_id)
        if not quote.is_editable:
            raise QuoteNotEditable(quote_id, quote.status.value)
        if quote.status is QuoteStatus.draft:
            quote = self._store.advance_status(quote_id, QuoteStatus.review)

        session.current_version = quote.version
        session.state = SessionState.reviewing_quote
        self._table.claim(session)
        logger.info(
            "Opened review session",
            extra={
                "quote_id": quote_id,
                "session_id": session.id,
                "contractor_id": contractor_id,
                "version": quote.version,
            },
        )
        return session

    def _live(self, quote_id: str, now: datetime) -> QuoteReviewSession | None:
        session = self._table.get(quote_id)
        if session is not None and self._is_idle(session, now):
            self._expire(session, now)
            return None
        return session

    def _require(self, quote_id: str, contractor_id: str, now: datetime) -> QuoteReviewSession:
        session = self._live(quote_id, now)
        if session is None:
            raise NoActiveSession(quote_id)
        self._check_holder(session, contractor_id)
        return session

    def _check_holder(self, session: QuoteReviewSession, contractor_id: str) -> None:
        if session.contractor_id != contractor_id:
            raise SessionAlreadyActive(session.quote_id, session.contractor_id)

    def _check_version(self, session: QuoteReviewSession) -> tuple[Quote, list[QuoteItem]]:
        quote, items = self._store.load_quote(session.quote_id)
        if quote.version != session.current_version:
            raise StaleQuoteVersion(session.quote_id, session.current_version, quote.version)
        return quote, items

    def _is_idle(self, session: QuoteReviewSession, now: datetime) -> bool:
        return now - session.last_activity >= self._settings.idle_timeout

    def _expire(self, session: QuoteReviewSession, now: datetime) -> None:
        discarded = len(session.pending_changes)
        self._discard_pending(session)
        self._finalize(session, SessionOutcome.expired, now)
        logger.info(
            "Expired idle review session",
            extra={
                "quote_id": session.quote_id,
                "session_id": session.id,
                "discarded_count": discarded,
            },
        )

    def _discard_pending(self, session: QuoteReviewSession) -> None:
        session.pending_changes = []
        session.transcripts = []

    def _finalize(self, session: QuoteReviewSession, outcome: SessionOutcome, now: datetime) -> None:
        session.state = SessionState.finalized
        session.outcome = outcome
        session.finalized_at = now
        session.last_activity = now
        self._table.release(session.quote_id)

    def _publish(self, method: str, **payload: object) -> None:
        if self._publisher is None:
            return
        try:
            getattr(self._publisher, method)(**payload)
        except Exception:
            logger.warning(
                "Failed to publish quote event",
                exc_info=True,
                extra={"event": method},
            )


__all__ = ["CommitResult", "QuoteEventPublisher", "ReviewSessionManager", "SessionTable"]
