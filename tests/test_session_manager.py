from decimal import Decimal

import pytest

from quote_revision_engine.config import EngineSettings
from quote_revision_engine.errors import (
    InvalidQuantity,
    InvalidSessionState,
    LowConfidenceRequiresConfirmation,
    NoActiveSession,
    QuoteNotEditable,
    SessionAlreadyActive,
    StaleQuoteVersion,
    TargetNotFound,
)
from quote_revision_engine.models.command import CommandType
from quote_revision_engine.models.edit import EditType
from quote_revision_engine.models.quote import QuoteStatus
from quote_revision_engine.models.session import SessionOutcome, SessionState
from quote_revision_engine.session_manager import ReviewSessionManager

from conftest import QUOTE_ID, command

CONTRACTOR = "contractor_plumbing_01"


class RecordingPublisher:
    def __init__(self) -> None:
        self.events = []

    def publish_version_committed(self, *, quote, edit):
        self.events.append(("version_committed", quote.version, edit.id))
        return "msg-1"

    def publish_quote_sent(self, *, quote):
        self.events.append(("quote_sent", quote.version, quote.status))
        return "msg-2"


class BrokenPublisher:
    def publish_version_committed(self, *, quote, edit):
        raise RuntimeError("pubsub unavailable")

    def publish_quote_sent(self, *, quote):
        raise RuntimeError("pubsub unavailable")


@pytest.fixture
def manager(store, clock):
    return ReviewSessionManager(store, clock=clock)


def _paint_to_three():
    return command(CommandType.change_quantity, target="Paint", value=3)


def test_open_session_moves_draft_quote_to_review(manager, store):
    session = manager.open_session(QUOTE_ID, CONTRACTOR, thread_id="thread-1")

    assert session.state is SessionState.reviewing_quote
    assert session.current_version == 1
    assert session.thread_id == "thread-1"
    quote, _ = store.load_quote(QUOTE_ID)
    assert quote.status is QuoteStatus.review


def test_second_session_on_same_quote_is_rejected(manager):
    manager.open_session(QUOTE_ID, CONTRACTOR)

    with pytest.raises(SessionAlreadyActive):
        manager.open_session(QUOTE_ID, "contractor_other")
    with pytest.raises(SessionAlreadyActive):
        manager.submit_command(QUOTE_ID, "contractor_other", _paint_to_three())


def test_approve_commits_exactly_one_version(store, clock):
    publisher = RecordingPublisher()
    manager = ReviewSessionManager(store, clock=clock, publisher=publisher)

    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three(), transcript="make it three paints")
    summary = manager.request_confirmation(QUOTE_ID, CONTRACTOR)
    assert "New total will be: $1,334.00" in summary

    result = manager.approve(QUOTE_ID, CONTRACTOR)

    assert result.quote.version == 2
    assert result.quote.total_amount == Decimal("1334.00")
    assert result.edit.version_from == 1
    assert result.edit.version_to == 2
    assert result.edit.edit_type is EditType.quantity_change
    assert result.edit.voice_transcript == "make it three paints"
    assert result.edit.confidence_score == pytest.approx(0.95)
    assert [edit.id for edit in store.list_edits(QUOTE_ID)] == [result.edit.id]
    assert manager.get_session(QUOTE_ID) is None
    assert publisher.events == [("version_committed", 2, result.edit.id)]


def test_batch_uses_lowest_confidence_and_batch_type(manager):
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    manager.submit_command(
        QUOTE_ID, CONTRACTOR, command(CommandType.change_price, target="PL-100", value=500, confidence=0.75)
    )
    manager.request_confirmation(QUOTE_ID, CONTRACTOR)
    result = manager.approve(QUOTE_ID, CONTRACTOR)

    assert result.edit.edit_type is EditType.batch
    assert result.edit.confidence_score == pytest.approx(0.75)
    assert len(result.edit.changes) == 2
    assert result.quote.total_amount == Decimal("1384.00")


def test_idle_session_expires_without_touching_quote(manager, store, clock):
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    manager.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.remove_item, target="Toilet install"))
    manager.request_confirmation(QUOTE_ID, CONTRACTOR)

    clock.advance(EngineSettings().idle_timeout_seconds + 1)
    expired = manager.expire_idle_sessions()

    assert len(expired) == 1
    assert expired[0].state is SessionState.finalized
    assert expired[0].outcome is SessionOutcome.expired
    assert expired[0].pending_changes == []
    quote, items = store.load_quote(QUOTE_ID)
    assert quote.version == 1
    assert quote.total_amount == Decimal("1284.00")
    assert len(items) == 5
    assert manager.get_session(QUOTE_ID) is None


def test_idle_session_does_not_lock_the_quote(manager, clock):
    manager.open_session(QUOTE_ID, CONTRACTOR)
    clock.advance(901)

    session = manager.open_session(QUOTE_ID, "contractor_other")
    assert session.contractor_id == "contractor_other"
    assert manager.get_session(QUOTE_ID).id == session.id


def test_operations_without_session_fail(manager):
    with pytest.raises(NoActiveSession):
        manager.request_confirmation(QUOTE_ID, CONTRACTOR)
    with pytest.raises(NoActiveSession):
        manager.approve(QUOTE_ID, CONTRACTOR)


def test_empty_batch_finalizes_without_new_version(manager, store):
    manager.open_session(QUOTE_ID, CONTRACTOR)
    manager.request_confirmation(QUOTE_ID, CONTRACTOR)
    result = manager.approve(QUOTE_ID, CONTRACTOR)

    assert result.edit is None
    assert result.quote.version == 1
    assert store.list_edits(QUOTE_ID) == []
    assert manager.get_session(QUOTE_ID) is None


def test_stale_version_keeps_session_and_reload_recovers(store, clock):
    first = ReviewSessionManager(store, clock=clock)
    other_process = ReviewSessionManager(store, clock=clock)

    first.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    first.request_confirmation(QUOTE_ID, CONTRACTOR)

    other_process.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.remove_item, target="Paint"))
    other_process.request_confirmation(QUOTE_ID, CONTRACTOR)
    other_process.approve(QUOTE_ID, CONTRACTOR)

    with pytest.raises(StaleQuoteVersion) as excinfo:
        first.approve(QUOTE_ID, CONTRACTOR)
    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2
    session = first.get_session(QUOTE_ID)
    assert session.state is SessionState.confirming_changes
    assert len(session.pending_changes) == 1

    dropped = first.reload(QUOTE_ID, CONTRACTOR)
    assert [cmd.type for cmd in dropped] == [CommandType.change_quantity]
    session = first.get_session(QUOTE_ID)
    assert session.state is SessionState.reviewing_quote
    assert session.current_version == 2
    assert session.pending_changes == []

    first.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.change_price, target="PL-100", value=475))
    first.request_confirmation(QUOTE_ID, CONTRACTOR)
    assert first.approve(QUOTE_ID, CONTRACTOR).quote.version == 3


def test_failed_approval_leaves_queue_intact(manager, store):
    manager.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.remove_item, target="Toilet install"))
    manager.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.change_price, target="PL-100", value=400))
    summary = manager.request_confirmation(QUOTE_ID, CONTRACTOR)
    assert "⚠️ Change 2 can't be applied" in summary

    with pytest.raises(TargetNotFound) as excinfo:
        manager.approve(QUOTE_ID, CONTRACTOR)
    assert excinfo.value.command_index == 1

    session = manager.get_session(QUOTE_ID)
    assert session.state is SessionState.confirming_changes
    assert len(session.pending_changes) == 2
    assert store.load_quote(QUOTE_ID)[0].version == 1


def test_queue_is_frozen_while_confirming(manager):
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    manager.request_confirmation(QUOTE_ID, CONTRACTOR)

    with pytest.raises(InvalidSessionState):
        manager.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.remove_item, target="Paint"))


def test_cancel_returns_to_review_with_empty_queue(manager, store):
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    manager.request_confirmation(QUOTE_ID, CONTRACTOR)

    session = manager.cancel_changes(QUOTE_ID, CONTRACTOR)

    assert session.state is SessionState.reviewing_quote
    assert session.pending_changes == []
    assert store.load_quote(QUOTE_ID)[0].version == 1


def test_approve_requires_confirmation_by_default(manager):
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    with pytest.raises(InvalidSessionState):
        manager.approve(QUOTE_ID, CONTRACTOR)


def test_auto_confirm_blocks_low_confidence_commands(store, clock):
    manager = ReviewSessionManager(store, settings=EngineSettings(auto_confirm=True), clock=clock)
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    manager.submit_command(
        QUOTE_ID, CONTRACTOR, command(CommandType.remove_item, target="Paint", confidence=0.4)
    )

    with pytest.raises(LowConfidenceRequiresConfirmation) as excinfo:
        manager.approve(QUOTE_ID, CONTRACTOR)
    assert excinfo.value.command_indexes == [1]


def test_auto_confirm_commits_confident_commands(store, clock):
    manager = ReviewSessionManager(store, settings=EngineSettings(auto_confirm=True), clock=clock)
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())

    assert manager.approve(QUOTE_ID, CONTRACTOR).quote.version == 2


def test_invalid_command_is_rejected_before_opening_session(manager):
    with pytest.raises(InvalidQuantity):
        manager.submit_command(
            QUOTE_ID, CONTRACTOR, command(CommandType.change_quantity, target="Paint", value=0)
        )
    assert manager.get_session(QUOTE_ID) is None


def test_send_quote_finalizes_session_and_locks_quote(store, clock):
    publisher = RecordingPublisher()
    manager = ReviewSessionManager(store, clock=clock, publisher=publisher)
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())

    with pytest.raises(InvalidSessionState):
        manager.send_quote(QUOTE_ID, CONTRACTOR)

    manager.request_confirmation(QUOTE_ID, CONTRACTOR)
    manager.approve(QUOTE_ID, CONTRACTOR)
    quote = manager.send_quote(QUOTE_ID, CONTRACTOR)

    assert quote.status is QuoteStatus.sent
    assert quote.sent_at is not None
    assert publisher.events[-1] == ("quote_sent", 2, QuoteStatus.sent)
    with pytest.raises(QuoteNotEditable):
        manager.open_session(QUOTE_ID, CONTRACTOR)


def test_publish_failure_does_not_undo_commit(store, clock):
    manager = ReviewSessionManager(store, clock=clock, publisher=BrokenPublisher())
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    manager.request_confirmation(QUOTE_ID, CONTRACTOR)

    result = manager.approve(QUOTE_ID, CONTRACTOR)

    assert result.quote.version == 2
    assert store.load_quote(QUOTE_ID)[0].version == 2


def test_close_session_discards_pending_changes(manager, store):
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    session = manager.close_session(QUOTE_ID, CONTRACTOR)

    assert session.outcome is SessionOutcome.discarded
    assert session.pending_changes == []
    assert manager.get_session(QUOTE_ID) is None
    assert store.load_quote(QUOTE_ID)[0].version == 1


def test_auto_confirm_stale_version_keeps_session_reviewing(store, clock):
    first = ReviewSessionManager(store, settings=EngineSettings(auto_confirm=True), clock=clock)
    other_process = ReviewSessionManager(store, clock=clock)
    first.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())

    other_process.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.remove_item, target="Paint"))
    other_process.request_confirmation(QUOTE_ID, CONTRACTOR)
    other_process.approve(QUOTE_ID, CONTRACTOR)

    with pytest.raises(StaleQuoteVersion):
        first.approve(QUOTE_ID, CONTRACTOR)
    session = first.get_session(QUOTE_ID)
    assert session.state is SessionState.reviewing_quote
    assert len(session.pending_changes) == 1

    first.reload(QUOTE_ID, CONTRACTOR)
    first.submit_command(QUOTE_ID, CONTRACTOR, command(CommandType.change_price, target="PL-100", value=475))
    assert first.approve(QUOTE_ID, CONTRACTOR).quote.version == 3


def test_submit_commands_queues_all_or_nothing(manager):
    with pytest.raises(InvalidQuantity) as excinfo:
        manager.submit_commands(
            QUOTE_ID,
            CONTRACTOR,
            [
                command(CommandType.remove_item, target="Paint"),
                command(CommandType.change_quantity, target="Toilet install", value=0),
            ],
        )
    assert excinfo.value.command_index == 1
    assert manager.get_session(QUOTE_ID) is None

    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    with pytest.raises(InvalidQuantity):
        manager.submit_commands(
            QUOTE_ID,
            CONTRACTOR,
            [
                command(CommandType.remove_item, target="Paint"),
                command(CommandType.change_quantity, target="Paint", value=-2),
            ],
        )
    assert [cmd.type for cmd in manager.get_session(QUOTE_ID).pending_changes] == [
        CommandType.change_quantity
    ]


def test_submit_commands_can_replace_queue_awaiting_confirmation(manager):
    manager.submit_command(QUOTE_ID, CONTRACTOR, _paint_to_three())
    manager.request_confirmation(QUOTE_ID, CONTRACTOR)

    with pytest.raises(InvalidSessionState):
        manager.submit_commands(QUOTE_ID, CONTRACTOR, [command(CommandType.remove_item, target="Paint")])

    session = manager.submit_commands(
        QUOTE_ID,
        CONTRACTOR,
        [command(CommandType.remove_item, target="Paint")],
        replace_pending=True,
    )
    assert session.state is SessionState.reviewing_quote
    assert [cmd.type for cmd in session.pending_changes] == [CommandType.remove_item]
