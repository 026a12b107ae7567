from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Literal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, EmailStr, Field

from quote_revision_engine.config import EngineSettings
from quote_revision_engine.errors import (
    CommandError,
    CommandParseError,
    DuplicateQuote,
    InvalidSessionState,
    InvalidStatusTransition,
    LowConfidenceRequiresConfirmation,
    NoActiveSession,
    QuoteEngineError,
    QuoteNotEditable,
    QuoteNotFound,
    SessionAlreadyActive,
    StaleQuoteVersion,
)
from quote_revision_engine.interpreter import (
    EDIT_SYSTEM_PROMPT,
    CommandInterpreter,
    KeywordCommandInterpreter,
    VertexCommandInterpreter,
)
from quote_revision_engine.logging_config import set_trace_id, setup_logging
from quote_revision_engine.messages import (
    format_quote_overview,
    is_cancel_reply,
    is_confirmation_reply,
    is_send_instruction,
)
from quote_revision_engine.models.command import VoiceEditCommand
from quote_revision_engine.models.edit import QuoteEdit
from quote_revision_engine.models.quote import (
    ItemCategory,
    ItemUnit,
    Quote,
    QuoteDocument,
    QuoteItem,
    utcnow,
)
from quote_revision_engine.models.session import QuoteReviewSession, SessionState
from quote_revision_engine.quote_repository import LocalQuoteRepository
from quote_revision_engine.quote_store import QuoteStorage, QuoteStore, generate_quote_id
from quote_revision_engine.session_manager import ReviewSessionManager


class NewQuoteItem(BaseModel):
    item_code: str | None = None
    description: str
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit: ItemUnit = ItemUnit.each
    unit_price: Decimal = Field(ge=0)
    category: ItemCategory = ItemCategory.other
    notes: str | None = None


class CreateQuoteRequest(BaseModel):
    contractor_id: str
    customer_name: str
    customer_email: EmailStr | None = None
    customer_phone: str
    customer_address: str
    project_description: str
    valid_until: datetime | None = None
    items: list[NewQuoteItem] = Field(default_factory=list)


class ContractorRequest(BaseModel):
    contractor_id: str


class OpenSessionRequest(ContractorRequest):
    thread_id: str | None = None


class CommandRequest(ContractorRequest):
    command: VoiceEditCommand
    transcript: str | None = None
    thread_id: str | None = None


class TranscriptRequest(ContractorRequest):
    transcript: str
    thread_id: str | None = None


class SessionResponse(BaseModel):
    session: QuoteReviewSession
    message: str | None = None


class TranscriptResponse(BaseModel):
    session: QuoteReviewSession | None
    commands: list[VoiceEditCommand]
    message: str


class ApproveResponse(BaseModel):
    quote: Quote
    items: list[QuoteItem]
    edit: QuoteEdit | None
    message: str


class ReloadResponse(BaseModel):
    session: QuoteReviewSession
    dropped_commands: list[VoiceEditCommand]


class ReplyResponse(BaseModel):
    action: Literal["queued", "approved", "cancelled", "sent", "ignored"]
    message: str
    session: QuoteReviewSession | None = None
    quote: Quote | None = None


class SweepResponse(BaseModel):
    expired_sessions: list[str]


# Environment configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "dev")
PROJECT_ID = os.getenv("PROJECT_ID")
PUBSUB_TOPIC_QUOTE_VERSIONS = os.getenv("PUBSUB_TOPIC_QUOTE_VERSIONS", "quote-versions")
PUBSUB_TOPIC_QUOTE_SENT = os.getenv("PUBSUB_TOPIC_QUOTE_SENT", "quote-sent")
VERTEX_LOCATION = os.getenv("VERTEX_LOCATION", "us-central1")
VERTEX_MODEL = os.getenv("VERTEX_MODEL", "gemini-1.5-flash")
QUOTE_FIXTURES_PATH = Path(os.getenv("QUOTE_FIXTURES_PATH", "data/quotes")).resolve()

setup_logging(environment=ENVIRONMENT, project_id=PROJECT_ID)
logger = logging.getLogger(__name__)

app = FastAPI(title="Quote Revision Engine API", version="0.1.0")

settings = EngineSettings.from_env()

# Firestore, Pub/Sub and Vertex AI in production; in-memory and keyword rules for dev
store: QuoteStorage
interpreter: CommandInterpreter
if ENVIRONMENT == "dev":
    store = QuoteStore()
    if QUOTE_FIXTURES_PATH.is_dir():
        LocalQuoteRepository(base_path=QUOTE_FIXTURES_PATH).seed(store)
    interpreter = KeywordCommandInterpreter()
    publisher = None
else:
    from quote_revision_engine.firestore_quote_store import FirestoreQuoteStore
    from quote_revision_engine.pubsub_client import PubSubClient
    from quote_revision_engine.vertex_ai_adapter import VertexAIAdapter

    store = FirestoreQuoteStore(project_id=PROJECT_ID)
    interpreter = VertexCommandInterpreter(
        VertexAIAdapter(
            project_id=PROJECT_ID,
            location=VERTEX_LOCATION,
            model_name=VERTEX_MODEL,
            system_instruction=EDIT_SYSTEM_PROMPT,
        )
    )
    publisher = (
        PubSubClient(
            PROJECT_ID,
            versions_topic=PUBSUB_TOPIC_QUOTE_VERSIONS,
            sent_topic=PUBSUB_TOPIC_QUOTE_SENT,
        )
        if PROJECT_ID
        else None
    )

manager = ReviewSessionManager(store, settings=settings, publisher=publisher)

ERROR_STATUS: dict[type[QuoteEngineError], int] = {
    QuoteNotFound: 404,
    NoActiveSession: 404,
    DuplicateQuote: 409,
    SessionAlreadyActive: 409,
    StaleQuoteVersion: 409,
    InvalidSessionState: 409,
    QuoteNotEditable: 409,
    InvalidStatusTransition: 409,
    LowConfidenceRequiresConfirmation: 409,
    CommandError: 422,
    CommandParseError: 422,
}


def _status_for(exc: QuoteEngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400


@app.middleware("http")
async def trace_requests(request: Request, call_next):
    header = request.headers.get("X-Cloud-Trace-Context", "")
    set_trace_id(header.split("/")[0] or uuid.uuid4().hex)
    return await call_next(request)


@app.exception_handler(QuoteEngineError)
async def handle_engine_error(request: Request, exc: QuoteEngineError) -> JSONResponse:
    status_code = _status_for(exc)
    logger.info(
        "Rejected request",
        extra={"path": request.url.path, "error": exc.code, "status_code": status_code},
    )
    return JSONResponse(exc.to_dict(), status_code=status_code)


@app.post("/v1/quotes", response_model=QuoteDocument, status_code=201)
async def create_quote(request: CreateQuoteRequest) -> QuoteDocument:
    quote_id = generate_quote_id()
    now = utcnow()
    quote = Quote(
        id=quote_id,
        contractor_id=request.contractor_id,
        customer_name=request.customer_name,
        customer_email=request.customer_email,
        customer_phone=request.customer_phone,
        customer_address=request.customer_address,
        project_description=request.project_description,
        valid_until=request.valid_until or now + timedelta(days=settings.quote_validity_days),
        created_at=now,
        updated_at=now,
    )
    items = [
        QuoteItem(id=f"{quote_id}_item_{position}", quote_id=quote_id, display_order=position, **item.model_dump())
        for position, item in enumerate(request.items)
    ]
    stored = await asyncio.to_thread(store.create_quote, quote, items)
    return QuoteDocument(quote=stored, items=items)


@app.get("/v1/quotes/{quote_id}", response_model=QuoteDocument)
async def get_quote(quote_id: str) -> QuoteDocument:
    quote, items = await asyncio.to_thread(store.load_quote, quote_id)
    return QuoteDocument(quote=quote, items=items)


@app.get("/v1/quotes/{quote_id}/overview", response_class=PlainTextResponse)
async def quote_overview(quote_id: str) -> str:
    quote, items = await asyncio.to_thread(store.load_quote, quote_id)
    return format_quote_overview(quote, items)


@app.get("/v1/quotes/{quote_id}/edits", response_model=list[QuoteEdit])
async def list_edits(quote_id: str) -> list[QuoteEdit]:
    return await asyncio.to_thread(store.list_edits, quote_id)


@app.post("/v1/quotes/{quote_id}/session", response_model=SessionResponse, status_code=201)
async def open_session(quote_id: str, request: OpenSessionRequest) -> SessionResponse:
    session = await asyncio.to_thread(
        manager.open_session, quote_id, request.contractor_id, thread_id=request.thread_id
    )
    return SessionResponse(session=session)


@app.get("/v1/quotes/{quote_id}/session", response_model=SessionResponse)
async def get_session(quote_id: str) -> SessionResponse:
    session = manager.get_session(quote_id)
    if session is None:
        raise NoActiveSession(quote_id)
    return SessionResponse(session=session)


@app.post("/v1/quotes/{quote_id}/commands", response_model=SessionResponse)
async def submit_command(quote_id: str, request: CommandRequest) -> SessionResponse:
    session = await asyncio.to_thread(
        manager.submit_command,
        quote_id,
        request.contractor_id,
        request.command,
        transcript=request.transcript,
        thread_id=request.thread_id,
    )
    return SessionResponse(session=session)


@app.post("/v1/quotes/{quote_id}/transcripts", response_model=TranscriptResponse)
async def submit_transcript(quote_id: str, request: TranscriptRequest) -> TranscriptResponse:
    return await asyncio.to_thread(_queue_transcript, quote_id, request)


@app.post("/v1/quotes/{quote_id}/session:confirm", response_model=SessionResponse)
async def request_confirmation(quote_id: str, request: ContractorRequest) -> SessionResponse:
    summary = await asyncio.to_thread(manager.request_confirmation, quote_id, request.contractor_id)
    return SessionResponse(session=manager.get_session(quote_id), message=summary)


@app.post("/v1/quotes/{quote_id}/session:cancel", response_model=SessionResponse)
async def cancel_changes(quote_id: str, request: ContractorRequest) -> SessionResponse:
    session = await asyncio.to_thread(manager.cancel_changes, quote_id, request.contractor_id)
    return SessionResponse(session=session, message="Changes discarded. Record new changes or say 'send it'.")


@app.post("/v1/quotes/{quote_id}/session:approve", response_model=ApproveResponse)
async def approve_changes(quote_id: str, request: ContractorRequest) -> ApproveResponse:
    result = await asyncio.to_thread(manager.approve, quote_id, request.contractor_id)
    return ApproveResponse(
        quote=result.quote,
        items=result.items,
        edit=result.edit,
        message=f"Quote updated. New total: ${result.quote.total_amount:,.2f}",
    )


@app.post("/v1/quotes/{quote_id}/session:reload", response_model=ReloadResponse)
async def reload_session(quote_id: str, request: ContractorRequest) -> ReloadResponse:
    dropped = await asyncio.to_thread(manager.reload, quote_id, request.contractor_id)
    return ReloadResponse(session=manager.get_session(quote_id), dropped_commands=dropped)


@app.post("/v1/quotes/{quote_id}/session:close", response_model=SessionResponse)
async def close_session(quote_id: str, request: ContractorRequest) -> SessionResponse:
    session = await asyncio.to_thread(manager.close_session, quote_id, request.contractor_id)
    return SessionResponse(session=session)


@app.post("/v1/quotes/{quote_id}:send", response_model=Quote)
async def send_quote(quote_id: str, request: ContractorRequest) -> Quote:
    return await asyncio.to_thread(manager.send_quote, quote_id, request.contractor_id)


@app.post("/v1/quotes/{quote_id}/replies", response_model=ReplyResponse)
async def handle_reply(quote_id: str, request: TranscriptRequest) -> ReplyResponse:
    """Route a free-form contractor message the way the messaging thread expects."""
    return await asyncio.to_thread(_handle_reply, quote_id, request)


@app.post("/v1/sessions:sweep", response_model=SweepResponse)
async def sweep_sessions() -> SweepResponse:
    expired = await asyncio.to_thread(manager.expire_idle_sessions)
    return SweepResponse(expired_sessions=[session.id for session in expired])


@app.get("/health")
async def healthcheck() -> JSONResponse:
    return JSONResponse({"status": "ok"})


UNCLEAR_CHANGES = "I couldn't understand your changes. Please try again with specific items and amounts."


def _queue_transcript(
    quote_id: str,
    request: TranscriptRequest,
    *,
    replace_pending: bool = False,
) -> TranscriptResponse:
    _, items = store.load_quote(quote_id)
    commands = interpreter.interpret(request.transcript, items)
    if not commands:
        return TranscriptResponse(session=manager.get_session(quote_id), commands=[], message=UNCLEAR_CHANGES)

    session = manager.submit_commands(
        quote_id,
        request.contractor_id,
        commands,
        transcript=request.transcript,
        thread_id=request.thread_id,
        replace_pending=replace_pending,
    )
    return TranscriptResponse(
        session=session,
        commands=commands,
        message=manager.pending_summary(quote_id, request.contractor_id),
    )


def _handle_reply(quote_id: str, request: TranscriptRequest) -> ReplyResponse:
    session = manager.get_session(quote_id)
    awaiting = session is not None and session.state is SessionState.confirming_changes

    if awaiting and is_confirmation_reply(request.transcript):
        result = manager.approve(quote_id, request.contractor_id)
        return ReplyResponse(
            action="approved",
            message=(
                f"Updated quote ready. New total: ${result.quote.total_amount:,.2f}\n"
                "Record any other changes, or say 'send it' to deliver to the customer"
            ),
            quote=result.quote,
        )
    if awaiting and is_cancel_reply(request.transcript):
        cancelled = manager.cancel_changes(quote_id, request.contractor_id)
        return ReplyResponse(action="cancelled", message="Changes discarded.", session=cancelled)
    if not awaiting and is_send_instruction(request.transcript):
        quote = manager.send_quote(quote_id, request.contractor_id)
        return ReplyResponse(
            action="sent",
            message="Quote sent to customer! You'll be notified when they view it.",
            quote=quote,
        )

    # an adjustment while confirming replaces the frozen queue only once it parses
    queued = _queue_transcript(quote_id, request, replace_pending=awaiting)
    if not queued.commands:
        return ReplyResponse(action="ignored", message=queued.message, session=queued.session)
    summary = manager.request_confirmation(quote_id, request.contractor_id)
    return ReplyResponse(action="queued", message=summary, session=manager.get_session(quote_id))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
