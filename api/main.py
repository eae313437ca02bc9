"""
FastAPI Backend for the Bilingual Settlement Negotiator.

This module provides the REST API layer for the negotiation dashboard:
- Session creation, joining and shareable join links
- Chat messages with background translation / intent classification
- Settlement clause proposals, status changes and ratification
- Live session state served from per-session synchronizers

Architecture:
    Client -> FastAPI -> NegotiationService -> RowStore -> ChangeFeed
                                                             |
                          GET /state <- SessionSynchronizer <-
"""

import os
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Literal, Optional

import msgspec
from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger
from pydantic import BaseModel, Field

from api.security import SECURITY_HEADERS, audit, tls_config, validate_environment
from negotiator.error_handling import (
    ClassifierError,
    InvalidTransitionError,
    NegotiatorError,
    SessionClosedError,
    SessionNotFoundError,
    TermNotFoundError,
    ValidationError,
    VersionConflictError,
)
from negotiator.logging_config import setup_logging
from negotiator.models import SUPPORTED_LANGUAGES, Message, NegotiationContext
from negotiator.orchestrator import NegotiationService, create_negotiation_service
from negotiator.synchronizer import SessionSynchronizer
from tools.contract_renderer import render_contract_markdown

load_dotenv()

setup_logging(
    log_dir=os.getenv("LOG_DIR", "logs"),
    level=os.getenv("LOG_LEVEL", "INFO"),
    rotation="100 MB",
    retention="30 days",
)


# =============================================================================
# FastAPI Application Setup
# =============================================================================

app = FastAPI(
    title="Bilingual Settlement Negotiator",
    description="Two-party settlement negotiation with translated chat, clause voting and ratification",
    version="0.1.0",
)

cors_origins = os.getenv(
    "CORS_ORIGINS", "http://localhost:5173,http://localhost:8000"
).split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

MAX_LIVE_SESSIONS = int(os.getenv("MAX_LIVE_SESSIONS", "100"))


@app.middleware("http")
async def add_security_headers(request, call_next):
    """Inject security headers (CSP, X-Frame-Options, etc.) into all responses."""
    response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers[header] = value
    return response


# =============================================================================
# Service Singleton and Live Session Mirrors
# =============================================================================

service: Optional[NegotiationService] = None
mirrors: "OrderedDict[str, SessionSynchronizer]" = OrderedDict()
mirrors_lock = threading.Lock()


def get_service() -> NegotiationService:
    """Lazy initialization of the negotiation service singleton."""
    global service
    if service is None:
        service = create_negotiation_service()
        logger.info("NegotiationService initialized")
    return service


def set_service(new_service: Optional[NegotiationService]) -> None:
    """Swap the service singleton, dropping every live mirror."""
    global service
    close_mirrors()
    service = new_service


def get_mirror(session_id: str) -> SessionSynchronizer:
    """Live synchronizer for a session, created and activated on first use.

    The bulk read runs outside `mirrors_lock`; when two requests load the
    same session at once the first mirror registered wins. The least
    recently used mirror is deactivated once MAX_LIVE_SESSIONS are live.
    """
    svc = get_service()
    with mirrors_lock:
        mirror = mirrors.get(session_id)
        if mirror is not None:
            mirrors.move_to_end(session_id)
            return mirror

    if svc.store.get_session(session_id) is None:
        raise SessionNotFoundError(f"Session not found: {session_id}")

    loaded = SessionSynchronizer(svc.store)
    loaded.activate(session_id)

    evicted = []
    with mirrors_lock:
        mirror = mirrors.get(session_id)
        if mirror is None:
            mirrors[session_id] = loaded
            mirror = loaded
        else:
            evicted.append((session_id, loaded))
        mirrors.move_to_end(session_id)

        while len(mirrors) > MAX_LIVE_SESSIONS:
            evicted.append(mirrors.popitem(last=False))

    for evicted_id, stale in evicted:
        stale.deactivate()
        logger.debug(f"Dropped live mirror for session {evicted_id}")

    return mirror


def close_mirrors() -> int:
    with mirrors_lock:
        count = len(mirrors)
        for mirror in mirrors.values():
            mirror.deactivate()
        mirrors.clear()
    return count


def _dump(value) -> dict:
    return msgspec.to_builtins(value)


# =============================================================================
# Error Mapping
# =============================================================================

ERROR_STATUS = (
    (ValidationError, 400),
    (InvalidTransitionError, 400),
    (SessionNotFoundError, 404),
    (TermNotFoundError, 404),
    (SessionClosedError, 409),
    (VersionConflictError, 409),
)


@app.exception_handler(NegotiatorError)
async def negotiator_error_handler(request: Request, exc: NegotiatorError):
    """Translate domain errors into HTTP responses."""
    status_code = 500
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    else:
        if isinstance(exc, ClassifierError):
            status_code = exc.status_code

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")

    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# =============================================================================
# Request/Response Models
# =============================================================================

RoleField = Literal["party_a", "party_b"]


class CreateSessionRequest(BaseModel):
    """New negotiation with the creator's role."""

    case_name: str
    role: RoleField = "party_a"
    created_by: Optional[str] = None


class JoinRequest(BaseModel):
    """Role the joining party takes."""

    role: RoleField = "party_b"


class MessageRequest(BaseModel):
    """Chat message draft."""

    role: RoleField
    content: str
    language: str = "en"


class ProposeTermRequest(BaseModel):
    """New settlement clause."""

    role: RoleField
    title: str
    content: str


class TermStatusRequest(BaseModel):
    """Clause status change, optionally pinned to a clause version."""

    role: RoleField
    status: Literal["pending", "accepted", "disputed", "rejected"]
    expected_version: Optional[int] = None


class RatifyRequest(BaseModel):
    """Ratification request from one party."""

    role: RoleField


class TranslateRequest(BaseModel):
    """Classifier request, in the shape the dashboard sends it."""

    messageId: Optional[str] = None
    content: str
    sourceLanguage: str = Field(default="en")
    targetLanguage: Optional[str] = None


class SessionResponse(BaseModel):
    """Session joined or created, with the link for the counterpart."""

    session_id: str
    role: str
    session: dict
    share_link: str


# =============================================================================
# API Endpoints
# =============================================================================


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Bilingual Settlement Negotiator API",
        "version": "0.1.0",
        "status": "running",
        "endpoints": {
            "create": "/sessions",
            "join": "/sessions/{session_id}/join",
            "state": "/sessions/{session_id}/state",
            "messages": "/sessions/{session_id}/messages",
            "terms": "/sessions/{session_id}/terms",
            "ratify": "/sessions/{session_id}/ratify",
            "contract": "/sessions/{session_id}/contract",
            "translate": "/translate",
        },
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "live_sessions": len(mirrors),
    }


def _session_response(svc: NegotiationService, ctx: NegotiationContext) -> SessionResponse:
    session = svc.store.get_session(ctx.session_id)
    return SessionResponse(
        session_id=ctx.session_id,
        role=ctx.role,
        session=_dump(session),
        share_link=svc.share_link(ctx),
    )


@app.post("/sessions", response_model=SessionResponse)
def create_session(request: CreateSessionRequest):
    """Create a negotiation session; the creator enters with the given role."""
    svc = get_service()
    session, ctx = svc.create_session(request.case_name, request.role, created_by=request.created_by)
    audit("session_created", session.id, role=request.role)
    return _session_response(svc, ctx)


@app.get("/sessions")
def list_sessions(limit: int = Query(20, ge=1, le=100)):
    """List recent sessions, newest first."""
    return [_dump(session) for session in get_service().list_sessions(limit=limit)]


@app.post("/sessions/{session_id}/join", response_model=SessionResponse)
def join_session(session_id: str, request: JoinRequest):
    """Join an existing session by identifier."""
    svc = get_service()
    ctx = svc.join_session(session_id, request.role)
    audit("session_joined", ctx.session_id, role=ctx.role)
    return _session_response(svc, ctx)


@app.get("/join", response_model=SessionResponse)
def join_from_link(request: Request):
    """Join through a shareable link (`?session=<id>&role=<role>`)."""
    svc = get_service()
    ctx = svc.join_from_link(str(request.url))
    audit("session_joined", ctx.session_id, role=ctx.role, via="link")
    return _session_response(svc, ctx)


@app.get("/sessions/{session_id}/state")
def get_state(session_id: str):
    """Live session, messages, clauses and ratification readiness."""
    return _dump(get_mirror(session_id).snapshot())


def annotate_in_background(message: Message) -> None:
    """Translate and classify a stored message after the response is sent."""
    try:
        get_service().annotate_message(message)
    except NegotiatorError as e:
        logger.error(f"Annotation of message {message.id} failed: {e}")


@app.post("/sessions/{session_id}/messages", status_code=201)
def post_message(session_id: str, request: MessageRequest, background_tasks: BackgroundTasks):
    """Store a chat message; translation runs as a background task."""
    svc = get_service()
    ctx = NegotiationContext(session_id=session_id, role=request.role)
    message = svc.post_message(ctx, request.content, request.language)
    background_tasks.add_task(annotate_in_background, message)
    return _dump(message)


@app.post("/sessions/{session_id}/terms", status_code=201)
def propose_term(session_id: str, request: ProposeTermRequest):
    """Propose a settlement clause."""
    ctx = NegotiationContext(session_id=session_id, role=request.role)
    return _dump(get_service().propose_term(ctx, request.title, request.content))


@app.patch("/sessions/{session_id}/terms/{term_id}")
def update_term_status(session_id: str, term_id: str, request: TermStatusRequest):
    """Accept, dispute or reject a clause."""
    ctx = NegotiationContext(session_id=session_id, role=request.role)
    term = get_service().update_term_status(
        ctx, term_id, request.status, expected_version=request.expected_version
    )
    return _dump(term)


@app.post("/sessions/{session_id}/ratify")
def ratify_session(session_id: str, request: RatifyRequest):
    """Ratify the agreement; a no-op unless every clause is accepted."""
    svc = get_service()
    ctx = NegotiationContext(session_id=session_id, role=request.role)
    ratified = svc.ratify(ctx)
    if ratified is not None:
        audit("session_ratified", session_id, role=request.role)

    session = svc.store.get_session(session_id)
    return {
        "session_id": session_id,
        "ratified": ratified is not None,
        "status": session.status if session else None,
    }


@app.get("/sessions/{session_id}/contract", response_class=PlainTextResponse)
def get_contract(session_id: str):
    """Markdown contract built from the accepted clauses."""
    snapshot = get_service().snapshot(session_id)
    return render_contract_markdown(snapshot.session, snapshot.terms)


@app.post("/translate")
def translate(request: TranslateRequest):
    """Translate and classify a single message.

    429 when rate limited, 402 when payment is required, 500 otherwise.
    """
    svc = get_service()
    for language in (request.sourceLanguage, request.targetLanguage):
        if language is not None and language not in SUPPORTED_LANGUAGES:
            return JSONResponse(status_code=400, content={"error": f"Unsupported language: {language}"})
    if svc.translator is None:
        return JSONResponse(status_code=500, content={"error": "Translation is not configured"})

    try:
        result = svc.translator.translate(
            request.content,
            request.sourceLanguage,
            message_id=request.messageId,
            target=request.targetLanguage,
        )
    except ClassifierError as e:
        logger.warning(f"Translate endpoint failed ({e.status_code}): {e}")
        messages = {429: "Rate limited, try again later", 402: "Payment required"}
        return JSONResponse(
            status_code=e.status_code,
            content={"error": messages.get(e.status_code, "AI gateway error")},
        )

    return {
        "translation": result.translation,
        "intent": result.intent,
        "messageId": result.message_id,
    }


# =============================================================================
# Application Lifecycle Events
# =============================================================================


@app.on_event("startup")
async def startup_event():
    """Validate configuration and initialize services on startup."""
    logger.info("Starting Bilingual Settlement Negotiator API")

    report = validate_environment()
    for warning in report.warnings:
        logger.warning(f"Configuration warning: {warning}")
    if not report.valid:
        for error in report.errors:
            logger.error(f"Configuration error: {error}")
        raise ValueError("Invalid configuration: " + "; ".join(report.errors))

    get_service()
    logger.info("API startup complete", tls=tls_config() is not None)


@app.on_event("shutdown")
async def shutdown_event():
    """Tear down every live session mirror."""
    logger.info("Shutting down Bilingual Settlement Negotiator API")
    count = close_mirrors()
    logger.info(f"Closed {count} live session mirrors")
