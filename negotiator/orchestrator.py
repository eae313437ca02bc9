"""
Negotiation Orchestrator - routes party actions to the row store.

Two layers:
    NegotiationService   stateless; every operation takes an explicit
                         NegotiationContext (session id + acting role)
    NegotiationDashboard one party's live view: owns the current context and
                         a SessionSynchronizer, reflects its own writes locally

Message flow:
    validate -> insert (intent=inquiry) -> translate/classify -> annotate
A classifier failure leaves the message untranslated; it is logged and never
retried or raised to the sender.
"""

import os
from typing import List, Optional, Tuple

from loguru import logger

from negotiator.clause_state import can_ratify, ensure_transition, progress
from negotiator.error_handling import (
    SessionClosedError,
    SessionNotFoundError,
    TermNotFoundError,
    ValidationError,
    VersionConflictError,
    graceful_degradation,
)
from negotiator.logging_config import get_session_logger, log_operation
from negotiator.models import (
    DEFAULT_INTENT,
    ROLES,
    SUPPORTED_LANGUAGES,
    Message,
    NegotiationContext,
    Progress,
    Session,
    SessionSnapshot,
    SettlementTerm,
)
from negotiator.synchronizer import SessionSynchronizer
from store.row_store import MESSAGES, SESSIONS, SETTLEMENT_TERMS, RowStore
from tools.join_link import build_join_link, parse_join_link


def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field} is required")
    return text


def _require_role(role: str) -> str:
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")
    return role


def _keep_untranslated(service: "NegotiationService", message: Message) -> Message:
    return message


class NegotiationService:
    """Routes create / join / message / clause / ratify requests to the store."""

    def __init__(
        self,
        store: RowStore,
        translator=None,
        public_base_url: Optional[str] = None
    ):
        """Initialize the service.

        Args:
            store: Row store holding sessions, messages and clauses
            translator: TranslationAgent, or None to leave messages untranslated
            public_base_url: Base URL used in shareable join links
        """
        self.store = store
        self.translator = translator
        self.public_base_url = public_base_url or os.getenv(
            "PUBLIC_BASE_URL", "http://localhost:8000/join"
        )

        logger.info(
            "NegotiationService initialized",
            translation_enabled=translator is not None
        )

    # Sessions

    def create_session(
        self,
        case_name: str,
        role: str = "party_a",
        created_by: Optional[str] = None
    ) -> Tuple[Session, NegotiationContext]:
        """Create a new negotiation and enter it as `role`.

        Raises:
            ValidationError: If the case name is blank or the role unknown
        """
        case_name = _require_text(case_name, "Case name")
        _require_role(role)

        session = self.store.insert_session(case_name, created_by=created_by)
        get_session_logger(session.id, "orchestrator").info(
            f"Negotiation opened by {role}: {case_name}"
        )
        return session, NegotiationContext(session_id=session.id, role=role)

    def join_session(self, session_id: str, role: str) -> NegotiationContext:
        """Join an existing session by identifier.

        Raises:
            ValidationError: If the identifier is blank or the role unknown
            SessionNotFoundError: If no such session exists
        """
        session_id = _require_text(session_id, "Session ID")
        _require_role(role)
        self._require_session(session_id)

        get_session_logger(session_id, "orchestrator").info(f"Party joined as {role}")
        return NegotiationContext(session_id=session_id, role=role)

    def join_from_link(self, url: str) -> NegotiationContext:
        """Join using a shareable link; the role comes from the link."""
        session_id, role = parse_join_link(url)
        return self.join_session(session_id, role)

    def share_link(self, ctx: NegotiationContext, base_url: Optional[str] = None) -> str:
        """Link that lets the counterpart join this session."""
        return build_join_link(base_url or self.public_base_url, ctx.session_id, ctx.role)

    def list_sessions(self, limit: int = 20) -> List[Session]:
        return self.store.list_sessions(limit=limit)

    def _require_session(self, session_id: str) -> Session:
        session = self.store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return session

    def _require_active(self, session_id: str) -> Session:
        session = self._require_session(session_id)
        if session.status != "active":
            raise SessionClosedError(f"Session {session_id} is {session.status}")
        return session

    def _raise_inactive(self, session_id: str) -> None:
        """Explain why a guarded insert changed nothing."""
        self._require_active(session_id)
        raise SessionClosedError(f"Session {session_id} closed during the write")

    def snapshot(self, session_id: str) -> SessionSnapshot:
        """One-shot bulk read of a session and everything it owns."""
        session = self._require_session(session_id)
        terms = self.store.list_terms(session_id)
        return SessionSnapshot(
            session=session,
            messages=self.store.list_messages(session_id),
            terms=terms,
            progress=progress(terms),
            can_ratify=can_ratify(terms)
        )

    # Messages

    @log_operation("post_message")
    def post_message(self, ctx: NegotiationContext, content: str, language: str) -> Message:
        """Validate and store a chat message with the provisional intent.

        Raises:
            ValidationError: Blank draft or unsupported language (nothing stored)
            SessionClosedError: Session already ratified
        """
        content = _require_text(content, "Message")
        if language not in SUPPORTED_LANGUAGES:
            raise ValidationError(f"Unsupported language: {language}")
        self._require_active(ctx.session_id)

        message = self.store.insert_message(
            session_id=ctx.session_id,
            sender_role=ctx.role,
            content_original=content,
            language_code=language,
            intent=DEFAULT_INTENT
        )
        if message is None:
            self._raise_inactive(ctx.session_id)
        return message

    @graceful_degradation(fallback_func=_keep_untranslated)
    def annotate_message(self, message: Message) -> Message:
        """Attach the translation and intent to a stored message.

        Classifier failures degrade to the message as stored. Store failures
        propagate.
        """
        session_logger = get_session_logger(message.session_id, "orchestrator")

        if self.translator is None:
            session_logger.debug(f"No translator configured, message {message.id} left untranslated")
            return message

        result = self.translator.translate(
            message.content_original,
            message.language_code,
            message_id=message.id,
            session_id=message.session_id
        )
        updated = self.store.annotate_message(message.id, result.translation, result.intent)
        return updated or message

    def send_message(self, ctx: NegotiationContext, content: str, language: str) -> Message:
        """Post a message and annotate it before returning."""
        message = self.post_message(ctx, content, language)
        return self.annotate_message(message)

    # Settlement terms

    @log_operation("propose_term")
    def propose_term(self, ctx: NegotiationContext, title: str, content: str) -> SettlementTerm:
        """Propose a new pending clause.

        Raises:
            ValidationError: If title or body is blank
            SessionClosedError: Session already ratified
        """
        title = _require_text(title, "Clause title")
        content = _require_text(content, "Clause content")
        self._require_active(ctx.session_id)

        term = self.store.insert_term(
            session_id=ctx.session_id,
            clause_title=title,
            clause_content=content,
            proposed_by=ctx.role
        )
        if term is None:
            self._raise_inactive(ctx.session_id)
        get_session_logger(ctx.session_id, "orchestrator").info(
            f"Clause proposed by {ctx.role}: {title}"
        )
        return term

    @log_operation("update_term_status")
    def update_term_status(
        self,
        ctx: NegotiationContext,
        term_id: str,
        status: str,
        expected_version: Optional[int] = None
    ) -> SettlementTerm:
        """Move a clause to a new status.

        The write only lands while the clause still has the status the
        transition was checked against. With `expected_version` it also
        only applies to that exact version of the clause.

        Raises:
            TermNotFoundError: Clause missing or owned by another session
            InvalidTransitionError: Transition not defined
            VersionConflictError: Clause changed since it was read
            SessionClosedError: Session already ratified
        """
        self._require_active(ctx.session_id)

        term = self.store.get_term(term_id)
        if term is None or term.session_id != ctx.session_id:
            raise TermNotFoundError(f"Clause not found: {term_id}")
        if expected_version is not None and term.version != expected_version:
            raise VersionConflictError(
                f"Clause {term_id} is at version {term.version}, expected {expected_version}"
            )
        ensure_transition(term.status, status)

        updated = self.store.update_term_status(
            term_id,
            status,
            expected_version=expected_version,
            expected_status=term.status
        )
        if updated is None:
            current = self.store.get_term(term_id)
            if current is None:
                raise TermNotFoundError(f"Clause not found: {term_id}")
            ensure_transition(current.status, status)
            raise VersionConflictError(
                f"Clause {term_id} moved to {current.status} (v{current.version}) during update"
            )

        get_session_logger(ctx.session_id, "orchestrator").info(
            f"Clause {term_id} {term.status} -> {status} by {ctx.role} (v{updated.version})"
        )
        return updated

    # Ratification

    @log_operation("ratify")
    def ratify(self, ctx: NegotiationContext) -> Optional[Session]:
        """Finalize the session when every clause is accepted.

        Returns:
            The ratified session, or None when this call changed nothing
            (guard failed or already ratified)
        """
        session_logger = get_session_logger(ctx.session_id, "orchestrator")
        session = self._require_session(ctx.session_id)

        if session.status == "ratified":
            session_logger.debug("Ratify ignored, session already ratified")
            return None

        terms = self.store.list_terms(ctx.session_id)
        if not can_ratify(terms):
            session_logger.info(
                "Ratify ignored, not every clause is accepted",
                accepted=progress(terms).accepted,
                total=len(terms)
            )
            return None

        ratified = self.store.ratify_session(ctx.session_id)
        if ratified is None:
            session_logger.info("Ratify ignored, session or clauses changed concurrently")
            return None
        session_logger.info(f"Session ratified by {ctx.role}")
        return ratified


class NegotiationDashboard:
    """One party's live negotiation view.

    Holds the current NegotiationContext and a SessionSynchronizer; every
    action is written through the service and the returned row is reflected
    into the mirror straight away.
    """

    def __init__(
        self,
        service: NegotiationService,
        synchronizer: Optional[SessionSynchronizer] = None
    ):
        self.service = service
        self.synchronizer = synchronizer or SessionSynchronizer(service.store)
        self.context: Optional[NegotiationContext] = None

    def create(self, case_name: str, role: str = "party_a") -> SessionSnapshot:
        _, ctx = self.service.create_session(case_name, role)
        return self.open(ctx)

    def join(self, session_id: str, role: str) -> SessionSnapshot:
        return self.open(self.service.join_session(session_id, role))

    def join_from_link(self, url: str) -> SessionSnapshot:
        return self.open(self.service.join_from_link(url))

    def open(self, ctx: NegotiationContext) -> SessionSnapshot:
        """Switch to `ctx`, tearing down the previous session's mirror."""
        self.context = ctx
        return self.synchronizer.activate(ctx.session_id)

    def close(self) -> None:
        self.synchronizer.deactivate()
        self.context = None

    def _require_context(self) -> NegotiationContext:
        if self.context is None:
            raise ValidationError("No session selected")
        return self.context

    def send_message(self, content: str, language: str, annotate: bool = True) -> Message:
        ctx = self._require_context()
        message = self.service.post_message(ctx, content, language)
        self.synchronizer.reflect(MESSAGES, message)
        if annotate:
            message = self.service.annotate_message(message)
            self.synchronizer.reflect(MESSAGES, message)
        return message

    def propose_term(self, title: str, content: str) -> SettlementTerm:
        term = self.service.propose_term(self._require_context(), title, content)
        self.synchronizer.reflect(SETTLEMENT_TERMS, term)
        return term

    def update_term_status(
        self,
        term_id: str,
        status: str,
        expected_version: Optional[int] = None
    ) -> SettlementTerm:
        term = self.service.update_term_status(
            self._require_context(), term_id, status, expected_version=expected_version
        )
        self.synchronizer.reflect(SETTLEMENT_TERMS, term)
        return term

    def ratify(self) -> bool:
        """Ratify when the mirrored clause set allows it; otherwise a no-op."""
        ctx = self._require_context()
        if not self.synchronizer.can_ratify:
            return False
        session = self.service.ratify(ctx)
        if session is None:
            return False
        self.synchronizer.reflect(SESSIONS, session)
        return True

    def share_link(self, base_url: Optional[str] = None) -> str:
        return self.service.share_link(self._require_context(), base_url)

    @property
    def can_ratify(self) -> bool:
        return self.synchronizer.can_ratify

    @property
    def progress(self) -> Progress:
        return self.synchronizer.progress

    @property
    def session(self) -> Optional[Session]:
        return self.synchronizer.session

    @property
    def messages(self) -> List[Message]:
        return self.synchronizer.messages

    @property
    def terms(self) -> List[SettlementTerm]:
        return self.synchronizer.terms

    @property
    def loading(self) -> bool:
        return self.synchronizer.loading


def create_negotiation_service(
    db_path: Optional[str] = None,
    translator=None,
    enable_translation: bool = True
) -> NegotiationService:
    """Factory function to create a NegotiationService with environment-based configuration.

    Args:
        db_path: Optional database path (uses DATABASE_URL if not provided)
        translator: Optional translator; built from GOOGLE_API_KEY when omitted
        enable_translation: Whether to build a translator when none is given

    Returns:
        Configured NegotiationService instance
    """
    from negotiator.agents.translation_agent import create_translation_agent
    from store.row_store import create_row_store

    if translator is None and enable_translation:
        translator = create_translation_agent()

    return NegotiationService(store=create_row_store(db_path), translator=translator)
