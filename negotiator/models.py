"""
Data Models - msgspec Structs for efficient serialization.

These models define the records exchanged between the row store, the change
feed, the session synchronizer and the HTTP layer. Field names mirror the
columns of the `sessions`, `messages` and `settlement_terms` relations so a
row can be decoded straight into its Struct.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from msgspec import Struct


Role = Literal["party_a", "party_b"]
SessionStatus = Literal["active", "ratified"]
Intent = Literal["offer", "acceptance", "inquiry"]
TermStatus = Literal["pending", "accepted", "disputed", "rejected"]
EventType = Literal["INSERT", "UPDATE"]

ROLES = ("party_a", "party_b")
INTENTS = ("offer", "acceptance", "inquiry")
TERM_STATUSES = ("pending", "accepted", "disputed", "rejected")

DEFAULT_INTENT = "inquiry"

# Ordered: the first entry different from the source is the translation target
SUPPORTED_LANGUAGES: Dict[str, str] = {
    "en": "English",
    "hi": "Hindi",
    "mr": "Marathi",
}

ROLE_LABELS: Dict[str, str] = {
    "party_a": "Requester",
    "party_b": "Respondent",
}


def counterpart(role: str) -> str:
    """Return the opposite party role."""
    return "party_b" if role == "party_a" else "party_a"


def target_language(source_language: str) -> str:
    """Pick the complementary language a message is translated into."""
    others = [code for code in SUPPORTED_LANGUAGES if code != source_language]
    return others[0]


class Session(Struct):
    """One negotiation between two parties."""
    id: str
    case_name: str
    status: SessionStatus
    created_at: datetime
    created_by: Optional[str] = None


class Message(Struct):
    """Chat message, annotated once with a translation and an intent."""
    id: str
    session_id: str
    sender_role: Role
    content_original: str
    language_code: str
    created_at: datetime
    content_translated: Optional[str] = None
    intent: Intent = "inquiry"


class SettlementTerm(Struct):
    """Proposed settlement clause with its acceptance status."""
    id: str
    session_id: str
    clause_title: str
    clause_content: str
    status: TermStatus
    version: int
    proposed_by: Role
    created_at: datetime
    updated_at: datetime


class ChangeEvent(Struct):
    """Change notification published by the row store after a write."""
    table: str  # sessions, messages, settlement_terms
    event_type: EventType
    session_id: str
    record: Any


class TranslationResult(Struct):
    """Classifier output for a single message."""
    translation: str
    intent: Intent = "inquiry"
    message_id: Optional[str] = None


class NegotiationContext(Struct, frozen=True):
    """Which session the acting party is working in, and as whom."""
    session_id: str
    role: Role


class Progress(Struct):
    """Accepted-clause ratio shown by the progress tracker."""
    accepted: int
    total: int
    percentage: int


class SessionSnapshot(Struct):
    """Point-in-time view of one session and everything it owns."""
    session: Optional[Session]
    messages: List[Message]
    terms: List[SettlementTerm]
    progress: Progress
    can_ratify: bool
    loading: bool = False
