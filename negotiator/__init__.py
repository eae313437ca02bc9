"""Bilingual Settlement Negotiator - core package.

Submodules that depend on the `store` package (synchronizer, orchestrator)
are imported from their modules directly.
"""

from negotiator.models import (
    Session,
    Message,
    SettlementTerm,
    ChangeEvent,
    TranslationResult,
    NegotiationContext,
    Progress,
    SessionSnapshot,
    SUPPORTED_LANGUAGES,
    counterpart,
    target_language,
)

from negotiator.logging_config import (
    setup_logging,
    get_session_logger,
    log_operation,
)

from negotiator.error_handling import (
    NegotiatorError,
    ValidationError,
    StoreError,
    SessionNotFoundError,
    TermNotFoundError,
    SessionClosedError,
    InvalidTransitionError,
    VersionConflictError,
    ClassifierError,
    RateLimitedError,
    QuotaExceededError,
    handle_errors,
    graceful_degradation,
)

__version__ = "0.1.0"

__all__ = [
    # Models
    "Session",
    "Message",
    "SettlementTerm",
    "ChangeEvent",
    "TranslationResult",
    "NegotiationContext",
    "Progress",
    "SessionSnapshot",
    "SUPPORTED_LANGUAGES",
    "counterpart",
    "target_language",
    # Logging
    "setup_logging",
    "get_session_logger",
    "log_operation",
    # Error Handling
    "NegotiatorError",
    "ValidationError",
    "StoreError",
    "SessionNotFoundError",
    "TermNotFoundError",
    "SessionClosedError",
    "InvalidTransitionError",
    "VersionConflictError",
    "ClassifierError",
    "RateLimitedError",
    "QuotaExceededError",
    "handle_errors",
    "graceful_degradation",
]
