"""Settlement clause state machine and ratification guard."""

from typing import Dict, FrozenSet, Iterable, Sequence

from negotiator.error_handling import InvalidTransitionError
from negotiator.models import Progress, SettlementTerm


# No transition re-enters pending; accepted and rejected are terminal.
TERM_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"accepted", "disputed", "rejected"}),
    "disputed": frozenset({"accepted", "rejected"}),
    "accepted": frozenset(),
    "rejected": frozenset(),
}

SESSION_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "active": frozenset({"ratified"}),
    "ratified": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Whether a clause may move from `current` to `target`."""
    return target in TERM_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless the clause transition is defined."""
    if target not in TERM_TRANSITIONS:
        raise InvalidTransitionError(f"Unknown clause status: {target}")
    if not can_transition(current, target):
        raise InvalidTransitionError(f"Clause cannot move from {current} to {target}")


def is_terminal(status: str) -> bool:
    return not TERM_TRANSITIONS.get(status)


def can_ratify(terms: Sequence[SettlementTerm]) -> bool:
    """Ratification requires at least one clause and every clause accepted."""
    return len(terms) > 0 and all(term.status == "accepted" for term in terms)


def accepted_terms(terms: Iterable[SettlementTerm]) -> list:
    return [term for term in terms if term.status == "accepted"]


def progress(terms: Sequence[SettlementTerm]) -> Progress:
    """Accepted / total clause counts with a rounded percentage."""
    total = len(terms)
    accepted = len(accepted_terms(terms))
    percentage = int(accepted * 100 / total + 0.5) if total else 0
    return Progress(accepted=accepted, total=total, percentage=percentage)
