"""Contract preview rendering for accepted settlement terms."""

from datetime import datetime
from typing import Optional, Sequence

from negotiator.clause_state import accepted_terms, progress
from negotiator.models import Session, SettlementTerm


def format_progress(terms: Sequence[SettlementTerm]) -> str:
    """Progress line shown next to the case name, e.g. `2/3 clauses (67%)`."""
    current = progress(terms)
    return f"{current.accepted}/{current.total} clauses ({current.percentage}%)"


def render_contract_markdown(
    session: Optional[Session],
    terms: Sequence[SettlementTerm],
    generated_at: Optional[datetime] = None
) -> str:
    """Render the accepted clauses as a numbered markdown contract.

    Only accepted clauses appear, numbered as articles in proposal order.
    """
    case_name = session.case_name if session else "Untitled"
    status = session.status if session else "active"
    generated_at = generated_at or datetime.now()

    md = "# Contract Preview\n\n"
    md += f"**Case:** {case_name}\n\n"
    md += f"**Status:** {'Ratified' if status == 'ratified' else 'In Negotiation'}\n\n"
    md += f"**Progress:** {format_progress(terms)}\n\n"
    md += f"**Generated:** {generated_at.strftime('%Y-%m-%d %H:%M:%S')}\n\n"
    md += "---\n\n"

    articles = accepted_terms(terms)
    if not articles:
        md += "_No accepted terms to display_\n"
        return md

    for index, term in enumerate(articles, 1):
        md += f"## Article {index}: {term.clause_title}\n\n"
        md += f"{term.clause_content}\n\n"

    return md
