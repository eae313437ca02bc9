from datetime import datetime, timezone

import pytest

from negotiator.error_handling import ValidationError
from negotiator.models import Session, SettlementTerm
from tools.contract_renderer import format_progress, render_contract_markdown
from tools.join_link import build_join_link, parse_join_link


NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def make_term(title, status):
    return SettlementTerm(
        id=title.lower(),
        session_id="s1",
        clause_title=title,
        clause_content=f"{title} body",
        status=status,
        version=1,
        proposed_by="party_a",
        created_at=NOW,
        updated_at=NOW,
    )


def test_join_link_invites_counterpart():
    link = build_join_link("https://negotiate.example/join", "abc-123", "party_a")

    assert link == "https://negotiate.example/join?session=abc-123&role=party_b"
    assert parse_join_link(link) == ("abc-123", "party_b")


def test_join_link_keeps_existing_query():
    link = build_join_link("https://negotiate.example/?lang=hi", "abc", "party_b")

    assert link.endswith("?lang=hi&session=abc&role=party_a")
    assert parse_join_link(link) == ("abc", "party_a")


def test_join_link_defaults_to_respondent():
    assert parse_join_link("https://negotiate.example/join?session=abc") == ("abc", "party_b")


@pytest.mark.parametrize("url", [
    "https://negotiate.example/join",
    "https://negotiate.example/join?session=%20&role=party_a",
    "https://negotiate.example/join?session=abc&role=judge",
])
def test_bad_join_links_are_rejected(url):
    with pytest.raises(ValidationError):
        parse_join_link(url)


def test_format_progress_rounds_percentage():
    terms = [make_term("A", "accepted"), make_term("B", "accepted"), make_term("C", "disputed")]

    assert format_progress(terms) == "2/3 clauses (67%)"
    assert format_progress([]) == "0/0 clauses (0%)"


def test_contract_lists_only_accepted_clauses():
    session = Session(id="s1", case_name="Smith v. Jones", status="active", created_at=NOW)
    terms = [
        make_term("Payment", "accepted"),
        make_term("Costs", "rejected"),
        make_term("Confidentiality", "accepted"),
    ]

    md = render_contract_markdown(session, terms, generated_at=NOW)

    assert md.startswith("# Contract Preview\n\n**Case:** Smith v. Jones")
    assert "**Status:** In Negotiation" in md
    assert "**Progress:** 2/3 clauses (67%)" in md
    assert "**Generated:** 2026-03-01 09:30:00" in md
    assert "## Article 1: Payment\n\nPayment body" in md
    assert "## Article 2: Confidentiality" in md
    assert "Costs" not in md


def test_contract_without_accepted_clauses():
    session = Session(id="s1", case_name="Case", status="ratified", created_at=NOW)

    md = render_contract_markdown(session, [make_term("Payment", "pending")], generated_at=NOW)

    assert "**Status:** Ratified" in md
    assert md.endswith("_No accepted terms to display_\n")
