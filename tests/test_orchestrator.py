import pytest

from negotiator.error_handling import (
    InvalidTransitionError,
    RateLimitedError,
    SessionClosedError,
    SessionNotFoundError,
    StoreError,
    TermNotFoundError,
    ValidationError,
    VersionConflictError,
)
from negotiator.orchestrator import NegotiationDashboard, NegotiationService


def test_create_session_requires_case_name(service, store):
    with pytest.raises(ValidationError):
        service.create_session("   ")
    assert store.list_sessions() == []


def test_create_and_join(service):
    session, ctx = service.create_session("  Smith v. Jones  ", "party_a")

    assert session.case_name == "Smith v. Jones"
    assert ctx.role == "party_a"
    assert service.join_session(f" {session.id} ", "party_b").session_id == session.id

    with pytest.raises(SessionNotFoundError):
        service.join_session("missing", "party_b")


def test_share_link_assigns_counterpart_role(service):
    session, ctx = service.create_session("Case", "party_a")

    link = service.share_link(ctx)
    joined = service.join_from_link(link)

    assert link.startswith("http://testserver/join?")
    assert joined.session_id == session.id
    assert joined.role == "party_b"


def test_send_message_translates_and_classifies(service, translator):
    _, ctx = service.create_session("Case")

    message = service.send_message(ctx, "  I offer 5000  ", "en")

    assert message.content_original == "I offer 5000"
    assert message.content_translated == "[hi] I offer 5000"
    assert message.intent == "offer"
    assert translator.calls == [(message.id, "I offer 5000", "en")]


def test_blank_draft_is_rejected_without_insert(service, store, translator):
    _, ctx = service.create_session("Case")

    with pytest.raises(ValidationError):
        service.send_message(ctx, " \n\t ", "en")

    assert store.list_messages(ctx.session_id) == []
    assert translator.calls == []


def test_unsupported_language_is_rejected(service, store):
    _, ctx = service.create_session("Case")

    with pytest.raises(ValidationError):
        service.post_message(ctx, "Bonjour", "fr")
    assert store.list_messages(ctx.session_id) == []


def test_classifier_failure_leaves_message_untranslated(service, store, translator):
    translator.error = RateLimitedError("429")
    _, ctx = service.create_session("Case")

    message = service.send_message(ctx, "What are your terms?", "en")

    stored = store.list_messages(ctx.session_id)[0]
    assert message.content_translated is None
    assert stored.content_translated is None
    assert stored.intent == "inquiry"
    assert len(translator.calls) == 1


def test_store_failure_during_annotation_propagates(service, store, monkeypatch):
    _, ctx = service.create_session("Case")
    message = service.post_message(ctx, "Hello", "en")

    def broken(*args, **kwargs):
        raise StoreError("write rejected")

    monkeypatch.setattr(store, "annotate_message", broken)
    with pytest.raises(StoreError):
        service.annotate_message(message)


def test_no_translator_keeps_message_as_posted(store):
    service = NegotiationService(store, translator=None)
    _, ctx = service.create_session("Case")

    message = service.send_message(ctx, "Hello", "en")

    assert message.content_translated is None


def test_clause_scenario_through_ratification(service, store):
    _, ctx = service.create_session("Case", "party_a")
    counterpart = service.join_session(ctx.session_id, "party_b")

    payment = service.propose_term(ctx, "Payment", "Pay 5000 within 30 days")
    confidentiality = service.propose_term(counterpart, "Confidentiality", "Terms stay private")
    costs = service.propose_term(ctx, "Costs", "Each side bears its own costs")

    service.update_term_status(counterpart, payment.id, "accepted")
    service.update_term_status(ctx, confidentiality.id, "accepted")
    service.update_term_status(counterpart, costs.id, "disputed")

    assert service.snapshot(ctx.session_id).can_ratify is False
    assert service.ratify(ctx) is None
    assert store.get_session(ctx.session_id).status == "active"

    service.update_term_status(counterpart, costs.id, "accepted")
    assert service.snapshot(ctx.session_id).can_ratify is True

    ratified = service.ratify(ctx)
    assert ratified.status == "ratified"
    assert service.ratify(counterpart) is None
    assert store.get_session(ctx.session_id).status == "ratified"


def test_ratify_without_clauses_is_noop(service, store):
    _, ctx = service.create_session("Case")

    assert service.ratify(ctx) is None
    assert store.get_session(ctx.session_id).status == "active"


def test_ratified_session_rejects_further_writes(service):
    _, ctx = service.create_session("Case")
    term = service.propose_term(ctx, "Payment", "Pay")
    service.update_term_status(ctx, term.id, "accepted")
    service.ratify(ctx)

    with pytest.raises(SessionClosedError):
        service.post_message(ctx, "One more thing", "en")
    with pytest.raises(SessionClosedError):
        service.propose_term(ctx, "Extra", "Clause")


def test_propose_requires_title_and_body(service):
    _, ctx = service.create_session("Case")

    with pytest.raises(ValidationError):
        service.propose_term(ctx, "", "Body")
    with pytest.raises(ValidationError):
        service.propose_term(ctx, "Title", "  ")


def test_illegal_transitions_are_rejected(service):
    _, ctx = service.create_session("Case")
    term = service.propose_term(ctx, "Payment", "Pay")
    service.update_term_status(ctx, term.id, "accepted")

    with pytest.raises(InvalidTransitionError):
        service.update_term_status(ctx, term.id, "pending")
    with pytest.raises(InvalidTransitionError):
        service.update_term_status(ctx, term.id, "disputed")


def test_term_from_another_session_is_not_found(service):
    _, ctx = service.create_session("A")
    _, other = service.create_session("B")
    term = service.propose_term(other, "Payment", "Pay")

    with pytest.raises(TermNotFoundError):
        service.update_term_status(ctx, term.id, "accepted")


def test_expected_version_detects_lost_update(service):
    _, ctx = service.create_session("Case")
    term = service.propose_term(ctx, "Payment", "Pay")
    service.update_term_status(ctx, term.id, "disputed", expected_version=1)

    with pytest.raises(VersionConflictError):
        service.update_term_status(ctx, term.id, "accepted", expected_version=1)

    updated = service.update_term_status(ctx, term.id, "accepted", expected_version=2)
    assert updated.version == 3


def test_dashboard_mirrors_both_parties(service):
    party_a = NegotiationDashboard(service)
    party_b = NegotiationDashboard(service)

    party_a.create("Smith v. Jones", "party_a")
    party_b.join_from_link(party_a.share_link())
    assert party_b.context.role == "party_b"

    term = party_a.propose_term("Payment", "Pay 5000")
    party_b.send_message("Accepted in principle", "hi")

    assert [t.id for t in party_b.terms] == [term.id]
    assert len(party_a.messages) == 1
    assert party_a.messages[0].content_translated == "[en] Accepted in principle"
    assert party_a.ratify() is False

    party_b.update_term_status(term.id, "accepted")
    assert party_a.can_ratify is True
    assert party_a.progress.percentage == 100

    assert party_a.ratify() is True
    assert party_b.session.status == "ratified"
    assert party_b.ratify() is False


def test_dashboard_switch_tears_down_previous_session(service):
    dashboard = NegotiationDashboard(service)
    dashboard.create("First", "party_a")
    first_ctx = dashboard.context
    dashboard.create("Second", "party_a")

    service.propose_term(first_ctx, "Late", "Clause for the first session")

    assert dashboard.terms == []
    assert dashboard.session.case_name == "Second"


def test_dashboard_requires_selected_session(service):
    with pytest.raises(ValidationError):
        NegotiationDashboard(service).send_message("Hi", "en")


def test_ratify_refuses_clause_proposed_after_the_check(service, store, monkeypatch):
    _, ctx = service.create_session("Case", "party_a")
    counterpart = service.join_session(ctx.session_id, "party_b")
    payment = service.propose_term(ctx, "Payment", "Pay")
    service.update_term_status(counterpart, payment.id, "accepted")

    read_terms = store.list_terms

    def list_then_propose(session_id):
        terms = read_terms(session_id)
        service.propose_term(counterpart, "Late", "Clause proposed mid-ratify")
        return terms

    monkeypatch.setattr(store, "list_terms", list_then_propose)

    assert service.ratify(ctx) is None
    monkeypatch.undo()
    assert store.get_session(ctx.session_id).status == "active"
    assert [t.status for t in store.list_terms(ctx.session_id)] == ["accepted", "pending"]


def test_propose_refuses_session_ratified_after_the_check(service, store, monkeypatch):
    _, ctx = service.create_session("Case", "party_a")
    payment = service.propose_term(ctx, "Payment", "Pay")
    service.update_term_status(ctx, payment.id, "accepted")

    read_session = store.get_session
    ratified = []

    def read_then_ratify(session_id):
        session = read_session(session_id)
        if not ratified:
            ratified.append(store.ratify_session(session_id))
        return session

    monkeypatch.setattr(store, "get_session", read_then_ratify)

    with pytest.raises(SessionClosedError):
        service.propose_term(ctx, "Late", "Clause")
    monkeypatch.undo()
    assert ratified[0].status == "ratified"
    assert [t.clause_title for t in store.list_terms(ctx.session_id)] == ["Payment"]


def test_status_change_checked_against_a_stale_read_is_refused(service, store, monkeypatch):
    _, ctx = service.create_session("Case", "party_a")
    term = service.propose_term(ctx, "Payment", "Pay")

    read_term = store.get_term
    raced = []

    def read_then_accept(term_id):
        current = read_term(term_id)
        if not raced:
            raced.append(store.update_term_status(term_id, "accepted"))
        return current

    monkeypatch.setattr(store, "get_term", read_then_accept)

    with pytest.raises(InvalidTransitionError):
        service.update_term_status(ctx, term.id, "disputed")
    monkeypatch.undo()
    final = store.get_term(term.id)
    assert (final.status, final.version) == ("accepted", 2)


def test_legal_status_change_after_a_concurrent_one_is_a_conflict(service, store, monkeypatch):
    _, ctx = service.create_session("Case", "party_a")
    term = service.propose_term(ctx, "Payment", "Pay")

    read_term = store.get_term
    raced = []

    def read_then_dispute(term_id):
        current = read_term(term_id)
        if not raced:
            raced.append(store.update_term_status(term_id, "disputed"))
        return current

    monkeypatch.setattr(store, "get_term", read_then_dispute)

    with pytest.raises(VersionConflictError):
        service.update_term_status(ctx, term.id, "accepted")
    monkeypatch.undo()
    assert store.get_term(term.id).status == "disputed"
