from datetime import timedelta

from negotiator.error_handling import StoreError
from negotiator.models import ChangeEvent, Message
from negotiator.synchronizer import SessionSynchronizer


def test_activate_loads_existing_state(store):
    session = store.insert_session("Case")
    store.insert_message(session.id, "party_a", "Hello", "en")
    store.insert_term(session.id, "Payment", "Pay 5000", "party_a")

    sync = SessionSynchronizer(store)
    snapshot = sync.activate(session.id)

    assert snapshot.loading is False
    assert snapshot.session.id == session.id
    assert len(snapshot.messages) == 1
    assert len(snapshot.terms) == 1
    assert snapshot.can_ratify is False


def test_live_inserts_and_in_place_term_updates(store):
    session = store.insert_session("Case")
    sync = SessionSynchronizer(store)
    sync.activate(session.id)

    first = store.insert_term(session.id, "Payment", "Pay", "party_a")
    second = store.insert_term(session.id, "Confidentiality", "Keep quiet", "party_b")
    third = store.insert_term(session.id, "Costs", "Each side bears own", "party_a")
    store.update_term_status(second.id, "accepted")

    terms = sync.terms
    assert [t.id for t in terms] == [first.id, second.id, third.id]
    assert terms[1].status == "accepted"
    assert terms[1].version == 2


def test_messages_stay_ordered_when_notifications_arrive_late(store, feed):
    session = store.insert_session("Case")
    sync = SessionSynchronizer(store)
    sync.activate(session.id)

    newer = store.insert_message(session.id, "party_a", "Second", "en")
    older = Message(
        id="late",
        session_id=session.id,
        sender_role="party_b",
        content_original="First",
        language_code="hi",
        created_at=newer.created_at - timedelta(seconds=5),
    )
    feed.publish(ChangeEvent(table="messages", event_type="INSERT", session_id=session.id, record=older))

    created = [m.created_at for m in sync.messages]
    assert [m.id for m in sync.messages] == ["late", newer.id]
    assert created == sorted(created)


def test_own_write_and_notification_do_not_duplicate(store):
    session = store.insert_session("Case")
    sync = SessionSynchronizer(store)
    sync.activate(session.id)

    message = store.insert_message(session.id, "party_a", "Hello", "en")
    sync.reflect("messages", message)
    store.annotate_message(message.id, "नमस्ते", "inquiry")

    messages = sync.messages
    assert len(messages) == 1
    assert messages[0].content_translated == "नमस्ते"


def test_session_switch_drops_notifications_for_previous_session(store, feed):
    x = store.insert_session("X")
    y = store.insert_session("Y")
    sync = SessionSynchronizer(store)
    sync.activate(x.id)
    sync.activate(y.id)

    store.insert_message(x.id, "party_a", "late for X", "en")
    store.insert_term(x.id, "X clause", "Body", "party_a")
    stale = store.insert_message(x.id, "party_a", "reflected", "en")
    sync.reflect("messages", stale)

    assert sync.session_id == y.id
    assert sync.messages == []
    assert sync.terms == []
    assert feed.subscriber_count("messages", x.id) == 0
    assert feed.subscriber_count("messages", y.id) == 1


def test_deactivate_stops_updates(store, feed):
    session = store.insert_session("Case")
    sync = SessionSynchronizer(store)
    sync.activate(session.id)
    sync.deactivate()

    store.insert_message(session.id, "party_a", "Anyone there?", "en")

    assert sync.messages == []
    assert feed.subscriber_count("messages", session.id) == 0
    assert feed.subscriber_count("settlement_terms", session.id) == 0
    assert feed.subscriber_count("sessions", session.id) == 0


def test_failed_read_leaves_collection_empty(store, monkeypatch):
    session = store.insert_session("Case")
    store.insert_message(session.id, "party_a", "Hello", "en")
    store.insert_term(session.id, "Payment", "Pay", "party_a")

    def broken(session_id):
        raise StoreError("connection reset")

    monkeypatch.setattr(store, "list_messages", broken)
    sync = SessionSynchronizer(store)
    snapshot = sync.activate(session.id)

    assert snapshot.loading is False
    assert snapshot.messages == []
    assert len(snapshot.terms) == 1
    assert "messages" in sync.errors


def test_changes_during_bulk_read_are_replayed(store, monkeypatch):
    session = store.insert_session("Case")
    existing = store.insert_term(session.id, "Payment", "Pay", "party_a")
    original_list_terms = store.list_terms
    inserted = []

    def list_terms_with_concurrent_write(session_id):
        rows = original_list_terms(session_id)
        inserted.append(store.insert_term(session_id, "Costs", "Own costs", "party_b"))
        store.update_term_status(existing.id, "accepted")
        return rows

    monkeypatch.setattr(store, "list_terms", list_terms_with_concurrent_write)
    sync = SessionSynchronizer(store)
    sync.activate(session.id)

    terms = sync.terms
    assert [t.id for t in terms] == [existing.id, inserted[0].id]
    assert terms[0].status == "accepted"


def test_session_status_updates_are_mirrored(store):
    session = store.insert_session("Case")
    sync = SessionSynchronizer(store)
    sync.activate(session.id)

    store.update_session_status(session.id, "ratified", expected="active")

    assert sync.session.status == "ratified"


def test_listeners_receive_snapshots(store):
    session = store.insert_session("Case")
    sync = SessionSynchronizer(store)
    sync.activate(session.id)
    snapshots = []
    remove = sync.add_listener(snapshots.append)

    store.insert_term(session.id, "Payment", "Pay", "party_a")
    remove()
    store.insert_term(session.id, "Costs", "Own", "party_a")

    assert len(snapshots) == 1
    assert snapshots[0].progress.total == 1
