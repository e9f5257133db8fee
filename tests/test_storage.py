"""
Tests for the storage layer and the persistence coordinator.
"""

import threading

from twilio_inbox.models import Contact, Message
from twilio_inbox.normalizer import InboundMessage
from twilio_inbox.pipeline import persist_inbound
from twilio_inbox.storage import (
    check_db_health,
    get_contact_messages,
    get_stats,
    insert_message,
    list_contacts,
    open_session,
    upsert_contact,
)


def inbound(**overrides) -> InboundMessage:
    fields = dict(
        phone_number="15551234567",
        display_name="Alice",
        body="Hi",
        media_urls=[],
        provider_message_id="SM123",
        metadata={"to": "whatsapp:+14155238886", "from": "whatsapp:+15551234567"},
        raw_payload={"Body": "Hi"},
    )
    fields.update(overrides)
    return InboundMessage(**fields)


class TestUpsertContact:

    def test_insert_then_update_keeps_id(self, db):
        first = upsert_contact(db, phone_number="1", platform="whatsapp", display_name="A", metadata={"to": "x"})
        assert first.ok
        first_id, created_at = first.contact.id, first.contact.created_at

        second = upsert_contact(db, phone_number="1", platform="whatsapp", display_name="B", metadata={"to": "y"})

        assert second.ok
        assert second.contact.id == first_id
        assert second.contact.display_name == "B"
        assert second.contact.metadata_ == {"to": "y"}
        assert second.contact.created_at == created_at
        assert second.contact.updated_at >= created_at
        assert db.query(Contact).count() == 1

    def test_same_number_on_other_platform_is_another_contact(self, db):
        a = upsert_contact(db, phone_number="1", platform="whatsapp")
        b = upsert_contact(db, phone_number="1", platform="sms")

        assert a.contact.id != b.contact.id
        assert db.query(Contact).count() == 2

    def test_failure_is_reported_not_raised(self, db):
        result = upsert_contact(db, phone_number=None, platform="whatsapp")

        assert not result.ok
        assert result.contact is None
        assert result.error
        assert db.query(Contact).count() == 0

    def test_unsupported_dialect_is_reported(self, db, monkeypatch):
        monkeypatch.setattr("twilio_inbox.storage._UPSERT_INSERTS", {})

        result = upsert_contact(db, phone_number="1", platform="whatsapp")

        assert not result.ok
        assert "not supported on dialect 'sqlite'" in result.error
        assert db.query(Contact).count() == 0

    def test_concurrent_first_contacts_share_one_row(self, db, database_url):
        workers = 8
        barrier = threading.Barrier(workers, timeout=10)
        results = []
        errors = []

        def first_message(n):
            try:
                with open_session(database_url) as session:
                    barrier.wait()
                    result = upsert_contact(
                        session, phone_number="15551234567", platform="whatsapp", display_name=f"Alice {n}"
                    )
                    results.append((result.ok, result.contact.id if result.ok else result.error))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=first_message, args=(n,)) for n in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == workers
        assert all(ok for ok, _ in results), results
        assert len({contact_id for _, contact_id in results}) == 1
        db.expire_all()
        assert db.query(Contact).count() == 1


class TestInsertMessage:

    def test_insert(self, db):
        contact = upsert_contact(db, phone_number="1", platform="whatsapp").contact

        result = insert_message(
            db,
            contact_id=contact.id,
            platform="whatsapp",
            direction="inbound",
            status="received",
            body="Hi",
            media_urls=["https://m/0"],
            raw_payload={"Body": "Hi"},
        )

        assert result.ok
        stored = db.get(Message, result.message.id)
        assert stored.media_urls == ["https://m/0"]
        assert stored.provider_message_id is None

    def test_failure_is_reported_not_raised(self, db):
        result = insert_message(db, contact_id=None, platform="whatsapp", direction="inbound", status="received")

        assert not result.ok
        assert result.error
        assert db.query(Message).count() == 0


class TestPersistInbound:

    def test_contact_and_message_linked(self, db):
        result = persist_inbound(db, inbound())

        assert result.ok
        assert result.result == "stored"
        assert result.error is None
        message = db.query(Message).one()
        assert message.contact_id == db.query(Contact).one().id
        assert message.direction == "inbound"
        assert message.status == "received"

    def test_contact_failure_never_attempts_message(self, db):
        result = persist_inbound(db, inbound(phone_number=None))

        assert not result.ok
        assert result.message is None
        assert result.result == "contact_error"
        assert result.error == "DB error (contact)"
        assert db.query(Message).count() == 0

    def test_message_failure_leaves_contact(self, db):
        # Not JSON serializable, so the message insert fails
        result = persist_inbound(db, inbound(raw_payload={"Body": object()}))

        assert result.contact.ok
        assert not result.message.ok
        assert result.result == "message_error"
        assert result.error == "DB error (message)"
        assert db.query(Contact).count() == 1
        assert db.query(Message).count() == 0


class TestReadQueries:

    def test_contacts_most_recently_updated_first(self, db):
        upsert_contact(db, phone_number="1", platform="whatsapp")
        upsert_contact(db, phone_number="2", platform="whatsapp")
        upsert_contact(db, phone_number="1", platform="whatsapp", display_name="again")

        assert [c.phone_number for c in list_contacts(db)] == ["1", "2"]

    def test_thread_oldest_first(self, db):
        persist_inbound(db, inbound(body="first"))
        persist_inbound(db, inbound(body="second"))
        persist_inbound(db, inbound(phone_number="other", body="elsewhere"))
        contact = db.query(Contact).filter(Contact.phone_number == "15551234567").one()

        assert [m.body for m in get_contact_messages(db, contact.id)] == ["first", "second"]

    def test_stats(self, db):
        persist_inbound(db, inbound())
        persist_inbound(db, inbound(phone_number="2"))
        contact = db.query(Contact).first()
        insert_message(db, contact_id=contact.id, platform="whatsapp", direction="outbound", status="sent")

        assert get_stats(db) == {
            "total_contacts": 2,
            "total_messages": 3,
            "inbound_messages": 2,
            "outbound_messages": 1,
        }

    def test_stats_empty(self, db):
        assert get_stats(db) == {
            "total_contacts": 0,
            "total_messages": 0,
            "inbound_messages": 0,
            "outbound_messages": 0,
        }

    def test_health(self, db, database_url):
        assert check_db_health(database_url)

    def test_health_without_schema(self, tmp_path):
        assert not check_db_health(f"sqlite:///{tmp_path / 'empty.db'}")
