"""
Support message tests.

Verifies:
- Customers open threads and only see their own
- Admin replies move NEW -> OPEN and email the customer
- A customer follow-up reopens a RESOLVED thread; ARCHIVED threads are closed
"""

import pytest

from gasbook.errors import NotFoundError, ValidationError
from gasbook.extensions import db, outbox
from gasbook.models import ContactMessage
from gasbook.services import contact_service

from conftest import envelope

MESSAGE = {
    "subject": "Cylinder not delivered",
    "message": "My booking was approved three days ago but nothing has arrived yet.",
    "category": "delivery",
}


@pytest.fixture
def thread(customer):
    return contact_service.create_contact_message(customer, MESSAGE)


class TestCustomerMessages:
    def test_create_and_list(self, client, customer_headers):
        resp = client.post("/api/contact", json=MESSAGE, headers=customer_headers)
        assert resp.status_code == 201
        data = envelope(resp)["data"]
        assert data["status"] == "NEW"
        assert data["category"] == "DELIVERY"
        assert data["priority"] == "NORMAL"

        resp = client.get("/api/contact", headers=customer_headers)
        body = envelope(resp)["data"]
        assert body["pagination"]["total"] == 1
        assert body["items"][0]["subject"] == MESSAGE["subject"]

    def test_short_message_rejected(self, customer):
        with pytest.raises(ValidationError):
            contact_service.create_contact_message(customer, {"subject": "Hi", "message": "short"})

    def test_related_booking_must_be_own(self, make_booking, customer, other_customer):
        booking = make_booking(other_customer)
        with pytest.raises(ValidationError):
            contact_service.create_contact_message(customer, {**MESSAGE, "related_booking_id": booking.id})

    def test_phone_preference_defaults_to_profile_phone(self, customer):
        message = contact_service.create_contact_message(customer, {**MESSAGE, "preferred_contact": "phone"})
        assert message.phone == customer.phone

    def test_other_customer_gets_404(self, client, thread, other_headers):
        resp = client.get(f"/api/contact/{thread.id}", headers=other_headers)
        assert resp.status_code == 404

    def test_other_customer_cannot_reply(self, thread, other_customer):
        with pytest.raises(NotFoundError):
            contact_service.add_user_reply(other_customer, thread.id, {"message": "Me too"})


class TestAdminReplies:
    def test_reply_opens_thread_and_emails(self, client, thread, customer, admin_headers, customer_headers):
        outbox.clear()
        resp = client.post(
            f"/api/admin/contacts/{thread.id}/reply",
            json={"message": "Your cylinder is out for delivery today."},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert envelope(resp)["data"]["is_admin"] is True

        message = db.session.get(ContactMessage, thread.id)
        assert message.status == "OPEN"
        assert message.last_replied_at is not None
        assert outbox.sent[-1].to == customer.email
        assert outbox.sent[-1].subject == f"Re: {MESSAGE['subject']}"

        resp = client.get(f"/api/contact/{thread.id}", headers=customer_headers)
        replies = envelope(resp)["data"]["replies"]
        assert [r["body"] for r in replies] == ["Your cylinder is out for delivery today."]

    def test_follow_up_reopens_resolved(self, thread, customer, admin):
        contact_service.update_message_status(thread.id, {"status": "RESOLVED"})
        contact_service.add_user_reply(customer, thread.id, {"message": "Still waiting"})
        assert db.session.get(ContactMessage, thread.id).status == "OPEN"

    def test_archived_thread_rejects_follow_up(self, thread, customer):
        contact_service.update_message_status(thread.id, {"status": "ARCHIVED"})
        with pytest.raises(ValidationError):
            contact_service.add_user_reply(customer, thread.id, {"message": "Hello?"})

    def test_admin_list_search_and_stats(self, client, thread, other_customer, admin_headers):
        contact_service.create_contact_message(
            other_customer, {"subject": "Change address", "message": "Please update my delivery address."}
        )

        resp = client.get("/api/admin/contacts?search=delivered", headers=admin_headers)
        items = envelope(resp)["data"]["items"]
        assert [m["id"] for m in items] == [thread.id]

        resp = client.get("/api/admin/contacts/stats", headers=admin_headers)
        stats = envelope(resp)["data"]
        assert stats["total"] == 2
        assert stats["open"] == 2
        assert stats["by_status"]["NEW"] == 2

    def test_update_requires_fields(self, thread):
        with pytest.raises(ValidationError):
            contact_service.update_message_status(thread.id, {})

    def test_update_priority(self, client, thread, admin_headers):
        resp = client.put(f"/api/admin/contacts/{thread.id}", json={"priority": "urgent"}, headers=admin_headers)
        assert envelope(resp)["data"]["priority"] == "URGENT"
