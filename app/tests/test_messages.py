"""
Tests for messaging threads, attachments and unread reminders.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from app.db.models import Message
from app.db.storage import Storage, utcnow
from app.services.message_reminders import check_and_send_unread_reminders


class TestMessagingApi:

    def test_customer_message_reaches_admin(self, client, admin, customer, auth_headers):
        response = client.post(
            "/api/messages",
            json={"content": "When will my parts ship?", "category": "order", "subject": "Shipping"},
            headers=auth_headers(customer),
        )
        assert response.status_code == 201
        message = response.json()
        assert message["receiver_id"] == admin.id

        count = client.get("/api/messages/unread-count", headers=auth_headers(admin)).json()
        assert count == {"unread_count": 1}

        notes = client.get("/api/notifications?type=message", headers=auth_headers(admin)).json()
        assert len(notes) == 1
        assert notes[0]["related_id"] == message["id"]

    def test_reply_reuses_thread(self, client, admin, customer, auth_headers):
        first = client.post(
            "/api/messages",
            json={"content": "Question about SORD-26001", "category": "order"},
            headers=auth_headers(customer),
        ).json()
        reply = client.post(
            "/api/messages",
            json={"content": "It ships Friday", "receiver_id": customer.id, "category": "order"},
            headers=auth_headers(admin),
        ).json()
        assert reply["thread_id"] == first["thread_id"]

        threads = client.get("/api/messages/threads", headers=auth_headers(customer)).json()
        assert len(threads) == 1
        assert threads[0]["message_count"] == 2
        assert threads[0]["unread_count"] == 1
        assert threads[0]["last_message"] == "It ships Friday"

        response = client.post(f"/api/messages/threads/{first['thread_id']}/read", headers=auth_headers(customer))
        assert response.json() == {"marked_read": 1}

    def test_thread_is_private(self, client, admin, customer, supplier, auth_headers):
        message = client.post(
            "/api/messages", json={"content": "Private"}, headers=auth_headers(customer)
        ).json()

        response = client.get(f"/api/messages/threads/{message['thread_id']}", headers=auth_headers(supplier))
        assert response.status_code == 403

        response = client.post(
            "/api/messages",
            json={"content": "Let me in", "thread_id": message["thread_id"]},
            headers=auth_headers(supplier),
        )
        assert response.status_code == 403

    def test_thread_cannot_be_redirected_to_outsider(self, client, admin, customer, make_user, auth_headers):
        message = client.post(
            "/api/messages", json={"content": "Pricing for our bracket"}, headers=auth_headers(customer)
        ).json()
        rival = make_user("buyer@rival.example.com")

        response = client.post(
            "/api/messages",
            json={"content": "Forwarding this", "thread_id": message["thread_id"], "receiver_id": rival.id},
            headers=auth_headers(admin),
        )
        assert response.status_code == 403
        assert response.json()["message"] == "Receiver is not a participant in this thread"

        response = client.get(f"/api/messages/threads/{message['thread_id']}", headers=auth_headers(rival))
        assert response.status_code == 403

        response = client.post(
            "/api/messages",
            json={"content": "Replying in thread", "thread_id": message["thread_id"]},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        assert response.json()["receiver_id"] == customer.id

    def test_cannot_message_self(self, client, customer, auth_headers):
        response = client.post(
            "/api/messages",
            json={"content": "Note to self", "receiver_id": customer.id},
            headers=auth_headers(customer),
        )
        assert response.status_code == 400

    def test_admin_needs_receiver(self, client, admin, auth_headers):
        response = client.post("/api/messages", json={"content": "Hello?"}, headers=auth_headers(admin))
        assert response.status_code == 400
        assert response.json()["message"] == "Receiver is required"

    def test_attachment_upload_and_download(self, client, admin, customer, auth_headers):
        message = client.post(
            "/api/messages", json={"content": "Drawing attached"}, headers=auth_headers(customer)
        ).json()

        response = client.post(
            f"/api/messages/{message['id']}/attachments",
            files=[("files", ("notes.txt", b"tolerance +/- 0.01", "text/plain"))],
            headers=auth_headers(admin),
        )
        assert response.status_code == 403

        response = client.post(
            f"/api/messages/{message['id']}/attachments",
            files=[("files", ("notes.txt", b"tolerance +/- 0.01", "text/plain"))],
            headers=auth_headers(customer),
        )
        assert response.status_code == 201
        attachment = response.json()[0]
        assert attachment["original_name"] == "notes.txt"

        response = client.get(f"/api/messages/attachments/{attachment['id']}", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.content == b"tolerance +/- 0.01"


class TestUnreadReminders:
    """One email per receiver, only for messages that are old, unread and not yet reminded."""

    @pytest.fixture
    def mailer(self):
        service = AsyncMock()
        service.send_unread_message_notification.return_value = True
        return service

    @pytest.mark.asyncio
    async def test_groups_messages_by_receiver(self, db_session, admin, customer, supplier, mailer):
        storage = Storage(db_session)
        storage.send_message(admin, customer.id, "Your quote is ready")
        storage.send_message(admin, customer.id, "Please review")
        storage.send_message(admin, supplier.id, "New RFQ for you")
        db_session.commit()

        result = await check_and_send_unread_reminders(db_session, mailer, now=utcnow() + timedelta(hours=1))

        assert result == {"receivers": 2, "messages": 3, "failed": 0}
        assert mailer.send_unread_message_notification.await_count == 2
        customer_call = mailer.send_unread_message_notification.await_args_list[0]
        assert customer_call.kwargs["to"] == customer.email
        assert customer_call.kwargs["message_count"] == 2
        assert customer_call.kwargs["latest_content"] == "Please review"

        assert all(m.email_notification_sent for m in db_session.query(Message).all())

    @pytest.mark.asyncio
    async def test_recent_and_admin_messages_skipped(self, db_session, admin, customer, mailer):
        storage = Storage(db_session)
        storage.send_message(customer, admin.id, "For the admin inbox")
        storage.send_message(admin, customer.id, "Fresh")
        db_session.commit()

        result = await check_and_send_unread_reminders(db_session, mailer, now=utcnow())

        assert result["receivers"] == 0
        mailer.send_unread_message_notification.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_send_is_retried_later(self, db_session, admin, customer, mailer):
        storage = Storage(db_session)
        message = storage.send_message(admin, customer.id, "Unread")
        db_session.commit()
        later = utcnow() + timedelta(hours=1)

        mailer.send_unread_message_notification.return_value = False
        result = await check_and_send_unread_reminders(db_session, mailer, now=later)
        assert result == {"receivers": 0, "messages": 0, "failed": 1}
        assert message.email_notification_sent is False

        mailer.send_unread_message_notification.return_value = True
        result = await check_and_send_unread_reminders(db_session, mailer, now=later)
        assert result["messages"] == 1
        assert message.email_notification_sent is True

        result = await check_and_send_unread_reminders(db_session, mailer, now=later)
        assert result["receivers"] == 0

    @pytest.mark.asyncio
    async def test_read_messages_not_reminded(self, db_session, admin, customer, mailer):
        storage = Storage(db_session)
        message = storage.send_message(admin, customer.id, "Seen already")
        storage.mark_thread_read(customer.id, message.thread_id)
        db_session.commit()

        result = await check_and_send_unread_reminders(db_session, mailer, now=utcnow() + timedelta(hours=1))
        assert result["receivers"] == 0
