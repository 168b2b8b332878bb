"""
Tests for background job wiring. Redis is never contacted.
"""
from unittest.mock import AsyncMock, MagicMock, patch

from app.core.config import settings
from app.services.email_service import EmailService
from app.workers import jobs


class TestScheduledJobs:

    def test_setup_replaces_existing_reminder_job(self):
        stale = MagicMock(id=jobs.UNREAD_REMINDER_JOB_ID)
        unrelated = MagicMock(id="something-else")
        scheduler = MagicMock()
        scheduler.get_jobs.return_value = [stale, unrelated]

        with patch.object(jobs, "get_scheduler", return_value=scheduler):
            jobs.setup_scheduled_jobs()

        scheduler.cancel.assert_called_once_with(stale)
        kwargs = scheduler.schedule.call_args.kwargs
        assert kwargs["func"] is jobs.check_unread_messages_job
        assert kwargs["interval"] == settings.MESSAGE_REMINDER_INTERVAL_SECONDS
        assert kwargs["id"] == jobs.UNREAD_REMINDER_JOB_ID

    def test_enqueue_email_uses_high_queue(self):
        queue = MagicMock()
        with patch.object(jobs, "get_queue", return_value=queue) as get_queue:
            jobs.enqueue_email("buyer@acme.example.com", "Quote Ready", "<p>Hi</p>")

        get_queue.assert_called_once_with("high")
        queue.enqueue.assert_called_once_with(
            jobs.send_email_job, "buyer@acme.example.com", "Quote Ready", "<p>Hi</p>", None
        )

    def test_send_email_job_delivers_directly(self):
        deliver = AsyncMock(return_value=True)
        with patch.object(EmailService, "deliver", new=deliver):
            assert jobs.send_email_job("buyer@acme.example.com", "Quote Ready", "<p>Hi</p>") is True
        deliver.assert_awaited_once_with("buyer@acme.example.com", "Quote Ready", "<p>Hi</p>", None)
