"""
Background job definitions.
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional

from redis import Redis
from rq import Queue
from rq_scheduler import Scheduler

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

UNREAD_REMINDER_JOB_ID = "shub-unread-message-reminders"


def get_queue(name: str = "default") -> Queue:
    """Get RQ queue."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Queue(name, connection=redis_conn)


def get_scheduler() -> Scheduler:
    """Get RQ scheduler."""
    redis_conn = Redis.from_url(settings.REDIS_URL)
    return Scheduler(connection=redis_conn)


# ============= JOB FUNCTIONS =============

def check_unread_messages_job():
    """Email users who have had unread messages for longer than the reminder age."""
    from app.db.session import get_db_context
    from app.services.message_reminders import check_and_send_unread_reminders

    with get_db_context() as db:
        result = asyncio.run(check_and_send_unread_reminders(db))
    logger.info(f"Unread message reminders: {result}")
    return result


def send_email_job(to: str, subject: str, html_body: str, text: Optional[str] = None):
    """Deliver a single email outside the request cycle."""
    from app.services.email_service import email_service

    sent = asyncio.run(email_service.deliver(to, subject, html_body, text))
    if not sent:
        logger.warning(f"Queued email to {to} was not delivered: {subject}")
    return sent


# ============= QUEUE HELPERS =============

def enqueue_email(to: str, subject: str, html_body: str, text: Optional[str] = None):
    """Queue an email on the high-priority queue."""
    queue = get_queue("high")
    return queue.enqueue(send_email_job, to, subject, html_body, text)


def setup_scheduled_jobs():
    """Register the recurring reminder scan; re-running replaces the previous schedule."""
    scheduler = get_scheduler()
    teardown_scheduled_jobs(scheduler)

    scheduler.schedule(
        scheduled_time=datetime.now(timezone.utc),
        func=check_unread_messages_job,
        interval=settings.MESSAGE_REMINDER_INTERVAL_SECONDS,
        repeat=None,
        id=UNREAD_REMINDER_JOB_ID,
    )

    logger.info("Scheduled jobs configured")


def teardown_scheduled_jobs(scheduler: Scheduler = None):
    scheduler = scheduler or get_scheduler()
    for job in scheduler.get_jobs():
        if job.id == UNREAD_REMINDER_JOB_ID:
            scheduler.cancel(job)
