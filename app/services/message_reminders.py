"""
Unread message reminders.

Every few minutes, messages that have sat unread for longer than
MESSAGE_REMINDER_AGE_MINUTES are grouped by receiver and one reminder email is
sent per receiver. Admin mailboxes are skipped. Messages are flagged only when
the email actually went out, so failed sends are retried on the next scan.
"""
import asyncio
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.db.session import get_db_context
from app.db.storage import Storage, utcnow
from app.services.email_service import EmailService, email_service as default_email_service

logger = get_logger(__name__)


async def check_and_send_unread_reminders(
    db: Session,
    email_service: Optional[EmailService] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Run one reminder scan. The caller commits.

    Returns counts of receivers emailed and messages flagged.
    """
    email_service = email_service or default_email_service
    now = now or utcnow()
    storage = Storage(db)

    cutoff = now - timedelta(minutes=settings.MESSAGE_REMINDER_AGE_MINUTES)
    pending = storage.find_messages_needing_reminder(cutoff)
    if not pending:
        return {"receivers": 0, "messages": 0, "failed": 0}

    by_receiver = OrderedDict()
    for message in pending:
        by_receiver.setdefault(message.receiver_id, []).append(message)

    emailed = flagged = failed = 0
    for receiver_id, messages in by_receiver.items():
        receiver = storage.get_user(receiver_id)
        if receiver is None or not receiver.email:
            continue
        latest = messages[-1]
        sender = storage.get_user(latest.sender_id)
        sent = await email_service.send_unread_message_notification(
            to=receiver.email,
            user_name=receiver.name,
            message_count=len(messages),
            latest_content=latest.content,
            sender_name=sender.name if sender else None,
        )
        if sent:
            storage.mark_messages_notified(messages, when=now)
            emailed += 1
            flagged += len(messages)
        else:
            failed += 1
            logger.warning(f"Unread reminder to user {receiver_id} failed; will retry next scan")

    logger.info(f"Unread reminders: {emailed} receivers emailed, {flagged} messages flagged, {failed} failed")
    return {"receivers": emailed, "messages": flagged, "failed": failed}


class UnreadMessageReminder:
    """Repeating in-process scan, started and stopped by the app lifespan."""

    def __init__(self, interval_seconds: Optional[int] = None, email_service: Optional[EmailService] = None):
        self.interval_seconds = interval_seconds or settings.MESSAGE_REMINDER_INTERVAL_SECONDS
        self.email_service = email_service
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Unread message reminder started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Unread message reminder stopped")

    async def run_once(self) -> dict:
        with get_db_context() as db:
            return await check_and_send_unread_reminders(db, self.email_service)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Unread message reminder scan failed")
