"""
Transactional email through the SendGrid v3 HTTP API.

Delivery is best effort: every send returns True/False and logs failures
instead of raising, so callers never lose their database work to an email
outage. Without SENDGRID_API_KEY the message is logged and treated as sent in
DEBUG mode only.
"""
import html
import re
from datetime import datetime
from typing import Optional

import httpx
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.logging import get_logger
from app.workers import jobs

logger = get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def _strip_tags(body: str) -> str:
    return _TAG_RE.sub("", body)


def _fmt_date(value: Optional[datetime]) -> str:
    return value.strftime("%B %d, %Y") if value else "N/A"


def _fmt_money(amount: Optional[float], currency: str = "USD") -> str:
    if amount is None:
        return "N/A"
    return f"{currency} {amount:,.2f}"


def _layout(title: str, body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f'<h2 style="color: #1e40af;">{html.escape(title)}</h2>'
        f"{body}"
        '<p style="color: #6b7280; font-size: 12px;">S-Hub by Stoneflake Manufacturing</p>'
        "</div>"
    )


class EmailService:
    """SendGrid client; one instance per process is enough."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.from_email = from_email or settings.EMAIL_FROM
        self.from_name = from_name or settings.EMAIL_FROM_NAME
        self.api_url = settings.SENDGRID_API_URL

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, to: str, subject: str, html_body: str, text: Optional[str] = None) -> bool:
        """
        Send one email. Returns False on any delivery failure.

        With EMAIL_VIA_WORKER the message is handed to the rq worker instead;
        if Redis is unreachable it is delivered inline.
        """
        if not self.configured:
            logger.info(f"Email not sent (SENDGRID_API_KEY unset): to={to} subject={subject!r}")
            return settings.DEBUG

        if settings.EMAIL_VIA_WORKER:
            try:
                jobs.enqueue_email(to, subject, html_body, text)
                logger.info(f"Email to {to} queued: {subject!r}")
                return True
            except RedisError as e:
                logger.warning(f"Could not queue email to {to}, sending inline: {e}")

        return await self.deliver(to, subject, html_body, text)

    async def deliver(self, to: str, subject: str, html_body: str, text: Optional[str] = None) -> bool:
        """POST to SendGrid now."""
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text or _strip_tags(html_body)},
                {"type": "text/html", "value": html_body},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(settings.EMAIL_TIMEOUT_SECONDS, connect=5.0)
            ) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
            logger.info(f"Email sent to {to}: {subject!r} ({response.status_code})")
            return True
        except httpx.HTTPStatusError as e:
            logger.error(
                f"SendGrid rejected email to {to}: HTTP {e.response.status_code} {e.response.text[:300]}"
            )
        except httpx.RequestError as e:
            logger.error(f"SendGrid request failed for {to}: {e}")
        return False

    # ============= ACCOUNT =============

    async def send_verification_email(self, to: str, code: str, name: Optional[str] = None) -> bool:
        body = (
            f"<p>Hello {html.escape(name or '')},</p>"
            "<p>Use the code below to verify your S-Hub account:</p>"
            f'<p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>'
            f"<p>The code expires in {settings.VERIFICATION_CODE_TTL_MINUTES} minutes.</p>"
        )
        return await self.send_email(
            to, "[S-Hub] Verify your account - Code inside", _layout("Verify your email", body)
        )

    async def send_password_reset_email(self, to: str, code: str, role: str) -> bool:
        role_text = "Supplier" if role == "supplier" else "Customer"
        body = (
            "<p>We received a request to reset your password.</p>"
            f'<p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{code}</p>'
            f"<p>The code expires in {settings.RESET_CODE_TTL_MINUTES} minutes. "
            "If you did not request a reset, ignore this email.</p>"
        )
        return await self.send_email(
            to,
            f"Password Reset Request - S-Hub {role_text} Portal",
            _layout("Password reset", body),
        )

    async def send_admin_notification(self, kind: str, **details) -> bool:
        """Signup and RFQ-submission notices for the admin mailbox."""
        if kind == "signup":
            subject = (
                f"New {details.get('user_role', 'customer')} Registration - "
                f"{details.get('user_name') or details.get('user_email')}"
            )
            body = (
                f"<p>Name: {html.escape(details.get('user_name') or '')}</p>"
                f"<p>Email: {html.escape(details.get('user_email') or '')}</p>"
                f"<p>Company: {html.escape(details.get('company') or 'N/A')}</p>"
            )
        elif kind == "rfq_submission":
            subject = f"New RFQ Submission - {details.get('project_name')}"
            body = (
                f"<p>Customer: {html.escape(details.get('user_name') or '')} "
                f"({html.escape(details.get('user_email') or '')})</p>"
                f"<p>Project: {html.escape(details.get('project_name') or '')}</p>"
                f"<p>Material: {html.escape(details.get('material') or '')}</p>"
                f"<p>Quantity: {details.get('quantity')}</p>"
            )
        else:
            raise ValueError(f"Unknown admin notification kind: {kind}")
        body += f'<p><a href="{settings.CLIENT_URL}/admin">Open the admin portal</a></p>'
        return await self.send_email(settings.ADMIN_NOTIFICATION_EMAIL, subject, _layout(subject, body))

    # ============= RFQ & QUOTES =============

    async def send_supplier_rfq_notification(
        self,
        to: str,
        supplier_name: Optional[str],
        project_name: str,
        material: str,
        quantity: int,
        sqte_number: Optional[str] = None,
    ) -> bool:
        body = (
            f"<p>Hello {html.escape(supplier_name or '')},</p>"
            "<p>You have been invited to quote a new RFQ.</p>"
            f"<p>Reference: {sqte_number or 'N/A'}<br>"
            f"Project: {html.escape(project_name)}<br>"
            f"Material: {html.escape(material)}<br>"
            f"Quantity: {quantity}</p>"
            f'<p><a href="{settings.CLIENT_URL}/supplier/rfqs">Review and submit your quote</a></p>'
        )
        return await self.send_email(
            to, f"New RFQ Assignment - {project_name}", _layout("New RFQ assignment", body)
        )

    async def send_customer_quote_notification(
        self,
        to: str,
        customer_name: Optional[str],
        project_name: str,
        amount: float,
        currency: str,
        valid_until: Optional[datetime],
    ) -> bool:
        body = (
            f"<p>Hello {html.escape(customer_name or '')},</p>"
            f"<p>Your quote for <strong>{html.escape(project_name)}</strong> is ready.</p>"
            f"<p>Amount: {_fmt_money(amount, currency)}<br>"
            f"Valid until: {_fmt_date(valid_until)}</p>"
            f'<p><a href="{settings.CLIENT_URL}/quotes">View your quote</a></p>'
        )
        return await self.send_email(to, f"Quote Ready - {project_name}", _layout("Your quote is ready", body))

    async def send_quote_response_notification(
        self,
        project_name: str,
        customer_name: Optional[str],
        accepted: bool,
    ) -> bool:
        """Tells the admin mailbox how a customer answered a quote."""
        word = "Accepted" if accepted else "Declined"
        body = (
            f"<p>{html.escape(customer_name or 'The customer')} has {word.lower()} "
            f"the quote for <strong>{html.escape(project_name)}</strong>.</p>"
        )
        return await self.send_email(
            settings.ADMIN_NOTIFICATION_EMAIL,
            f"Quote {word} - {project_name}",
            _layout(f"Quote {word.lower()}", body),
        )

    async def send_quote_accepted_notification(
        self,
        to: str,
        supplier_name: Optional[str],
        project_name: str,
        price: float,
        currency: str = "USD",
    ) -> bool:
        body = (
            f"<p>Hello {html.escape(supplier_name or '')},</p>"
            f"<p>Congratulations! Your quote for <strong>{html.escape(project_name)}</strong> "
            f"({_fmt_money(price, currency)}) was accepted. A purchase order will follow.</p>"
        )
        return await self.send_email(
            to,
            f"Update on your quote for Stoneflake - {project_name} - ACCEPTED",
            _layout("Quote accepted", body),
        )

    async def send_quote_not_selected_notification(
        self,
        to: str,
        supplier_name: Optional[str],
        project_name: str,
        feedback: Optional[str] = None,
    ) -> bool:
        body = (
            f"<p>Hello {html.escape(supplier_name or '')},</p>"
            f"<p>Thank you for quoting <strong>{html.escape(project_name)}</strong>. "
            "Another quote was selected this time.</p>"
        )
        if feedback:
            body += f"<p>Feedback: {html.escape(feedback)}</p>"
        return await self.send_email(
            to,
            f"Update on your quote for Stoneflake - {project_name}",
            _layout("Quote update", body),
        )

    async def send_purchase_order_notification(
        self,
        to: str,
        supplier_name: Optional[str],
        order_number: str,
        total_amount: float,
        delivery_date: Optional[datetime] = None,
    ) -> bool:
        body = (
            f"<p>Hello {html.escape(supplier_name or '')},</p>"
            f"<p>Purchase order <strong>{order_number}</strong> has been issued to you.</p>"
            f"<p>Total: {_fmt_money(total_amount)}<br>"
            f"Requested delivery: {_fmt_date(delivery_date)}</p>"
            f'<p><a href="{settings.CLIENT_URL}/supplier/purchase-orders">Accept or decline</a></p>'
        )
        return await self.send_email(
            to, f"Purchase Order {order_number} - S-Hub", _layout("New purchase order", body)
        )

    # ============= MESSAGES =============

    async def send_unread_message_notification(
        self,
        to: str,
        user_name: Optional[str],
        message_count: int,
        latest_content: str,
        sender_name: Optional[str],
    ) -> bool:
        plural = "s" if message_count > 1 else ""
        preview = latest_content if len(latest_content) <= 200 else latest_content[:200] + "..."
        body = (
            f"<p>Hello {html.escape(user_name or '')},</p>"
            f"<p>You have {message_count} unread message{plural} on S-Hub.</p>"
            f"<blockquote>{html.escape(preview)}</blockquote>"
            f"<p>From: {html.escape(sender_name or 'Stoneflake')}</p>"
            f'<p><a href="{settings.CLIENT_URL}/messages">Reply now</a></p>'
        )
        return await self.send_email(
            to,
            f"New Message{plural} from Stoneflake - Action Required",
            _layout("Unread messages", body),
        )


email_service = EmailService()
