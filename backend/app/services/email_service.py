"""Referral emails sent through the Resend API.

Every attempt is recorded in ``email_logs``. Without RESEND_API_KEY (dev
mode) nothing is sent, the attempt is logged as skipped and the sender
returns False.
"""

import time as _time
from datetime import datetime, timezone
from decimal import Decimal
from html import escape
from urllib.parse import quote

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import async_session
from app.exceptions import NotificationError
from app.metrics import EMAILS_SENT, RESEND_CALL_DURATION
from app.models.email_log import EmailLog
from app.models.enums import EmailStatus, EmailType
from app.utils.log_mask import mask_email

logger = structlog.get_logger()

RESEND_API_URL = "https://api.resend.com/emails"

_email_client: httpx.AsyncClient | None = None


def _get_email_client() -> httpx.AsyncClient:
    global _email_client
    if _email_client is None or _email_client.is_closed:
        _email_client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0),
        )
    return _email_client


async def _deliver(to_email: str, subject: str, html: str, text: str, email_type: EmailType) -> str | None:
    """POST one message to Resend and return its provider id."""
    payload = {
        "from": settings.FROM_EMAIL,
        "to": [to_email],
        "subject": subject,
        "html": html,
        "text": text,
        "reply_to": settings.REPLY_TO_EMAIL,
        "tags": [{"name": "type", "value": email_type.value}],
    }
    start = _time.monotonic()
    try:
        client = _get_email_client()
        response = await client.post(
            RESEND_API_URL,
            json=payload,
            headers={
                "Authorization": f"Bearer {settings.RESEND_API_KEY}",
                "Content-Type": "application/json",
            },
        )
    except httpx.HTTPError as exc:
        raise NotificationError(f"Resend request failed: {exc}") from exc
    finally:
        RESEND_CALL_DURATION.observe(_time.monotonic() - start)
    if not response.is_success:
        raise NotificationError(f"Resend returned HTTP {response.status_code}")
    try:
        return response.json().get("id")
    except ValueError:
        return None


async def _send_and_log(
    db: AsyncSession,
    to_email: str,
    subject: str,
    html: str,
    text: str,
    email_type: EmailType,
    template_name: str,
    lead_id=None,
) -> bool:
    log = EmailLog(
        lead_id=lead_id,
        to_email=to_email,
        subject=subject,
        email_type=email_type,
        template_name=template_name,
        status=EmailStatus.PENDING,
    )
    db.add(log)
    await db.flush()

    if not settings.RESEND_API_KEY:
        logger.warning(
            "resend_api_key_not_set",
            msg="RESEND_API_KEY not configured, skipping email send (dev mode)",
            email=mask_email(to_email),
            template=template_name,
        )
        log.status = EmailStatus.SKIPPED
        await db.flush()
        EMAILS_SENT.labels(email_type=email_type.value, status=EmailStatus.SKIPPED.value).inc()
        return False

    try:
        provider_id = await _deliver(to_email, subject, html, text, email_type)
    except NotificationError as exc:
        logger.error(
            "email_send_failed",
            email=mask_email(to_email),
            template=template_name,
            error=str(exc),
        )
        log.status = EmailStatus.FAILED
        log.error_message = str(exc)[:1000]
        await db.flush()
        EMAILS_SENT.labels(email_type=email_type.value, status=EmailStatus.FAILED.value).inc()
        return False

    log.status = EmailStatus.SENT
    log.provider_id = provider_id
    log.sent_at = datetime.now(timezone.utc)
    await db.flush()
    EMAILS_SENT.labels(email_type=email_type.value, status=EmailStatus.SENT.value).inc()
    logger.info("email_sent", email=mask_email(to_email), template=template_name)
    return True


async def send_email(
    to_email: str,
    subject: str,
    html: str,
    text: str,
    email_type: EmailType,
    template_name: str,
    lead_id=None,
    db: AsyncSession | None = None,
) -> bool:
    """Send an email and record the attempt.

    If a ``db`` session is provided it is reused (the caller commits);
    otherwise a dedicated session is opened and committed here, which is the
    normal case for background sends.
    """
    if db is not None:
        return await _send_and_log(db, to_email, subject, html, text, email_type, template_name, lead_id)
    async with async_session() as session:
        sent = await _send_and_log(session, to_email, subject, html, text, email_type, template_name, lead_id)
        await session.commit()
        return sent


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _layout(title: str, body_html: str) -> str:
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8"></head>'
        '<body style="margin:0;padding:0;background-color:#FAFAF8;font-family:Georgia,serif;">'
        '<table width="100%" cellpadding="0" cellspacing="0"><tr><td align="center" style="padding:40px 20px;">'
        '<table width="600" cellpadding="0" cellspacing="0" style="background-color:#ffffff;border-radius:12px;">'
        f'<tr><td style="padding:32px 40px;"><h1 style="margin:0 0 16px;color:#1A1A1A;">{title}</h1>'
        f"{body_html}"
        '<p style="color:#6B6B6B;font-size:13px;margin-top:32px;">Luke Robert Hair - Precision Haircuts</p>'
        "</td></tr></table></td></tr></table></body></html>"
    )


def _stats_url(code: str) -> str:
    return f"{settings.BASE_URL}/referrals?code={quote(code)}"


async def send_referral_code_email(
    email: str,
    name: str,
    code: str,
    share_url: str,
    share_text: str,
    discount_formatted: str,
    lead_id=None,
    db: AsyncSession | None = None,
) -> bool:
    """Sent when a client generates their referral code."""
    subject = "Share the Love - Your Referral Code is Ready!"
    safe_name = escape(name.split()[0] if name.split() else name)
    safe_code = escape(code)
    html = _layout(
        "Your Referral Code is Ready!",
        f"<p>Hi {safe_name},</p>"
        "<p>Thank you for joining the referral programme! When your friends use your code, "
        f"<strong>you both get {escape(discount_formatted)}</strong> your next appointment.</p>"
        f'<p style="font-size:28px;letter-spacing:2px;text-align:center;"><strong>{safe_code}</strong></p>'
        f'<p><a href="{escape(share_url)}">View your referral link</a></p>'
        f"<p>Share it: {escape(share_text)}</p>"
        f'<p>Track your referrals at <a href="{escape(_stats_url(code))}">your referral page</a>.</p>',
    )
    text = (
        f"Hi {name},\n\n"
        f"Your referral code is ready! When your friends use it, you both get {discount_formatted} "
        "your next appointment.\n\n"
        f"YOUR REFERRAL CODE: {code}\n\n"
        f"Share it: {share_text}\n\n"
        f"View your referral link: {share_url}\n"
        f"Track your referrals: {_stats_url(code)}\n"
    )
    return await send_email(
        email, subject, html, text, EmailType.REFERRAL_CODE, "referral_code_ready", lead_id=lead_id, db=db
    )


async def send_referral_welcome_email(
    email: str,
    name: str,
    code: str,
    discount_formatted: str,
    referrer_name: str,
    lead_id=None,
    db: AsyncSession | None = None,
) -> bool:
    """Sent to a referee once their redemption is recorded."""
    subject = f"Welcome! Your {discount_formatted.removesuffix(' off')} Discount is Ready"
    html = _layout(
        "Welcome to Luke Robert Hair!",
        f"<p>Hi {escape(name)},</p>"
        f"<p>Thanks to <strong>{escape(referrer_name)}</strong>, you're about to experience precision "
        "haircuts that last. Your referral discount has been applied.</p>"
        f'<p style="font-size:24px;text-align:center;"><strong>{escape(discount_formatted.upper())}</strong></p>'
        f"<p>Applied to your booking with code <strong>{escape(code)}</strong>.</p>"
        f'<p><a href="{escape(settings.BASE_URL)}/book?ref={quote(code)}">Complete your booking</a></p>'
        "<p>After your first visit, you'll get your own referral code to share!</p>",
    )
    text = (
        f"Hi {name},\n\n"
        f"Thanks to {referrer_name}, you've got {discount_formatted} your first appointment "
        f"with code {code}.\n\n"
        f"Complete your booking: {settings.BASE_URL}/book?ref={code}\n"
    )
    return await send_email(
        email, subject, html, text, EmailType.REFERRAL_WELCOME, "referral_welcome", lead_id=lead_id, db=db
    )


async def send_referral_success_email(
    referrer_email: str,
    referrer_name: str,
    referee_name: str,
    credit_amount: Decimal | None,
    db: AsyncSession | None = None,
) -> bool:
    """Sent to the referrer once a referee's booking is completed."""
    subject = f"Good News! {referee_name} Used Your Code"
    credit_line = (
        f"You've earned <strong>£{credit_amount:.2f}</strong> off your next appointment."
        if credit_amount is not None
        else "Your credit will be applied to your next appointment."
    )
    html = _layout(
        "Your referral just booked!",
        f"<p>Hi {escape(referrer_name)},</p>"
        f"<p><strong>{escape(referee_name)}</strong> has completed their first appointment using your code.</p>"
        f"<p>{credit_line}</p>"
        "<p>Thank you for spreading the word.</p>",
    )
    text = (
        f"Hi {referrer_name},\n\n"
        f"{referee_name} has completed their first appointment using your code.\n"
        + (
            f"You've earned £{credit_amount:.2f} off your next appointment.\n"
            if credit_amount is not None
            else "Your credit will be applied to your next appointment.\n"
        )
    )
    return await send_email(
        referrer_email, subject, html, text, EmailType.REFERRAL_SUCCESS, "referral_success", db=db
    )
