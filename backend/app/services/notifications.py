"""Fire-and-forget referral notifications.

Sends run as background tasks after the response is decided. A failed or
skipped email is logged and never changes the outcome of the request that
triggered it.
"""
import asyncio
from collections.abc import Coroutine
from decimal import Decimal
from typing import Any, Set

import structlog

from app.services import email_service
from app.utils.log_mask import mask_email

logger = structlog.get_logger()

# Keep references to background tasks to prevent GC collection
_background_tasks: Set[asyncio.Task] = set()


async def _run_safely(name: str, coro: Coroutine[Any, Any, bool]) -> None:
    try:
        delivered = await coro
    except Exception as exc:
        logger.error("notification_failed", notification=name, error=str(exc))
        return
    if not delivered:
        logger.info("notification_not_delivered", notification=name)


def dispatch(name: str, coro: Coroutine[Any, Any, bool]) -> asyncio.Task:
    """Schedule ``coro`` in the background and return immediately."""
    task = asyncio.create_task(_run_safely(name, coro))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def notify_referral_code_created(
    email: str,
    name: str,
    code: str,
    share_url: str,
    share_text: str,
    discount_formatted: str,
    lead_id=None,
) -> None:
    logger.info("referral_code_email_queued", email=mask_email(email), code=code)
    dispatch(
        "referral_code",
        email_service.send_referral_code_email(
            email=email,
            name=name,
            code=code,
            share_url=share_url,
            share_text=share_text,
            discount_formatted=discount_formatted,
            lead_id=lead_id,
        ),
    )


def notify_referee_welcome(
    email: str,
    name: str,
    code: str,
    discount_formatted: str,
    referrer_name: str,
    lead_id=None,
) -> None:
    dispatch(
        "referral_welcome",
        email_service.send_referral_welcome_email(
            email=email,
            name=name,
            code=code,
            discount_formatted=discount_formatted,
            referrer_name=referrer_name,
            lead_id=lead_id,
        ),
    )


def notify_referrer_success(
    referrer_email: str,
    referrer_name: str,
    referee_name: str,
    credit_amount: Decimal | None,
) -> None:
    dispatch(
        "referral_success",
        email_service.send_referral_success_email(
            referrer_email=referrer_email,
            referrer_name=referrer_name,
            referee_name=referee_name,
            credit_amount=credit_amount,
        ),
    )
