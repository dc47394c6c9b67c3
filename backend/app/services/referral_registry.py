"""Referral code registry: issuing, lookup, lazy expiry and usage accounting.

Expiry is never pushed by a scheduler. Whether a code is expired is decided
at read time from ``expires_at``; the stored ``status`` column only caches
that decision and is refreshed opportunistically.
"""
import calendar
import uuid
from datetime import datetime, timezone

import structlog
from fastapi import HTTPException
from fastapi import status as http_status
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.config import settings
from app.exceptions import PersistenceError
from app.models.enums import LeadActivityType, LeadSource, ReferralStatus
from app.models.referral import ReferralCode
from app.services import leads, notifications
from app.services.discounts import discount_from_code
from app.utils.code_generator import (
    build_fallback_code,
    build_referral_code,
    normalize_code,
    normalize_email,
)
from app.utils.log_mask import mask_email
from app.utils.referral_state import validate_transition

logger = structlog.get_logger()


def add_months(value: datetime, months: int) -> datetime:
    """Calendar-month arithmetic, clamping the day to the target month's end.

    31 Aug + 6 months -> 28/29 Feb.
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def share_url(code: str) -> str:
    return f"{settings.BASE_URL}/book?ref={code}"


def share_text(referral: ReferralCode) -> str:
    amount = discount_from_code(referral).headline
    return (
        f"Try Luke's precision haircuts! Use my code {referral.code} for {amount} off "
        f"your first appointment. {share_url(referral.code)}"
    )


def effective_status(code: ReferralCode, now: datetime | None = None) -> ReferralStatus:
    """Status as of ``now``. A past ``expires_at`` always wins over the stored value."""
    now = now or datetime.now(timezone.utc)
    if code.expires_at is not None and code.expires_at < now:
        return ReferralStatus.EXPIRED
    return ReferralStatus(code.status)


async def refresh_expiry(
    db: AsyncSession, code: ReferralCode, now: datetime | None = None
) -> ReferralStatus:
    """Persist a lazily observed expiry and return the effective status.

    The write is best effort: if it fails the caller still gets ``expired``.
    It runs inside a savepoint so a failed UPDATE does not abort the rest
    of the request's transaction.
    """
    status = effective_status(code, now)
    if status != ReferralStatus.EXPIRED or ReferralStatus(code.status) != ReferralStatus.ACTIVE:
        return status

    try:
        async with db.begin_nested():
            await db.execute(
                update(ReferralCode)
                .where(ReferralCode.id == code.id, ReferralCode.status == ReferralStatus.ACTIVE)
                .values(status=ReferralStatus.EXPIRED)
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError as exc:
        logger.warning(
            "referral_expiry_persist_failed",
            code=code.code,
            error=str(exc),
        )
        return status

    set_committed_value(code, "status", ReferralStatus.EXPIRED)
    logger.info("referral_code_expired", code=code.code)
    return status


async def find_by_code(db: AsyncSession, code: str) -> ReferralCode | None:
    normalized = normalize_code(code)
    if not normalized:
        return None
    result = await db.execute(select(ReferralCode).where(ReferralCode.code == normalized))
    referral = result.scalar_one_or_none()
    if referral is not None:
        await refresh_expiry(db, referral)
    return referral


async def find_active_by_referrer_email(db: AsyncSession, email: str) -> ReferralCode | None:
    """The referrer's current active code, or None once it has lapsed."""
    result = await db.execute(
        select(ReferralCode)
        .where(
            ReferralCode.referrer_email == normalize_email(email),
            ReferralCode.status == ReferralStatus.ACTIVE,
        )
        .order_by(ReferralCode.created_at.desc())
        .limit(1)
    )
    referral = result.scalar_one_or_none()
    if referral is None:
        return None
    if await refresh_expiry(db, referral) != ReferralStatus.ACTIVE:
        return None
    return referral


async def find_latest_by_referrer_email(db: AsyncSession, email: str) -> ReferralCode | None:
    """Most recent code for the referrer regardless of status (stats lookups)."""
    result = await db.execute(
        select(ReferralCode)
        .where(ReferralCode.referrer_email == normalize_email(email))
        .order_by(ReferralCode.created_at.desc())
        .limit(1)
    )
    referral = result.scalar_one_or_none()
    if referral is not None:
        await refresh_expiry(db, referral)
    return referral


async def _code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(ReferralCode.id).where(ReferralCode.code == code))
    return result.scalar_one_or_none() is not None


async def _unique_code(db: AsyncSession, referrer_name: str) -> str:
    for _ in range(settings.REFERRAL_CODE_MAX_ATTEMPTS):
        candidate = build_referral_code(referrer_name)
        if not await _code_exists(db, candidate):
            return candidate
    fallback = build_fallback_code(referrer_name)
    logger.warning(
        "referral_code_fallback_used",
        attempts=settings.REFERRAL_CODE_MAX_ATTEMPTS,
        code=fallback,
    )
    return fallback


async def generate_code(
    db: AsyncSession,
    referrer_name: str,
    referrer_email: str,
    referrer_phone: str | None = None,
    now: datetime | None = None,
) -> tuple[ReferralCode, bool]:
    """Issue a referral code for a referrer, or return their current one.

    Returns ``(code, created)``. A new code is committed together with the
    referrer's lead before the code email is queued. Raises PersistenceError
    if it could not be stored.
    """
    email = normalize_email(referrer_email)
    name = referrer_name.strip()

    existing = await find_active_by_referrer_email(db, email)
    if existing is not None:
        logger.info("referral_code_reused", code=existing.code, email=mask_email(email))
        return existing, False

    now = now or datetime.now(timezone.utc)
    try:
        code = await _unique_code(db, name)
        referral = ReferralCode(
            code=code,
            referrer_email=email,
            referrer_name=name,
            referrer_phone=referrer_phone,
            status=ReferralStatus.ACTIVE,
            discount_type=settings.REFERRAL_DISCOUNT_TYPE,
            discount_value=settings.REFERRAL_DISCOUNT_VALUE,
            total_uses=0,
            max_uses=settings.REFERRAL_MAX_USES,
            expires_at=add_months(now, settings.REFERRAL_VALIDITY_MONTHS),
        )
        db.add(referral)
        await db.flush()

        lead, lead_created = await leads.get_or_create_by_email(
            db,
            email=email,
            name=name,
            source=LeadSource.REFERRAL_PROGRAM,
            phone=referrer_phone,
            lead_score=settings.REFERRAL_PROGRAM_LEAD_SCORE,
            custom_fields={"hasReferralCode": True, "referralCode": code},
        )
        if not lead_created:
            lead.custom_fields = {
                **(lead.custom_fields or {}),
                "hasReferralCode": True,
                "referralCode": code,
            }
        await leads.log_activity(
            db,
            lead,
            LeadActivityType.REFERRAL_CODE_GENERATED,
            activity_data={"referralCode": code},
        )
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        # A concurrent request for the same referrer won the active-code index
        winner = await find_active_by_referrer_email(db, email)
        if winner is not None:
            logger.info("referral_code_reused", code=winner.code, email=mask_email(email), race=True)
            return winner, False
        logger.error("referral_code_persist_failed", email=mask_email(email), error=str(exc.orig))
        raise PersistenceError("generate_code", "referral code could not be stored") from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("referral_code_persist_failed", email=mask_email(email))
        raise PersistenceError("generate_code") from exc

    logger.info("referral_code_generated", code=code, email=mask_email(email))
    notifications.notify_referral_code_created(
        email=email,
        name=name,
        code=code,
        share_url=share_url(code),
        share_text=share_text(referral),
        discount_formatted=discount_from_code(referral).formatted,
        lead_id=lead.id,
    )
    return referral, True


async def increment_usage(
    db: AsyncSession, code: ReferralCode, now: datetime | None = None
) -> bool:
    """Count one use of ``code`` if it is still under its cap.

    A single conditional UPDATE, so two concurrent redemptions can never push
    ``total_uses`` past ``max_uses``. Returns False when the cap was already
    reached.
    """
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(ReferralCode)
        .where(ReferralCode.id == code.id, ReferralCode.total_uses < ReferralCode.max_uses)
        .values(total_uses=ReferralCode.total_uses + 1, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await db.refresh(code, attribute_names=["total_uses", "last_used_at", "updated_at"])
    return True


async def get_by_id(db: AsyncSession, code_id: uuid.UUID) -> ReferralCode | None:
    result = await db.execute(select(ReferralCode).where(ReferralCode.id == code_id))
    return result.scalar_one_or_none()


async def set_status(
    db: AsyncSession,
    code: ReferralCode,
    status: ReferralStatus,
    notes: str | None = None,
    expires_at: datetime | None = None,
    now: datetime | None = None,
) -> ReferralCode:
    """Operator status change.

    Reactivating a code whose expiry has passed needs a new future
    ``expires_at``, otherwise it would read as expired again immediately.
    """
    now = now or datetime.now(timezone.utc)
    new_status = ReferralStatus(status)
    current = effective_status(code, now)
    validate_transition(current, new_status)

    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    next_expiry = expires_at if expires_at is not None else code.expires_at
    if new_status == ReferralStatus.ACTIVE and next_expiry is not None and next_expiry < now:
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail="Cannot reactivate an expired code without a future expiresAt",
        )

    previous = ReferralStatus(code.status)
    code.status = new_status
    if notes is not None:
        code.notes = notes
    if expires_at is not None:
        code.expires_at = expires_at
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(
            status_code=http_status.HTTP_409_CONFLICT,
            detail="Referrer already has an active code",
        ) from exc

    logger.info(
        "referral_status_changed",
        code=code.code,
        old_status=previous.value,
        new_status=new_status.value,
    )
    return code
