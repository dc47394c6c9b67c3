"""Recording redemptions and their later booking completion.

A redemption row and the usage-counter increment form one unit of work:
either both are committed or neither is. Duplicate redemptions are rejected
by the ``(referral_code_id, referee_email)`` unique constraint, which stays
authoritative even though the validator checks for them first.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
from sqlalchemy.orm.attributes import set_committed_value

from app.config import settings
from app.exceptions import PersistenceError, ReferralRejected
from app.models.enums import LeadActivityType, LeadSource, RedemptionSource, RejectionReason
from app.models.lead import Lead
from app.models.referral import ReferralRedemption
from app.services import leads, notifications, referral_registry, referral_validator
from app.services.discounts import discount_from_code
from app.utils.code_generator import normalize_email
from app.utils.log_mask import mask_email

logger = structlog.get_logger()


@dataclass(frozen=True)
class RefereeDetails:
    email: str
    name: str
    phone: str | None = None


def _reject(code: str, reason: RejectionReason) -> ReferralRejected:
    logger.info("referral_rejected", code=code, reason=reason.value)
    return ReferralRejected(reason)


async def redeem(
    db: AsyncSession,
    code: str,
    referee: RefereeDetails,
    booking_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> ReferralRedemption:
    """Apply ``code`` for ``referee`` and commit the redemption.

    Raises ReferralRejected for any business-rule rejection (including races
    lost at commit time) and PersistenceError if the store fails.
    """
    now = now or datetime.now(timezone.utc)
    decision = await referral_validator.validate(db, code, referee.email, now)
    if isinstance(decision, referral_validator.Rejected):
        raise ReferralRejected(decision.reason)

    referral = decision.code
    discount = decision.discount
    amount = discount.redemption_amount()
    email = normalize_email(referee.email)
    name = referee.name.strip()
    code_value = referral.code
    referrer_name = referral.referrer_name

    redemption = ReferralRedemption(
        referral_code_id=referral.id,
        referee_email=email,
        referee_name=name,
        referee_phone=referee.phone,
        booking_id=booking_id,
        redeemed_at=now,
        booking_completed=False,
        referee_discount_amount=amount,
        referrer_credit_amount=amount,
        redemption_source=RedemptionSource.BOOKING if booking_id else RedemptionSource.LANDING_PAGE,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
    )

    try:
        db.add(redemption)
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise _reject(code_value, RejectionReason.ALREADY_REDEEMED)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("referral_redeem_failed", code=code_value, email=mask_email(email))
        raise PersistenceError("redeem") from exc

    try:
        counted = await referral_registry.increment_usage(db, referral, now)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("referral_redeem_failed", code=code_value, email=mask_email(email))
        raise PersistenceError("redeem") from exc
    if not counted:
        # Lost the race for the last use; drop the redemption with it
        await db.rollback()
        raise _reject(code_value, RejectionReason.MAX_USES_REACHED)

    try:
        lead, created = await leads.get_or_create_by_email(
            db,
            email=email,
            name=name,
            source=LeadSource.REFERRAL,
            phone=referee.phone,
            lead_score=settings.REFERRAL_LEAD_SCORE_BONUS,
            custom_fields={"usedReferralCode": True, "referralCode": code_value},
        )
        if not created:
            leads.apply_referral_bonus(lead, code_value)
        redemption.lead_id = lead.id
        await leads.log_activity(
            db,
            lead,
            LeadActivityType.REFERRAL_USED,
            activity_data={
                "referralCode": code_value,
                "referrerName": referrer_name,
                "discountAmount": str(amount) if amount is not None else None,
            },
            score_impact=settings.REFERRAL_LEAD_SCORE_BONUS,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("referral_redeem_failed", code=code_value, email=mask_email(email))
        raise PersistenceError("redeem") from exc

    # Already in memory; saves callers a lazy load they are not allowed to do
    set_committed_value(redemption, "referral_code", referral)
    logger.info(
        "referral_redeemed",
        code=code_value,
        redemption_id=str(redemption.id),
        email=mask_email(email),
        source=redemption.redemption_source,
    )
    notifications.notify_referee_welcome(
        email=email,
        name=name,
        code=code_value,
        discount_formatted=discount.formatted,
        referrer_name=referrer_name,
        lead_id=lead.id,
    )
    return redemption


async def get_redemption(db: AsyncSession, redemption_id: uuid.UUID) -> ReferralRedemption | None:
    result = await db.execute(
        select(ReferralRedemption)
        .options(joinedload(ReferralRedemption.referral_code))
        .where(ReferralRedemption.id == redemption_id)
    )
    return result.scalar_one_or_none()


async def mark_completed(
    db: AsyncSession,
    redemption_id: uuid.UUID,
    booking_price: Decimal | None = None,
    now: datetime | None = None,
) -> tuple[ReferralRedemption | None, bool]:
    """Flag a redemption's booking as completed.

    Returns ``(redemption, changed)``. Idempotent: a redemption that is
    already completed is returned as is with ``changed`` False. Percentage
    amounts deferred at redemption time are resolved against
    ``booking_price`` when one is given. Returns ``(None, False)`` for an
    unknown id.
    """
    redemption = await get_redemption(db, redemption_id)
    if redemption is None:
        return None, False
    if redemption.booking_completed:
        logger.info("referral_completion_duplicate", redemption_id=str(redemption.id))
        return redemption, False

    referral = redemption.referral_code
    if redemption.referee_discount_amount is None and booking_price is not None:
        resolved = discount_from_code(referral).resolve(booking_price)
        redemption.referee_discount_amount = resolved
        redemption.referrer_credit_amount = resolved

    redemption.booking_completed = True
    redemption.booking_completed_at = now or datetime.now(timezone.utc)

    try:
        if redemption.lead_id is not None:
            lead = await db.get(Lead, redemption.lead_id)
            if lead is not None:
                await leads.log_activity(
                    db,
                    lead,
                    LeadActivityType.REFERRAL_BOOKING_COMPLETED,
                    activity_data={"referralCode": referral.code, "redemptionId": str(redemption.id)},
                )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("referral_completion_failed", redemption_id=str(redemption_id))
        raise PersistenceError("mark_completed") from exc

    logger.info(
        "referral_booking_completed",
        redemption_id=str(redemption.id),
        code=referral.code,
    )
    notifications.notify_referrer_success(
        referrer_email=referral.referrer_email,
        referrer_name=referral.referrer_name,
        referee_name=redemption.referee_name,
        credit_amount=redemption.referrer_credit_amount,
    )
    return redemption, True
