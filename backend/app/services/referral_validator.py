"""Admit or reject a prospective redemption without writing anything.

The decision itself (``check_eligibility``) is a pure function over a code
row, the referee's email and whether a redemption already exists, so the
order of the checks can be tested without a database.
"""
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import REJECTION_MESSAGES
from app.models.enums import ReferralStatus, RejectionReason
from app.models.referral import ReferralCode, ReferralRedemption
from app.services import referral_registry
from app.services.discounts import Discount, discount_from_code
from app.utils.code_generator import normalize_email

logger = structlog.get_logger()

_STATUS_REASONS = {
    ReferralStatus.EXPIRED: RejectionReason.EXPIRED,
    ReferralStatus.DISABLED: RejectionReason.DISABLED,
}


@dataclass(frozen=True)
class Admitted:
    code: ReferralCode
    discount: Discount

    valid = True

    @property
    def message(self) -> str:
        return f"Great! You'll get {self.discount.formatted} your booking."


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason

    valid = False

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self.reason]


Decision = Admitted | Rejected


def check_eligibility(
    code: ReferralCode | None,
    referee_email: str,
    already_redeemed: bool,
    now: datetime | None = None,
) -> Decision:
    """Ordered checks; the first one that fails decides the reason."""
    if code is None:
        return Rejected(RejectionReason.INVALID_CODE)

    status = referral_registry.effective_status(code, now)
    if status != ReferralStatus.ACTIVE:
        return Rejected(_STATUS_REASONS.get(status, RejectionReason.INACTIVE))

    # Unreachable once effective_status has run, kept for rows built by hand
    now = now or datetime.now(timezone.utc)
    if code.expires_at is not None and code.expires_at < now:
        return Rejected(RejectionReason.EXPIRED)

    if code.total_uses >= code.max_uses:
        return Rejected(RejectionReason.MAX_USES_REACHED)

    if normalize_email(code.referrer_email) == normalize_email(referee_email):
        return Rejected(RejectionReason.SELF_REFERRAL)

    if already_redeemed:
        return Rejected(RejectionReason.ALREADY_REDEEMED)

    return Admitted(code=code, discount=discount_from_code(code))


async def has_redeemed(db: AsyncSession, code: ReferralCode, referee_email: str) -> bool:
    result = await db.execute(
        select(ReferralRedemption.id).where(
            ReferralRedemption.referral_code_id == code.id,
            ReferralRedemption.referee_email == normalize_email(referee_email),
        )
    )
    return result.first() is not None


async def validate(
    db: AsyncSession, code: str, referee_email: str, now: datetime | None = None
) -> Decision:
    """Look up ``code`` and decide whether ``referee_email`` may redeem it.

    Performs no redemption writes; the only possible write is the lazy
    expiry refresh done by the registry lookup.
    """
    now = now or datetime.now(timezone.utc)
    referral = await referral_registry.find_by_code(db, code)
    redeemed = False
    if referral is not None:
        redeemed = await has_redeemed(db, referral, referee_email)

    decision = check_eligibility(referral, referee_email, redeemed, now)
    if isinstance(decision, Rejected):
        logger.info(
            "referral_rejected",
            code=code.strip().upper(),
            reason=decision.reason.value,
        )
    return decision
