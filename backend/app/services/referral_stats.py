"""Referral analytics, recomputed from codes and redemptions on every call."""
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from app.models.enums import ReferralStatus
from app.models.referral import ReferralCode, ReferralRedemption
from app.services import referral_registry

RECENT_REDEMPTIONS_LIMIT = 5
RECENT_ACTIVITY_LIMIT = 10

_ZERO = Decimal("0.00")


def conversion_rate(completed: int, total: int) -> int:
    """Whole-number percentage, halves rounded up. 0 when there is nothing to convert."""
    if total <= 0:
        return 0
    rate = Decimal(completed) * 100 / Decimal(total)
    return int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class ReferralStats:
    code: str
    total_uses: int
    max_uses: int
    remaining_uses: int
    total_redemptions: int
    completed_bookings: int
    pending_bookings: int
    total_credits_earned: Decimal
    total_discounts_given: Decimal
    conversion_rate: int


@dataclass
class LeaderboardEntry:
    code: ReferralCode
    status: ReferralStatus
    stats: ReferralStats


@dataclass
class PortfolioTotals:
    total_codes: int = 0
    active_codes: int = 0
    total_redemptions: int = 0
    total_completed_bookings: int = 0
    total_discounts_given: Decimal = _ZERO
    overall_conversion_rate: int = 0


@dataclass
class Leaderboard:
    totals: PortfolioTotals
    entries: list[LeaderboardEntry] = field(default_factory=list)
    recent: list[ReferralRedemption] = field(default_factory=list)


def summarize(code: ReferralCode, redemptions: list[ReferralRedemption]) -> ReferralStats:
    total = len(redemptions)
    completed = [r for r in redemptions if r.booking_completed]
    credits = sum(
        (Decimal(r.referrer_credit_amount) for r in completed if r.referrer_credit_amount is not None),
        _ZERO,
    )
    discounts = sum(
        (Decimal(r.referee_discount_amount) for r in redemptions if r.referee_discount_amount is not None),
        _ZERO,
    )
    return ReferralStats(
        code=code.code,
        total_uses=code.total_uses,
        max_uses=code.max_uses,
        remaining_uses=code.max_uses - code.total_uses,
        total_redemptions=total,
        completed_bookings=len(completed),
        pending_bookings=total - len(completed),
        total_credits_earned=credits,
        total_discounts_given=discounts,
        conversion_rate=conversion_rate(len(completed), total),
    )


async def _redemptions_for(db: AsyncSession, code: ReferralCode) -> list[ReferralRedemption]:
    result = await db.execute(
        select(ReferralRedemption)
        .where(ReferralRedemption.referral_code_id == code.id)
        .order_by(ReferralRedemption.redeemed_at.desc())
    )
    return list(result.scalars().all())


async def stats_for(
    db: AsyncSession, code: str | None = None, email: str | None = None
) -> tuple[ReferralCode, ReferralStats, list[ReferralRedemption]] | None:
    """Stats for one code, looked up by code or by referrer email.

    Returns None when nothing matches. The third element holds the newest
    redemptions, most recent first.
    """
    if code:
        referral = await referral_registry.find_by_code(db, code)
    elif email:
        referral = await referral_registry.find_latest_by_referrer_email(db, email)
    else:
        raise ValueError("code or email is required")
    if referral is None:
        return None

    redemptions = await _redemptions_for(db, referral)
    return referral, summarize(referral, redemptions), redemptions[:RECENT_REDEMPTIONS_LIMIT]


async def leaderboard(db: AsyncSession) -> Leaderboard:
    """Every code with its stats, best converters first, plus portfolio totals."""
    codes = list((await db.execute(select(ReferralCode))).scalars().all())
    redemptions = list(
        (
            await db.execute(
                select(ReferralRedemption)
                .options(joinedload(ReferralRedemption.referral_code))
                .order_by(ReferralRedemption.redeemed_at.desc())
            )
        ).scalars().all()
    )

    by_code: dict = {code.id: [] for code in codes}
    for redemption in redemptions:
        by_code.setdefault(redemption.referral_code_id, []).append(redemption)

    entries = [
        LeaderboardEntry(
            code=code,
            status=referral_registry.effective_status(code),
            stats=summarize(code, by_code[code.id]),
        )
        for code in codes
    ]
    entries.sort(key=lambda e: e.code.created_at)
    entries.sort(
        key=lambda e: (e.stats.completed_bookings, e.stats.total_redemptions),
        reverse=True,
    )

    completed = sum(1 for r in redemptions if r.booking_completed)
    totals = PortfolioTotals(
        total_codes=len(codes),
        active_codes=sum(1 for e in entries if e.status == ReferralStatus.ACTIVE),
        total_redemptions=len(redemptions),
        total_completed_bookings=completed,
        total_discounts_given=sum((e.stats.total_discounts_given for e in entries), _ZERO),
        overall_conversion_rate=conversion_rate(completed, len(redemptions)),
    )
    return Leaderboard(
        totals=totals,
        entries=entries,
        recent=redemptions[:RECENT_ACTIVITY_LIMIT],
    )
