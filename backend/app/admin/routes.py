import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_admin
from app.metrics import REFERRAL_BOOKINGS_COMPLETED
from app.models.audit_log import AuditLog
from app.models.enums import AuditAction
from app.models.user import User
from app.schemas.admin import (
    AdminReferralsResponse,
    AggregateStats,
    CompleteRedemptionRequest,
    LeaderboardRow,
    RecentActivity,
    RedemptionResponse,
    ReferralCodeAdminResponse,
    ReferralStatusUpdateRequest,
    ReferralStatusUpdateResponse,
)
from app.services import referral_recorder, referral_registry, referral_stats
from app.utils.rate_limit import limiter

logger = structlog.get_logger()
router = APIRouter(prefix="/admin", tags=["admin"])


# --- 1. Referral overview ---


@router.get("/referrals", response_model=AdminReferralsResponse)
@limiter.limit("30/minute")
async def list_referrals(
    request: Request,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Leaderboard of every code plus programme-wide totals."""
    board = await referral_stats.leaderboard(db)
    totals = board.totals

    return AdminReferralsResponse(
        aggregate_stats=AggregateStats(
            total_codes=totals.total_codes,
            active_codes=totals.active_codes,
            total_redemptions=totals.total_redemptions,
            total_completed_bookings=totals.total_completed_bookings,
            total_discounts_given=float(totals.total_discounts_given),
            overall_conversion_rate=totals.overall_conversion_rate,
        ),
        leaderboard=[
            LeaderboardRow(
                id=entry.code.id,
                code=entry.code.code,
                referrer_name=entry.code.referrer_name,
                referrer_email=entry.code.referrer_email,
                status=entry.status,
                total_uses=entry.code.total_uses,
                max_uses=entry.code.max_uses,
                total_redemptions=entry.stats.total_redemptions,
                completed_bookings=entry.stats.completed_bookings,
                pending_bookings=entry.stats.pending_bookings,
                total_credits_earned=float(entry.stats.total_credits_earned),
                conversion_rate=entry.stats.conversion_rate,
                expires_at=entry.code.expires_at,
                created_at=entry.code.created_at,
            )
            for entry in board.entries
        ],
        recent_activity=[
            RecentActivity(
                id=r.id,
                code=r.referral_code.code,
                referrer_name=r.referral_code.referrer_name,
                referee_name=r.referee_name,
                referee_email=r.referee_email,
                redeemed_at=r.redeemed_at,
                booking_completed=r.booking_completed,
            )
            for r in board.recent
        ],
    )


# --- 2. Status changes ---


@router.patch("/referrals", response_model=ReferralStatusUpdateResponse)
@limiter.limit("30/minute")
async def update_referral_status(
    request: Request,
    body: ReferralStatusUpdateRequest,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Disable, expire or reactivate a referral code."""
    referral = await referral_registry.get_by_id(db, body.code_id)
    if referral is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Referral code not found",
        )

    old_status = referral_registry.effective_status(referral)
    await referral_registry.set_status(
        db,
        referral,
        body.status,
        notes=body.notes,
        expires_at=body.expires_at,
    )

    db.add(AuditLog(
        action=AuditAction.REFERRAL_STATUS_CHANGED,
        admin_user_id=admin.id,
        referral_code_id=referral.id,
        detail=body.notes,
        metadata_json={"from": old_status.value, "to": body.status.value},
    ))
    await db.flush()
    logger.info(
        "admin_referral_status_changed",
        code=referral.code,
        admin_id=str(admin.id),
        new_status=body.status.value,
    )
    return ReferralStatusUpdateResponse(
        referral_code=ReferralCodeAdminResponse.model_validate(referral),
    )


# --- 3. Booking completion hook ---


@router.post(
    "/referrals/redemptions/{redemption_id}/complete",
    response_model=RedemptionResponse,
)
@limiter.limit("60/minute")
async def complete_redemption(
    request: Request,
    redemption_id: uuid.UUID,
    body: CompleteRedemptionRequest | None = None,
    admin: User = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Mark the booking behind a redemption as completed. Safe to repeat."""
    booking_price = body.booking_price if body else None
    redemption, changed = await referral_recorder.mark_completed(
        db, redemption_id, booking_price=booking_price
    )
    if redemption is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Redemption not found",
        )
    if not changed:
        return RedemptionResponse.model_validate(redemption)

    REFERRAL_BOOKINGS_COMPLETED.inc()
    db.add(AuditLog(
        action=AuditAction.REDEMPTION_COMPLETED,
        admin_user_id=admin.id,
        referral_code_id=redemption.referral_code_id,
        detail=f"Redemption {redemption.id} completed",
        metadata_json={"bookingPrice": str(booking_price) if booking_price is not None else None},
    ))
    await db.flush()
    return RedemptionResponse.model_validate(redemption)
