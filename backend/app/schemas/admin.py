import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import Field

from app.models.enums import DiscountType, RedemptionSource, ReferralStatus
from app.schemas.referral import CamelModel


class ReferralCodeAdminResponse(CamelModel):
    id: uuid.UUID
    code: str
    referrer_name: str
    referrer_email: str
    referrer_phone: str | None = None
    status: ReferralStatus
    discount_type: DiscountType
    discount_value: float
    total_uses: int
    max_uses: int
    expires_at: datetime | None = None
    notes: str | None = None
    last_used_at: datetime | None = None
    created_at: datetime


class LeaderboardRow(CamelModel):
    id: uuid.UUID
    code: str
    referrer_name: str
    referrer_email: str
    status: ReferralStatus
    total_uses: int
    max_uses: int
    total_redemptions: int
    completed_bookings: int
    pending_bookings: int
    total_credits_earned: float
    conversion_rate: int
    expires_at: datetime | None = None
    created_at: datetime


class AggregateStats(CamelModel):
    total_codes: int
    active_codes: int
    total_redemptions: int
    total_completed_bookings: int
    total_discounts_given: float
    overall_conversion_rate: int


class RecentActivity(CamelModel):
    id: uuid.UUID
    code: str
    referrer_name: str
    referee_name: str
    referee_email: str
    redeemed_at: datetime
    booking_completed: bool


class AdminReferralsResponse(CamelModel):
    success: bool = True
    aggregate_stats: AggregateStats
    leaderboard: list[LeaderboardRow]
    recent_activity: list[RecentActivity]


class ReferralStatusUpdateRequest(CamelModel):
    code_id: uuid.UUID
    status: ReferralStatus
    notes: str | None = Field(None, max_length=2000)
    expires_at: datetime | None = None


class ReferralStatusUpdateResponse(CamelModel):
    success: bool = True
    referral_code: ReferralCodeAdminResponse


class CompleteRedemptionRequest(CamelModel):
    booking_price: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)


class RedemptionResponse(CamelModel):
    id: uuid.UUID
    referral_code_id: uuid.UUID
    referee_name: str
    referee_email: str
    booking_id: str | None = None
    booking_completed: bool
    booking_completed_at: datetime | None = None
    referee_discount_amount: float | None = None
    referrer_credit_amount: float | None = None
    redemption_source: RedemptionSource
    redeemed_at: datetime
