import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from app.models.enums import DiscountType


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _not_blank(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


class GenerateRequest(CamelModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=200)
    phone: str | None = Field(None, max_length=30)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        return _not_blank(v)


class GenerateResponse(CamelModel):
    success: bool = True
    code: str
    share_url: str
    share_text: str


class ValidateRequest(CamelModel):
    code: str = Field(min_length=1, max_length=64)
    email: EmailStr

    @field_validator("code")
    @classmethod
    def code_not_blank(cls, v: str) -> str:
        return _not_blank(v)


class DiscountTerms(CamelModel):
    type: DiscountType
    value: float
    formatted: str


class ValidateResponse(CamelModel):
    valid: bool
    discount: DiscountTerms | None = None
    message: str
    referral_code: str | None = None


class ApplyRequest(CamelModel):
    code: str = Field(min_length=1, max_length=64)
    email: EmailStr
    name: str = Field(min_length=1, max_length=200)
    phone: str | None = Field(None, max_length=30)
    booking_id: str | None = Field(None, max_length=64)

    @field_validator("code", "name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _not_blank(v)


class AppliedDiscount(CamelModel):
    # None for percentage codes until the booking price is known
    amount: float | None
    type: DiscountType


class ApplyResponse(CamelModel):
    success: bool = True
    redemption_id: uuid.UUID
    discount: AppliedDiscount


class ErrorResponse(CamelModel):
    success: bool = False
    error: str


class ReferralStatsBody(CamelModel):
    code: str
    total_uses: int
    max_uses: int
    remaining_uses: int
    total_redemptions: int
    completed_bookings: int
    pending_bookings: int
    total_credits_earned: float
    conversion_rate: int


class RecentRedemption(CamelModel):
    referee_name: str
    redeemed_at: datetime
    booking_completed: bool


class ReferralStatsResponse(CamelModel):
    success: bool = True
    stats: ReferralStatsBody
    recent_redemptions: list[RecentRedemption]
