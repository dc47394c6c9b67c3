import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.enums import DiscountType, RedemptionSource, ReferralStatus
from app.models.types import GUID, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReferralCode(Base):
    __tablename__ = "referral_codes"
    __table_args__ = (
        CheckConstraint("max_uses > 0", name="ck_referral_codes_max_uses_positive"),
        CheckConstraint(
            "total_uses >= 0 AND total_uses <= max_uses",
            name="ck_referral_codes_uses_within_cap",
        ),
        Index("ix_referral_codes_referrer_email_status", "referrer_email", "status"),
        # At most one active code per referrer
        Index(
            "uq_referral_codes_active_referrer",
            "referrer_email",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    referrer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    referrer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    referrer_phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    status: Mapped[ReferralStatus] = mapped_column(
        String(20), nullable=False, default=ReferralStatus.ACTIVE
    )
    discount_type: Mapped[DiscountType] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now()
    )

    redemptions: Mapped[list["ReferralRedemption"]] = relationship(
        "ReferralRedemption", back_populates="referral_code", lazy="raise"
    )


class ReferralRedemption(Base):
    __tablename__ = "referral_redemptions"
    __table_args__ = (
        # One redemption per referee per code, enforced by the store
        UniqueConstraint(
            "referral_code_id", "referee_email", name="uq_referral_redemptions_code_referee"
        ),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    referral_code_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("referral_codes.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    referee_email: Mapped[str] = mapped_column(String(255), nullable=False)
    referee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    referee_phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    booking_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(), ForeignKey("leads.id", ondelete="SET NULL"), nullable=True
    )
    redeemed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=_utcnow, server_default=func.now(), index=True
    )
    booking_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    booking_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    referee_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    referrer_credit_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    redemption_source: Mapped[RedemptionSource] = mapped_column(String(20), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    referral_code: Mapped["ReferralCode"] = relationship(
        "ReferralCode", back_populates="redemptions", lazy="raise"
    )
