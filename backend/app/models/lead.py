"""Contact/lead store shared with the CRM side of the site.

The referral flow only needs get-or-create by email and an activity trail;
scoring and nurturing automations live elsewhere.
"""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.models.enums import LeadActivityType, LifecycleStage
from app.models.types import GUID, UTCDateTime


class Lead(Base):
    __tablename__ = "leads"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    lead_type: Mapped[str] = mapped_column(String(30), nullable=False, default="individual")
    lifecycle_stage: Mapped[LifecycleStage] = mapped_column(
        String(20), nullable=False, default=LifecycleStage.NEW
    )
    lead_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    custom_fields: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now())


class LeadActivity(Base):
    __tablename__ = "lead_activities"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        GUID(), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True
    )
    activity_type: Mapped[LeadActivityType] = mapped_column(String(50), nullable=False)
    activity_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    score_impact: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now())
