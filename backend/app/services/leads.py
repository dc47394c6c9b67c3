import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.enums import LeadActivityType, LifecycleStage
from app.models.lead import Lead, LeadActivity
from app.utils.code_generator import normalize_email
from app.utils.log_mask import mask_email, mask_phone

logger = structlog.get_logger()


def split_name(name: str) -> tuple[str, str]:
    """'Sarah Jane Lee' -> ('Sarah', 'Jane Lee'). A single word is used for both."""
    parts = name.split()
    if not parts:
        return "", ""
    first = parts[0]
    last = " ".join(parts[1:]) or first
    return first, last


async def get_by_email(db: AsyncSession, email: str) -> Lead | None:
    result = await db.execute(select(Lead).where(Lead.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def get_or_create_by_email(
    db: AsyncSession,
    email: str,
    name: str,
    source: str,
    phone: str | None = None,
    lead_score: int = 0,
    custom_fields: dict | None = None,
) -> tuple[Lead, bool]:
    """Return the lead for ``email``, creating it when missing.

    Existing leads are returned untouched; callers decide what to update.
    """
    existing = await get_by_email(db, email)
    if existing:
        return existing, False

    first_name, last_name = split_name(name)
    lead = Lead(
        email=normalize_email(email),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        source=source,
        lead_type="individual",
        lifecycle_stage=LifecycleStage.NEW,
        lead_score=lead_score,
        custom_fields=custom_fields or {},
    )
    db.add(lead)
    await db.flush()
    logger.info(
        "lead_created",
        lead_id=str(lead.id),
        email=mask_email(lead.email),
        phone=mask_phone(phone) if phone else None,
        source=source,
    )
    return lead, True


def apply_referral_bonus(lead: Lead, code: str) -> None:
    """Tag an existing lead as having used a referral code.

    The score keeps the live site's behaviour: a lead that already has a
    score keeps it, a lead at 0 gets the bonus. It is *not* ``score + bonus``.
    """
    # TODO: confirm with the salon whether the referral bonus should be
    # additive; switch to ``lead.lead_score + bonus`` once agreed.
    lead.lead_score = lead.lead_score or settings.REFERRAL_LEAD_SCORE_BONUS
    lead.custom_fields = {
        **(lead.custom_fields or {}),
        "usedReferralCode": True,
        "referralCode": code,
    }


async def log_activity(
    db: AsyncSession,
    lead: Lead,
    activity_type: LeadActivityType,
    activity_data: dict | None = None,
    score_impact: int = 0,
    automated: bool = True,
) -> LeadActivity:
    activity = LeadActivity(
        lead_id=lead.id,
        activity_type=activity_type,
        activity_data=activity_data or {},
        score_impact=score_impact,
        automated=automated,
    )
    db.add(activity)
    await db.flush()
    return activity
