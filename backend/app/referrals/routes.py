import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.exceptions import ReferralRejected
from app.metrics import REFERRAL_CODES_ISSUED, REFERRAL_REDEMPTIONS, REFERRAL_VALIDATIONS
from app.schemas.referral import (
    AppliedDiscount,
    ApplyRequest,
    ApplyResponse,
    DiscountTerms,
    ErrorResponse,
    GenerateRequest,
    GenerateResponse,
    RecentRedemption,
    ReferralStatsBody,
    ReferralStatsResponse,
    ValidateRequest,
    ValidateResponse,
)
from app.services import referral_recorder, referral_registry, referral_stats, referral_validator
from app.services.discounts import discount_from_code
from app.utils.log_mask import mask_email
from app.utils.rate_limit import (
    APPLY_RATE_LIMIT,
    GENERATE_RATE_LIMIT,
    STATS_RATE_LIMIT,
    VALIDATE_RATE_LIMIT,
    get_real_ip,
    limiter,
)

logger = structlog.get_logger()
router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(by_alias=True),
    )


@router.post("/generate", response_model=GenerateResponse)
@limiter.limit(GENERATE_RATE_LIMIT)
async def generate_referral_code(
    request: Request,
    body: GenerateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Issue a referral code, or return the referrer's current one."""
    referral, created = await referral_registry.generate_code(db, body.name, body.email, body.phone)
    REFERRAL_CODES_ISSUED.labels(outcome="created" if created else "reused").inc()
    return GenerateResponse(
        code=referral.code,
        share_url=referral_registry.share_url(referral.code),
        share_text=referral_registry.share_text(referral),
    )


@router.post("/validate", response_model=ValidateResponse, response_model_exclude_none=True)
@limiter.limit(VALIDATE_RATE_LIMIT)
async def validate_referral_code(
    request: Request,
    body: ValidateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Check a code for a prospective referee. Writes no redemption."""
    decision = await referral_validator.validate(db, body.code, body.email)
    if isinstance(decision, referral_validator.Rejected):
        REFERRAL_VALIDATIONS.labels(result=decision.reason.value).inc()
        return ValidateResponse(valid=False, message=decision.message)

    REFERRAL_VALIDATIONS.labels(result="valid").inc()
    discount = decision.discount
    return ValidateResponse(
        valid=True,
        discount=DiscountTerms(
            type=discount.type,
            value=float(discount.value),
            formatted=discount.formatted,
        ),
        message=decision.message,
        referral_code=decision.code.code,
    )


@router.post(
    "/apply",
    response_model=ApplyResponse,
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(APPLY_RATE_LIMIT)
async def apply_referral_code(
    request: Request,
    body: ApplyRequest,
    db: AsyncSession = Depends(get_db),
):
    """Record a redemption of a referral code."""
    referee = referral_recorder.RefereeDetails(email=body.email, name=body.name, phone=body.phone)
    try:
        redemption = await referral_recorder.redeem(
            db,
            body.code,
            referee,
            booking_id=body.booking_id,
            ip_address=get_real_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except ReferralRejected as exc:
        REFERRAL_REDEMPTIONS.labels(result=exc.reason.value).inc()
        return _error(status.HTTP_400_BAD_REQUEST, exc.message)

    REFERRAL_REDEMPTIONS.labels(result="accepted").inc()
    amount = redemption.referee_discount_amount
    return ApplyResponse(
        redemption_id=redemption.id,
        discount=AppliedDiscount(
            amount=float(amount) if amount is not None else None,
            type=discount_from_code(redemption.referral_code).type,
        ),
    )


@router.get(
    "/stats",
    response_model=ReferralStatsResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit(STATS_RATE_LIMIT)
async def get_referral_stats(
    request: Request,
    code: str | None = None,
    email: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Usage and conversion stats for one code, by code or by referrer email."""
    code = code.strip() if code else None
    email = email.strip() if email else None
    if not code and not email:
        return _error(status.HTTP_400_BAD_REQUEST, "Referral code or email is required")

    found = await referral_stats.stats_for(db, code=code, email=email)
    if found is None:
        logger.info("referral_stats_not_found", code=code, email=mask_email(email) if email else None)
        return _error(status.HTTP_404_NOT_FOUND, "Referral code not found")

    _, stats, recent = found
    return ReferralStatsResponse(
        stats=ReferralStatsBody.model_validate(stats),
        recent_redemptions=[RecentRedemption.model_validate(r) for r in recent],
    )
