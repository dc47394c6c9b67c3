import re
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import PersistenceError
from app.models.enums import LeadSource, RedemptionSource, ReferralStatus
from app.models.lead import Lead, LeadActivity
from app.models.referral import ReferralCode, ReferralRedemption
from tests.conftest import make_code, make_redemption


async def _redemption_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(ReferralRedemption))).scalar_one()


# --- generate ---


@pytest.mark.asyncio
async def test_generate_creates_code(client: AsyncClient, db: AsyncSession, dispatched: list[str]):
    """POST /api/referrals/generate issues a LUKE-{FIRSTNAME}-{SUFFIX} code."""
    response = await client.post(
        "/api/referrals/generate",
        json={"email": "sarah@x.com", "name": "Sarah Lee"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert re.fullmatch(r"LUKE-SARAH-[A-Z0-9]{3}", data["code"])
    assert data["shareUrl"] == f"https://lukerobert.co.uk/book?ref={data['code']}"
    assert data["shareText"] == (
        f"Try Luke's precision haircuts! Use my code {data['code']} for £10 off "
        f"your first appointment. {data['shareUrl']}"
    )
    assert dispatched == ["referral_code"]

    lead = (await db.execute(select(Lead).where(Lead.email == "sarah@x.com"))).scalar_one()
    assert lead.source == LeadSource.REFERRAL_PROGRAM
    assert lead.lead_score == 5
    assert lead.custom_fields["hasReferralCode"] is True


@pytest.mark.asyncio
async def test_generate_is_idempotent_per_email(client: AsyncClient, dispatched: list[str]):
    """Generating twice for the same referrer returns the identical code."""
    first = await client.post(
        "/api/referrals/generate",
        json={"email": "sarah@x.com", "name": "Sarah Lee"},
    )
    second = await client.post(
        "/api/referrals/generate",
        json={"email": "SARAH@X.COM", "name": "Sarah L."},
    )
    assert first.status_code == 200
    assert second.status_code == 200
    assert first.json()["code"] == second.json()["code"]
    # Only the first call sends the code email
    assert dispatched == ["referral_code"]


@pytest.mark.asyncio
async def test_generate_replaces_time_expired_code(client: AsyncClient, db: AsyncSession):
    """A referrer whose code has lapsed gets a fresh one; the old one is marked expired."""
    old = await make_code(
        db,
        code="LUKE-SARAH-OLD",
        expires_at=datetime.now(timezone.utc) - timedelta(days=1),
    )

    response = await client.post(
        "/api/referrals/generate",
        json={"email": "sarah@x.com", "name": "Sarah Lee"},
    )
    assert response.status_code == 200
    assert response.json()["code"] != "LUKE-SARAH-OLD"

    await db.refresh(old)
    assert old.status == ReferralStatus.EXPIRED


@pytest.mark.asyncio
async def test_generate_missing_email_is_400(client: AsyncClient):
    response = await client.post("/api/referrals/generate", json={"name": "Sarah Lee"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "email is required"}


@pytest.mark.asyncio
async def test_generate_invalid_email_is_400(client: AsyncClient):
    response = await client.post(
        "/api/referrals/generate",
        json={"email": "not-an-email", "name": "Sarah Lee"},
    )
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Invalid email format"}


@pytest.mark.asyncio
async def test_generate_blank_name_is_400(client: AsyncClient):
    response = await client.post(
        "/api/referrals/generate",
        json={"email": "sarah@x.com", "name": "   "},
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


# --- validate ---


@pytest.mark.asyncio
async def test_generate_then_validate_scenario(client: AsyncClient):
    """Sarah cannot use her own code; a friend gets £10.00 off."""
    generated = await client.post(
        "/api/referrals/generate",
        json={"email": "sarah@x.com", "name": "Sarah Lee"},
    )
    code = generated.json()["code"]
    assert code.startswith("LUKE-SARAH-")

    own = await client.post("/api/referrals/validate", json={"code": code, "email": "sarah@x.com"})
    assert own.status_code == 200
    assert own.json() == {"valid": False, "message": "You cannot use your own referral code."}

    friend = await client.post("/api/referrals/validate", json={"code": code, "email": "friend@y.com"})
    assert friend.status_code == 200
    data = friend.json()
    assert data["valid"] is True
    assert data["discount"] == {"type": "fixed", "value": 10.0, "formatted": "£10.00 off"}
    assert data["message"] == "Great! You'll get £10.00 off your booking."
    assert data["referralCode"] == code


@pytest.mark.asyncio
async def test_validate_normalises_code_and_email(client: AsyncClient, referral_code: ReferralCode):
    response = await client.post(
        "/api/referrals/validate",
        json={"code": "  luke-sarah-ab1 ", "email": "Friend@Y.com"},
    )
    assert response.status_code == 200
    assert response.json()["valid"] is True
    assert response.json()["referralCode"] == "LUKE-SARAH-AB1"


@pytest.mark.asyncio
async def test_validate_unknown_code(client: AsyncClient):
    response = await client.post(
        "/api/referrals/validate",
        json={"code": "LUKE-NOBODY-000", "email": "friend@y.com"},
    )
    assert response.status_code == 200
    assert response.json() == {
        "valid": False,
        "message": "Invalid referral code. Please check and try again.",
    }


@pytest.mark.asyncio
async def test_validate_missing_code_is_400(client: AsyncClient):
    response = await client.post("/api/referrals/validate", json={"email": "friend@y.com"})
    assert response.status_code == 400
    assert response.json() == {"valid": False, "message": "code is required"}


@pytest.mark.asyncio
async def test_validate_expired_timestamp_with_active_status(client: AsyncClient, db: AsyncSession):
    """A past expires_at wins over a stored 'active' status, and the status is refreshed."""
    referral = await make_code(db, expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
    assert referral.status == ReferralStatus.ACTIVE

    response = await client.post(
        "/api/referrals/validate",
        json={"code": referral.code, "email": "friend@y.com"},
    )
    assert response.status_code == 200
    assert response.json() == {"valid": False, "message": "This referral code has expired."}

    stored = (
        await db.execute(select(ReferralCode.status).where(ReferralCode.id == referral.id))
    ).scalar_one()
    assert stored == ReferralStatus.EXPIRED


@pytest.mark.asyncio
async def test_validate_disabled_code(client: AsyncClient, db: AsyncSession):
    referral = await make_code(db, status=ReferralStatus.DISABLED)
    response = await client.post(
        "/api/referrals/validate",
        json={"code": referral.code, "email": "friend@y.com"},
    )
    assert response.json() == {"valid": False, "message": "This referral code has been disabled."}


@pytest.mark.asyncio
async def test_validate_is_side_effect_free(
    client: AsyncClient, db: AsyncSession, referral_code: ReferralCode
):
    """Two identical validations return identical results and record nothing."""
    payload = {"code": referral_code.code, "email": "friend@y.com"}
    first = await client.post("/api/referrals/validate", json=payload)
    second = await client.post("/api/referrals/validate", json=payload)

    assert first.json() == second.json()
    assert await _redemption_count(db) == 0
    await db.refresh(referral_code)
    assert referral_code.total_uses == 0


# --- apply ---


@pytest.mark.asyncio
async def test_apply_records_redemption(
    client: AsyncClient,
    db: AsyncSession,
    referral_code: ReferralCode,
    dispatched: list[str],
):
    response = await client.post(
        "/api/referrals/apply",
        json={"code": referral_code.code, "email": "Friend@Y.com", "name": "Jo Friend"},
        headers={"User-Agent": "pytest-browser"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["discount"] == {"amount": 10.0, "type": "fixed"}

    redemption = (await db.execute(select(ReferralRedemption))).scalar_one()
    assert str(redemption.id) == data["redemptionId"]
    assert redemption.referee_email == "friend@y.com"
    assert redemption.redemption_source == RedemptionSource.LANDING_PAGE
    assert redemption.user_agent == "pytest-browser"
    assert redemption.booking_completed is False

    await db.refresh(referral_code)
    assert referral_code.total_uses == 1
    assert referral_code.last_used_at is not None

    lead = (await db.execute(select(Lead).where(Lead.email == "friend@y.com"))).scalar_one()
    assert lead.source == LeadSource.REFERRAL
    assert lead.lead_score == 10
    assert redemption.lead_id == lead.id
    activity = (await db.execute(select(LeadActivity).where(LeadActivity.lead_id == lead.id))).scalar_one()
    assert activity.score_impact == 10
    assert activity.activity_data["referralCode"] == referral_code.code

    assert dispatched == ["referral_welcome"]


@pytest.mark.asyncio
async def test_apply_with_booking_id_marks_booking_source(
    client: AsyncClient, db: AsyncSession, referral_code: ReferralCode
):
    response = await client.post(
        "/api/referrals/apply",
        json={
            "code": referral_code.code,
            "email": "friend@y.com",
            "name": "Jo Friend",
            "bookingId": "bk_123",
        },
    )
    assert response.status_code == 200
    redemption = (await db.execute(select(ReferralRedemption))).scalar_one()
    assert redemption.booking_id == "bk_123"
    assert redemption.redemption_source == RedemptionSource.BOOKING


@pytest.mark.asyncio
async def test_apply_twice_is_already_redeemed(
    client: AsyncClient, db: AsyncSession, referral_code: ReferralCode
):
    payload = {"code": referral_code.code, "email": "friend@y.com", "name": "Jo Friend"}
    first = await client.post("/api/referrals/apply", json=payload)
    assert first.status_code == 200

    second = await client.post("/api/referrals/apply", json=payload)
    assert second.status_code == 400
    assert second.json() == {"success": False, "error": "You have already used this referral code."}
    assert await _redemption_count(db) == 1


@pytest.mark.asyncio
async def test_apply_self_referral_is_case_insensitive(
    client: AsyncClient, db: AsyncSession, referral_code: ReferralCode
):
    response = await client.post(
        "/api/referrals/apply",
        json={"code": referral_code.code, "email": "SARAH@x.com", "name": "Sarah Lee"},
    )
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "You cannot use your own referral code."}
    assert await _redemption_count(db) == 0


@pytest.mark.asyncio
async def test_apply_respects_max_uses(client: AsyncClient, db: AsyncSession):
    """maxUses=2: two referees get in, the third is turned away."""
    referral = await make_code(db, max_uses=2)

    for email in ("one@y.com", "two@y.com"):
        response = await client.post(
            "/api/referrals/apply",
            json={"code": referral.code, "email": email, "name": "Friend"},
        )
        assert response.status_code == 200

    third = await client.post(
        "/api/referrals/apply",
        json={"code": referral.code, "email": "three@y.com", "name": "Friend"},
    )
    assert third.status_code == 400
    assert third.json() == {
        "success": False,
        "error": "This referral code has reached its maximum number of uses.",
    }

    stats = await client.get("/api/referrals/stats", params={"code": referral.code})
    body = stats.json()["stats"]
    assert body["totalRedemptions"] == 2
    assert body["totalUses"] == 2
    assert body["remainingUses"] == 0


@pytest.mark.asyncio
async def test_apply_disabled_code(client: AsyncClient, db: AsyncSession):
    referral = await make_code(db, status=ReferralStatus.DISABLED)
    response = await client.post(
        "/api/referrals/apply",
        json={"code": referral.code, "email": "friend@y.com", "name": "Jo"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "This referral code has been disabled."


@pytest.mark.asyncio
async def test_apply_missing_name_is_400(client: AsyncClient, referral_code: ReferralCode):
    response = await client.post(
        "/api/referrals/apply",
        json={"code": referral_code.code, "email": "friend@y.com"},
    )
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "name is required"}


# --- stats ---


@pytest.mark.asyncio
async def test_stats_conversion_and_credits(client: AsyncClient, db: AsyncSession):
    """4 redemptions, 3 completed at £10 credit each: 75% and £30."""
    referral = await make_code(db, total_uses=4)
    for i, completed in enumerate((True, True, True, False)):
        await make_redemption(db, referral, f"friend{i}@y.com", booking_completed=completed)

    response = await client.get("/api/referrals/stats", params={"code": referral.code})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    stats = data["stats"]
    assert stats["code"] == referral.code
    assert stats["totalRedemptions"] == 4
    assert stats["completedBookings"] == 3
    assert stats["pendingBookings"] == 1
    assert stats["conversionRate"] == 75
    assert stats["totalCreditsEarned"] == 30.0
    assert stats["remainingUses"] == 6
    assert len(data["recentRedemptions"]) == 4
    assert set(data["recentRedemptions"][0]) == {"refereeName", "redeemedAt", "bookingCompleted"}


@pytest.mark.asyncio
async def test_stats_by_referrer_email(client: AsyncClient, db: AsyncSession, referral_code: ReferralCode):
    response = await client.get("/api/referrals/stats", params={"email": "Sarah@X.com"})
    assert response.status_code == 200
    assert response.json()["stats"]["code"] == referral_code.code


@pytest.mark.asyncio
async def test_stats_recent_redemptions_capped_at_five(client: AsyncClient, db: AsyncSession):
    referral = await make_code(db, total_uses=7)
    base = datetime.now(timezone.utc) - timedelta(days=7)
    for i in range(7):
        await make_redemption(
            db, referral, f"f{i}@y.com", referee_name=f"Friend {i}", redeemed_at=base + timedelta(days=i)
        )

    response = await client.get("/api/referrals/stats", params={"code": referral.code})
    recent = response.json()["recentRedemptions"]
    assert [r["refereeName"] for r in recent] == [f"Friend {i}" for i in (6, 5, 4, 3, 2)]


@pytest.mark.asyncio
async def test_stats_requires_code_or_email(client: AsyncClient):
    response = await client.get("/api/referrals/stats")
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Referral code or email is required"}


@pytest.mark.asyncio
async def test_stats_unknown_code_is_404(client: AsyncClient):
    response = await client.get("/api/referrals/stats", params={"code": "LUKE-NOBODY-000"})
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Referral code not found"}


# --- store failures ---


@pytest.mark.asyncio
async def test_store_failure_is_generic_500(client: AsyncClient):
    with patch(
        "app.services.referral_registry.generate_code",
        AsyncMock(side_effect=PersistenceError("generate_code")),
    ):
        response = await client.post(
            "/api/referrals/generate",
            json={"email": "sarah@x.com", "name": "Sarah Lee"},
        )
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to generate referral code"}
