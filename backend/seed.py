"""Seed script for the Luke Robert Hair back office.

Creates baseline data for local testing:
- 1 admin operator
- 3 referral codes (active, nearly full, expired)
- a handful of redemptions, some with completed bookings

Idempotent: rows are looked up by email/code before being created.
Run with: python seed.py

The admin password is read from SEED_ADMIN_PASSWORD with a dev-only fallback.
"""

import asyncio
import os
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.config import settings

# Guard: prevent running on production
if settings.APP_ENV == "production":
    print("ERROR: Cannot seed production database.")
    sys.exit(1)

from sqlalchemy import select

from app.auth.service import hash_password
from app.database import async_session
from app.models.enums import DiscountType, RedemptionSource, ReferralStatus, UserRole
from app.models.referral import ReferralCode, ReferralRedemption
from app.models.user import User

SEED_ADMIN_PASSWORD = os.environ.get("SEED_ADMIN_PASSWORD", "LukeAdmin123!")

NOW = datetime.now(timezone.utc)

SEED_CODES = [
    {
        "code": "LUKE-SARAH-7QX",
        "referrer_name": "Sarah Lee",
        "referrer_email": "sarah@example.com",
        "max_uses": 10,
        "expires_at": NOW + timedelta(days=150),
        "referees": [
            ("emma@example.com", "Emma Hart", True),
            ("olivia@example.com", "Olivia Reed", True),
            ("mia@example.com", "Mia Cole", False),
        ],
    },
    {
        "code": "LUKE-JAMES-K2P",
        "referrer_name": "James Wood",
        "referrer_email": "james@example.com",
        "max_uses": 2,
        "expires_at": NOW + timedelta(days=90),
        "referees": [
            ("tom@example.com", "Tom Fry", True),
        ],
    },
    {
        "code": "LUKE-GRACE-4MZ",
        "referrer_name": "Grace Hill",
        "referrer_email": "grace@example.com",
        "max_uses": 10,
        "expires_at": NOW - timedelta(days=3),
        "referees": [],
    },
]


async def seed() -> None:
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == settings.ADMIN_EMAIL))
        if result.scalar_one_or_none():
            print(f"  [skip] Admin {settings.ADMIN_EMAIL} already exists")
        else:
            db.add(User(
                email=settings.ADMIN_EMAIL,
                password_hash=hash_password(SEED_ADMIN_PASSWORD),
                role=UserRole.ADMIN,
                first_name="Luke",
                last_name="Robert",
            ))
            await db.flush()
            print(f"  [created] Admin {settings.ADMIN_EMAIL}")

        for code_data in SEED_CODES:
            result = await db.execute(
                select(ReferralCode).where(ReferralCode.code == code_data["code"])
            )
            if result.scalar_one_or_none():
                print(f"  [skip] Referral code {code_data['code']} already exists")
                continue

            referees = code_data["referees"]
            referral = ReferralCode(
                code=code_data["code"],
                referrer_name=code_data["referrer_name"],
                referrer_email=code_data["referrer_email"],
                status=ReferralStatus.ACTIVE,
                discount_type=DiscountType.FIXED,
                discount_value=Decimal("10.00"),
                total_uses=len(referees),
                max_uses=code_data["max_uses"],
                expires_at=code_data["expires_at"],
            )
            db.add(referral)
            await db.flush()

            for index, (email, name, completed) in enumerate(referees):
                db.add(ReferralRedemption(
                    referral_code_id=referral.id,
                    referee_email=email,
                    referee_name=name,
                    redeemed_at=NOW - timedelta(days=10 - index),
                    booking_completed=completed,
                    booking_completed_at=NOW - timedelta(days=5 - index) if completed else None,
                    referee_discount_amount=Decimal("10.00"),
                    referrer_credit_amount=Decimal("10.00"),
                    redemption_source=RedemptionSource.LANDING_PAGE,
                ))
            await db.flush()
            print(f"  [created] Referral code {referral.code} with {len(referees)} redemption(s)")

        await db.commit()
        print("\nSeed completed successfully.")


if __name__ == "__main__":
    print("Seeding Luke Robert Hair database...")
    asyncio.run(seed())
