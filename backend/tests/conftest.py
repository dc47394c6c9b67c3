import os
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

os.environ.setdefault("JWT_SECRET", "test-secret-for-unit-tests-minimum-32-chars")
os.environ["RESEND_API_KEY"] = ""  # Force dev mode (no real emails) in tests

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.auth.service import create_access_token, hash_password
from app.database import Base, get_db
from app.main import app
from app.models.enums import DiscountType, RedemptionSource, ReferralStatus, UserRole
from app.models.referral import ReferralCode, ReferralRedemption
from app.models.user import User

# Use SQLite for tests (in-memory)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DB_URL, echo=False)
test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

ADMIN_PASSWORD = "admin-password-123"


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    # Reset rate limiter storage between tests to avoid 429 errors
    from app.utils.rate_limit import limiter
    if hasattr(limiter, "_limiter") and hasattr(limiter._limiter, "_storage"):
        limiter._limiter._storage.reset()
    elif hasattr(limiter, "reset"):
        limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def dispatched(monkeypatch) -> list[str]:
    """Capture background notifications instead of sending them.

    Yields the names of the notifications that would have been sent.
    """
    sent: list[str] = []

    def fake_dispatch(name, coro):
        sent.append(name)
        coro.close()

    monkeypatch.setattr("app.services.notifications.dispatch", fake_dispatch)
    return sent


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    user = User(
        id=uuid.uuid4(),
        email="luke@test.com",
        password_hash=hash_password(ADMIN_PASSWORD),
        role=UserRole.ADMIN,
        first_name="Luke",
        last_name="Robert",
        is_active=True,
    )
    db.add(user)
    await db.commit()
    return user


async def make_code(
    db: AsyncSession,
    code: str = "LUKE-SARAH-AB1",
    referrer_email: str = "sarah@x.com",
    referrer_name: str = "Sarah Lee",
    status: ReferralStatus = ReferralStatus.ACTIVE,
    discount_type: DiscountType = DiscountType.FIXED,
    discount_value: Decimal = Decimal("10.00"),
    total_uses: int = 0,
    max_uses: int = 10,
    expires_at: datetime | None = None,
    created_at: datetime | None = None,
) -> ReferralCode:
    referral = ReferralCode(
        id=uuid.uuid4(),
        code=code,
        referrer_email=referrer_email,
        referrer_name=referrer_name,
        status=status,
        discount_type=discount_type,
        discount_value=discount_value,
        total_uses=total_uses,
        max_uses=max_uses,
        expires_at=expires_at or datetime.now(timezone.utc) + timedelta(days=90),
    )
    if created_at is not None:
        referral.created_at = created_at
    db.add(referral)
    await db.commit()
    return referral


async def make_redemption(
    db: AsyncSession,
    referral: ReferralCode,
    referee_email: str,
    referee_name: str = "Friend",
    booking_completed: bool = False,
    amount: Decimal | None = Decimal("10.00"),
    redeemed_at: datetime | None = None,
) -> ReferralRedemption:
    redemption = ReferralRedemption(
        id=uuid.uuid4(),
        referral_code_id=referral.id,
        referee_email=referee_email,
        referee_name=referee_name,
        booking_completed=booking_completed,
        booking_completed_at=datetime.now(timezone.utc) if booking_completed else None,
        referee_discount_amount=amount,
        referrer_credit_amount=amount,
        redemption_source=RedemptionSource.LANDING_PAGE,
        redeemed_at=redeemed_at or datetime.now(timezone.utc),
    )
    db.add(redemption)
    await db.commit()
    return redemption


@pytest_asyncio.fixture
async def referral_code(db: AsyncSession) -> ReferralCode:
    return await make_code(db)


def admin_token(admin_user: User) -> str:
    return create_access_token(str(admin_user.id))


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
