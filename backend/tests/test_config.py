import warnings

import pytest
from pydantic import ValidationError

from app.config import Settings

SECRET = "x" * 40


def _settings(**overrides) -> Settings:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return Settings(JWT_SECRET=SECRET, _env_file=None, **overrides)


def test_referral_defaults():
    s = _settings()
    assert s.REFERRAL_CODE_PREFIX == "LUKE"
    assert s.REFERRAL_MAX_USES == 10
    assert s.REFERRAL_VALIDITY_MONTHS == 6
    assert s.REFERRAL_DISCOUNT_TYPE == "fixed"
    assert str(s.REFERRAL_DISCOUNT_VALUE) == "10.00"


def test_short_jwt_secret_rejected():
    with pytest.raises(ValidationError):
        Settings(JWT_SECRET="short", _env_file=None)


def test_unknown_discount_type_rejected():
    with pytest.raises(ValidationError):
        _settings(REFERRAL_DISCOUNT_TYPE="bogo")


def test_percentage_over_100_rejected():
    with pytest.raises(ValidationError):
        _settings(REFERRAL_DISCOUNT_TYPE="percentage", REFERRAL_DISCOUNT_VALUE="150")


def test_max_uses_must_be_positive():
    with pytest.raises(ValidationError):
        _settings(REFERRAL_MAX_USES=0)


def test_postgres_url_normalised():
    s = _settings(DATABASE_URL="postgres://u:p@db:5432/app")
    assert s.DATABASE_URL == "postgresql+asyncpg://u:p@db:5432/app"


def test_production_requires_resend_key():
    with pytest.raises(ValidationError):
        _settings(
            APP_ENV="production",
            DATABASE_URL="postgresql+asyncpg://u:p@db:5432/app",
            SENTRY_DSN="https://key@sentry.example/1",
            RESEND_API_KEY="",
        )


def test_cors_origins_list():
    s = _settings(CORS_ORIGINS="https://lukerobert.co.uk, https://admin.lukerobert.co.uk ,")
    assert s.cors_origins_list == ["https://lukerobert.co.uk", "https://admin.lukerobert.co.uk"]
