import re
import secrets
import string
import time

from app.config import settings

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_BASE36_DIGITS = string.digits + string.ascii_uppercase
_NON_CODE_CHARS = re.compile(r"[^A-Z0-9]")

# Keeps the whole token inside the 40-char code column
MAX_NAME_FRAGMENT_LENGTH = 20
DEFAULT_NAME_FRAGMENT = "FRIEND"


def name_fragment(referrer_name: str) -> str:
    """Upper-cased first word of the referrer's name, reduced to A-Z0-9.

    'Sarah Lee' -> 'SARAH', "Zoë O'Neil" -> 'ZO'.
    """
    words = referrer_name.split()
    first = words[0] if words else ""
    fragment = _NON_CODE_CHARS.sub("", first.upper())[:MAX_NAME_FRAGMENT_LENGTH]
    return fragment or DEFAULT_NAME_FRAGMENT


def random_suffix(length: int | None = None) -> str:
    length = length or settings.REFERRAL_CODE_SUFFIX_LENGTH
    return "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))


def build_referral_code(referrer_name: str, suffix: str | None = None) -> str:
    """Candidate code in format LUKE-{FIRSTNAME}-{SUFFIX}."""
    return f"{settings.REFERRAL_CODE_PREFIX}-{name_fragment(referrer_name)}-{suffix or random_suffix()}"


def _to_base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits)) or "0"


def build_fallback_code(referrer_name: str) -> str:
    """Code used once every random candidate collided.

    Embeds a base-36 nanosecond timestamp, so it is unique without another
    registry lookup (the unique index on ``code`` still has the last word).
    """
    return build_referral_code(referrer_name, suffix=_to_base36(time.time_ns()))


def normalize_code(code: str) -> str:
    return code.strip().upper()


def normalize_email(email: str) -> str:
    return email.strip().lower()
