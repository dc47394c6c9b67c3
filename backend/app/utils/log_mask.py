"""GDPR-friendly log masking utilities.

Keeps customer PII (emails, phone numbers) out of INFO-level logs, which are
shipped to third-party aggregators.
"""


def mask_email(email: str | None) -> str:
    """Mask an email address for logging: 'user@domain.com' -> 'u***@domain.com'."""
    if not email or "@" not in email:
        return "***"
    local, domain = email.rsplit("@", 1)
    if len(local) <= 1:
        return f"{local}***@{domain}"
    return f"{local[0]}***@{domain}"


def mask_phone(phone: str | None) -> str:
    """Keep only the last three digits: '07700 900123' -> '***123'."""
    if not phone:
        return "***"
    digits = "".join(c for c in phone if c.isdigit())
    if len(digits) <= 3:
        return "***"
    return f"***{digits[-3:]}"
