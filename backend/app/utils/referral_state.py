from fastapi import HTTPException, status

from app.models.enums import ReferralStatus

# Status changes an operator may apply. Expiry also happens lazily on read,
# and reactivation is the only way out of expired/disabled.
ALLOWED_TRANSITIONS: dict[ReferralStatus, set[ReferralStatus]] = {
    ReferralStatus.ACTIVE: {
        ReferralStatus.EXPIRED,
        ReferralStatus.DISABLED,
    },
    ReferralStatus.EXPIRED: {
        ReferralStatus.ACTIVE,
        ReferralStatus.DISABLED,
    },
    ReferralStatus.DISABLED: {
        ReferralStatus.ACTIVE,
    },
}


def validate_transition(current: ReferralStatus, new: ReferralStatus) -> None:
    """Validate a referral code status change. Raises HTTP 409 if invalid.

    Setting the current status again is a no-op and always allowed.
    """
    current, new = ReferralStatus(current), ReferralStatus(new)
    if current == new:
        return
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot transition from '{current.value}' to '{new.value}'",
        )
