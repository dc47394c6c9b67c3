"""Referral programme error taxonomy.

- ``ReferralRejected``: a business rule said no. Expected, user-facing, 400,
  logged at info.
- ``PersistenceError``: the store failed. 500 with a generic message, logged
  with the operation name, safe to retry.
- ``NotificationError``: an email could not be delivered. Never reaches the
  caller.
"""
from app.models.enums import RejectionReason

REJECTION_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.INVALID_CODE: "Invalid referral code. Please check and try again.",
    RejectionReason.INACTIVE: "This referral code is no longer active.",
    RejectionReason.EXPIRED: "This referral code has expired.",
    RejectionReason.DISABLED: "This referral code has been disabled.",
    RejectionReason.MAX_USES_REACHED: "This referral code has reached its maximum number of uses.",
    RejectionReason.SELF_REFERRAL: "You cannot use your own referral code.",
    RejectionReason.ALREADY_REDEEMED: "You have already used this referral code.",
}


class ReferralError(Exception):
    pass


class ReferralRejected(ReferralError):
    def __init__(self, reason: RejectionReason):
        self.reason = reason
        self.message = REJECTION_MESSAGES[reason]
        super().__init__(self.message)


class PersistenceError(ReferralError):
    def __init__(self, operation: str, detail: str | None = None):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed" + (f": {detail}" if detail else ""))


class NotificationError(ReferralError):
    pass
