import enum

# These enums are stored as VARCHAR columns. Adding a value never needs an
# ALTER TYPE migration.


class UserRole(str, enum.Enum):
    ADMIN = "admin"


class ReferralStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DISABLED = "disabled"


class DiscountType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class RedemptionSource(str, enum.Enum):
    BOOKING = "booking"
    LANDING_PAGE = "landing_page"


class LeadSource(str, enum.Enum):
    REFERRAL = "referral"
    REFERRAL_PROGRAM = "referral_program"


class LifecycleStage(str, enum.Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CUSTOMER = "customer"


class LeadActivityType(str, enum.Enum):
    REFERRAL_CODE_GENERATED = "referral_code_generated"
    REFERRAL_USED = "referral_used"
    REFERRAL_BOOKING_COMPLETED = "referral_booking_completed"


class EmailType(str, enum.Enum):
    REFERRAL_CODE = "referral_code"
    REFERRAL_WELCOME = "referral_welcome"
    REFERRAL_SUCCESS = "referral_success"


class EmailStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class AuditAction(str, enum.Enum):
    REFERRAL_STATUS_CHANGED = "referral_status_changed"
    REDEMPTION_COMPLETED = "redemption_completed"


class RejectionReason(str, enum.Enum):
    INVALID_CODE = "invalid_code"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    DISABLED = "disabled"
    MAX_USES_REACHED = "max_uses_reached"
    SELF_REFERRAL = "self_referral"
    ALREADY_REDEEMED = "already_redeemed"
