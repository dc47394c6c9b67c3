from app.models.audit_log import AuditLog
from app.models.email_log import EmailLog
from app.models.lead import Lead, LeadActivity
from app.models.referral import ReferralCode, ReferralRedemption
from app.models.user import User

__all__ = [
    "AuditLog",
    "EmailLog",
    "Lead",
    "LeadActivity",
    "ReferralCode",
    "ReferralRedemption",
    "User",
]
