"""Prometheus business metrics for the referral programme."""

from prometheus_client import Counter, Histogram

REFERRAL_CODES_ISSUED = Counter(
    "lukerobert_referral_codes_issued_total",
    "Referral code generation requests",
    ["outcome"],  # created | reused
)

REFERRAL_VALIDATIONS = Counter(
    "lukerobert_referral_validations_total",
    "Referral code validations",
    ["result"],  # valid | <rejection reason>
)

REFERRAL_REDEMPTIONS = Counter(
    "lukerobert_referral_redemptions_total",
    "Referral redemption attempts",
    ["result"],  # accepted | <rejection reason>
)

REFERRAL_BOOKINGS_COMPLETED = Counter(
    "lukerobert_referral_bookings_completed_total",
    "Referred bookings marked as completed",
)

REFERRAL_PERSISTENCE_ERRORS = Counter(
    "lukerobert_referral_persistence_errors_total",
    "Store failures in referral operations",
    ["operation"],
)

EMAILS_SENT = Counter(
    "lukerobert_emails_sent_total",
    "Outbound referral emails by outcome",
    ["email_type", "status"],
)

RESEND_CALL_DURATION = Histogram(
    "lukerobert_resend_call_duration_seconds",
    "Duration of Resend API calls",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
