"""Initial schema: operators, leads, referral codes and redemptions

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "leads",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("lead_type", sa.String(30), nullable=False),
        sa.Column("lifecycle_stage", sa.String(20), nullable=False),
        sa.Column("lead_score", sa.Integer(), nullable=False),
        sa.Column("custom_fields", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_leads_email", "leads", ["email"], unique=True)

    op.create_table(
        "lead_activities",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("leads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("activity_data", sa.JSON(), nullable=True),
        sa.Column("score_impact", sa.Integer(), nullable=False),
        sa.Column("automated", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_lead_activities_lead_id", "lead_activities", ["lead_id"])

    op.create_table(
        "referral_codes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(40), nullable=False),
        sa.Column("referrer_email", sa.String(255), nullable=False),
        sa.Column("referrer_name", sa.String(200), nullable=False),
        sa.Column("referrer_phone", sa.String(30), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_uses", sa.Integer(), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("max_uses > 0", name="ck_referral_codes_max_uses_positive"),
        sa.CheckConstraint(
            "total_uses >= 0 AND total_uses <= max_uses",
            name="ck_referral_codes_uses_within_cap",
        ),
    )
    op.create_index("ix_referral_codes_code", "referral_codes", ["code"], unique=True)
    op.create_index(
        "ix_referral_codes_referrer_email_status", "referral_codes", ["referrer_email", "status"]
    )
    op.create_index(
        "uq_referral_codes_active_referrer",
        "referral_codes",
        ["referrer_email"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "referral_redemptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "referral_code_id",
            sa.Uuid(),
            sa.ForeignKey("referral_codes.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("referee_email", sa.String(255), nullable=False),
        sa.Column("referee_name", sa.String(200), nullable=False),
        sa.Column("referee_phone", sa.String(30), nullable=True),
        sa.Column("booking_id", sa.String(64), nullable=True),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("leads.id", ondelete="SET NULL"), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("booking_completed", sa.Boolean(), nullable=False),
        sa.Column("booking_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("referee_discount_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("referrer_credit_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("redemption_source", sa.String(20), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.UniqueConstraint(
            "referral_code_id", "referee_email", name="uq_referral_redemptions_code_referee"
        ),
    )
    op.create_index(
        "ix_referral_redemptions_referral_code_id", "referral_redemptions", ["referral_code_id"]
    )
    op.create_index("ix_referral_redemptions_redeemed_at", "referral_redemptions", ["redeemed_at"])

    op.create_table(
        "email_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("lead_id", sa.Uuid(), sa.ForeignKey("leads.id", ondelete="SET NULL"), nullable=True),
        sa.Column("to_email", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("email_type", sa.String(30), nullable=False),
        sa.Column("template_name", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("provider_id", sa.String(100), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_email_logs_to_email", "email_logs", ["to_email"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column(
            "admin_user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "referral_code_id",
            sa.Uuid(),
            sa.ForeignKey("referral_codes.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_referral_code_id", "audit_logs", ["referral_code_id"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("email_logs")
    op.drop_table("referral_redemptions")
    op.drop_table("referral_codes")
    op.drop_table("lead_activities")
    op.drop_table("leads")
    op.drop_table("users")
