"""initial timewise schema

Revision ID: 3f1a9c2d7b40
Revises: 
Create Date: 2026-10-18 09:12:44.104217

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2d7b40'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# SQLModel stores StrEnum columns as native enums keyed by member name
organization_status = sa.Enum("TRIAL", "ACTIVE", "SUSPENDED", name="organizationstatus")
user_role = sa.Enum("ORG_ADMIN", "MANAGER", "SUPER_ADMIN", name="userrole")
attendance_status = sa.Enum("PRESENT", "LATE", "EARLY", name="attendancestatus")
subscription_status = sa.Enum(
    "ACTIVE", "CANCELLED", "EXPIRED", "PAST_DUE", name="subscriptionstatus"
)
audit_action = sa.Enum(
    "LOGIN",
    "VIEW_ORGANIZATIONS",
    "SUSPEND_ORGANIZATION",
    "ACTIVATE_ORGANIZATION",
    "UPDATE_SUBSCRIPTION",
    "VIEW_ANALYTICS",
    name="auditaction",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("subdomain", sa.String(30), nullable=False),
        sa.Column("admin_email", sa.String(320), nullable=False),
        sa.Column("status", organization_status, nullable=False),
        sa.Column("subscription_tier", sa.String(20), nullable=False),
        sa.Column("subscription_status", sa.String(20), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_organizations_subdomain", "organizations", ["subdomain"], unique=True)
    op.create_index("ix_organizations_admin_email", "organizations", ["admin_email"])

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("otp_hash", sa.String(64), nullable=True),
        sa.Column("otp_expires_at", sa.DateTime(), nullable=True),
        sa.Column("otp_attempts", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_tenant_id", "users", ["tenant_id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "staff",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("staff_id", sa.String(32), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("department", sa.String(255), nullable=False),
        sa.Column("position", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("qr_code", sa.Text(), nullable=True),
        sa.Column("biometric_credentials", sa.JSON(), nullable=False),
        sa.Column("face_image_url", sa.String(2048), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "staff_id", name="uq_staff_tenant_staff_id"),
    )
    op.create_index("ix_staff_tenant_id", "staff", ["tenant_id"])
    op.create_index("ix_staff_staff_id", "staff", ["staff_id"])

    op.create_table(
        "attendance",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("staff_id", sa.String(32), nullable=False),
        sa.Column("staff_name", sa.String(255), nullable=False),
        sa.Column("department", sa.String(255), nullable=False),
        sa.Column("date", sa.String(10), nullable=False),
        sa.Column("check_in_time", sa.DateTime(), nullable=True),
        sa.Column("check_out_time", sa.DateTime(), nullable=True),
        sa.Column("check_in_method", sa.String(20), nullable=True),
        sa.Column("check_out_method", sa.String(20), nullable=True),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("is_late", sa.Boolean(), nullable=False),
        sa.Column("is_early", sa.Boolean(), nullable=False),
        sa.Column("check_in_photo", sa.Text(), nullable=True),
        sa.Column("check_out_photo", sa.Text(), nullable=True),
        sa.Column("photos_captured_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "tenant_id", "staff_id", "date", name="uq_attendance_tenant_staff_date"
        ),
    )
    op.create_index("ix_attendance_tenant_id", "attendance", ["tenant_id"])
    op.create_index("ix_attendance_staff_id", "attendance", ["staff_id"])
    op.create_index("ix_attendance_date", "attendance", ["date"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False),
        sa.Column("status", subscription_status, nullable=False),
        sa.Column("is_trial_active", sa.Boolean(), nullable=False),
        sa.Column("trial_start_date", sa.DateTime(), nullable=True),
        sa.Column("trial_end_date", sa.DateTime(), nullable=True),
        sa.Column("paystack_subscription_code", sa.String(255), nullable=True),
        sa.Column("paystack_customer_code", sa.String(255), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("last_payment_date", sa.DateTime(), nullable=True),
        sa.Column("next_payment_date", sa.DateTime(), nullable=True),
        sa.Column("subscription_end_date", sa.DateTime(), nullable=True),
        sa.Column("downgrade_target_plan", sa.String(20), nullable=True),
        sa.Column("downgrade_scheduled_for", sa.DateTime(), nullable=True),
        sa.Column("downgrade_requested_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_tenant_id", "subscriptions", ["tenant_id"], unique=True)
    op.create_index("ix_subscriptions_next_payment_date", "subscriptions", ["next_payment_date"])
    op.create_index(
        "ix_subscriptions_downgrade_scheduled_for", "subscriptions", ["downgrade_scheduled_for"]
    )

    op.create_table(
        "processed_payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("reference", sa.String(255), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_processed_payments_reference", "processed_payments", ["reference"], unique=True
    )
    op.create_index("ix_processed_payments_tenant_id", "processed_payments", ["tenant_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("actor_email", sa.String(320), nullable=False),
        sa.Column("actor_role", sa.String(20), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=True),
        sa.Column("action", audit_action, nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.String(512), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("processed_payments")
    op.drop_table("subscriptions")
    op.drop_table("attendance")
    op.drop_table("staff")
    op.drop_table("users")
    op.drop_table("organizations")
    bind = op.get_bind()
    for enum in (audit_action, subscription_status, attendance_status, user_role, organization_status):
        enum.drop(bind, checkfirst=True)
