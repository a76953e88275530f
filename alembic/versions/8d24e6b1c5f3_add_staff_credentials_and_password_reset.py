"""add staff credentials and password reset

Revision ID: 8d24e6b1c5f3
Revises: 3f1a9c2d7b40
Create Date: 2026-10-18 15:40:09.518302

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '8d24e6b1c5f3'
down_revision: str | Sequence[str] | None = '3f1a9c2d7b40'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

NEW_AUDIT_ACTIONS = ("VIEW_USERS", "SUSPEND_USER", "ACTIVATE_USER", "RESET_PASSWORD")


def upgrade() -> None:
    op.create_table(
        "staff_credentials",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.Uuid(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("staff_id", sa.String(32), nullable=False),
        sa.Column("credential_id", sa.String(512), nullable=False),
        sa.Column("public_key", sa.Text(), nullable=False),
        sa.Column("device_name", sa.String(255), nullable=False),
        sa.Column("sign_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "tenant_id", "credential_id", name="uq_staff_credentials_tenant_credential"
        ),
    )
    op.create_index("ix_staff_credentials_tenant_id", "staff_credentials", ["tenant_id"])
    op.create_index("ix_staff_credentials_staff_id", "staff_credentials", ["staff_id"])
    op.create_index("ix_staff_credentials_credential_id", "staff_credentials", ["credential_id"])

    # The JSON list was never written; credentials now live in their own table
    with op.batch_alter_table("staff") as batch:
        batch.drop_column("biometric_credentials")

    with op.batch_alter_table("users") as batch:
        batch.add_column(sa.Column("reset_token_hash", sa.String(64), nullable=True))
        batch.add_column(sa.Column("reset_token_expires_at", sa.DateTime(), nullable=True))
    op.create_index("ix_users_reset_token_hash", "users", ["reset_token_hash"])

    if op.get_bind().dialect.name == "postgresql":
        # ADD VALUE cannot run inside the migration transaction
        with op.get_context().autocommit_block():
            for action in NEW_AUDIT_ACTIONS:
                op.execute(f"ALTER TYPE auditaction ADD VALUE IF NOT EXISTS '{action}'")


def downgrade() -> None:
    # Postgres cannot drop enum values; the extra audit actions stay defined
    op.drop_index("ix_users_reset_token_hash", table_name="users")
    with op.batch_alter_table("users") as batch:
        batch.drop_column("reset_token_expires_at")
        batch.drop_column("reset_token_hash")

    with op.batch_alter_table("staff") as batch:
        batch.add_column(
            sa.Column("biometric_credentials", sa.JSON(), nullable=False, server_default="[]")
        )

    op.drop_table("staff_credentials")
