"""User model — dashboard accounts; super admins belong to no tenant."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from timewise.models.base import TimestampMixin, new_uuid


class UserRole(StrEnum):
    ORG_ADMIN = "org_admin"
    MANAGER = "manager"
    SUPER_ADMIN = "super_admin"


class User(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID | None = Field(
        default=None, foreign_key="organizations.id", nullable=True, index=True,
    )
    email: str = Field(max_length=320, unique=True, nullable=False, index=True)
    name: str = Field(default="", max_length=255)
    password_hash: str = Field(nullable=False)
    role: UserRole = Field(default=UserRole.MANAGER)
    email_verified: bool = Field(default=False)
    is_active: bool = Field(default=True)
    last_login_at: datetime | None = Field(default=None)

    # E-mail verification one-time code (SHA-256 of the 6 digits)
    otp_hash: str | None = Field(default=None, max_length=64)
    otp_expires_at: datetime | None = Field(default=None)
    otp_attempts: int = Field(default=0)

    # Password reset link token (SHA-256 of the token mailed to the user)
    reset_token_hash: str | None = Field(default=None, max_length=64, index=True)
    reset_token_expires_at: datetime | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class UserRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID | None
    email: str
    name: str
    role: UserRole
    email_verified: bool
    is_active: bool
