"""Fingerprint (WebAuthn) credentials registered for a staff member."""

import uuid
from datetime import datetime

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from timewise.models.base import TenantOwnedMixin, TimestampMixin, new_uuid


class StaffCredential(TenantOwnedMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "staff_credentials"
    __table_args__ = (
        UniqueConstraint("tenant_id", "credential_id", name="uq_staff_credentials_tenant_credential"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    staff_id: str = Field(max_length=32, nullable=False, index=True)
    credential_id: str = Field(max_length=512, nullable=False, index=True)
    public_key: str = Field(sa_column=Column(Text, nullable=False))
    device_name: str = Field(default="Unknown Device", max_length=255)
    # Authenticator signature counter; must strictly increase between uses
    sign_count: int = Field(default=0, nullable=False)
    last_used_at: datetime | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class CredentialCreate(SQLModel):
    credential_id: str = Field(min_length=1, max_length=512)
    public_key: str = Field(min_length=1, max_length=4096)
    device_name: str | None = Field(default=None, max_length=255)
    sign_count: int = Field(default=0, ge=0)


class CredentialRead(SQLModel):
    """Public view of a credential; the public key never leaves the server."""

    credential_id: str
    device_name: str
    sign_count: int
    last_used_at: datetime | None
    created_at: datetime
