"""Staff model — people who check in; not dashboard users."""

import uuid
from datetime import datetime

from pydantic import EmailStr
from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from timewise.models.base import TenantOwnedMixin, TimestampMixin, new_uuid


class Staff(TenantOwnedMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "staff"
    __table_args__ = (UniqueConstraint("tenant_id", "staff_id", name="uq_staff_tenant_staff_id"),)

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    staff_id: str = Field(max_length=32, nullable=False, index=True)
    name: str = Field(max_length=255, nullable=False)
    email: str = Field(max_length=320, nullable=False)
    department: str = Field(default="", max_length=255)
    position: str = Field(default="", max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    is_active: bool = Field(default=True)

    # base64 JSON {tenantId, staffId, version} rendered as a QR badge
    qr_code: str | None = Field(default=None, sa_column=Column(Text))
    face_image_url: str | None = Field(default=None, max_length=2048)


# ── Pydantic schemas ─────────────────────────────────────────

class StaffCreate(SQLModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    department: str = Field(min_length=1, max_length=255)
    position: str = Field(default="", max_length=255)
    phone: str | None = Field(default=None, max_length=32)


class StaffUpdate(SQLModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr | None = None
    department: str | None = Field(default=None, max_length=255)
    position: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    is_active: bool | None = None


class StaffRead(SQLModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    staff_id: str
    name: str
    email: str
    department: str
    position: str
    phone: str | None
    is_active: bool
    qr_code: str | None
    has_biometrics: bool = False
    created_at: datetime

    @classmethod
    def from_staff(cls, staff: Staff, *, has_biometrics: bool = False) -> "StaffRead":
        data = staff.model_dump()
        data["has_biometrics"] = has_biometrics
        return cls.model_validate(data)
