"""AttendanceLog model — at most one row per staff member per day."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from timewise.models.base import TenantOwnedMixin, TimestampMixin, new_uuid


class AttendanceType(StrEnum):
    CHECK_IN = "check-in"
    CHECK_OUT = "check-out"


class AttendanceStatus(StrEnum):
    PRESENT = "present"
    LATE = "late"
    EARLY = "early"


class AttendanceLog(TenantOwnedMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("tenant_id", "staff_id", "date", name="uq_attendance_tenant_staff_date"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    staff_id: str = Field(max_length=32, nullable=False, index=True)
    staff_name: str = Field(default="", max_length=255)
    department: str = Field(default="", max_length=255)
    date: str = Field(max_length=10, nullable=False, index=True)  # YYYY-MM-DD, org-local

    check_in_time: datetime | None = Field(default=None)
    check_out_time: datetime | None = Field(default=None)
    check_in_method: str | None = Field(default=None, max_length=20)
    check_out_method: str | None = Field(default=None, max_length=20)
    method: str = Field(default="manual", max_length=20)

    status: AttendanceStatus = Field(default=AttendanceStatus.PRESENT)
    is_late: bool = Field(default=False)
    is_early: bool = Field(default=False)

    # Image-store URL, or the raw base64 payload when the upload failed
    check_in_photo: str | None = Field(default=None, sa_column=Column(Text))
    check_out_photo: str | None = Field(default=None, sa_column=Column(Text))
    photos_captured_at: datetime | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class AttendanceRead(SQLModel):
    id: uuid.UUID
    staff_id: str
    staff_name: str
    department: str
    date: str
    check_in_time: datetime | None
    check_out_time: datetime | None
    method: str
    status: AttendanceStatus
    is_late: bool
    is_early: bool
    check_in_photo: str | None
    check_out_photo: str | None
