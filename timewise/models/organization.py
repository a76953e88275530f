"""Organization model — the tenant and top-level isolation boundary."""

import re
import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import field_validator
from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from timewise.models.base import TimestampMixin, new_uuid

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class OrganizationStatus(StrEnum):
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class CheckInMethod(StrEnum):
    QR = "qr"
    MANUAL = "manual"
    PHOTO = "photo"
    FINGERPRINT = "fingerprint"


class OrganizationSettings(SQLModel):
    """Shape of ``Organization.settings``; stored as JSON."""

    lateness_time: str = "09:00"
    early_departure_time: str = "17:00"
    work_start_time: str = "09:00"
    work_end_time: str = "17:00"
    timezone: str = "UTC"
    check_in_passcode: str | None = None  # Fernet ciphertext
    capture_photos: bool = False
    fingerprint_enabled: bool = False
    enabled_check_in_methods: list[CheckInMethod] = Field(
        default_factory=lambda: [CheckInMethod.QR, CheckInMethod.MANUAL]
    )
    max_staff: int = 10

    @field_validator("lateness_time", "early_departure_time", "work_start_time", "work_end_time")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        if not _HHMM.match(value):
            raise ValueError("time must be formatted as HH:MM")
        return value


class Organization(TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    name: str = Field(max_length=100, nullable=False)
    subdomain: str = Field(max_length=30, unique=True, nullable=False, index=True)
    admin_email: str = Field(max_length=320, nullable=False, index=True)
    status: OrganizationStatus = Field(default=OrganizationStatus.TRIAL)

    # Mirrored from the subscription so listings need no join
    subscription_tier: str = Field(default="starter", max_length=20)
    subscription_status: str = Field(default="active", max_length=20)

    settings: dict = Field(
        default_factory=lambda: OrganizationSettings().model_dump(mode="json"),
        sa_column=Column(JSON, nullable=False),
    )

    def get_settings(self) -> OrganizationSettings:
        return OrganizationSettings.model_validate(self.settings or {})


# ── Pydantic schemas ─────────────────────────────────────────

class OrganizationSettingsRead(SQLModel):
    lateness_time: str
    early_departure_time: str
    work_start_time: str
    work_end_time: str
    timezone: str
    has_check_in_passcode: bool
    capture_photos: bool
    fingerprint_enabled: bool
    enabled_check_in_methods: list[str]
    max_staff: int


class OrganizationSettingsUpdate(SQLModel):
    lateness_time: str | None = None
    early_departure_time: str | None = None
    work_start_time: str | None = None
    work_end_time: str | None = None
    timezone: str | None = None
    check_in_passcode: str | None = Field(default=None, min_length=4, max_length=12)
    capture_photos: bool | None = None
    fingerprint_enabled: bool | None = None
    enabled_check_in_methods: list[CheckInMethod] | None = None


class OrganizationRead(SQLModel):
    id: uuid.UUID
    name: str
    subdomain: str
    admin_email: str
    status: OrganizationStatus
    subscription_tier: str
    subscription_status: str
    created_at: datetime
