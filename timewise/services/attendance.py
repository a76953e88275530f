"""Kiosk check-in / check-out.

One ``attendance`` row per staff member per organization-local day. The
unique index on ``(tenant_id, staff_id, date)`` decides races: the second of
two concurrent check-ins fails on insert, and check-out is a conditional
UPDATE that only succeeds while ``check_out_time`` is still empty.
"""

import base64
import binascii
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from timewise.core import cache
from timewise.core.errors import (
    ConflictError,
    InsufficientPermissionsError,
    NotFoundError,
    OrganizationSuspendedError,
    ValidationError,
)
from timewise.core.tenant_db import TenantDB
from timewise.features.access import require_method
from timewise.models.attendance import AttendanceLog, AttendanceStatus, AttendanceType
from timewise.models.base import utcnow
from timewise.models.organization import Organization, OrganizationSettings, OrganizationStatus
from timewise.models.staff import Staff
from timewise.services import biometrics, image_store

logger = logging.getLogger(__name__)

QR_VERSION = 1


@dataclass
class LocalClock:
    """Organization-local view of one instant."""

    instant: datetime  # naive UTC, as stored
    date: str  # YYYY-MM-DD
    hhmm: str  # HH:MM


def local_clock(tz_name: str, now: datetime | None = None) -> LocalClock:
    """Convert ``now`` (naive UTC) into the organization's wall clock."""
    now = now or utcnow()
    try:
        tz = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, using UTC", tz_name)
        tz = ZoneInfo("UTC")
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    return LocalClock(instant=now, date=local.strftime("%Y-%m-%d"), hhmm=local.strftime("%H:%M"))


def is_late(hhmm: str, lateness_time: str) -> bool:
    # Zero-padded HH:MM strings order the same as the times they encode
    return hhmm > lateness_time


def is_early(hhmm: str, early_departure_time: str) -> bool:
    return hhmm < early_departure_time


def resolve_status(late: bool, early: bool) -> AttendanceStatus:
    if late:
        return AttendanceStatus.LATE
    if early:
        return AttendanceStatus.EARLY
    return AttendanceStatus.PRESENT


# ── QR payloads ──────────────────────────────────────────────

def encode_qr_payload(tenant_id: uuid.UUID | str, staff_id: str) -> str:
    raw = json.dumps({"tenantId": str(tenant_id), "staffId": staff_id, "version": QR_VERSION})
    return base64.b64encode(raw.encode()).decode()


def decode_qr_payload(qr_data: str) -> tuple[str | None, str]:
    """Return ``(tenant_id, staff_id)`` from a base64 or plain JSON badge."""
    text = qr_data.strip()
    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode()
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ValidationError("Invalid QR code format") from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError("Invalid QR code format") from exc
    if not isinstance(payload, dict) or not payload.get("staffId"):
        raise ValidationError("Invalid QR code: missing staff ID")
    tenant_id = payload.get("tenantId")
    return (str(tenant_id) if tenant_id else None), str(payload["staffId"])


# ── Staff resolution ─────────────────────────────────────────

async def resolve_staff(
    session: AsyncSession,
    *,
    staff_id: str | None = None,
    tenant_id: uuid.UUID | str | None = None,
    qr_data: str | None = None,
) -> tuple[Organization, Staff]:
    """Find the staff member and their organization for a kiosk request."""
    if qr_data:
        qr_tenant, staff_id = decode_qr_payload(qr_data)
        tenant_id = tenant_id or qr_tenant
    if not staff_id:
        raise ValidationError("Staff ID or QR code is required")
    staff_id = staff_id.strip().upper()

    if tenant_id:
        staff = await TenantDB(session, tenant_id).find_one(Staff, {"staff_id": staff_id})
    else:
        # Kiosks without a tenant hint: search every organization
        result = await session.execute(select(Staff).where(Staff.staff_id == staff_id).limit(2))
        matches = list(result.scalars().all())
        if len(matches) > 1:
            logger.warning("Ambiguous staff id %s across organizations", staff_id)
            raise ValidationError(
                "Staff ID matches more than one organization. Scan your QR code instead."
            )
        staff = matches[0] if matches else None

    if staff is None:
        raise NotFoundError("Staff not found")
    if not staff.is_active:
        raise InsufficientPermissionsError("Staff member is inactive")

    org = await session.get(Organization, staff.tenant_id)
    if org is None:
        raise NotFoundError("Organization not found")
    if org.status == OrganizationStatus.SUSPENDED:
        raise OrganizationSuspendedError()
    return org, staff


# ── Recording ────────────────────────────────────────────────

async def _store_photo(
    photo: str | None, tenant_id: uuid.UUID, staff_id: str, kind: AttendanceType
) -> str | None:
    """Upload, falling back to the raw payload so the record is never lost."""
    if not photo:
        return None
    result = await image_store.upload_attendance_photo(photo, str(tenant_id), staff_id, kind)
    if result.success and result.url:
        return result.url
    logger.warning(
        "Photo upload failed, storing inline: %s", result.error,
        extra={"tenant_id": tenant_id, "staff_id": staff_id},
    )
    return photo


def _staff_summary(staff: Staff) -> dict:
    return {
        "staffId": staff.staff_id,
        "name": staff.name,
        "department": staff.department,
        "position": staff.position,
    }


async def record_attendance(
    session: AsyncSession,
    org: Organization,
    staff: Staff,
    *,
    kind: AttendanceType,
    method: str = "manual",
    photo: str | None = None,
    assertion: dict | None = None,
    now: datetime | None = None,
) -> dict:
    await require_method(session, org.id, method)
    if method == "fingerprint":
        await biometrics.authenticate(session, org.id, staff, assertion)

    settings: OrganizationSettings = org.get_settings()
    clock = local_clock(settings.timezone, now)
    db = TenantDB(session, org.id)
    log_extra = {"tenant_id": org.id, "staff_id": staff.staff_id}

    if kind == AttendanceType.CHECK_IN:
        if await db.count(AttendanceLog, {"staff_id": staff.staff_id, "date": clock.date}):
            raise ConflictError("You have already checked in today")
        late = is_late(clock.hhmm, settings.lateness_time)
        record = AttendanceLog(
            staff_id=staff.staff_id,
            staff_name=staff.name,
            department=staff.department,
            date=clock.date,
            check_in_time=clock.instant,
            check_in_method=method,
            method=method,
            status=resolve_status(late, False),
            is_late=late,
        )
        if photo:
            record.check_in_photo = await _store_photo(photo, org.id, staff.staff_id, kind)
            record.photos_captured_at = clock.instant
        try:
            await db.insert_one(record)
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError("You have already checked in today") from exc
        cache.invalidate_tenant(org.id)
        logger.info("Checked in (late=%s)", late, extra=log_extra)
        return {
            "success": True,
            "message": "Checked in successfully",
            "isLate": late,
            "isEarly": False,
            "staff": _staff_summary(staff),
        }

    existing = await db.find_one(AttendanceLog, {"staff_id": staff.staff_id, "date": clock.date})
    if existing is None or existing.check_in_time is None:
        raise ValidationError("No check-in record found. Please check in first.")
    if existing.check_out_time is not None:
        raise ConflictError("You have already checked out today")

    early = is_early(clock.hhmm, settings.early_departure_time)
    values = {
        "check_out_time": clock.instant,
        "check_out_method": method,
        "is_early": early,
        "status": resolve_status(existing.is_late, early),
    }
    if photo:
        values["check_out_photo"] = await _store_photo(photo, org.id, staff.staff_id, kind)
        values["photos_captured_at"] = clock.instant

    changed = await db.update_one(
        AttendanceLog,
        {"id": existing.id, "check_out_time": None},
        values,
    )
    if not changed:
        await session.rollback()
        raise ConflictError("You have already checked out today")
    await session.commit()
    cache.invalidate_tenant(org.id)
    logger.info("Checked out (early=%s)", early, extra=log_extra)
    return {
        "success": True,
        "message": "Checked out successfully",
        "isLate": existing.is_late,
        "isEarly": early,
        "staff": _staff_summary(staff),
    }


async def get_today_status(
    session: AsyncSession, org: Organization, staff: Staff, now: datetime | None = None
) -> dict:
    clock = local_clock(org.get_settings().timezone, now)
    record = await TenantDB(session, org.id).find_one(
        AttendanceLog, {"staff_id": staff.staff_id, "date": clock.date}
    )
    return {
        "hasCheckedIn": bool(record and record.check_in_time),
        "hasCheckedOut": bool(record and record.check_out_time),
        "checkInTime": record.check_in_time if record else None,
        "checkOutTime": record.check_out_time if record else None,
        "isLate": bool(record and record.is_late),
        "isEarly": bool(record and record.is_early),
        "staff": _staff_summary(staff),
    }
