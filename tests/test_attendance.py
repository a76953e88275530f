"""Check-in / check-out rules, idempotency and staff resolution."""

import base64
import json
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from timewise.core.errors import (
    ConflictError,
    FeatureLockedError,
    InsufficientPermissionsError,
    NotFoundError,
    OrganizationSuspendedError,
    ValidationError,
)
from timewise.core.tenant_db import TenantDB
from timewise.features.plans import Plan
from timewise.models.attendance import AttendanceLog, AttendanceStatus, AttendanceType
from timewise.models.organization import OrganizationStatus
from timewise.services.attendance import (
    decode_qr_payload,
    encode_qr_payload,
    get_today_status,
    is_early,
    is_late,
    local_clock,
    record_attendance,
    resolve_staff,
    resolve_status,
)
from timewise.services.image_store import UploadResult


def test_threshold_comparisons():
    assert is_late("09:15", "09:00")
    assert not is_late("09:00", "09:00")
    assert is_early("16:30", "17:00")
    assert not is_early("17:00", "17:00")


def test_late_takes_precedence_over_early():
    assert resolve_status(True, True) is AttendanceStatus.LATE
    assert resolve_status(False, True) is AttendanceStatus.EARLY
    assert resolve_status(False, False) is AttendanceStatus.PRESENT


def test_local_clock_uses_org_timezone():
    clock = local_clock("Africa/Lagos", datetime(2026, 5, 4, 23, 30))
    assert clock.date == "2026-05-05"
    assert clock.hhmm == "00:30"
    # Unknown zones fall back to UTC
    assert local_clock("Mars/Olympus", datetime(2026, 5, 4, 23, 30)).hhmm == "23:30"


def test_qr_payload_formats():
    encoded = encode_qr_payload("tenant-1", "STAFF0001")
    assert decode_qr_payload(encoded) == ("tenant-1", "STAFF0001")
    assert decode_qr_payload('{"staffId": "STAFF0002"}') == (None, "STAFF0002")
    with pytest.raises(ValidationError, match="format"):
        decode_qr_payload("%%%not-base64%%%")
    with pytest.raises(ValidationError, match="missing staff ID"):
        decode_qr_payload(base64.b64encode(json.dumps({"tenantId": "x"}).encode()).decode())


@pytest.mark.asyncio
async def test_late_arrival_early_departure_scenario(session, make_tenant, add_staff):
    tenant = await make_tenant()
    [staff] = await add_staff(tenant)

    result = await record_attendance(
        session, tenant.org, staff, kind=AttendanceType.CHECK_IN,
        now=datetime(2026, 3, 2, 9, 15),
    )
    assert result["isLate"] is True
    assert result["message"] == "Checked in successfully"

    result = await record_attendance(
        session, tenant.org, staff, kind=AttendanceType.CHECK_OUT,
        now=datetime(2026, 3, 2, 16, 30),
    )
    assert result["isEarly"] is True
    assert result["isLate"] is True

    [record] = await TenantDB(session, tenant.org.id).find(AttendanceLog)
    await session.refresh(record)
    assert record.date == "2026-03-02"
    assert record.is_late and record.is_early
    assert record.status == AttendanceStatus.LATE
    assert record.check_out_time == datetime(2026, 3, 2, 16, 30)


@pytest.mark.asyncio
async def test_duplicate_check_in_is_rejected(session, make_tenant, add_staff):
    tenant = await make_tenant()
    [staff] = await add_staff(tenant)
    now = datetime(2026, 3, 2, 8, 45)

    first = await record_attendance(session, tenant.org, staff, kind=AttendanceType.CHECK_IN, now=now)
    assert first["isLate"] is False
    with pytest.raises(ConflictError, match="already checked in"):
        await record_attendance(session, tenant.org, staff, kind=AttendanceType.CHECK_IN, now=now)
    assert await TenantDB(session, tenant.org.id).count(AttendanceLog) == 1


@pytest.mark.asyncio
async def test_unique_index_catches_racing_check_in(session, make_tenant, add_staff):
    """A row inserted after the pre-check still loses on the unique index."""
    tenant = await make_tenant()
    [staff] = await add_staff(tenant)
    now = datetime(2026, 3, 2, 8, 45)
    db = TenantDB(session, tenant.org.id)

    real_count = TenantDB.count

    async def _stale_count(self, model, filters=None, *where):
        if model is AttendanceLog:
            return 0
        return await real_count(self, model, filters, *where)

    await db.insert_one(AttendanceLog(staff_id=staff.staff_id, date="2026-03-02", check_in_time=now))
    await session.commit()

    with patch.object(TenantDB, "count", _stale_count):
        with pytest.raises(ConflictError, match="already checked in"):
            await record_attendance(
                session, tenant.org, staff, kind=AttendanceType.CHECK_IN, now=now
            )
    assert await db.count(AttendanceLog) == 1


@pytest.mark.asyncio
async def test_check_out_requires_check_in(session, make_tenant, add_staff):
    tenant = await make_tenant()
    [staff] = await add_staff(tenant)

    with pytest.raises(ValidationError, match="check in first"):
        await record_attendance(
            session, tenant.org, staff, kind=AttendanceType.CHECK_OUT,
            now=datetime(2026, 3, 2, 17, 5),
        )
    assert await TenantDB(session, tenant.org.id).count(AttendanceLog) == 0


@pytest.mark.asyncio
async def test_second_check_out_is_rejected(session, make_tenant, add_staff):
    tenant = await make_tenant()
    [staff] = await add_staff(tenant)
    for kind, hour in ((AttendanceType.CHECK_IN, 8), (AttendanceType.CHECK_OUT, 17)):
        await record_attendance(
            session, tenant.org, staff, kind=kind, now=datetime(2026, 3, 2, hour, 30)
        )
    with pytest.raises(ConflictError, match="already checked out"):
        await record_attendance(
            session, tenant.org, staff, kind=AttendanceType.CHECK_OUT,
            now=datetime(2026, 3, 2, 18, 0),
        )


@pytest.mark.asyncio
async def test_today_status(session, make_tenant, add_staff):
    tenant = await make_tenant()
    [staff] = await add_staff(tenant)
    now = datetime(2026, 3, 2, 9, 1)

    status = await get_today_status(session, tenant.org, staff, now=now)
    assert status["hasCheckedIn"] is False

    await record_attendance(session, tenant.org, staff, kind=AttendanceType.CHECK_IN, now=now)
    status = await get_today_status(session, tenant.org, staff, now=now)
    assert status["hasCheckedIn"] is True
    assert status["hasCheckedOut"] is False
    assert status["isLate"] is True
    assert status["staff"]["staffId"] == staff.staff_id


@pytest.mark.asyncio
async def test_method_gate(session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.STARTER, trial=False)
    [staff] = await add_staff(tenant)
    with pytest.raises(FeatureLockedError):
        await record_attendance(
            session, tenant.org, staff, kind=AttendanceType.CHECK_IN, method="photo",
            photo="data:image/png;base64,AAAA",
        )
    with pytest.raises(FeatureLockedError):
        await record_attendance(
            session, tenant.org, staff, kind=AttendanceType.CHECK_IN, method="fingerprint",
        )


@pytest.mark.asyncio
async def test_photo_upload_falls_back_to_inline(session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.PROFESSIONAL)
    [staff] = await add_staff(tenant)
    failed = UploadResult(success=False, error="Image store is not configured")
    with patch(
        "timewise.services.image_store.upload_attendance_photo",
        new=AsyncMock(return_value=failed),
    ) as upload:
        await record_attendance(
            session, tenant.org, staff, kind=AttendanceType.CHECK_IN, method="photo",
            photo="data:image/png;base64,AAAA", now=datetime(2026, 3, 2, 8, 0),
        )
    upload.assert_awaited_once()
    [record] = await TenantDB(session, tenant.org.id).find(AttendanceLog)
    assert record.check_in_photo == "data:image/png;base64,AAAA"


@pytest.mark.asyncio
async def test_resolve_staff(session, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    [staff_a] = await add_staff(a)
    await add_staff(b)

    # STAFF0001 exists in both organizations
    with pytest.raises(ValidationError, match="more than one organization"):
        await resolve_staff(session, staff_id="staff0001")

    org, staff = await resolve_staff(session, staff_id="staff0001", tenant_id=a.org.id)
    assert org.id == a.org.id and staff.id == staff_a.id

    org, staff = await resolve_staff(session, qr_data=staff_a.qr_code)
    assert org.id == a.org.id

    with pytest.raises(NotFoundError):
        await resolve_staff(session, staff_id="STAFF9999", tenant_id=a.org.id)
    with pytest.raises(ValidationError):
        await resolve_staff(session)

    staff_a.is_active = False
    session.add(staff_a)
    await session.commit()
    with pytest.raises(InsufficientPermissionsError):
        await resolve_staff(session, staff_id="STAFF0001", tenant_id=a.org.id)

    b.org.status = OrganizationStatus.SUSPENDED
    session.add(b.org)
    await session.commit()
    with pytest.raises(OrganizationSuspendedError):
        await resolve_staff(session, staff_id="STAFF0001", tenant_id=b.org.id)


# ── HTTP ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_kiosk_endpoints(client: AsyncClient, make_tenant, add_staff):
    tenant = await make_tenant()
    [staff] = await add_staff(tenant)
    lookup = {"staff_id": staff.staff_id, "tenant_id": str(tenant.org.id)}

    resp = await client.post("/v1/attendance/check-in", json={**lookup, "type": "check-out"})
    assert resp.status_code == 400
    assert "check in first" in resp.json()["error"]

    resp = await client.post("/v1/attendance/check-in", json={"qr_data": staff.qr_code})
    assert resp.status_code == 200, resp.text
    assert resp.json()["success"] is True
    assert "X-RateLimit-Remaining" in resp.headers

    resp = await client.post("/v1/attendance/check-in", json=lookup)
    assert resp.status_code == 409
    assert resp.json()["code"] == "CONFLICT"

    resp = await client.post("/v1/attendance/status", json=lookup)
    assert resp.status_code == 200
    assert resp.json()["hasCheckedIn"] is True


@pytest.mark.asyncio
async def test_history_is_gated_and_scoped(client: AsyncClient, session, make_tenant, add_staff):
    starter = await make_tenant(plan=Plan.STARTER, trial=False)
    resp = await client.get("/v1/attendance/history", headers=starter.headers)
    assert resp.status_code == 403
    assert resp.json()["details"]["recommendedPlan"] == "professional"

    pro = await make_tenant(plan=Plan.PROFESSIONAL)
    [staff] = await add_staff(pro)
    await record_attendance(
        session, pro.org, staff, kind=AttendanceType.CHECK_IN, now=datetime(2026, 3, 2, 8, 0)
    )
    resp = await client.get(
        "/v1/attendance/history", params={"date": "2026-03-02"}, headers=pro.headers
    )
    assert resp.status_code == 200
    assert [r["staff_id"] for r in resp.json()["attendance"]] == [staff.staff_id]

    resp = await client.get(
        "/v1/attendance/history", params={"date": "03/02/2026"}, headers=pro.headers
    )
    assert resp.status_code == 400
