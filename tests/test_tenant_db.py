"""Tenant accessor isolation tests."""

import uuid

import pytest
from sqlalchemy import func

from timewise.core.errors import CrossTenantAccessError, ValidationError
from timewise.core.tenant_db import TenantDB
from timewise.models.attendance import AttendanceLog
from timewise.models.organization import Organization
from timewise.models.staff import Staff


@pytest.mark.asyncio
async def test_requires_tenant_id(session):
    with pytest.raises(ValidationError):
        TenantDB(session, None)
    with pytest.raises(ValidationError):
        TenantDB(session, "  ")
    with pytest.raises(ValidationError):
        TenantDB(session, "not-a-uuid")


@pytest.mark.asyncio
async def test_reads_are_scoped_to_tenant(session, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    await add_staff(a, 2)
    await add_staff(b, 3)

    db_a = TenantDB(session, a.org.id)
    assert await db_a.count(Staff) == 2
    assert {s.tenant_id for s in await db_a.find(Staff)} == {a.org.id}
    # Same staff_id exists in both tenants; only A's row is visible
    found = await db_a.find_one(Staff, {"staff_id": "STAFF0001"})
    assert found is not None and found.tenant_id == a.org.id


@pytest.mark.asyncio
async def test_forced_foreign_tenant_filter_is_rejected(session, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    await add_staff(b, 1)

    db_a = TenantDB(session, a.org.id)
    with pytest.raises(CrossTenantAccessError):
        await db_a.find(Staff, {"tenant_id": b.org.id})
    with pytest.raises(CrossTenantAccessError):
        await db_a.find(Staff, None, Staff.tenant_id == b.org.id)
    with pytest.raises(CrossTenantAccessError):
        await db_a.delete_many(Staff, {"tenant_id": str(b.org.id)})

    # Naming one's own tenant is allowed
    assert await db_a.find(Staff, {"tenant_id": a.org.id}) == []


@pytest.mark.asyncio
async def test_updates_and_deletes_never_cross_tenants(session, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    await add_staff(a, 1)
    await add_staff(b, 1)

    db_a = TenantDB(session, a.org.id)
    assert await db_a.update_many(Staff, {"staff_id": "STAFF0001"}, {"name": "Renamed"}) == 1
    assert await db_a.delete_many(Staff, {"staff_id": "STAFF0001"}) == 1
    await session.commit()

    db_b = TenantDB(session, b.org.id)
    survivor = await db_b.find_one(Staff, {"staff_id": "STAFF0001"})
    assert survivor is not None
    await session.refresh(survivor)
    assert survivor.name == "Staff 1"


@pytest.mark.asyncio
async def test_update_cannot_touch_tenant_id(session, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    await add_staff(a, 1)
    db = TenantDB(session, a.org.id)

    with pytest.raises(ValidationError, match="tenant_id"):
        await db.update_one(Staff, {"staff_id": "STAFF0001"}, {"tenant_id": b.org.id})
    with pytest.raises(ValidationError, match="tenant_id"):
        await db.update_many(
            Staff, None, {"department": {"tenant_id": str(b.org.id)}}
        )
    with pytest.raises(ValidationError):
        await db.update_one(Staff, None, {})


@pytest.mark.asyncio
async def test_insert_stamps_tenant(session, make_tenant):
    a = await make_tenant()
    b = await make_tenant()
    db = TenantDB(session, a.org.id)

    record = await db.insert_one(AttendanceLog(staff_id="STAFF0001", date="2026-01-05"))
    assert record.tenant_id == a.org.id

    with pytest.raises(CrossTenantAccessError):
        await db.insert_one(
            AttendanceLog(tenant_id=b.org.id, staff_id="STAFF0002", date="2026-01-05")
        )


@pytest.mark.asyncio
async def test_rejects_tables_without_tenant_column(session):
    db = TenantDB(session, uuid.uuid4())
    with pytest.raises(ValidationError, match="not a tenant-scoped"):
        await db.find(Organization)


@pytest.mark.asyncio
async def test_unknown_filter_field(session):
    db = TenantDB(session, uuid.uuid4())
    with pytest.raises(ValidationError, match="Unknown field"):
        await db.find(Staff, {"nickname": "x"})


@pytest.mark.asyncio
async def test_aggregate_is_scoped_to_tenant(session, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    await add_staff(a, 2)
    await add_staff(b, 3)

    rows = await TenantDB(session, a.org.id).aggregate(
        Staff, [Staff.department, func.count(Staff.id)], group_by=[Staff.department]
    )
    assert rows == [("Engineering", 2)]


@pytest.mark.asyncio
async def test_other_tables_cannot_be_joined_in(session, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    await add_staff(b, 3)

    db_a = TenantDB(session, a.org.id)
    with pytest.raises(CrossTenantAccessError):
        await db_a.aggregate(AttendanceLog, [Staff.name, Staff.tenant_id])
    with pytest.raises(CrossTenantAccessError):
        await db_a.find(AttendanceLog, None, Staff.name == "Staff 1")
    with pytest.raises(CrossTenantAccessError):
        await db_a.count(AttendanceLog, None, Staff.is_active.is_(True))
    with pytest.raises(CrossTenantAccessError):
        await db_a.delete_many(AttendanceLog, None, AttendanceLog.staff_id == Staff.staff_id)
