"""Staff CRUD, the headcount gate and role checks."""

import pytest
from httpx import AsyncClient

from timewise.core.security import create_access_token
from timewise.features.plans import Plan
from timewise.models.user import UserRole
from timewise.services.attendance import decode_qr_payload

NEW_STAFF = {
    "name": "Grace Hopper",
    "email": "Grace@Hopper.io",
    "department": "Engineering",
    "position": "Rear Admiral",
}


@pytest.mark.asyncio
async def test_create_and_fetch_staff(client: AsyncClient, make_tenant):
    tenant = await make_tenant()
    resp = await client.post("/v1/staff", json=NEW_STAFF, headers=tenant.headers)
    assert resp.status_code == 201, resp.text
    data = resp.json()
    assert data["staff_id"].startswith("STAFF") and len(data["staff_id"]) == 9
    assert data["email"] == "grace@hopper.io"
    assert decode_qr_payload(data["qr_code"]) == (str(tenant.org.id), data["staff_id"])

    resp = await client.get(f"/v1/staff/{data['staff_id'].lower()}", headers=tenant.headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Grace Hopper"

    resp = await client.post("/v1/staff", json=NEW_STAFF, headers=tenant.headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_starter_limit_blocks_eleventh_staff(client: AsyncClient, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.STARTER, trial=True)
    await add_staff(tenant, 10)
    resp = await client.post("/v1/staff", json=NEW_STAFF, headers=tenant.headers)
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == "STAFF_LIMIT_REACHED"
    assert body["details"]["maxAllowed"] == 10
    assert body["details"]["currentCount"] == 10


@pytest.mark.asyncio
async def test_expired_trial_cannot_add_staff(client: AsyncClient, make_tenant):
    tenant = await make_tenant(plan=Plan.STARTER, trial=False)
    resp = await client.post("/v1/staff", json=NEW_STAFF, headers=tenant.headers)
    assert resp.status_code == 403
    assert "trial has ended" in resp.json()["error"]


@pytest.mark.asyncio
async def test_enterprise_has_no_limit(client: AsyncClient, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.ENTERPRISE)
    await add_staff(tenant, 60)
    resp = await client.post("/v1/staff", json=NEW_STAFF, headers=tenant.headers)
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_list_is_tenant_scoped_and_filterable(client: AsyncClient, make_tenant, add_staff):
    a = await make_tenant()
    b = await make_tenant()
    await add_staff(a, 2, department="Sales")
    await add_staff(a, 1, department="Ops")
    await add_staff(b, 4)

    resp = await client.get("/v1/staff", headers=a.headers)
    assert resp.status_code == 200
    assert len(resp.json()) == 3
    assert {s["tenant_id"] for s in resp.json()} == {str(a.org.id)}

    resp = await client.get("/v1/staff", params={"department": "Sales"}, headers=a.headers)
    assert len(resp.json()) == 2

    resp = await client.get("/v1/staff", params={"search": "staff 3"}, headers=a.headers)
    assert [s["staff_id"] for s in resp.json()] == ["STAFF0003"]

    # B's STAFF0004 is invisible to A
    resp = await client.get("/v1/staff/STAFF0004", headers=a.headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_is_plan_gated(client: AsyncClient, make_tenant, add_staff):
    starter = await make_tenant(plan=Plan.STARTER, trial=False)
    await add_staff(starter, 1)
    resp = await client.patch(
        "/v1/staff/STAFF0001", json={"position": "Lead"}, headers=starter.headers
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "FEATURE_LOCKED"

    pro = await make_tenant(plan=Plan.PROFESSIONAL)
    await add_staff(pro, 2)
    resp = await client.patch(
        "/v1/staff/STAFF0001", json={"position": "Lead", "is_active": False}, headers=pro.headers
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["position"] == "Lead"
    assert resp.json()["is_active"] is False

    resp = await client.patch(
        "/v1/staff/STAFF0001", json={"email": "staff2@" + pro.org.subdomain + ".com"},
        headers=pro.headers,
    )
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_delete_requires_org_admin(client: AsyncClient, make_tenant, add_staff):
    tenant = await make_tenant()
    await add_staff(tenant, 1)
    manager_token = create_access_token(
        user_id=str(tenant.user.id), tenant_id=str(tenant.org.id),
        role=UserRole.MANAGER, email=tenant.user.email,
    )
    manager = {"Authorization": f"Bearer {manager_token}"}

    resp = await client.get("/v1/staff", headers=manager)
    assert resp.status_code == 200

    resp = await client.delete("/v1/staff/STAFF0001", headers=manager)
    assert resp.status_code == 403
    assert resp.json()["code"] == "INSUFFICIENT_PERMISSIONS"

    resp = await client.delete("/v1/staff/STAFF0001", headers=tenant.headers)
    assert resp.status_code == 204
    resp = await client.get("/v1/staff/STAFF0001", headers=tenant.headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_super_admin_cannot_use_tenant_routes(client: AsyncClient, super_admin):
    resp = await client.get("/v1/staff", headers=super_admin.headers)
    assert resp.status_code == 403
