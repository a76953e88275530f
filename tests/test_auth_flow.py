"""Registration, e-mail verification, login, password resets and /me."""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlmodel import select

from timewise.api.v1.auth import generate_subdomain, validate_subdomain
from timewise.core.errors import ValidationError
from timewise.models.base import utcnow
from timewise.models.organization import OrganizationStatus
from timewise.models.subscription import Subscription
from timewise.models.user import User

PASSWORD = "testpass123"  # noqa: S105


async def _register(client: AsyncClient, slug: str, **overrides) -> tuple[dict, AsyncMock]:
    """Register an organization; returns the response body and the OTP mailer mock."""
    payload = {
        "organization_name": f"  {slug.title()}   Ltd ",
        "subdomain": slug,
        "email": f"admin@{slug}.com",
        "password": PASSWORD,
        "name": "Ada Admin",
        **overrides,
    }
    with patch("timewise.services.email.send_otp_email", new=AsyncMock(return_value=True)) as mailer:
        resp = await client.post("/v1/auth/register", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json(), mailer


async def _verify(client: AsyncClient, address: str, mailer: AsyncMock) -> None:
    code = mailer.await_args.args[2]
    with patch("timewise.services.email.send_welcome_email", new=AsyncMock(return_value=True)):
        resp = await client.post("/v1/auth/verify-otp", json={"email": address, "otp": code})
    assert resp.status_code == 200, resp.text


def test_subdomain_rules():
    assert validate_subdomain(" Acme-HQ ") == "acme-hq"
    for bad in ("ab", "-acme", "acme-", "ac--me", "admin", "acme_hq", "a" * 31):
        with pytest.raises(ValidationError):
            validate_subdomain(bad)
    generated = generate_subdomain("Tiny & Co!")
    assert validate_subdomain(generated) == generated


@pytest.mark.asyncio
async def test_register_creates_trial_org(client: AsyncClient, session):
    data, mailer = await _register(client, "acme")
    assert data["organization"]["name"] == "Acme Ltd"
    assert data["organization"]["status"] == "trial"
    assert data["organization"]["subscription_tier"] == "starter"
    assert data["user"]["role"] == "org_admin"
    assert data["user"]["email_verified"] is False
    mailer.assert_awaited_once()

    sub = (await session.execute(select(Subscription))).scalar_one()
    assert sub.plan == "starter"
    assert sub.is_trial_active is True
    assert (sub.trial_end_date - sub.trial_start_date).days == 14


@pytest.mark.asyncio
async def test_register_generates_subdomain(client: AsyncClient):
    data, _ = await _register(client, "generated", subdomain=None)
    assert data["organization"]["subdomain"].startswith("generated-ltd-")


@pytest.mark.asyncio
async def test_register_rejects_duplicates_and_bad_input(client: AsyncClient):
    await _register(client, "dupe")

    with patch("timewise.services.email.send_otp_email", new=AsyncMock(return_value=True)):
        resp = await client.post("/v1/auth/register", json={
            "organization_name": "Other", "subdomain": "dupe",
            "email": "someone@else.com", "password": PASSWORD,
        })
        assert resp.status_code == 409

        resp = await client.post("/v1/auth/register", json={
            "organization_name": "Other", "subdomain": "www",
            "email": "x@y.com", "password": PASSWORD,
        })
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_register_validates_body(client: AsyncClient):
    resp = await client.post("/v1/auth/register", json={
        "organization_name": "Other", "email": "x@y.com", "password": "short",
    })
    assert resp.status_code == 400
    assert "errors" in resp.json()["details"]


@pytest.mark.asyncio
async def test_login_requires_verified_email(client: AsyncClient):
    await _register(client, "unverified")
    resp = await client.post("/v1/auth/login", json={
        "email": "admin@unverified.com", "password": PASSWORD,
    })
    assert resp.status_code == 403
    assert resp.json()["code"] == "EMAIL_NOT_VERIFIED"


@pytest.mark.asyncio
async def test_full_signup_login_me(client: AsyncClient):
    data, mailer = await _register(client, "fullflow")
    await _verify(client, "admin@fullflow.com", mailer)

    resp = await client.post("/v1/auth/login", json={
        "email": "ADMIN@fullflow.com", "password": PASSWORD,
    })
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["token_type"] == "bearer"
    assert body["organization"]["id"] == data["organization"]["id"]

    resp = await client.get(
        "/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"}
    )
    assert resp.status_code == 200
    assert resp.json()["user"]["email_verified"] is True


@pytest.mark.asyncio
async def test_login_failures(client: AsyncClient, make_tenant, session):
    tenant = await make_tenant()
    resp = await client.post("/v1/auth/login", json={
        "email": tenant.user.email, "password": "wrong-password",
    })
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid email or password"

    tenant.org.status = OrganizationStatus.SUSPENDED
    session.add(tenant.org)
    await session.commit()
    resp = await client.post("/v1/auth/login", json={
        "email": tenant.user.email, "password": PASSWORD,
    })
    assert resp.status_code == 403
    assert resp.json()["code"] == "ORGANIZATION_SUSPENDED"

    other = await make_tenant()
    other.user.is_active = False
    session.add(other.user)
    await session.commit()
    resp = await client.post("/v1/auth/login", json={
        "email": other.user.email, "password": PASSWORD,
    })
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_wrong_otp_counts_attempts(client: AsyncClient, session):
    await _register(client, "otpfail")
    resp = await client.post("/v1/auth/verify-otp", json={
        "email": "admin@otpfail.com", "otp": "abcdef",
    })
    assert resp.status_code == 400
    assert resp.json()["details"]["attemptsRemaining"] == 4

    user = (await session.execute(select(User).where(User.email == "admin@otpfail.com"))).scalar_one()
    await session.refresh(user)
    assert user.otp_attempts == 1


@pytest.mark.asyncio
async def test_expired_otp(client: AsyncClient, session):
    _, mailer = await _register(client, "otpold")
    user = (await session.execute(select(User).where(User.email == "admin@otpold.com"))).scalar_one()
    user.otp_expires_at = utcnow() - timedelta(minutes=1)
    session.add(user)
    await session.commit()

    resp = await client.post("/v1/auth/verify-otp", json={
        "email": "admin@otpold.com", "otp": mailer.await_args.args[2],
    })
    assert resp.status_code == 400
    assert "expired" in resp.json()["error"]


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient):
    resp = await client.get("/v1/auth/me")
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"

    resp = await client.get("/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_password_reset_flow(client: AsyncClient, make_tenant):
    tenant = await make_tenant()
    address = tenant.user.email

    with patch(
        "timewise.services.email.send_password_reset_email", new=AsyncMock(return_value=True)
    ) as mailer:
        resp = await client.post("/v1/auth/forgot-password", json={"email": address.upper()})
        unknown = await client.post("/v1/auth/forgot-password", json={"email": "ghost@nowhere.com"})
    assert resp.status_code == 200
    assert unknown.status_code == 200
    assert unknown.json()["message"] == resp.json()["message"]
    assert mailer.await_count == 1
    token = mailer.await_args.args[2]

    resp = await client.post(
        "/v1/auth/reset-password", json={"token": "not-the-token", "password": "newpass456"}
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/v1/auth/reset-password", json={"token": token, "password": "newpass456"}
    )
    assert resp.status_code == 200, resp.text

    # The token is single use
    resp = await client.post(
        "/v1/auth/reset-password", json={"token": token, "password": "another789"}
    )
    assert resp.status_code == 400

    old = await client.post("/v1/auth/login", json={"email": address, "password": PASSWORD})
    assert old.status_code == 401
    new = await client.post("/v1/auth/login", json={"email": address, "password": "newpass456"})
    assert new.status_code == 200


@pytest.mark.asyncio
async def test_expired_reset_token(client: AsyncClient, session, make_tenant):
    tenant = await make_tenant()
    with patch(
        "timewise.services.email.send_password_reset_email", new=AsyncMock(return_value=True)
    ) as mailer:
        await client.post("/v1/auth/forgot-password", json={"email": tenant.user.email})
    token = mailer.await_args.args[2]

    user = (await session.execute(
        select(User)
        .where(User.email == tenant.user.email)
        .execution_options(populate_existing=True)
    )).scalar_one()
    assert user.reset_token_hash is not None
    assert user.reset_token_hash != token
    user.reset_token_expires_at = utcnow() - timedelta(minutes=1)
    session.add(user)
    await session.commit()

    resp = await client.post(
        "/v1/auth/reset-password", json={"token": token, "password": "newpass456"}
    )
    assert resp.status_code == 400
    assert "expired" in resp.json()["error"]


@pytest.mark.asyncio
async def test_reset_password_validates_body(client: AsyncClient):
    resp = await client.post("/v1/auth/reset-password", json={"token": "abc", "password": "short"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"
