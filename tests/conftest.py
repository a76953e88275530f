"""Shared test fixtures — async SQLite in-memory DB + test client."""

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import timedelta

from cryptography.fernet import Fernet

# Settings are cached on first import; pin the environment before that happens.
os.environ["ENVIRONMENT"] = "production"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_timewise"
os.environ["SMTP_HOST"] = ""
os.environ["CLOUDINARY_CLOUD_NAME"] = ""

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import timewise.models  # noqa: E402, F401
from timewise.core import cache, rate_limit  # noqa: E402
from timewise.core.database import get_session  # noqa: E402
from timewise.core.security import create_access_token, hash_password  # noqa: E402
from timewise.core.tenant_db import TenantDB  # noqa: E402
from timewise.features.plans import Plan, get_max_staff  # noqa: E402
from timewise.main import app  # noqa: E402
from timewise.models.base import utcnow  # noqa: E402
from timewise.models.organization import (  # noqa: E402
    Organization,
    OrganizationSettings,
    OrganizationStatus,
)
from timewise.models.staff import Staff  # noqa: E402
from timewise.models.subscription import Subscription, SubscriptionStatus  # noqa: E402
from timewise.models.user import User, UserRole  # noqa: E402
from timewise.services.attendance import encode_qr_payload  # noqa: E402

PASSWORD = "testpass123"  # noqa: S105


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture(autouse=True)
def _fresh_process_state():
    """Caches and rate-limit counters are process-global."""
    cache.clear()
    rate_limit.set_store(rate_limit.InMemoryRateLimitStore())
    yield
    cache.clear()


@pytest.fixture
async def client(session) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session override."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Data builders ────────────────────────────────────────────

@dataclass
class Tenant:
    org: Organization
    user: User
    subscription: Subscription
    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


@pytest.fixture
def make_tenant(session):
    """Factory: an organization with an org_admin login and a subscription."""
    counter = {"n": 0}

    async def _make(
        *,
        plan: Plan = Plan.STARTER,
        trial: bool = True,
        role: UserRole = UserRole.ORG_ADMIN,
        status: OrganizationStatus = OrganizationStatus.ACTIVE,
        timezone: str = "UTC",
        verified: bool = True,
    ) -> Tenant:
        counter["n"] += 1
        slug = f"org{counter['n']}-{plan.value}"
        org = Organization(
            name=f"Org {counter['n']}",
            subdomain=slug,
            admin_email=f"admin@{slug}.com",
            status=status,
            subscription_tier=plan.value,
            settings=OrganizationSettings(
                timezone=timezone, max_staff=get_max_staff(plan)
            ).model_dump(mode="json"),
        )
        session.add(org)
        await session.flush()

        user = User(
            tenant_id=org.id,
            email=f"admin@{slug}.com",
            name="Admin",
            password_hash=hash_password(PASSWORD),
            role=role,
            email_verified=verified,
        )
        session.add(user)
        now = utcnow()
        sub = Subscription(
            plan=plan,
            status=SubscriptionStatus.ACTIVE,
            is_trial_active=trial and plan == Plan.STARTER,
            trial_start_date=now,
            trial_end_date=now + timedelta(days=14),
            next_payment_date=None if plan == Plan.STARTER else now + timedelta(days=30),
        )
        await TenantDB(session, org.id).insert_one(sub)
        await session.commit()

        token = create_access_token(
            user_id=str(user.id), tenant_id=str(org.id), role=user.role, email=user.email
        )
        return Tenant(org=org, user=user, subscription=sub, token=token)

    return _make


@pytest.fixture
def add_staff(session):
    """Factory: ``count`` active staff members STAFF0001.. for a tenant."""

    async def _add(tenant: Tenant, count: int = 1, *, department: str = "Engineering") -> list[Staff]:
        db = TenantDB(session, tenant.org.id)
        existing = await db.count(Staff)
        members = []
        for i in range(existing + 1, existing + count + 1):
            staff_id = f"STAFF{i:04d}"
            members.append(Staff(
                staff_id=staff_id,
                name=f"Staff {i}",
                email=f"staff{i}@{tenant.org.subdomain}.com",
                department=department,
                position="Engineer",
                qr_code=encode_qr_payload(tenant.org.id, staff_id),
            ))
        await db.insert_many(members)
        await session.commit()
        return members

    return _add


@pytest.fixture
async def super_admin(session) -> Tenant:
    user = User(
        tenant_id=None,
        email="owner@timewise.io",
        name="Platform Owner",
        password_hash=hash_password(PASSWORD),
        role=UserRole.SUPER_ADMIN,
        email_verified=True,
    )
    session.add(user)
    await session.commit()
    token = create_access_token(
        user_id=str(user.id), tenant_id=None, role=user.role, email=user.email
    )
    return Tenant(org=None, user=user, subscription=None, token=token)  # type: ignore[arg-type]
