"""Platform back-office for super admins: organizations, users, plans, audit trail."""

import logging
import math
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, EmailStr
from sqlalchemy import func, or_
from sqlmodel import select

from timewise.api.deps import Session, SuperAdminAuth
from timewise.core import cache
from timewise.core.errors import (
    InsufficientPermissionsError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from timewise.core.rate_limit import RateLimit, RateLimitPresets
from timewise.core.security import (
    create_access_token,
    generate_temporary_password,
    hash_password,
    verify_password,
)
from timewise.features.plans import Plan
from timewise.models.audit_log import AuditAction, AuditLogRead
from timewise.models.base import utcnow
from timewise.models.organization import Organization, OrganizationRead, OrganizationStatus
from timewise.models.subscription import SubscriptionRead
from timewise.models.user import User, UserRead, UserRole
from timewise.services import email
from timewise.services import subscriptions as lifecycle
from timewise.services.analytics import PlatformOverview, get_platform_overview
from timewise.services.audit import list_actions, record_action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/owner", tags=["owner"])


# ── Schemas ──────────────────────────────────────────────────

class OwnerLoginRequest(BaseModel):
    email: EmailStr
    password: str


class OwnerLoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    total_pages: int


class OrganizationList(BaseModel):
    organizations: list[OrganizationRead]
    pagination: Pagination


class OrganizationAction(BaseModel):
    success: bool = True
    message: str
    organization: OrganizationRead


class PlanChangeRequest(BaseModel):
    plan: Plan


class PlanChangeResponse(BaseModel):
    success: bool = True
    message: str
    subscription: SubscriptionRead


class OwnerUserRead(UserRead):
    last_login_at: datetime | None = None
    created_at: datetime
    organization_name: str | None = None
    organization_subdomain: str | None = None


class UserList(BaseModel):
    users: list[OwnerUserRead]
    pagination: Pagination


class UserAction(BaseModel):
    success: bool = True
    message: str
    user: UserRead


class PasswordResetResponse(BaseModel):
    success: bool = True
    message: str
    new_password: str


class AuditLogList(BaseModel):
    logs: list[AuditLogRead]
    pagination: Pagination


# ── Auth ─────────────────────────────────────────────────────

@router.post(
    "/auth/login",
    response_model=OwnerLoginResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.AUTH_LOGIN))],
)
async def owner_login(body: OwnerLoginRequest, request: Request, session: Session) -> OwnerLoginResponse:
    result = await session.execute(select(User).where(User.email == body.email.lower()))
    user = result.scalar_one_or_none()
    if user is None or user.role != UserRole.SUPER_ADMIN:
        raise UnauthenticatedError("Invalid email or password")
    if not user.is_active:
        raise InsufficientPermissionsError("Account is inactive. Please contact support.")
    if not verify_password(body.password, user.password_hash):
        raise UnauthenticatedError("Invalid email or password")

    user.last_login_at = utcnow()
    session.add(user)
    await session.commit()

    token = create_access_token(
        user_id=str(user.id), tenant_id=None, role=user.role, email=user.email
    )
    await record_action(
        session, actor_id=user.id, actor_email=user.email,
        action=AuditAction.LOGIN, request=request,
    )
    logger.info("Super admin signed in", extra={"user_id": user.id})
    return OwnerLoginResponse(access_token=token, user=UserRead.model_validate(user))


# ── Organizations ────────────────────────────────────────────

@router.get("/organizations", response_model=OrganizationList)
async def list_organizations(
    auth: SuperAdminAuth,
    session: Session,
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
    search: str | None = Query(default=None, max_length=100),
    status: OrganizationStatus | None = None,
    subscription_tier: Plan | None = None,
) -> OrganizationList:
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            Organization.name.ilike(pattern),  # type: ignore[attr-defined]
            Organization.subdomain.ilike(pattern),  # type: ignore[attr-defined]
            Organization.admin_email.ilike(pattern),  # type: ignore[attr-defined]
        ))
    if status:
        filters.append(Organization.status == status)
    if subscription_tier:
        filters.append(Organization.subscription_tier == subscription_tier)

    total = (await session.execute(
        select(func.count()).select_from(Organization).where(*filters)
    )).scalar_one()
    result = await session.execute(
        select(Organization)
        .where(*filters)
        .order_by(Organization.created_at.desc())  # type: ignore[attr-defined]
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    organizations = [OrganizationRead.model_validate(o) for o in result.scalars().all()]

    await record_action(
        session, actor_id=auth.user_id, actor_email=auth.email,
        action=AuditAction.VIEW_ORGANIZATIONS, request=request,
        details={"page": page, "search": search, "status": status, "subscription_tier": subscription_tier},
    )
    return OrganizationList(
        organizations=organizations,
        pagination=Pagination(
            page=page, per_page=per_page, total=total, total_pages=math.ceil(total / per_page),
        ),
    )


async def _set_status(
    session, org_id: uuid.UUID, status: OrganizationStatus
) -> Organization:
    org = await session.get(Organization, org_id)
    if org is None:
        raise NotFoundError("Organization not found")
    org.status = status
    org.updated_at = utcnow()
    session.add(org)
    await session.commit()
    await session.refresh(org)
    cache.invalidate_tenant(org.id)
    return org


@router.post("/organizations/{org_id}/suspend", response_model=OrganizationAction)
async def suspend_organization(
    org_id: uuid.UUID, auth: SuperAdminAuth, session: Session, request: Request
) -> OrganizationAction:
    org = await _set_status(session, org_id, OrganizationStatus.SUSPENDED)
    logger.warning("Organization suspended", extra={"tenant_id": org.id, "user_id": auth.user_id})
    await record_action(
        session, actor_id=auth.user_id, actor_email=auth.email,
        action=AuditAction.SUSPEND_ORGANIZATION, request=request, tenant_id=org.id,
        details={"name": org.name},
    )
    return OrganizationAction(
        message="Organization suspended successfully",
        organization=OrganizationRead.model_validate(org),
    )


@router.post("/organizations/{org_id}/activate", response_model=OrganizationAction)
async def activate_organization(
    org_id: uuid.UUID, auth: SuperAdminAuth, session: Session, request: Request
) -> OrganizationAction:
    org = await _set_status(session, org_id, OrganizationStatus.ACTIVE)
    logger.info("Organization activated", extra={"tenant_id": org.id, "user_id": auth.user_id})
    await record_action(
        session, actor_id=auth.user_id, actor_email=auth.email,
        action=AuditAction.ACTIVATE_ORGANIZATION, request=request, tenant_id=org.id,
        details={"name": org.name},
    )
    return OrganizationAction(
        message="Organization activated successfully",
        organization=OrganizationRead.model_validate(org),
    )


@router.put("/organizations/{org_id}/plan", response_model=PlanChangeResponse)
async def change_plan(
    org_id: uuid.UUID,
    body: PlanChangeRequest,
    auth: SuperAdminAuth,
    session: Session,
    request: Request,
) -> PlanChangeResponse:
    org = await session.get(Organization, org_id)
    if org is None:
        raise NotFoundError("Organization not found")
    previous = org.subscription_tier
    sub = await lifecycle.override_plan(session, org_id, body.plan)
    await record_action(
        session, actor_id=auth.user_id, actor_email=auth.email,
        action=AuditAction.UPDATE_SUBSCRIPTION, request=request, tenant_id=org_id,
        details={"from": previous, "to": body.plan.value},
    )
    return PlanChangeResponse(
        message=f"Plan updated to {body.plan.value}",
        subscription=lifecycle.to_read(sub),
    )


# ── Users ────────────────────────────────────────────────────

@router.get("/users", response_model=UserList)
async def list_users(
    auth: SuperAdminAuth,
    session: Session,
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
    search: str | None = Query(default=None, max_length=100),
    role: UserRole | None = None,
    tenant_id: uuid.UUID | None = None,
    is_active: bool | None = None,
) -> UserList:
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            User.email.ilike(pattern),  # type: ignore[attr-defined]
            User.name.ilike(pattern),  # type: ignore[attr-defined]
        ))
    if role:
        filters.append(User.role == role)
    if tenant_id:
        filters.append(User.tenant_id == tenant_id)
    if is_active is not None:
        filters.append(User.is_active == is_active)

    total = (await session.execute(
        select(func.count()).select_from(User).where(*filters)
    )).scalar_one()
    result = await session.execute(
        select(User, Organization.name, Organization.subdomain)
        .outerjoin(Organization, User.tenant_id == Organization.id)
        .where(*filters)
        .order_by(
            User.last_login_at.desc().nulls_last(),  # type: ignore[union-attr]
            User.created_at.desc(),  # type: ignore[attr-defined]
        )
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    users = [
        OwnerUserRead.model_validate({
            **user.model_dump(),
            "organization_name": org_name,
            "organization_subdomain": subdomain,
        })
        for user, org_name, subdomain in result.all()
    ]

    await record_action(
        session, actor_id=auth.user_id, actor_email=auth.email,
        action=AuditAction.VIEW_USERS, request=request,
        details={
            "page": page,
            "search": search,
            "role": role,
            "tenant_id": str(tenant_id) if tenant_id else None,
            "is_active": is_active,
        },
    )
    return UserList(
        users=users,
        pagination=Pagination(
            page=page, per_page=per_page, total=total, total_pages=math.ceil(total / per_page),
        ),
    )


async def _get_user(session, user_id: uuid.UUID) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def _audit_user_action(session, auth, request: Request, action: AuditAction, user: User) -> None:
    await record_action(
        session, actor_id=auth.user_id, actor_email=auth.email,
        action=action, request=request, tenant_id=user.tenant_id,
        details={"user_id": str(user.id), "email": user.email, "name": user.name},
    )


@router.post("/users/{user_id}/suspend", response_model=UserAction)
async def suspend_user(
    user_id: uuid.UUID, auth: SuperAdminAuth, session: Session, request: Request
) -> UserAction:
    user = await _get_user(session, user_id)
    if user.id == auth.user_id:
        raise ValidationError("You cannot suspend your own account")
    user.is_active = False
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.warning("User suspended", extra={"tenant_id": user.tenant_id, "user_id": user.id})
    await _audit_user_action(session, auth, request, AuditAction.SUSPEND_USER, user)
    return UserAction(message="User suspended successfully", user=UserRead.model_validate(user))


@router.post("/users/{user_id}/activate", response_model=UserAction)
async def activate_user(
    user_id: uuid.UUID, auth: SuperAdminAuth, session: Session, request: Request
) -> UserAction:
    user = await _get_user(session, user_id)
    user.is_active = True
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info("User activated", extra={"tenant_id": user.tenant_id, "user_id": user.id})
    await _audit_user_action(session, auth, request, AuditAction.ACTIVATE_USER, user)
    return UserAction(message="User activated successfully", user=UserRead.model_validate(user))


@router.post("/users/{user_id}/reset-password", response_model=PasswordResetResponse)
async def reset_user_password(
    user_id: uuid.UUID, auth: SuperAdminAuth, session: Session, request: Request
) -> PasswordResetResponse:
    """Replace the password with a random one, mail it and show it once."""
    user = await _get_user(session, user_id)
    new_password = generate_temporary_password()
    user.password_hash = hash_password(new_password)
    user.reset_token_hash = None
    user.reset_token_expires_at = None
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)

    if not await email.send_temporary_password_email(user.email, user.name, new_password):
        logger.warning("Temporary password email was not delivered", extra={"user_id": user.id})
    await _audit_user_action(session, auth, request, AuditAction.RESET_PASSWORD, user)
    return PasswordResetResponse(
        message="Password reset successfully. The user has been notified by email.",
        new_password=new_password,
    )


# ── Audit trail and analytics ────────────────────────────────

@router.get("/logs", response_model=AuditLogList)
async def audit_logs(
    auth: SuperAdminAuth,
    session: Session,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=50, ge=1, le=200),
    search: str | None = Query(default=None, max_length=100),
    action: AuditAction | None = None,
    tenant_id: uuid.UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> AuditLogList:
    if date_from and date_to and date_from > date_to:
        raise ValidationError("date_from must not be after date_to")
    logs, total, pages = await list_actions(
        session,
        page=page,
        per_page=per_page,
        search=search,
        action=action,
        tenant_id=tenant_id,
        date_from=date_from,
        date_to=date_to,
    )
    return AuditLogList(
        logs=[AuditLogRead.model_validate(log) for log in logs],
        pagination=Pagination(page=page, per_page=per_page, total=total, total_pages=pages),
    )


@router.get("/analytics/overview", response_model=PlatformOverview)
async def analytics_overview(
    auth: SuperAdminAuth, session: Session, request: Request
) -> PlatformOverview:
    report = await get_platform_overview(session)
    await record_action(
        session, actor_id=auth.user_id, actor_email=auth.email,
        action=AuditAction.VIEW_ANALYTICS, request=request,
    )
    return report
