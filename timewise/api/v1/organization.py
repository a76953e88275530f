"""Organization profile, settings and kiosk unlock."""

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends
from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import select

from timewise.api.deps import AdminAuth, Session, TenantAuth
from timewise.core.config import get_settings
from timewise.core.errors import (
    FeatureLockedError,
    NotFoundError,
    OrganizationSuspendedError,
    UnauthenticatedError,
    ValidationError,
)
from timewise.core.rate_limit import RateLimit, RateLimitPresets
from timewise.core.security import encrypt_value, secret_matches
from timewise.features.access import get_plan_state
from timewise.features.plans import can_use_method
from timewise.models.base import utcnow
from timewise.models.organization import (
    Organization,
    OrganizationRead,
    OrganizationSettings,
    OrganizationSettingsRead,
    OrganizationSettingsUpdate,
    OrganizationStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organization", tags=["organization"])

DEV_DEFAULT_PASSCODE = "1234"


class OrganizationDetail(OrganizationRead):
    settings: OrganizationSettingsRead


class VerifyPasscodeRequest(BaseModel):
    email: EmailStr
    passcode: str = Field(min_length=1, max_length=12)


class VerifyPasscodeResponse(BaseModel):
    success: bool = True
    tenant_id: str
    organization_name: str
    capture_photos: bool
    message: str | None = None


def _settings_read(settings: OrganizationSettings) -> OrganizationSettingsRead:
    data = settings.model_dump(mode="json", exclude={"check_in_passcode"})
    return OrganizationSettingsRead(**data, has_check_in_passcode=bool(settings.check_in_passcode))


def _to_detail(org: Organization) -> OrganizationDetail:
    return OrganizationDetail(
        **OrganizationRead.model_validate(org).model_dump(),
        settings=_settings_read(org.get_settings()),
    )


async def _get_org_or_404(session, tenant_id) -> Organization:
    org = await session.get(Organization, tenant_id)
    if org is None:
        raise NotFoundError("Organization not found")
    return org


@router.get("", response_model=OrganizationDetail)
async def get_organization(auth: TenantAuth, session: Session) -> OrganizationDetail:
    return _to_detail(await _get_org_or_404(session, auth.tenant_id))


@router.patch("/settings", response_model=OrganizationDetail)
async def update_settings(
    body: OrganizationSettingsUpdate,
    auth: AdminAuth,
    session: Session,
) -> OrganizationDetail:
    org = await _get_org_or_404(session, auth.tenant_id)
    update_data = body.model_dump(exclude_unset=True, mode="json")

    if update_data.get("timezone"):
        try:
            ZoneInfo(update_data["timezone"])
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationError(f"Unknown timezone '{update_data['timezone']}'") from exc

    # Paid check-in methods must be unlocked before they can be switched on
    methods = update_data.get("enabled_check_in_methods")
    if methods is not None:
        if not methods:
            raise ValidationError("At least one check-in method must be enabled")
        state = await get_plan_state(session, org.id)
        dev = get_settings().is_development
        locked = [m for m in methods if not can_use_method(state.plan, m, state.is_trial_active, dev)]
        if locked:
            raise FeatureLockedError(
                "Some check-in methods are not available on your current plan",
                details={"methods": locked, "currentPlan": state.plan.value},
            )

    if "check_in_passcode" in update_data:
        passcode = update_data.pop("check_in_passcode")
        update_data["check_in_passcode"] = encrypt_value(passcode) if passcode else None

    try:
        merged = OrganizationSettings.model_validate({**(org.settings or {}), **update_data})
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid organization settings",
            details={
                "errors": [
                    {"field": ".".join(map(str, e["loc"])), "message": e["msg"]} for e in exc.errors()
                ]
            },
        ) from exc
    org.settings = merged.model_dump(mode="json")
    org.updated_at = utcnow()
    session.add(org)
    await session.commit()
    await session.refresh(org)
    logger.info("Organization settings updated", extra={"tenant_id": org.id, "user_id": auth.user_id})
    return _to_detail(org)


@router.post(
    "/verify-passcode",
    response_model=VerifyPasscodeResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.AUTH_LOGIN))],
)
async def verify_passcode(body: VerifyPasscodeRequest, session: Session) -> VerifyPasscodeResponse:
    """Unlock a check-in kiosk with the admin e-mail and the organization passcode."""
    result = await session.execute(
        select(Organization)
        .where(Organization.admin_email == body.email.lower().strip())
        .order_by(Organization.created_at)  # type: ignore[arg-type]
        .limit(1)
    )
    org = result.scalar_one_or_none()
    if org is None:
        raise NotFoundError("Organization not found with this email")
    if org.status == OrganizationStatus.SUSPENDED:
        raise OrganizationSuspendedError()

    settings = org.get_settings()
    if not settings.check_in_passcode:
        if get_settings().is_development and body.passcode == DEV_DEFAULT_PASSCODE:
            return VerifyPasscodeResponse(
                tenant_id=str(org.id),
                organization_name=org.name,
                capture_photos=settings.capture_photos,
                message="Using default passcode (1234). Please set a passcode in Settings.",
            )
        raise ValidationError("No passcode set. Admin must set a passcode in Settings first.")

    if not secret_matches(body.passcode, settings.check_in_passcode):
        logger.info("Kiosk passcode rejected", extra={"tenant_id": org.id})
        raise UnauthenticatedError("Invalid passcode")

    return VerifyPasscodeResponse(
        tenant_id=str(org.id),
        organization_name=org.name,
        capture_photos=settings.capture_photos,
    )
