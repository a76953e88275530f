"""Organization sign-up, login, e-mail verification, password resets and the current user."""

import logging
import re
import secrets
from datetime import timedelta

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from timewise.api.deps import Auth, Session
from timewise.core.errors import (
    ConflictError,
    EmailNotVerifiedError,
    InsufficientPermissionsError,
    NotFoundError,
    OrganizationSuspendedError,
    UnauthenticatedError,
    ValidationError,
)
from timewise.core.rate_limit import RateLimit, RateLimitPresets
from timewise.core.security import (
    create_access_token,
    generate_otp,
    generate_reset_token,
    hash_otp,
    hash_password,
    hash_token,
    otp_matches,
    verify_password,
)
from timewise.models.base import utcnow
from timewise.models.organization import Organization, OrganizationRead, OrganizationStatus
from timewise.models.user import User, UserRead, UserRole
from timewise.services import email
from timewise.services.subscriptions import create_trial_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

OTP_TTL = timedelta(minutes=10)
OTP_MAX_ATTEMPTS = 5
RESET_TOKEN_TTL = timedelta(hours=1)
RESET_REQUESTED = "If an account exists with this email, you will receive a password reset link."

RESERVED_SUBDOMAINS = frozenset(
    {"www", "api", "admin", "app", "mail", "ftp", "localhost", "dashboard"}
)
_SUBDOMAIN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,28})[a-z0-9]$")


def validate_subdomain(value: str) -> str:
    value = value.strip().lower()
    if not 3 <= len(value) <= 30:
        raise ValidationError("Subdomain must be between 3 and 30 characters")
    if not _SUBDOMAIN.match(value) or "--" in value:
        raise ValidationError(
            "Subdomain may contain lowercase letters, numbers and single hyphens, "
            "and cannot start or end with a hyphen"
        )
    if value in RESERVED_SUBDOMAINS:
        raise ValidationError(f"Subdomain '{value}' is reserved")
    return value


def generate_subdomain(name: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    base = re.sub(r"-{2,}", "-", base)[:24].strip("-")
    if len(base) < 3 or base in RESERVED_SUBDOMAINS:
        base = f"org-{base}".strip("-")
    return f"{base}-{secrets.token_hex(2)}"


# ── Schemas ──────────────────────────────────────────────────

class RegisterRequest(BaseModel):
    organization_name: str = Field(min_length=1, max_length=200)
    subdomain: str | None = None
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(default="", max_length=255)

    @field_validator("organization_name")
    @classmethod
    def _sanitize_name(cls, value: str) -> str:
        value = " ".join(value.split())
        if not value:
            raise ValueError("Organization name is required")
        return value[:100]


class RegisterResponse(BaseModel):
    success: bool = True
    message: str
    organization: OrganizationRead
    user: UserRead


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
    organization: OrganizationRead | None


class SendOtpRequest(BaseModel):
    email: EmailStr


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=6, max_length=6)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=128)
    password: str = Field(min_length=8, max_length=128)


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class MeResponse(BaseModel):
    user: UserRead
    organization: OrganizationRead | None


# ── Helpers ──────────────────────────────────────────────────

async def _user_by_email(session, address: str) -> User | None:
    result = await session.execute(select(User).where(User.email == address.lower()))
    return result.scalar_one_or_none()


async def _issue_otp(session, user: User) -> None:
    code = generate_otp()
    user.otp_hash = hash_otp(code)
    user.otp_expires_at = utcnow() + OTP_TTL
    user.otp_attempts = 0
    session.add(user)
    await session.commit()
    await email.send_otp_email(user.email, user.name, code)


# ── Routes ───────────────────────────────────────────────────

@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(RateLimit(RateLimitPresets.AUTH_REGISTER))],
)
async def register(body: RegisterRequest, session: Session) -> RegisterResponse:
    """Create an organization on the starter trial with its first admin."""
    subdomain = (
        validate_subdomain(body.subdomain) if body.subdomain
        else generate_subdomain(body.organization_name)
    )
    address = body.email.lower()

    if await _user_by_email(session, address):
        raise ConflictError("An account with this email already exists")
    taken = await session.execute(select(Organization.id).where(Organization.subdomain == subdomain))
    if taken.scalar_one_or_none():
        raise ConflictError(f"Subdomain '{subdomain}' is already taken")

    org = Organization(
        name=body.organization_name,
        subdomain=subdomain,
        admin_email=address,
        status=OrganizationStatus.TRIAL,
    )
    session.add(org)
    await session.flush()

    user = User(
        tenant_id=org.id,
        email=address,
        name=body.name.strip(),
        password_hash=hash_password(body.password),
        role=UserRole.ORG_ADMIN,
    )
    session.add(user)
    try:
        await session.flush()
        await create_trial_subscription(session, org.id)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Organization or account already exists") from exc
    await session.refresh(org)
    await session.refresh(user)
    logger.info("Organization registered", extra={"tenant_id": org.id, "user_id": user.id})

    await _issue_otp(session, user)
    return RegisterResponse(
        message="Registration successful. Check your email for a verification code.",
        organization=OrganizationRead.model_validate(org),
        user=UserRead.model_validate(user),
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.AUTH_LOGIN))],
)
async def login(body: LoginRequest, session: Session) -> LoginResponse:
    """Authenticate with email + password, receive a JWT."""
    user = await _user_by_email(session, body.email)
    if user is None or not verify_password(body.password, user.password_hash):
        raise UnauthenticatedError("Invalid email or password")
    if user.role == UserRole.SUPER_ADMIN:
        raise InsufficientPermissionsError("Platform administrators sign in at /owner/auth/login")
    if not user.is_active:
        raise InsufficientPermissionsError("Account is deactivated")
    if not user.email_verified:
        raise EmailNotVerifiedError()

    org = await session.get(Organization, user.tenant_id) if user.tenant_id else None
    if org is None:
        raise NotFoundError("Organization not found")
    if org.status == OrganizationStatus.SUSPENDED:
        raise OrganizationSuspendedError()

    user.last_login_at = utcnow()
    session.add(user)
    await session.commit()
    await session.refresh(user)

    token = create_access_token(
        user_id=str(user.id),
        tenant_id=str(org.id),
        role=user.role,
        email=user.email,
    )
    logger.info("User logged in", extra={"tenant_id": org.id, "user_id": user.id})
    return LoginResponse(
        access_token=token,
        user=UserRead.model_validate(user),
        organization=OrganizationRead.model_validate(org),
    )


@router.post(
    "/send-otp",
    response_model=MessageResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.OTP))],
)
async def send_otp(body: SendOtpRequest, session: Session) -> MessageResponse:
    user = await _user_by_email(session, body.email)
    if user is None:
        raise NotFoundError("User not found")
    if user.email_verified:
        raise ValidationError("Email is already verified")
    await _issue_otp(session, user)
    return MessageResponse(message="Verification code sent")


@router.post(
    "/verify-otp",
    response_model=MessageResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.OTP))],
)
async def verify_otp(body: VerifyOtpRequest, session: Session) -> MessageResponse:
    user = await _user_by_email(session, body.email)
    if user is None:
        raise NotFoundError("User not found")
    if user.email_verified:
        raise ValidationError("Email is already verified")
    if not user.otp_hash or user.otp_expires_at is None:
        raise ValidationError("No verification code found. Please request a new one.")
    if user.otp_attempts >= OTP_MAX_ATTEMPTS:
        raise ValidationError("Too many attempts. Please request a new code.")
    if utcnow() > user.otp_expires_at:
        raise ValidationError("Verification code has expired. Please request a new one.")

    if not otp_matches(body.otp, user.otp_hash):
        user.otp_attempts += 1
        session.add(user)
        await session.commit()
        raise ValidationError(
            "Invalid verification code",
            details={"attemptsRemaining": max(0, OTP_MAX_ATTEMPTS - user.otp_attempts)},
        )

    user.email_verified = True
    user.otp_hash = None
    user.otp_expires_at = None
    user.otp_attempts = 0
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()

    org = await session.get(Organization, user.tenant_id) if user.tenant_id else None
    if org is not None:
        await email.send_welcome_email(user.email, user.name, org.name)
    return MessageResponse(message="Email verified successfully")


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.PASSWORD_RESET))],
)
async def forgot_password(body: ForgotPasswordRequest, session: Session) -> MessageResponse:
    """Mail a reset link. The reply never reveals whether the account exists."""
    user = await _user_by_email(session, body.email)
    if user is None or not user.is_active:
        return MessageResponse(message=RESET_REQUESTED)

    token = generate_reset_token()
    user.reset_token_hash = hash_token(token)
    user.reset_token_expires_at = utcnow() + RESET_TOKEN_TTL
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    if not await email.send_password_reset_email(user.email, user.name, token):
        logger.warning("Password reset email was not delivered", extra={"user_id": user.id})
    return MessageResponse(message=RESET_REQUESTED)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.PASSWORD_RESET))],
)
async def reset_password(body: ResetPasswordRequest, session: Session) -> MessageResponse:
    result = await session.execute(
        select(User).where(User.reset_token_hash == hash_token(body.token))
    )
    user = result.scalar_one_or_none()
    if user is None or user.reset_token_expires_at is None:
        raise ValidationError("Invalid or expired reset token")
    if utcnow() > user.reset_token_expires_at:
        raise ValidationError("Reset token has expired. Please request a new one.")

    user.password_hash = hash_password(body.password)
    user.reset_token_hash = None
    user.reset_token_expires_at = None
    user.updated_at = utcnow()
    session.add(user)
    await session.commit()
    logger.info("Password reset", extra={"tenant_id": user.tenant_id, "user_id": user.id})
    return MessageResponse(
        message="Password reset successfully. You can now log in with your new password."
    )


@router.get("/me", response_model=MeResponse)
async def get_me(auth: Auth, session: Session) -> MeResponse:
    """Return the current authenticated user and their organization."""
    user = await session.get(User, auth.user_id)
    if user is None:
        raise NotFoundError("User not found")
    org = await session.get(Organization, auth.tenant_id) if auth.tenant_id else None
    return MeResponse(
        user=UserRead.model_validate(user),
        organization=OrganizationRead.model_validate(org) if org else None,
    )
