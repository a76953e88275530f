"""FastAPI dependencies for authentication, role checks and tenant resolution."""

import logging
import uuid
from collections.abc import Iterable
from typing import Annotated

from fastapi import Depends
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from timewise.core.database import get_session
from timewise.core.errors import (
    CrossTenantAccessError,
    InsufficientPermissionsError,
    InvalidTokenError,
    UnauthenticatedError,
)
from timewise.core.security import extract_token, verify_access_token
from timewise.models.user import UserRole

logger = logging.getLogger(__name__)

# Plain header read: both "Bearer <jwt>" and a bare token are accepted.
authorization_header = APIKeyHeader(name="Authorization", auto_error=False)


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("user_id", "tenant_id", "role", "email")

    def __init__(
        self,
        user_id: uuid.UUID,
        tenant_id: uuid.UUID | None,
        role: str,
        email: str,
    ) -> None:
        self.user_id = user_id
        self.tenant_id = tenant_id
        self.role = role
        self.email = email

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN


def authenticate(authorization: str | None) -> AuthContext:
    """Turn an Authorization header value into an ``AuthContext``."""
    token = extract_token(authorization)
    if token is None:
        raise UnauthenticatedError("Authentication required. Please provide a valid token.")

    payload = verify_access_token(token)
    try:
        return AuthContext(
            user_id=uuid.UUID(payload["userId"]),
            tenant_id=uuid.UUID(payload["tenantId"]) if payload.get("tenantId") else None,
            role=payload["role"],
            email=payload.get("email", ""),
        )
    except (KeyError, ValueError) as exc:
        raise InvalidTokenError("Malformed token payload") from exc


def require_role(context: AuthContext, allowed_roles: Iterable[str]) -> None:
    """Raise unless the caller's role is in ``allowed_roles``.

    Super admins get no exemption here; they are only exempt from tenant
    matching in ``verify_tenant_access``.
    """
    allowed = set(allowed_roles)
    if context.role not in allowed:
        logger.info(
            "Role %s denied (allowed: %s)", context.role, sorted(allowed),
            extra={"user_id": context.user_id, "tenant_id": context.tenant_id},
        )
        raise InsufficientPermissionsError(
            f"This action requires one of the following roles: {', '.join(sorted(allowed))}"
        )


def verify_tenant_access(context: AuthContext, requested_tenant_id: uuid.UUID | str) -> None:
    if context.is_super_admin:
        return
    if context.tenant_id is None or str(context.tenant_id) != str(requested_tenant_id):
        raise CrossTenantAccessError("You do not have access to this organization")


async def get_auth_context(
    authorization: Annotated[str | None, Depends(authorization_header)],
) -> AuthContext:
    return authenticate(authorization)


async def get_tenant_context(
    auth: Annotated[AuthContext, Depends(get_auth_context)],
) -> AuthContext:
    """An authenticated caller that acts on behalf of one organization."""
    if auth.tenant_id is None:
        raise InsufficientPermissionsError("This action requires an organization account")
    return auth


class RequireRoles:
    """Dependency factory: ``Depends(RequireRoles(UserRole.ORG_ADMIN))``."""

    def __init__(self, *roles: UserRole, tenant_scoped: bool = True) -> None:
        self.roles = roles
        self.tenant_scoped = tenant_scoped

    async def __call__(
        self, auth: Annotated[AuthContext, Depends(get_auth_context)]
    ) -> AuthContext:
        require_role(auth, self.roles)
        if self.tenant_scoped and auth.tenant_id is None:
            raise InsufficientPermissionsError("This action requires an organization account")
        return auth


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
TenantAuth = Annotated[AuthContext, Depends(get_tenant_context)]
AdminAuth = Annotated[AuthContext, Depends(RequireRoles(UserRole.ORG_ADMIN))]
ManagerAuth = Annotated[
    AuthContext, Depends(RequireRoles(UserRole.ORG_ADMIN, UserRole.MANAGER))
]
SuperAdminAuth = Annotated[
    AuthContext, Depends(RequireRoles(UserRole.SUPER_ADMIN, tenant_scoped=False))
]
Session = Annotated[AsyncSession, Depends(get_session)]
