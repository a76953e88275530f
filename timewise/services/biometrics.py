"""Fingerprint credentials and assertion checks for kiosk check-in.

The WebAuthn ceremony itself is delegated to an ``AssertionVerifier``. This
module keeps the credential records and enforces what the verifier cannot:
the credential must belong to the staff member checking in, and the
authenticator's signature counter must move forward on every use so a
captured assertion cannot be replayed.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from timewise.core.errors import ConflictError, NotFoundError, UnauthenticatedError, ValidationError
from timewise.core.tenant_db import TenantDB
from timewise.models.base import utcnow
from timewise.models.credential import CredentialCreate, StaffCredential
from timewise.models.staff import Staff

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    verified: bool
    new_counter: int = 0
    error: str | None = None


class AssertionVerifier(ABC):
    """Checks a WebAuthn authentication assertion against a stored credential."""

    @abstractmethod
    async def verify(self, credential: StaffCredential, assertion: dict[str, Any]) -> VerificationResult:
        """Return whether the signature is valid and the counter it carries."""


class UnconfiguredVerifier(AssertionVerifier):
    """Rejects every assertion until a real verifier is installed."""

    async def verify(self, credential: StaffCredential, assertion: dict[str, Any]) -> VerificationResult:
        return VerificationResult(verified=False, error="Fingerprint verifier is not configured")


_verifier: AssertionVerifier = UnconfiguredVerifier()


def get_verifier() -> AssertionVerifier:
    return _verifier


def set_verifier(verifier: AssertionVerifier) -> None:
    global _verifier
    _verifier = verifier


# ── Credential records ───────────────────────────────────────

async def register_credential(
    session: AsyncSession, tenant_id: uuid.UUID, staff: Staff, body: CredentialCreate
) -> StaffCredential:
    db = TenantDB(session, tenant_id)
    if await db.count(StaffCredential, {"credential_id": body.credential_id}):
        raise ConflictError("This fingerprint is already registered")

    credential = StaffCredential(
        staff_id=staff.staff_id,
        credential_id=body.credential_id,
        public_key=body.public_key,
        device_name=body.device_name or "Unknown Device",
        sign_count=body.sign_count,
    )
    try:
        await db.insert_one(credential)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("This fingerprint is already registered") from exc
    await session.refresh(credential)
    logger.info(
        "Fingerprint registered for %s", staff.staff_id, extra={"tenant_id": tenant_id}
    )
    return credential


async def list_credentials(
    session: AsyncSession, tenant_id: uuid.UUID, staff_id: str
) -> list[StaffCredential]:
    return await TenantDB(session, tenant_id).find(
        StaffCredential, {"staff_id": staff_id}, order_by=StaffCredential.created_at,
    )


async def staff_with_credentials(
    session: AsyncSession, tenant_id: uuid.UUID, staff_ids: list[str]
) -> set[str]:
    """Which of ``staff_ids`` have at least one fingerprint registered."""
    if not staff_ids:
        return set()
    rows = await TenantDB(session, tenant_id).find(
        StaffCredential, None, StaffCredential.staff_id.in_(staff_ids),  # type: ignore[attr-defined]
    )
    return {row.staff_id for row in rows}


async def delete_credential(
    session: AsyncSession, tenant_id: uuid.UUID, staff_id: str, credential_id: str
) -> None:
    deleted = await TenantDB(session, tenant_id).delete_one(
        StaffCredential, {"staff_id": staff_id, "credential_id": credential_id}
    )
    if not deleted:
        raise NotFoundError("Credential not found")
    await session.commit()
    logger.info("Fingerprint removed for %s", staff_id, extra={"tenant_id": tenant_id})


# ── Authentication ───────────────────────────────────────────

async def authenticate(
    session: AsyncSession, tenant_id: uuid.UUID, staff: Staff, assertion: dict[str, Any] | None
) -> StaffCredential:
    """Accept a fingerprint assertion for ``staff`` or raise.

    The stored counter is advanced with a conditional UPDATE, so of two
    concurrent uses of the same assertion only one succeeds. The counter is
    committed before the attendance row is written; a consumed assertion
    stays consumed even if the check-in itself is then refused.
    """
    if not assertion or not assertion.get("credential_id"):
        raise ValidationError("A fingerprint assertion is required")

    db = TenantDB(session, tenant_id)
    log_extra = {"tenant_id": tenant_id, "staff_id": staff.staff_id}
    credential = await db.find_one(
        StaffCredential,
        {"staff_id": staff.staff_id, "credential_id": assertion["credential_id"]},
    )
    if credential is None:
        raise UnauthenticatedError("Fingerprint not recognized")

    result = await get_verifier().verify(credential, assertion)
    if not result.verified:
        logger.warning("Fingerprint rejected: %s", result.error, extra=log_extra)
        raise UnauthenticatedError("Fingerprint verification failed")

    # Authenticators without a counter always report 0
    if credential.sign_count == 0 and result.new_counter == 0:
        guard = StaffCredential.sign_count == 0
    elif result.new_counter > credential.sign_count:
        guard = StaffCredential.sign_count < result.new_counter
    else:
        logger.warning(
            "Fingerprint counter did not advance (%s <= %s)",
            result.new_counter, credential.sign_count, extra=log_extra,
        )
        raise UnauthenticatedError("Fingerprint assertion has already been used")

    changed = await db.update_one(
        StaffCredential,
        {"id": credential.id},
        {"sign_count": result.new_counter, "last_used_at": utcnow()},
        guard,
    )
    if not changed:
        await session.rollback()
        raise UnauthenticatedError("Fingerprint assertion has already been used")
    await session.commit()
    return credential
