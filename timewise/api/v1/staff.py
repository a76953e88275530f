"""Staff CRUD and fingerprint credentials — every query goes through the tenant accessor."""

import logging
import secrets

from fastapi import APIRouter, Query, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from timewise.api.deps import AdminAuth, ManagerAuth, Session
from timewise.core.errors import ConflictError, NotFoundError
from timewise.core.tenant_db import TenantDB
from timewise.features.access import require_feature, require_staff_capacity
from timewise.features.plans import Feature
from timewise.models.credential import CredentialCreate, CredentialRead, StaffCredential
from timewise.models.staff import Staff, StaffCreate, StaffRead, StaffUpdate
from timewise.services import biometrics
from timewise.services.attendance import encode_qr_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/staff", tags=["staff"])

STAFF_ID_ATTEMPTS = 10


def _new_staff_id() -> str:
    return f"STAFF{secrets.randbelow(10000):04d}"


async def _get_or_404(db: TenantDB, staff_id: str) -> Staff:
    staff = await db.find_one(Staff, {"staff_id": staff_id.strip().upper()})
    if staff is None:
        raise NotFoundError("Staff not found")
    return staff



async def _read(session, tenant_id, staff: Staff) -> StaffRead:
    enrolled = await biometrics.staff_with_credentials(session, tenant_id, [staff.staff_id])
    return StaffRead.from_staff(staff, has_biometrics=bool(enrolled))

@router.post("", response_model=StaffRead, status_code=status.HTTP_201_CREATED)
async def create_staff(body: StaffCreate, auth: ManagerAuth, session: Session) -> StaffRead:
    await require_staff_capacity(session, auth.tenant_id)
    db = TenantDB(session, auth.tenant_id)

    address = body.email.lower()
    if await db.count(Staff, {"email": address}):
        raise ConflictError("A staff member with this email already exists")

    for _ in range(STAFF_ID_ATTEMPTS):
        candidate = _new_staff_id()
        if not await db.count(Staff, {"staff_id": candidate}):
            break
    else:
        raise ConflictError("Could not allocate a staff ID. Please try again.")

    staff = Staff(
        staff_id=candidate,
        name=body.name.strip(),
        email=address,
        department=body.department.strip(),
        position=body.position.strip(),
        phone=body.phone,
        qr_code=encode_qr_payload(auth.tenant_id, candidate),  # type: ignore[arg-type]
    )
    try:
        await db.insert_one(staff)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Staff member already exists") from exc
    await session.refresh(staff)
    logger.info("Staff %s created", staff.staff_id, extra={"tenant_id": auth.tenant_id})
    return StaffRead.from_staff(staff)


@router.get("", response_model=list[StaffRead])
async def list_staff(
    auth: ManagerAuth,
    session: Session,
    department: str | None = None,
    is_active: bool | None = None,
    search: str | None = Query(default=None, max_length=100),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[StaffRead]:
    filters: dict = {}
    if department:
        filters["department"] = department
    if is_active is not None:
        filters["is_active"] = is_active
    where = []
    if search:
        pattern = f"%{search}%"
        where.append(or_(
            Staff.name.ilike(pattern),  # type: ignore[attr-defined]
            Staff.email.ilike(pattern),  # type: ignore[attr-defined]
            Staff.staff_id.ilike(pattern),  # type: ignore[attr-defined]
        ))
    members = await TenantDB(session, auth.tenant_id).find(
        Staff, filters, *where, order_by=Staff.name, limit=limit, offset=offset,
    )
    enrolled = await biometrics.staff_with_credentials(
        session, auth.tenant_id, [s.staff_id for s in members]  # type: ignore[arg-type]
    )
    return [StaffRead.from_staff(s, has_biometrics=s.staff_id in enrolled) for s in members]


@router.get("/{staff_id}", response_model=StaffRead)
async def get_staff(staff_id: str, auth: ManagerAuth, session: Session) -> StaffRead:
    staff = await _get_or_404(TenantDB(session, auth.tenant_id), staff_id)
    return await _read(session, auth.tenant_id, staff)


@router.patch("/{staff_id}", response_model=StaffRead)
async def update_staff(
    staff_id: str,
    body: StaffUpdate,
    auth: ManagerAuth,
    session: Session,
) -> StaffRead:
    await require_feature(session, auth.tenant_id, Feature.CAN_EDIT_STAFF)
    db = TenantDB(session, auth.tenant_id)
    staff = await _get_or_404(db, staff_id)

    update_data = body.model_dump(exclude_unset=True)
    if "email" in update_data and update_data["email"]:
        update_data["email"] = update_data["email"].lower()
        if update_data["email"] != staff.email and await db.count(
            Staff, {"email": update_data["email"]}
        ):
            raise ConflictError("A staff member with this email already exists")
    # Reactivation counts against the plan's headcount
    if update_data.get("is_active") and not staff.is_active:
        await require_staff_capacity(session, auth.tenant_id)

    if update_data:
        await db.update_one(Staff, {"id": staff.id}, update_data)
        await session.commit()
        await session.refresh(staff)
    return await _read(session, auth.tenant_id, staff)


@router.delete("/{staff_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_staff(staff_id: str, auth: AdminAuth, session: Session) -> None:
    db = TenantDB(session, auth.tenant_id)
    staff = await _get_or_404(db, staff_id)
    await db.delete_one(Staff, {"id": staff.id})
    await db.delete_many(StaffCredential, {"staff_id": staff.staff_id})
    await session.commit()
    logger.info("Staff %s deleted", staff.staff_id, extra={"tenant_id": auth.tenant_id})


# ── Fingerprint credentials ──────────────────────────────────

@router.get("/{staff_id}/credentials", response_model=list[CredentialRead])
async def list_staff_credentials(
    staff_id: str, auth: ManagerAuth, session: Session
) -> list[CredentialRead]:
    staff = await _get_or_404(TenantDB(session, auth.tenant_id), staff_id)
    credentials = await biometrics.list_credentials(
        session, auth.tenant_id, staff.staff_id  # type: ignore[arg-type]
    )
    return [CredentialRead.model_validate(c) for c in credentials]


@router.post(
    "/{staff_id}/credentials",
    response_model=CredentialRead,
    status_code=status.HTTP_201_CREATED,
)
async def register_staff_credential(
    staff_id: str, body: CredentialCreate, auth: ManagerAuth, session: Session
) -> CredentialRead:
    await require_feature(session, auth.tenant_id, Feature.FINGERPRINT_CHECK_IN)
    staff = await _get_or_404(TenantDB(session, auth.tenant_id), staff_id)
    credential = await biometrics.register_credential(
        session, auth.tenant_id, staff, body  # type: ignore[arg-type]
    )
    return CredentialRead.model_validate(credential)


@router.delete("/{staff_id}/credentials/{credential_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_staff_credential(
    staff_id: str, credential_id: str, auth: ManagerAuth, session: Session
) -> None:
    staff = await _get_or_404(TenantDB(session, auth.tenant_id), staff_id)
    await biometrics.delete_credential(
        session, auth.tenant_id, staff.staff_id, credential_id  # type: ignore[arg-type]
    )
