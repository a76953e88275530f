"""Kiosk check-in / check-out, fingerprint lookup, today's status and attendance history."""

import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from timewise.api.deps import ManagerAuth, Session
from timewise.core.rate_limit import RateLimit, RateLimitPresets
from timewise.features.access import require_feature
from timewise.features.plans import Feature
from timewise.models.attendance import AttendanceRead, AttendanceType
from timewise.models.organization import CheckInMethod
from timewise.services import analytics, biometrics
from timewise.services.attendance import get_today_status, record_attendance, resolve_staff

router = APIRouter(prefix="/attendance", tags=["attendance"])


class StaffLookup(BaseModel):
    staff_id: str | None = Field(default=None, max_length=32)
    tenant_id: uuid.UUID | None = None
    qr_data: str | None = Field(default=None, max_length=2048)


class FingerprintAssertion(BaseModel):
    credential_id: str = Field(min_length=1, max_length=512)
    client_data_json: str | None = Field(default=None, max_length=8192)
    authenticator_data: str | None = Field(default=None, max_length=8192)
    signature: str | None = Field(default=None, max_length=2048)
    user_handle: str | None = Field(default=None, max_length=512)


class CheckInRequest(StaffLookup):
    type: AttendanceType = AttendanceType.CHECK_IN
    method: CheckInMethod = CheckInMethod.MANUAL
    photo: str | None = None
    assertion: FingerprintAssertion | None = None


class KioskCredential(BaseModel):
    credential_id: str
    device_name: str


class KioskCredentialList(BaseModel):
    success: bool = True
    credentials: list[KioskCredential]
    has_fingerprint: bool


class HistoryResponse(BaseModel):
    success: bool = True
    attendance: list[AttendanceRead]
    filters: dict


@router.post(
    "/check-in",
    dependencies=[Depends(RateLimit(RateLimitPresets.CHECK_IN))],
)
async def check_in(body: CheckInRequest, session: Session) -> dict:
    """Record a check-in or check-out. Public: called from unlocked kiosks."""
    org, staff = await resolve_staff(
        session, staff_id=body.staff_id, tenant_id=body.tenant_id, qr_data=body.qr_data
    )
    return await record_attendance(
        session, org, staff, kind=body.type, method=body.method, photo=body.photo,
        assertion=body.assertion.model_dump() if body.assertion else None,
    )


@router.post("/status")
async def attendance_status(body: StaffLookup, session: Session) -> dict:
    org, staff = await resolve_staff(
        session, staff_id=body.staff_id, tenant_id=body.tenant_id, qr_data=body.qr_data
    )
    return await get_today_status(session, org, staff)


@router.post(
    "/credentials",
    response_model=KioskCredentialList,
    dependencies=[Depends(RateLimit(RateLimitPresets.CHECK_IN))],
)
async def kiosk_credentials(body: StaffLookup, session: Session) -> KioskCredentialList:
    """Credential ids the kiosk offers to the authenticator; no public keys."""
    org, staff = await resolve_staff(
        session, staff_id=body.staff_id, tenant_id=body.tenant_id, qr_data=body.qr_data
    )
    credentials = [
        KioskCredential(credential_id=c.credential_id, device_name=c.device_name)
        for c in await biometrics.list_credentials(session, org.id, staff.staff_id)
    ]
    return KioskCredentialList(credentials=credentials, has_fingerprint=bool(credentials))


@router.get("/history", response_model=HistoryResponse)
async def attendance_history(
    auth: ManagerAuth,
    session: Session,
    date: str | None = Query(default=None, max_length=10),
    start_date: str | None = Query(default=None, max_length=10),
    end_date: str | None = Query(default=None, max_length=10),
    staff_id: str | None = Query(default=None, max_length=32),
) -> HistoryResponse:
    await require_feature(session, auth.tenant_id, Feature.CAN_ACCESS_HISTORY)
    records = await analytics.get_history(
        session,
        auth.tenant_id,  # type: ignore[arg-type]
        on_date=date,
        start_date=start_date,
        end_date=end_date,
        staff_id=staff_id,
    )
    return HistoryResponse(
        attendance=[AttendanceRead.model_validate(r) for r in records],
        filters={
            "date": date, "start_date": start_date, "end_date": end_date, "staff_id": staff_id,
        },
    )
