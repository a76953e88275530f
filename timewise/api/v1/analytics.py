"""Attendance analytics and today's dashboard — each report checks the plan first."""

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from timewise.api.deps import ManagerAuth, Session
from timewise.features.access import require_feature
from timewise.features.plans import Feature
from timewise.services import analytics
from timewise.services.analytics import (
    DepartmentStats,
    LatenessReport,
    OverviewReport,
    StaffReport,
    TrendsReport,
)

router = APIRouter(prefix="/analytics", tags=["analytics"])
dashboard_router = APIRouter(prefix="/dashboard", tags=["dashboard"])

RangeParam = Query(default="30d", alias="range", pattern=r"^(7d|30d|90d|1y)$")


@router.get("/overview", response_model=OverviewReport)
async def overview(auth: ManagerAuth, session: Session, range_key: str = RangeParam) -> OverviewReport:
    await require_feature(
        session, auth.tenant_id, Feature.CAN_ACCESS_ANALYTICS, Feature.ANALYTICS_OVERVIEW
    )
    return await analytics.get_overview(session, auth.tenant_id, range_key)  # type: ignore[arg-type]


@router.get("/lateness", response_model=LatenessReport)
async def lateness(auth: ManagerAuth, session: Session, range_key: str = RangeParam) -> LatenessReport:
    await require_feature(
        session, auth.tenant_id, Feature.CAN_ACCESS_ANALYTICS, Feature.ANALYTICS_LATENESS
    )
    return await analytics.get_lateness(session, auth.tenant_id, range_key)  # type: ignore[arg-type]


@router.get("/trends", response_model=TrendsReport)
async def trends(auth: ManagerAuth, session: Session, range_key: str = RangeParam) -> TrendsReport:
    await require_feature(
        session, auth.tenant_id, Feature.CAN_ACCESS_ANALYTICS, Feature.ANALYTICS_TRENDS
    )
    return await analytics.get_trends(session, auth.tenant_id, range_key)  # type: ignore[arg-type]


@router.get("/departments", response_model=dict[str, list[DepartmentStats]])
async def departments(
    auth: ManagerAuth, session: Session, range_key: str = RangeParam
) -> dict[str, list[DepartmentStats]]:
    await require_feature(
        session, auth.tenant_id, Feature.CAN_ACCESS_ANALYTICS, Feature.ANALYTICS_DEPARTMENT
    )
    return {"departments": await analytics.get_departments(session, auth.tenant_id, range_key)}  # type: ignore[arg-type]


@router.get("/staff", response_model=StaffReport)
async def staff_performance(
    auth: ManagerAuth, session: Session, range_key: str = RangeParam
) -> StaffReport:
    await require_feature(
        session, auth.tenant_id, Feature.CAN_ACCESS_ANALYTICS, Feature.ANALYTICS_PERFORMANCE
    )
    return await analytics.get_staff_performance(session, auth.tenant_id, range_key)  # type: ignore[arg-type]


@router.get("/export")
async def export(auth: ManagerAuth, session: Session, range_key: str = RangeParam) -> StreamingResponse:
    await require_feature(session, auth.tenant_id, Feature.EXPORT_DATA)
    content = await analytics.export_csv(session, auth.tenant_id, range_key)  # type: ignore[arg-type]
    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=attendance-{range_key}.csv"},
    )


@dashboard_router.get("/stats")
async def dashboard_stats(auth: ManagerAuth, session: Session) -> dict:
    return await analytics.get_dashboard_stats(session, auth.tenant_id)  # type: ignore[arg-type]


@dashboard_router.get("/current-staff")
async def current_staff(auth: ManagerAuth, session: Session) -> dict:
    return await analytics.get_current_staff(session, auth.tenant_id)  # type: ignore[arg-type]


@dashboard_router.get("/absent-staff")
async def absent_staff(
    auth: ManagerAuth,
    session: Session,
    date: str | None = Query(default=None, max_length=10),
) -> dict:
    return await analytics.get_absent_staff(session, auth.tenant_id, date)  # type: ignore[arg-type]
