"""Attendance reporting for one organization, plus platform totals for owners.

Every tenant report reads through ``TenantDB`` and is cached per tenant for a
minute; a new check-in or check-out drops that tenant's cached reports.
"""

import csv
import io
import logging
import uuid
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel
from sqlalchemy import case, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from timewise.core import cache
from timewise.core.errors import NotFoundError, ValidationError
from timewise.core.tenant_db import TenantDB
from timewise.features.plans import PLAN_PRICES, Plan, normalize_plan
from timewise.models.attendance import AttendanceLog
from timewise.models.base import utcnow
from timewise.models.organization import Organization, OrganizationStatus
from timewise.models.staff import Staff
from timewise.models.subscription import ProcessedPayment, Subscription, SubscriptionStatus
from timewise.models.user import User, UserRole

logger = logging.getLogger(__name__)

RANGE_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
DEFAULT_RANGE = "30d"
DELAY_BUCKETS = ("0-15", "15-30", "30-60", "60+")
WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
EXPORT_HEADER = ["Date", "Staff ID", "Staff Name", "Department", "Check In", "Check Out", "Status"]


# ── Schemas ──────────────────────────────────────────────────

class DailyCount(BaseModel):
    date: str
    attendance: int
    late: int


class OverviewReport(BaseModel):
    range: str
    total_staff: int
    total_attendance: int
    average_attendance_rate: int
    late_arrivals: int
    early_departures: int
    absentees: int
    attendance_trend: float
    lateness_trend: float
    daily: list[DailyCount]


class LateStaff(BaseModel):
    staff_id: str
    name: str
    count: int


class LateArrival(BaseModel):
    staff_id: str
    staff_name: str
    department: str
    date: str
    expected_time: str
    actual_time: str
    delay: int


class LatenessReport(BaseModel):
    range: str
    total_late: int
    late_percentage: float
    average_delay: int
    distribution: dict[str, int]
    top_late_staff: list[LateStaff]
    daily_late: dict[str, int]
    recent_late: list[LateArrival]


class TrendPoint(BaseModel):
    date: str
    check_ins: int
    check_outs: int
    on_time: int
    late: int
    early: int


class TrendsReport(BaseModel):
    range: str
    daily: list[TrendPoint]
    weekday_labels: list[str]
    this_week: list[int]
    last_week: list[int]


class DepartmentStats(BaseModel):
    name: str
    staff_count: int
    attendance_rate: int
    punctuality_score: int
    late_count: int


class StaffPerformance(BaseModel):
    staff_id: str
    name: str
    department: str
    attendance_rate: int
    punctuality_score: int
    late_count: int
    status: str


class StaffReport(BaseModel):
    range: str
    staff: list[StaffPerformance]
    top_attendance: StaffPerformance | None
    top_punctual: StaffPerformance | None
    needs_attention: list[StaffPerformance]


class PlatformOverview(BaseModel):
    total_organizations: int
    active_organizations: int
    trial_organizations: int
    suspended_organizations: int
    total_active_users: int
    total_active_subscriptions: int
    total_revenue: int
    mrr: int
    daily_checkins: int
    plan_distribution: dict[str, int]


# ── Helpers ──────────────────────────────────────────────────

def parse_range(value: str | None) -> tuple[str, int]:
    key = value or DEFAULT_RANGE
    if key not in RANGE_DAYS:
        raise ValidationError(
            f"Invalid range '{key}'", details={"allowed": list(RANGE_DAYS)}
        )
    return key, RANGE_DAYS[key]


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def _to_local(value: datetime, tz: ZoneInfo) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(tz)


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def _punctuality(total: int, late: int) -> int:
    return round((total - late) / total * 100) if total else 100


def _performance_status(attendance_rate: int, punctuality: int) -> str:
    if attendance_rate >= 90 and punctuality >= 90:
        return "Excellent"
    if attendance_rate >= 75 and punctuality >= 75:
        return "Good"
    if attendance_rate >= 60 or punctuality >= 60:
        return "Fair"
    return "Poor"


class _Window:
    """Date strings bounding a report, in organization-local days."""

    def __init__(self, today: date, days: int) -> None:
        self.today = today
        self.days = days
        self.start = today - timedelta(days=days - 1)
        self.previous_start = self.start - timedelta(days=days)

    def dates(self) -> list[str]:
        return [(self.start + timedelta(days=i)).isoformat() for i in range(self.days)]


async def _load_org(session: AsyncSession, tenant_id: uuid.UUID) -> Organization:
    org = await session.get(Organization, tenant_id)
    if org is None:
        raise NotFoundError("Organization not found")
    return org


def local_today(org: Organization, now: datetime | None = None) -> date:
    return _to_local(now or utcnow(), _zone(org.get_settings().timezone)).date()


async def _records_between(db: TenantDB, start: str, end: str) -> list[AttendanceLog]:
    return await db.find(
        AttendanceLog,
        None,
        AttendanceLog.date >= start,
        AttendanceLog.date <= end,
        AttendanceLog.check_in_time.is_not(None),  # type: ignore[union-attr]
        order_by=AttendanceLog.date,
    )


# ── Tenant reports ───────────────────────────────────────────

async def get_overview(
    session: AsyncSession, tenant_id: uuid.UUID, range_key: str | None = None,
    now: datetime | None = None,
) -> OverviewReport:
    key, days = parse_range(range_key)
    cache_key = ("analytics", tenant_id, "overview", key)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    org = await _load_org(session, tenant_id)
    window = _Window(local_today(org, now), days)
    db = TenantDB(session, tenant_id)

    total_staff = await db.count(Staff, {"is_active": True})
    records = await _records_between(db, window.start.isoformat(), window.today.isoformat())
    previous = await _records_between(
        db, window.previous_start.isoformat(), (window.start - timedelta(days=1)).isoformat()
    )

    late = sum(1 for r in records if r.is_late)
    early = sum(1 for r in records if r.check_out_time and r.is_early)
    rate = _percent(len(records), total_staff * days)
    previous_rate = len(previous) / (total_staff * days) * 100 if total_staff else 0
    previous_late = sum(1 for r in previous if r.is_late)
    if previous_late:
        lateness_trend = round((late - previous_late) / previous_late * 100, 1)
    else:
        lateness_trend = 100.0 if late else 0.0

    today_str = window.today.isoformat()
    present_today = sum(1 for r in records if r.date == today_str)

    rows = await db.aggregate(
        AttendanceLog,
        [
            AttendanceLog.date,
            func.count(AttendanceLog.id),
            func.sum(case((AttendanceLog.is_late.is_(True), 1), else_=0)),  # type: ignore[attr-defined]
        ],
        None,
        AttendanceLog.date >= window.start.isoformat(),
        AttendanceLog.check_in_time.is_not(None),  # type: ignore[union-attr]
        group_by=[AttendanceLog.date],
        order_by=AttendanceLog.date,
    )
    by_date = {row[0]: (int(row[1]), int(row[2] or 0)) for row in rows}

    report = OverviewReport(
        range=key,
        total_staff=total_staff,
        total_attendance=len(records),
        average_attendance_rate=rate,
        late_arrivals=late,
        early_departures=early,
        absentees=max(0, total_staff - present_today),
        attendance_trend=round(rate - previous_rate, 1),
        lateness_trend=lateness_trend,
        daily=[
            DailyCount(date=d, attendance=by_date.get(d, (0, 0))[0], late=by_date.get(d, (0, 0))[1])
            for d in window.dates()
        ],
    )
    cache.put(cache_key, report)
    return report


async def get_lateness(
    session: AsyncSession, tenant_id: uuid.UUID, range_key: str | None = None,
    now: datetime | None = None,
) -> LatenessReport:
    key, days = parse_range(range_key)
    cache_key = ("analytics", tenant_id, "lateness", key)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    org = await _load_org(session, tenant_id)
    settings = org.get_settings()
    tz = _zone(settings.timezone)
    threshold = _minutes(settings.lateness_time)
    window = _Window(local_today(org, now), days)
    records = await _records_between(
        TenantDB(session, tenant_id), window.start.isoformat(), window.today.isoformat()
    )
    late_records = [r for r in records if r.is_late]

    distribution = dict.fromkeys(DELAY_BUCKETS, 0)
    delays: dict[uuid.UUID, int] = {}
    for record in late_records:
        local = _to_local(record.check_in_time, tz)  # type: ignore[arg-type]
        delay = max(0, local.hour * 60 + local.minute - threshold)
        delays[record.id] = delay
        if delay <= 15:
            distribution["0-15"] += 1
        elif delay <= 30:
            distribution["15-30"] += 1
        elif delay <= 60:
            distribution["30-60"] += 1
        else:
            distribution["60+"] += 1

    names = {r.staff_id: r.staff_name or r.staff_id for r in late_records}
    counts = Counter(r.staff_id for r in late_records)
    recent = sorted(late_records, key=lambda r: r.check_in_time, reverse=True)[:20]  # type: ignore[arg-type, return-value]

    report = LatenessReport(
        range=key,
        total_late=len(late_records),
        late_percentage=round(len(late_records) / len(records) * 100, 1) if records else 0.0,
        average_delay=round(sum(delays.values()) / len(delays)) if delays else 0,
        distribution=distribution,
        top_late_staff=[
            LateStaff(staff_id=sid, name=names[sid], count=n) for sid, n in counts.most_common(10)
        ],
        daily_late=dict(sorted(Counter(r.date for r in late_records).items())),
        recent_late=[
            LateArrival(
                staff_id=r.staff_id,
                staff_name=r.staff_name or r.staff_id,
                department=r.department or "N/A",
                date=r.date,
                expected_time=settings.lateness_time,
                actual_time=_to_local(r.check_in_time, tz).strftime("%H:%M"),  # type: ignore[arg-type]
                delay=delays[r.id],
            )
            for r in recent
        ],
    )
    cache.put(cache_key, report)
    return report


async def get_trends(
    session: AsyncSession, tenant_id: uuid.UUID, range_key: str | None = None,
    now: datetime | None = None,
) -> TrendsReport:
    key, days = parse_range(range_key)
    cache_key = ("analytics", tenant_id, "trends", key)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    org = await _load_org(session, tenant_id)
    window = _Window(local_today(org, now), max(days, 14))
    records = await _records_between(
        TenantDB(session, tenant_id), window.start.isoformat(), window.today.isoformat()
    )

    per_day: dict[str, TrendPoint] = {}
    this_week = [0] * 7
    last_week = [0] * 7
    week_start = window.today - timedelta(days=6)
    previous_week_start = week_start - timedelta(days=7)
    for record in records:
        point = per_day.setdefault(
            record.date,
            TrendPoint(date=record.date, check_ins=0, check_outs=0, on_time=0, late=0, early=0),
        )
        point.check_ins += 1
        if record.check_out_time:
            point.check_outs += 1
        if record.is_late:
            point.late += 1
        else:
            point.on_time += 1
        if record.is_early:
            point.early += 1

        day = date.fromisoformat(record.date)
        if day >= week_start:
            this_week[day.weekday()] += 1
        elif day >= previous_week_start:
            last_week[day.weekday()] += 1

    report = TrendsReport(
        range=key,
        daily=[
            per_day.get(d) or TrendPoint(date=d, check_ins=0, check_outs=0, on_time=0, late=0, early=0)
            for d in window.dates()[-days:]
        ],
        weekday_labels=list(WEEKDAYS),
        this_week=this_week,
        last_week=last_week,
    )
    cache.put(cache_key, report)
    return report


async def get_departments(
    session: AsyncSession, tenant_id: uuid.UUID, range_key: str | None = None,
    now: datetime | None = None,
) -> list[DepartmentStats]:
    key, days = parse_range(range_key)
    cache_key = ("analytics", tenant_id, "departments", key)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    org = await _load_org(session, tenant_id)
    window = _Window(local_today(org, now), days)
    db = TenantDB(session, tenant_id)
    staff = await db.find(Staff, {"is_active": True})
    records = await _records_between(db, window.start.isoformat(), window.today.isoformat())

    headcount = Counter(s.department or "Unassigned" for s in staff)
    attended: Counter[str] = Counter()
    late: Counter[str] = Counter()
    for record in records:
        dept = record.department or "Unassigned"
        attended[dept] += 1
        if record.is_late:
            late[dept] += 1

    report = [
        DepartmentStats(
            name=dept,
            staff_count=count,
            attendance_rate=min(100, _percent(attended[dept], count * days)),
            punctuality_score=_punctuality(attended[dept], late[dept]),
            late_count=late[dept],
        )
        for dept, count in sorted(headcount.items())
    ]
    cache.put(cache_key, report)
    return report


async def get_staff_performance(
    session: AsyncSession, tenant_id: uuid.UUID, range_key: str | None = None,
    now: datetime | None = None,
) -> StaffReport:
    key, days = parse_range(range_key)
    cache_key = ("analytics", tenant_id, "staff", key)
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    org = await _load_org(session, tenant_id)
    window = _Window(local_today(org, now), days)
    db = TenantDB(session, tenant_id)
    staff = await db.find(Staff, {"is_active": True}, order_by=Staff.name)
    records = await _records_between(db, window.start.isoformat(), window.today.isoformat())

    attended: Counter[str] = Counter(r.staff_id for r in records)
    late: Counter[str] = Counter(r.staff_id for r in records if r.is_late)

    rows = []
    for member in staff:
        rate = min(100, _percent(attended[member.staff_id], days))
        punctuality = _punctuality(attended[member.staff_id], late[member.staff_id])
        rows.append(StaffPerformance(
            staff_id=member.staff_id,
            name=member.name,
            department=member.department or "N/A",
            attendance_rate=rate,
            punctuality_score=punctuality,
            late_count=late[member.staff_id],
            status=_performance_status(rate, punctuality),
        ))
    rows.sort(key=lambda r: r.attendance_rate, reverse=True)

    report = StaffReport(
        range=key,
        staff=rows,
        top_attendance=rows[0] if rows else None,
        top_punctual=max(rows, key=lambda r: r.punctuality_score) if rows else None,
        needs_attention=sorted(
            (r for r in rows if r.late_count or r.status == "Poor"),
            key=lambda r: (-r.late_count, r.attendance_rate),
        )[:5],
    )
    cache.put(cache_key, report)
    return report


async def export_csv(
    session: AsyncSession, tenant_id: uuid.UUID, range_key: str | None = None,
    now: datetime | None = None,
) -> str:
    """Attendance rows for the range as CSV text; 404 when there are none."""
    _, days = parse_range(range_key)
    org = await _load_org(session, tenant_id)
    tz = _zone(org.get_settings().timezone)
    window = _Window(local_today(org, now), days)
    db = TenantDB(session, tenant_id)
    records = await _records_between(db, window.start.isoformat(), window.today.isoformat())
    if not records:
        raise NotFoundError("No data available for the selected date range")
    staff = {s.staff_id: s for s in await db.find(Staff)}

    def _fmt(value: datetime | None) -> str:
        return _to_local(value, tz).strftime("%H:%M") if value else "N/A"

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for record in records:
        member = staff.get(record.staff_id)
        writer.writerow([
            record.date,
            record.staff_id,
            member.name if member else record.staff_name or "Unknown",
            (member.department if member else record.department) or "N/A",
            _fmt(record.check_in_time),
            _fmt(record.check_out_time),
            "Late" if record.is_late else "Early" if record.is_early else "On Time",
        ])
    return output.getvalue()


# ── Dashboard and history (not cached) ──────────────────────

def _present_row(r: AttendanceLog) -> dict:
    return {
        "staffId": r.staff_id,
        "name": r.staff_name,
        "department": r.department,
        "checkInTime": r.check_in_time,
        "isLate": r.is_late,
    }


def _absent_row(s: Staff) -> dict:
    return {"staffId": s.staff_id, "name": s.name, "department": s.department}


async def get_dashboard_stats(
    session: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None
) -> dict:
    org = await _load_org(session, tenant_id)
    today = local_today(org, now).isoformat()
    db = TenantDB(session, tenant_id)
    staff = await db.find(Staff, {"is_active": True}, order_by=Staff.name)
    records = await db.find(
        AttendanceLog, {"date": today}, order_by=AttendanceLog.check_in_time
    )

    checked_in = {r.staff_id for r in records if r.check_in_time}
    current = [r for r in records if r.check_in_time and not r.check_out_time]
    early = [r for r in records if r.check_out_time and r.is_early]
    absent = [s for s in staff if s.staff_id not in checked_in]

    return {
        "success": True,
        "date": today,
        "stats": {
            "totalStaff": len(staff),
            "presentToday": len(checked_in),
            "currentlyPresent": len(current),
            "lateToday": sum(1 for r in records if r.is_late),
            "absentToday": len(absent),
            "earlyDepartureToday": len(early),
        },
        "currentStaff": [_present_row(r) for r in current],
        "absentStaff": [_absent_row(s) for s in absent],
        "earlyDepartures": [
            {
                "staffId": r.staff_id,
                "name": r.staff_name,
                "department": r.department,
                "checkOutTime": r.check_out_time,
                "isEarly": r.is_early,
            }
            for r in early
        ],
    }


async def get_current_staff(
    session: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None
) -> dict:
    """Staff who checked in today and have not checked out yet."""
    org = await _load_org(session, tenant_id)
    today = local_today(org, now).isoformat()
    records = await TenantDB(session, tenant_id).find(
        AttendanceLog,
        {"date": today, "check_out_time": None},
        AttendanceLog.check_in_time.is_not(None),  # type: ignore[union-attr]
        order_by=AttendanceLog.check_in_time,
    )
    return {"date": today, "currentStaff": [_present_row(r) for r in records]}


async def get_absent_staff(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    on_date: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Active staff with no check-in on ``on_date`` (default: today)."""
    if on_date:
        try:
            day = date.fromisoformat(on_date).isoformat()
        except ValueError as exc:
            raise ValidationError("Dates must be formatted as YYYY-MM-DD") from exc
    else:
        day = local_today(await _load_org(session, tenant_id), now).isoformat()

    db = TenantDB(session, tenant_id)
    checked_in = {
        r.staff_id
        for r in await db.find(AttendanceLog, {"date": day})
        if r.check_in_time
    }
    staff = await db.find(Staff, {"is_active": True}, order_by=Staff.name)
    return {
        "date": day,
        "absentStaff": [_absent_row(s) for s in staff if s.staff_id not in checked_in],
    }


async def get_history(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    on_date: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    staff_id: str | None = None,
    now: datetime | None = None,
) -> list[AttendanceLog]:
    """Records for one day, a date range, or (default) today; newest day first."""
    for value in (on_date, start_date, end_date):
        if value:
            try:
                date.fromisoformat(value)
            except ValueError as exc:
                raise ValidationError("Dates must be formatted as YYYY-MM-DD") from exc

    db = TenantDB(session, tenant_id)
    filters: dict = {}
    where = []
    if on_date:
        filters["date"] = on_date
    elif start_date and end_date:
        where = [AttendanceLog.date >= start_date, AttendanceLog.date <= end_date]
    else:
        org = await _load_org(session, tenant_id)
        filters["date"] = local_today(org, now).isoformat()
    if staff_id:
        filters["staff_id"] = staff_id.strip().upper()
    return await db.find(
        AttendanceLog,
        filters,
        *where,
        order_by=(AttendanceLog.date.desc(), AttendanceLog.check_in_time),  # type: ignore[attr-defined]
    )


# ── Platform (super admin) ───────────────────────────────────

async def get_platform_overview(
    session: AsyncSession, now: datetime | None = None
) -> PlatformOverview:
    cache_key = ("platform", "all", "overview")
    cached = cache.get(cache_key, ttl=300)
    if cached is not None:
        return cached

    async def _count(model, *where) -> int:
        return (await session.execute(
            select(func.count()).select_from(model).where(*where)
        )).scalar_one()

    org_status = dict((await session.execute(
        select(Organization.status, func.count()).group_by(Organization.status)
    )).all())
    active_paid = (await session.execute(
        select(Subscription.plan, func.count())
        .where(
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.plan.in_([Plan.PROFESSIONAL, Plan.ENTERPRISE]),  # type: ignore[attr-defined]
        )
        .group_by(Subscription.plan)
    )).all()
    distribution = dict((await session.execute(
        select(Organization.subscription_tier, func.count()).group_by(Organization.subscription_tier)
    )).all())
    revenue = (await session.execute(
        select(func.coalesce(func.sum(ProcessedPayment.amount), 0))
    )).scalar_one()

    report = PlatformOverview(
        total_organizations=sum(org_status.values()),
        active_organizations=org_status.get(OrganizationStatus.ACTIVE, 0),
        trial_organizations=org_status.get(OrganizationStatus.TRIAL, 0),
        suspended_organizations=org_status.get(OrganizationStatus.SUSPENDED, 0),
        total_active_users=await _count(
            User, User.is_active.is_(True), User.role != UserRole.SUPER_ADMIN  # type: ignore[attr-defined]
        ),
        total_active_subscriptions=sum(n for _, n in active_paid),
        total_revenue=int(revenue),
        mrr=sum(PLAN_PRICES[normalize_plan(plan)] * n for plan, n in active_paid),
        daily_checkins=await _count(
            AttendanceLog, AttendanceLog.date == (now or utcnow()).date().isoformat()
        ),
        plan_distribution={str(k): v for k, v in distribution.items()},
    )
    cache.put(cache_key, report)
    return report
