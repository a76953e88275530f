"""Tenant reports, the dashboard and their plan gates."""

from datetime import datetime

import pytest
from httpx import AsyncClient

from timewise.core.errors import NotFoundError, ValidationError
from timewise.features.plans import Plan
from timewise.models.attendance import AttendanceType
from timewise.models.base import utcnow
from timewise.services import analytics
from timewise.services.attendance import record_attendance

NOW = datetime(2026, 3, 10, 12, 0)  # a Tuesday


async def _seed(session, tenant, add_staff) -> None:
    """STAFF0001 late twice (20 and 90 minutes), leaving early today; STAFF0002 on time."""
    first, second = await add_staff(tenant, 2)
    for member, kind, when in (
        (first, AttendanceType.CHECK_IN, datetime(2026, 3, 9, 9, 20)),
        (first, AttendanceType.CHECK_IN, datetime(2026, 3, 10, 10, 30)),
        (first, AttendanceType.CHECK_OUT, datetime(2026, 3, 10, 16, 0)),
        (second, AttendanceType.CHECK_IN, datetime(2026, 3, 10, 8, 50)),
    ):
        await record_attendance(session, tenant.org, member, kind=kind, now=when)


def test_parse_range():
    assert analytics.parse_range(None) == ("30d", 30)
    assert analytics.parse_range("1y") == ("1y", 365)
    with pytest.raises(ValidationError):
        analytics.parse_range("2w")


@pytest.mark.asyncio
async def test_overview(session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.PROFESSIONAL)
    await _seed(session, tenant, add_staff)

    report = await analytics.get_overview(session, tenant.org.id, "7d", now=NOW)
    assert report.total_staff == 2
    assert report.total_attendance == 3
    assert report.average_attendance_rate == 21  # 3 of 14 staff-days
    assert report.late_arrivals == 2
    assert report.early_departures == 1
    assert report.absentees == 0
    assert len(report.daily) == 7
    assert report.daily[-1].date == "2026-03-10"
    assert (report.daily[-1].attendance, report.daily[-1].late) == (2, 1)
    assert (report.daily[-2].attendance, report.daily[-2].late) == (1, 1)


@pytest.mark.asyncio
async def test_lateness(session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.PROFESSIONAL)
    await _seed(session, tenant, add_staff)

    report = await analytics.get_lateness(session, tenant.org.id, "7d", now=NOW)
    assert report.total_late == 2
    assert report.late_percentage == 66.7
    assert report.average_delay == 55
    assert report.distribution == {"0-15": 0, "15-30": 1, "30-60": 0, "60+": 1}
    assert [(s.staff_id, s.count) for s in report.top_late_staff] == [("STAFF0001", 2)]
    assert report.daily_late == {"2026-03-09": 1, "2026-03-10": 1}
    assert report.recent_late[0].actual_time == "10:30"
    assert report.recent_late[0].delay == 90


@pytest.mark.asyncio
async def test_trends_and_weekdays(session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.ENTERPRISE)
    await _seed(session, tenant, add_staff)

    report = await analytics.get_trends(session, tenant.org.id, "7d", now=NOW)
    assert len(report.daily) == 7
    today = report.daily[-1]
    assert (today.check_ins, today.check_outs, today.on_time, today.late, today.early) == (
        2, 1, 1, 1, 1,
    )
    assert report.this_week[:2] == [1, 2]
    assert sum(report.last_week) == 0


@pytest.mark.asyncio
async def test_departments_and_staff(session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.ENTERPRISE)
    await _seed(session, tenant, add_staff)

    [dept] = await analytics.get_departments(session, tenant.org.id, "7d", now=NOW)
    assert dept.name == "Engineering"
    assert dept.staff_count == 2
    assert dept.attendance_rate == 21
    assert dept.punctuality_score == 33
    assert dept.late_count == 2

    report = await analytics.get_staff_performance(session, tenant.org.id, "7d", now=NOW)
    assert [s.staff_id for s in report.staff] == ["STAFF0001", "STAFF0002"]
    assert report.staff[0].status == "Poor"
    assert report.staff[1].punctuality_score == 100
    assert report.top_punctual.staff_id == "STAFF0002"
    assert [s.staff_id for s in report.needs_attention] == ["STAFF0001"]


@pytest.mark.asyncio
async def test_export_csv(session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.PROFESSIONAL)
    with pytest.raises(NotFoundError):
        await analytics.export_csv(session, tenant.org.id, "7d", now=NOW)

    await _seed(session, tenant, add_staff)
    lines = (await analytics.export_csv(session, tenant.org.id, "7d", now=NOW)).splitlines()
    assert lines[0] == "Date,Staff ID,Staff Name,Department,Check In,Check Out,Status"
    assert len(lines) == 4
    assert lines[1] == "2026-03-09,STAFF0001,Staff 1,Engineering,09:20,N/A,Late"
    assert "2026-03-10,STAFF0002,Staff 2,Engineering,08:50,N/A,On Time" in lines


@pytest.mark.asyncio
async def test_dashboard_stats(session, make_tenant, add_staff):
    tenant = await make_tenant()
    await _seed(session, tenant, add_staff)
    await add_staff(tenant, 1)

    stats = await analytics.get_dashboard_stats(session, tenant.org.id, now=NOW)
    assert stats["date"] == "2026-03-10"
    assert stats["stats"] == {
        "totalStaff": 3,
        "presentToday": 2,
        "currentlyPresent": 1,
        "lateToday": 1,
        "absentToday": 1,
        "earlyDepartureToday": 1,
    }
    assert [s["staffId"] for s in stats["absentStaff"]] == ["STAFF0003"]


@pytest.mark.asyncio
async def test_current_and_absent_staff(session, make_tenant, add_staff):
    tenant = await make_tenant()
    await _seed(session, tenant, add_staff)
    await add_staff(tenant, 1)

    current = await analytics.get_current_staff(session, tenant.org.id, now=NOW)
    assert current["date"] == "2026-03-10"
    assert [s["staffId"] for s in current["currentStaff"]] == ["STAFF0002"]

    today = await analytics.get_absent_staff(session, tenant.org.id, now=NOW)
    assert [s["staffId"] for s in today["absentStaff"]] == ["STAFF0003"]

    yesterday = await analytics.get_absent_staff(session, tenant.org.id, "2026-03-09")
    assert yesterday["date"] == "2026-03-09"
    assert [s["staffId"] for s in yesterday["absentStaff"]] == ["STAFF0002", "STAFF0003"]

    with pytest.raises(ValidationError):
        await analytics.get_absent_staff(session, tenant.org.id, "09/03/2026")


# ── HTTP gates ───────────────────────────────────────────────

@pytest.mark.asyncio
async def test_starter_without_trial_is_locked(client: AsyncClient, make_tenant):
    tenant = await make_tenant(plan=Plan.STARTER, trial=False)
    for path in ("overview", "lateness", "trends", "export"):
        resp = await client.get(f"/v1/analytics/{path}", headers=tenant.headers)
        assert resp.status_code == 403, path
        assert resp.json()["code"] == "FEATURE_LOCKED"

    # The dashboard is available on every plan
    resp = await client.get("/v1/dashboard/stats", headers=tenant.headers)
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_professional_gets_basic_reports(client: AsyncClient, session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.PROFESSIONAL)
    [member] = await add_staff(tenant)
    await record_attendance(session, tenant.org, member, kind=AttendanceType.CHECK_IN, now=utcnow())

    resp = await client.get("/v1/analytics/overview", params={"range": "7d"}, headers=tenant.headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["range"] == "7d"
    assert resp.json()["total_attendance"] == 1

    resp = await client.get("/v1/analytics/lateness", headers=tenant.headers)
    assert resp.status_code == 200

    resp = await client.get("/v1/analytics/trends", headers=tenant.headers)
    assert resp.status_code == 403
    assert resp.json()["details"]["recommendedPlan"] == "enterprise"

    resp = await client.get("/v1/analytics/export", params={"range": "7d"}, headers=tenant.headers)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "attendance-7d.csv" in resp.headers["content-disposition"]
    assert resp.text.splitlines()[1].split(",")[1] == member.staff_id


@pytest.mark.asyncio
async def test_enterprise_gets_everything(client: AsyncClient, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.ENTERPRISE)
    await add_staff(tenant, 2, department="Sales")
    for path in ("trends", "departments", "staff"):
        resp = await client.get(f"/v1/analytics/{path}", headers=tenant.headers)
        assert resp.status_code == 200, path
    resp = await client.get("/v1/analytics/departments", headers=tenant.headers)
    assert resp.json()["departments"][0]["name"] == "Sales"

    # Nothing recorded yet
    resp = await client.get("/v1/analytics/export", headers=tenant.headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_invalid_range_is_rejected(client: AsyncClient, make_tenant):
    tenant = await make_tenant(plan=Plan.ENTERPRISE)
    resp = await client.get("/v1/analytics/overview", params={"range": "2w"}, headers=tenant.headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_present_and_absent_lists_over_http(client: AsyncClient, session, make_tenant, add_staff):
    tenant = await make_tenant(plan=Plan.STARTER, trial=False)
    first, second = await add_staff(tenant, 2)
    await record_attendance(session, tenant.org, first, kind=AttendanceType.CHECK_IN, now=utcnow())

    resp = await client.get("/v1/dashboard/current-staff", headers=tenant.headers)
    assert resp.status_code == 200
    assert [s["staffId"] for s in resp.json()["currentStaff"]] == [first.staff_id]

    resp = await client.get("/v1/dashboard/absent-staff", headers=tenant.headers)
    assert [s["staffId"] for s in resp.json()["absentStaff"]] == [second.staff_id]

    resp = await client.get(
        "/v1/dashboard/absent-staff", params={"date": "2000-01-01"}, headers=tenant.headers
    )
    assert len(resp.json()["absentStaff"]) == 2

    resp = await client.get(
        "/v1/dashboard/absent-staff", params={"date": "yesterday"}, headers=tenant.headers
    )
    assert resp.status_code == 400

    resp = await client.get("/v1/dashboard/current-staff")
    assert resp.status_code == 401
