"""V1 API router aggregation."""

from fastapi import APIRouter

from timewise.api.v1.analytics import dashboard_router
from timewise.api.v1.analytics import router as analytics_router
from timewise.api.v1.attendance import router as attendance_router
from timewise.api.v1.auth import router as auth_router
from timewise.api.v1.cron import router as cron_router
from timewise.api.v1.features import router as features_router
from timewise.api.v1.organization import router as organization_router
from timewise.api.v1.owner import router as owner_router
from timewise.api.v1.staff import router as staff_router
from timewise.api.v1.subscription import payments_router
from timewise.api.v1.subscription import router as subscription_router
from timewise.api.v1.system import router as system_router
from timewise.api.v1.webhooks import router as webhooks_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(auth_router)
v1_router.include_router(organization_router)
v1_router.include_router(staff_router)
v1_router.include_router(attendance_router)
v1_router.include_router(dashboard_router)
v1_router.include_router(analytics_router)
v1_router.include_router(features_router)
v1_router.include_router(subscription_router)
v1_router.include_router(payments_router)
v1_router.include_router(webhooks_router)
v1_router.include_router(cron_router)
v1_router.include_router(owner_router)
v1_router.include_router(system_router)
