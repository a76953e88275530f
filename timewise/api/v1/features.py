"""Feature map for the signed-in organization and the public price list."""

from fastapi import APIRouter

from timewise.api.deps import Session, TenantAuth
from timewise.features.access import get_tenant_features
from timewise.features.plans import (
    PLAN_FEATURES,
    PLAN_PRICES,
    TRIAL_DAYS,
    UNLIMITED,
    Feature,
    Plan,
    get_allowed_methods,
)

router = APIRouter(tags=["features"])


@router.get("/features")
async def list_features(auth: TenantAuth, session: Session) -> dict:
    return await get_tenant_features(session, auth.tenant_id)  # type: ignore[arg-type]


@router.get("/pricing")
async def pricing() -> dict:
    plans = []
    for plan in Plan:
        features = PLAN_FEATURES[plan]
        max_staff = int(features[Feature.MAX_STAFF])
        plans.append({
            "id": plan.value,
            "price": PLAN_PRICES[plan],
            "currency": "NGN",
            "interval": "month",
            "max_staff": None if max_staff == UNLIMITED else max_staff,
            "check_in_methods": get_allowed_methods(plan),
            "features": {
                f.value: v for f, v in features.items() if f is not Feature.MAX_STAFF
            },
        })
    return {"trial_days": TRIAL_DAYS, "plans": plans}
