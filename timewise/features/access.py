"""Tenant-level feature gate backed by the subscription table."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from timewise.core.config import get_settings
from timewise.core.errors import DatabaseError, FeatureLockedError, StaffLimitError
from timewise.core.tenant_db import TenantDB
from timewise.features.plans import (
    Feature,
    Plan,
    can_add_staff,
    can_use_method,
    get_allowed_methods,
    get_feature_gate_message,
    get_max_staff,
    get_plan_features,
    get_recommended_plan,
    has_feature_access,
    normalize_plan,
)
from timewise.models.staff import Staff
from timewise.models.subscription import Subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanState:
    """The three inputs every gate decision needs."""

    plan: Plan
    is_trial_active: bool
    trial_end_date: datetime | None = None


_NO_SUBSCRIPTION = PlanState(plan=Plan.STARTER, is_trial_active=False)


async def get_plan_state(session: AsyncSession, tenant_id: uuid.UUID) -> PlanState:
    """Resolve the tenant's plan; a missing subscription means starter without trial."""
    sub = await TenantDB(session, tenant_id).find_one(Subscription)
    if sub is None:
        return _NO_SUBSCRIPTION
    return PlanState(
        plan=normalize_plan(sub.plan),
        is_trial_active=sub.is_trial_active,
        trial_end_date=sub.trial_end_date,
    )


async def _gate_state(session: AsyncSession, tenant_id: uuid.UUID) -> PlanState:
    """Plan state for a gate decision. Fails closed to starter without trial."""
    try:
        return await get_plan_state(session, tenant_id)
    except (SQLAlchemyError, DatabaseError):
        logger.exception("Plan lookup failed", extra={"tenant_id": tenant_id})
        return _NO_SUBSCRIPTION


async def require_feature(
    session: AsyncSession, tenant_id: uuid.UUID, *features: Feature
) -> PlanState:
    """Raise ``FeatureLockedError`` unless every feature is unlocked."""
    state = await _gate_state(session, tenant_id)
    dev = get_settings().is_development
    for feature in features:
        if not has_feature_access(state.plan, feature, state.is_trial_active, dev):
            logger.info(
                "Feature %s locked on plan %s", feature, state.plan,
                extra={"tenant_id": tenant_id},
            )
            raise FeatureLockedError(
                get_feature_gate_message(feature),
                details={
                    "feature": feature.value,
                    "currentPlan": state.plan.value,
                    "recommendedPlan": get_recommended_plan(feature).value,
                    "upgradeUrl": "/dashboard/subscription",
                },
            )
    return state


async def require_method(
    session: AsyncSession, tenant_id: uuid.UUID, method: str
) -> None:
    state = await _gate_state(session, tenant_id)
    if not can_use_method(state.plan, method, state.is_trial_active, get_settings().is_development):
        raise FeatureLockedError(
            f"Check-in method '{method}' is not available on your current plan",
            details={
                "method": method,
                "currentPlan": state.plan.value,
                "allowedMethods": get_allowed_methods(state.plan, state.is_trial_active),
                "upgradeUrl": "/dashboard/subscription",
            },
        )


async def require_staff_capacity(session: AsyncSession, tenant_id: uuid.UUID) -> None:
    """Raise ``StaffLimitError`` when the tenant may not add another staff member."""
    state = await _gate_state(session, tenant_id)
    dev = get_settings().is_development
    current = await TenantDB(session, tenant_id).count(Staff, {"is_active": True})
    if can_add_staff(state.plan, current, state.is_trial_active, dev):
        return
    max_allowed = get_max_staff(state.plan, dev)
    if state.plan is Plan.STARTER and not state.is_trial_active:
        message = "Your trial has ended. Upgrade to add staff members."
    else:
        message = f"You have reached the maximum of {max_allowed} staff members on your plan"
    raise StaffLimitError(
        message,
        details={
            "currentCount": current,
            "maxAllowed": max_allowed,
            "currentPlan": state.plan.value,
            "upgradeUrl": "/dashboard/subscription",
        },
    )


async def get_tenant_features(session: AsyncSession, tenant_id: uuid.UUID) -> dict:
    """Feature map for the dashboard, with trial overrides applied."""
    state = await _gate_state(session, tenant_id)
    dev = get_settings().is_development
    features: dict[str, bool | int] = {}
    for feature in get_plan_features(state.plan):
        if feature is Feature.MAX_STAFF:
            features[feature.value] = get_max_staff(state.plan, dev)
        else:
            features[feature.value] = has_feature_access(
                state.plan, feature, state.is_trial_active, dev
            )
    return {
        "plan": state.plan.value,
        "is_trial_active": state.is_trial_active,
        "features": features,
        "allowed_methods": (
            get_allowed_methods(Plan.ENTERPRISE) if dev
            else get_allowed_methods(state.plan, state.is_trial_active)
        ),
    }
