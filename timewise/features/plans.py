"""Plan catalogue and the pure feature-gate rules.

Nothing in here touches the database; ``timewise.features.access`` loads a
tenant's subscription and feeds it through these functions.
"""

import logging
import math
from datetime import datetime, timedelta
from enum import StrEnum

from timewise.models.base import utcnow

logger = logging.getLogger(__name__)

TRIAL_DAYS = 14
BILLING_PERIOD_DAYS = 30
UNLIMITED = -1


class Plan(StrEnum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class Feature(StrEnum):
    MAX_STAFF = "max_staff"
    CAN_ADD_STAFF = "can_add_staff"
    CAN_EDIT_STAFF = "can_edit_staff"
    QR_CHECK_IN = "qr_check_in"
    MANUAL_CHECK_IN = "manual_check_in"
    FINGERPRINT_CHECK_IN = "fingerprint_check_in"
    PHOTO_VERIFICATION = "photo_verification"
    CAN_ACCESS_ANALYTICS = "can_access_analytics"
    CAN_ACCESS_HISTORY = "can_access_history"
    CAN_ACCESS_REPORTS = "can_access_reports"
    EXPORT_DATA = "export_data"
    ANALYTICS_OVERVIEW = "analytics_overview"
    ANALYTICS_LATENESS = "analytics_lateness"
    ANALYTICS_TRENDS = "analytics_trends"
    ANALYTICS_DEPARTMENT = "analytics_department"
    ANALYTICS_PERFORMANCE = "analytics_performance"
    PRIORITY_SUPPORT = "priority_support"


PLAN_RANK: dict[Plan, int] = {
    Plan.STARTER: 0,
    Plan.PROFESSIONAL: 1,
    Plan.ENTERPRISE: 2,
}

_ALL_BOOLEAN = {f: True for f in Feature if f is not Feature.MAX_STAFF}

# Maps plan -> feature -> bool, or int for MAX_STAFF (-1 = unlimited).
PLAN_FEATURES: dict[Plan, dict[Feature, bool | int]] = {
    Plan.STARTER: {
        **{f: False for f in _ALL_BOOLEAN},
        Feature.MAX_STAFF: 10,
        Feature.QR_CHECK_IN: True,
        Feature.MANUAL_CHECK_IN: True,
    },
    Plan.PROFESSIONAL: {
        **_ALL_BOOLEAN,
        Feature.MAX_STAFF: 50,
        Feature.FINGERPRINT_CHECK_IN: False,
        Feature.ANALYTICS_TRENDS: False,
        Feature.ANALYTICS_DEPARTMENT: False,
        Feature.ANALYTICS_PERFORMANCE: False,
    },
    Plan.ENTERPRISE: {
        **_ALL_BOOLEAN,
        Feature.MAX_STAFF: UNLIMITED,
    },
}

# Monthly price in naira; Paystack amounts are in kobo (x100).
PLAN_PRICES: dict[Plan, int] = {
    Plan.STARTER: 0,
    Plan.PROFESSIONAL: 5000,
    Plan.ENTERPRISE: 10000,
}

# Check-in methods each plan may use (mirrors the check-in features above).
METHOD_FEATURES: dict[str, Feature] = {
    "qr": Feature.QR_CHECK_IN,
    "manual": Feature.MANUAL_CHECK_IN,
    "photo": Feature.PHOTO_VERIFICATION,
    "fingerprint": Feature.FINGERPRINT_CHECK_IN,
}

_GATE_MESSAGES: dict[Feature, str] = {
    Feature.CAN_ADD_STAFF: "Upgrade to add more staff members",
    Feature.CAN_EDIT_STAFF: "Upgrade to edit staff details",
    Feature.FINGERPRINT_CHECK_IN: "Fingerprint check-in is available on the Enterprise plan",
    Feature.PHOTO_VERIFICATION: "Photo verification is available on the Professional plan and above",
    Feature.CAN_ACCESS_ANALYTICS: "Upgrade to Professional to access analytics",
    Feature.CAN_ACCESS_HISTORY: "Upgrade to Professional to view attendance history",
    Feature.CAN_ACCESS_REPORTS: "Upgrade to Professional to access reports",
    Feature.EXPORT_DATA: "Upgrade to Professional to export data",
    Feature.ANALYTICS_OVERVIEW: "Upgrade to Professional to view the analytics overview",
    Feature.ANALYTICS_LATENESS: "Upgrade to Professional to view lateness analysis",
    Feature.ANALYTICS_TRENDS: "Upgrade to Enterprise to view attendance trends",
    Feature.ANALYTICS_DEPARTMENT: "Upgrade to Enterprise to view department analytics",
    Feature.ANALYTICS_PERFORMANCE: "Upgrade to Enterprise to view staff performance",
    Feature.PRIORITY_SUPPORT: "Upgrade to Professional for priority support",
}

_ENTERPRISE_ONLY = {
    Feature.FINGERPRINT_CHECK_IN,
    Feature.ANALYTICS_TRENDS,
    Feature.ANALYTICS_DEPARTMENT,
    Feature.ANALYTICS_PERFORMANCE,
}


def normalize_plan(plan: str | None) -> Plan:
    """Return ``plan`` as a ``Plan``; unknown or missing values fall back to starter."""
    try:
        return Plan(plan)  # type: ignore[arg-type]
    except ValueError:
        logger.warning("Unknown subscription plan %r, treating as starter", plan)
        return Plan.STARTER


def is_valid_plan(plan: str | None) -> bool:
    return plan in PLAN_RANK


def plan_rank(plan: str) -> int:
    return PLAN_RANK[normalize_plan(plan)]


def get_plan_features(plan: str | None) -> dict[Feature, bool | int]:
    return dict(PLAN_FEATURES[normalize_plan(plan)])


def has_feature_access(
    plan: str | None,
    feature: Feature | str,
    is_trial_active: bool = False,
    is_development: bool = False,
) -> bool:
    """Can a tenant on ``plan`` use ``feature``?

    Development mode always answers yes. A starter tenant inside its trial
    gets every feature.
    """
    if is_development:
        return True
    resolved = normalize_plan(plan)
    if resolved is Plan.STARTER and is_trial_active:
        return True
    value = PLAN_FEATURES[resolved].get(Feature(feature), False)
    if isinstance(value, bool):
        return value
    return value != 0


def get_max_staff(plan: str | None, is_development: bool = False) -> int:
    if is_development:
        return UNLIMITED
    return int(PLAN_FEATURES[normalize_plan(plan)][Feature.MAX_STAFF])


def can_add_staff(
    plan: str | None,
    current_count: int,
    is_trial_active: bool = False,
    is_development: bool = False,
) -> bool:
    if is_development:
        return True
    resolved = normalize_plan(plan)
    # Lapsed starter trials are locked out of staff management entirely
    if resolved is Plan.STARTER and not is_trial_active:
        return False
    max_staff = get_max_staff(resolved)
    if max_staff == UNLIMITED:
        return True
    return current_count < max_staff


def get_allowed_methods(plan: str | None, is_trial_active: bool = False) -> list[str]:
    return [
        method
        for method, feature in METHOD_FEATURES.items()
        if has_feature_access(plan, feature, is_trial_active)
    ]


def can_use_method(
    plan: str | None,
    method: str,
    is_trial_active: bool = False,
    is_development: bool = False,
) -> bool:
    feature = METHOD_FEATURES.get(method)
    if feature is None:
        return False
    return has_feature_access(plan, feature, is_trial_active, is_development)


# ── Trial helpers ─────────────────────────────────────────────

def calculate_trial_end_date(start: datetime | None = None) -> datetime:
    return (start or utcnow()) + timedelta(days=TRIAL_DAYS)


def is_trial_expired(trial_end_date: datetime | None, now: datetime | None = None) -> bool:
    if trial_end_date is None:
        return True
    return (now or utcnow()) > trial_end_date


def get_trial_days_remaining(trial_end_date: datetime | None, now: datetime | None = None) -> int:
    if trial_end_date is None:
        return 0
    seconds = (trial_end_date - (now or utcnow())).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def needs_upgrade(plan: str | None, is_trial_active: bool, trial_end_date: datetime | None) -> bool:
    """A starter tenant whose trial is over (or never ran) should be nudged to pay."""
    if normalize_plan(plan) is not Plan.STARTER:
        return False
    return not is_trial_active or is_trial_expired(trial_end_date)


# ── Upsell copy ───────────────────────────────────────────────

def get_recommended_plan(feature: Feature | str) -> Plan:
    return Plan.ENTERPRISE if Feature(feature) in _ENTERPRISE_ONLY else Plan.PROFESSIONAL


def get_feature_gate_message(feature: Feature | str) -> str:
    return _GATE_MESSAGES.get(Feature(feature), "Upgrade your plan to unlock this feature")
