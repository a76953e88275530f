"""Pure plan / feature-gate rules."""

from datetime import datetime, timedelta

from timewise.features.plans import (
    UNLIMITED,
    Feature,
    Plan,
    can_add_staff,
    can_use_method,
    get_allowed_methods,
    get_feature_gate_message,
    get_max_staff,
    get_recommended_plan,
    get_trial_days_remaining,
    has_feature_access,
    is_trial_expired,
    needs_upgrade,
    normalize_plan,
)


def test_development_mode_unlocks_everything():
    for plan in (*Plan, "bogus", None):
        for feature in Feature:
            assert has_feature_access(plan, feature, False, True)


def test_starter_trial_unlocks_everything():
    assert has_feature_access("starter", Feature.ANALYTICS_TRENDS, is_trial_active=True)
    assert not has_feature_access("starter", Feature.ANALYTICS_TRENDS)
    assert has_feature_access("starter", Feature.QR_CHECK_IN)


def test_professional_and_enterprise_matrix():
    assert has_feature_access("professional", Feature.EXPORT_DATA)
    assert has_feature_access("professional", Feature.ANALYTICS_LATENESS)
    assert not has_feature_access("professional", Feature.ANALYTICS_TRENDS)
    assert not has_feature_access("professional", Feature.FINGERPRINT_CHECK_IN)
    assert has_feature_access("enterprise", Feature.ANALYTICS_PERFORMANCE)
    assert has_feature_access("enterprise", Feature.FINGERPRINT_CHECK_IN)


def test_unknown_plan_falls_back_to_starter():
    assert normalize_plan("platinum") is Plan.STARTER
    assert normalize_plan(None) is Plan.STARTER
    assert get_max_staff("platinum") == 10


def test_staff_limits():
    assert not can_add_staff("starter", 10, False)
    assert can_add_staff("starter", 9, True)
    assert not can_add_staff("starter", 10, True)
    assert not can_add_staff("starter", 0, False)
    assert can_add_staff("professional", 49)
    assert not can_add_staff("professional", 50)
    assert can_add_staff("enterprise", 100000, False)
    assert can_add_staff("starter", 500, False, True)
    assert get_max_staff("enterprise") == UNLIMITED
    assert get_max_staff("starter", is_development=True) == UNLIMITED


def test_check_in_methods():
    assert get_allowed_methods("starter") == ["qr", "manual"]
    assert get_allowed_methods("professional") == ["qr", "manual", "photo"]
    assert get_allowed_methods("enterprise") == ["qr", "manual", "photo", "fingerprint"]
    assert can_use_method("starter", "photo", is_trial_active=True)
    assert not can_use_method("professional", "fingerprint")
    assert not can_use_method("enterprise", "retina")


def test_trial_helpers():
    now = datetime(2026, 3, 1, 12, 0)
    end = now + timedelta(days=3, hours=1)
    assert get_trial_days_remaining(end, now) == 4
    assert get_trial_days_remaining(now - timedelta(days=1), now) == 0
    assert get_trial_days_remaining(None, now) == 0
    assert not is_trial_expired(end, now)
    assert is_trial_expired(now - timedelta(seconds=1), now)
    assert is_trial_expired(None, now)


def test_needs_upgrade():
    future = datetime.now() + timedelta(days=5)
    assert not needs_upgrade("starter", True, future)
    assert needs_upgrade("starter", False, future)
    assert not needs_upgrade("professional", False, None)


def test_upsell_copy():
    assert get_recommended_plan(Feature.ANALYTICS_TRENDS) is Plan.ENTERPRISE
    assert get_recommended_plan(Feature.EXPORT_DATA) is Plan.PROFESSIONAL
    assert "Professional" in get_feature_gate_message(Feature.EXPORT_DATA)
