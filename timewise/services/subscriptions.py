"""Subscription lifecycle: trial, upgrade, downgrade, cancellation, expiry sweep.

Functions that change a subscription commit their own transaction so the
subscription row and the organization's mirrored tier move together.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from timewise.core.errors import (
    CrossTenantAccessError,
    NotFoundError,
    StaffLimitError,
    UpstreamError,
    ValidationError,
)
from timewise.core.tenant_db import TenantDB
from timewise.features.plans import (
    BILLING_PERIOD_DAYS,
    PLAN_PRICES,
    UNLIMITED,
    Plan,
    calculate_trial_end_date,
    get_allowed_methods,
    get_max_staff,
    get_trial_days_remaining,
    is_valid_plan,
    needs_upgrade,
    normalize_plan,
    plan_rank,
)
from timewise.models.base import utcnow
from timewise.models.organization import CheckInMethod, Organization, OrganizationStatus
from timewise.models.staff import Staff
from timewise.models.subscription import (
    ProcessedPayment,
    ScheduledDowngradeRead,
    Subscription,
    SubscriptionRead,
    SubscriptionStatus,
)
from timewise.services import paystack

logger = logging.getLogger(__name__)

PAID_PLANS = (Plan.PROFESSIONAL, Plan.ENTERPRISE)


async def get_subscription(session: AsyncSession, tenant_id: uuid.UUID) -> Subscription | None:
    return await TenantDB(session, tenant_id).find_one(Subscription)


async def create_trial_subscription(
    session: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None
) -> Subscription:
    """Start the 14-day starter trial. Flushes only; the caller commits."""
    existing = await get_subscription(session, tenant_id)
    if existing is not None:
        return existing
    now = now or utcnow()
    sub = Subscription(
        plan=Plan.STARTER,
        status=SubscriptionStatus.ACTIVE,
        is_trial_active=True,
        trial_start_date=now,
        trial_end_date=calculate_trial_end_date(now),
    )
    await TenantDB(session, tenant_id).insert_one(sub)
    return sub


async def _mirror_to_organization(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    plan: str | None = None,
    status: str | None = None,
) -> None:
    org = await session.get(Organization, tenant_id)
    if org is None:
        logger.warning("Subscription without organization", extra={"tenant_id": tenant_id})
        return
    if plan is not None:
        org.subscription_tier = plan
        allowed = get_allowed_methods(plan)
        enabled = [
            m for m in (org.settings or {}).get("enabled_check_in_methods", []) if m in allowed
        ]
        org.settings = {
            **(org.settings or {}),
            "max_staff": get_max_staff(plan),
            "enabled_check_in_methods": enabled or [CheckInMethod.QR, CheckInMethod.MANUAL],
        }
    if status is not None:
        org.subscription_status = status
    org.updated_at = utcnow()
    session.add(org)


# ── Payments ─────────────────────────────────────────────────

def verify_payment_matches(
    verified: paystack.VerifiedPayment,
    tenant_id: uuid.UUID | str,
    expected_plan: str | None = None,
) -> Plan:
    """Check a provider-verified transaction against what was purchased.

    Returns the paid plan. Any mismatch is a hard failure.
    """
    if not verified.success:
        raise UpstreamError(verified.error or "Payment verification failed")
    if verified.status != "success":
        raise ValidationError("Payment was not successful", details={"status": verified.status})

    raw_plan = verified.metadata.get("plan")
    if not is_valid_plan(raw_plan) or raw_plan == Plan.STARTER:
        raise ValidationError("Invalid plan in payment metadata")
    plan = Plan(raw_plan)
    if expected_plan is not None and plan != expected_plan:
        logger.warning(
            "Plan mismatch: paid for %s, requested %s", plan, expected_plan,
            extra={"tenant_id": tenant_id, "reference": verified.reference},
        )
        raise ValidationError("Plan mismatch between payment and request")

    expected_amount = paystack.naira_to_kobo(PLAN_PRICES[plan])
    if verified.amount != expected_amount:
        logger.warning(
            "Amount mismatch: got %s kobo, expected %s", verified.amount, expected_amount,
            extra={"tenant_id": tenant_id, "reference": verified.reference},
        )
        raise ValidationError(
            "Payment amount does not match plan price",
            details={"expected": expected_amount, "received": verified.amount},
        )

    if str(verified.metadata.get("organizationId")) != str(tenant_id):
        raise CrossTenantAccessError("Payment does not belong to this organization")
    return plan


async def confirm_payment(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    plan: Plan,
    reference: str,
    amount_naira: int,
    customer_code: str | None = None,
    subscription_code: str | None = None,
    source: str = "verify",
    now: datetime | None = None,
) -> tuple[Subscription | None, bool]:
    """Apply a confirmed payment exactly once per provider reference.

    Returns ``(subscription, applied)``. A reference that was already
    processed (by the verify route or the webhook, in either order) leaves
    the subscription untouched and returns ``applied=False``.
    """
    now = now or utcnow()
    session.add(ProcessedPayment(
        reference=reference, tenant_id=tenant_id, plan=plan, amount=amount_naira, source=source,
    ))
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        logger.info(
            "Payment already processed", extra={"tenant_id": tenant_id, "reference": reference}
        )
        return await get_subscription(session, tenant_id), False

    db = TenantDB(session, tenant_id)
    sub = await db.find_one(Subscription)
    if sub is None:
        sub = Subscription(plan=plan)
        await db.insert_one(sub)

    sub.plan = plan
    sub.status = SubscriptionStatus.ACTIVE
    sub.is_trial_active = False
    sub.trial_start_date = None
    sub.trial_end_date = None
    sub.amount = amount_naira
    sub.last_payment_date = now
    sub.next_payment_date = now + timedelta(days=BILLING_PERIOD_DAYS)
    sub.subscription_end_date = None
    sub.downgrade_target_plan = None
    sub.downgrade_scheduled_for = None
    sub.downgrade_requested_at = None
    if customer_code:
        sub.paystack_customer_code = customer_code
    if subscription_code:
        sub.paystack_subscription_code = subscription_code
    sub.updated_at = now
    session.add(sub)

    await _mirror_to_organization(session, tenant_id, plan=plan, status=SubscriptionStatus.ACTIVE)
    org = await session.get(Organization, tenant_id)
    if org is not None and org.status == OrganizationStatus.TRIAL:
        org.status = OrganizationStatus.ACTIVE

    await session.commit()
    await session.refresh(sub)
    logger.info(
        "Subscription upgraded to %s", plan,
        extra={"tenant_id": tenant_id, "reference": reference},
    )
    return sub, True


async def start_upgrade(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    target_plan: str,
    email: str,
    user_id: uuid.UUID,
) -> paystack.PaymentInitResult:
    """Open a Paystack checkout for an upgrade to ``target_plan``."""
    if target_plan not in PAID_PLANS:
        raise ValidationError("Invalid plan. Choose professional or enterprise.")
    sub = await get_subscription(session, tenant_id)
    current = normalize_plan(sub.plan) if sub else Plan.STARTER
    if plan_rank(target_plan) <= plan_rank(current):
        raise ValidationError(
            f"You are already on the {current} plan or higher",
            details={"currentPlan": current.value, "targetPlan": target_plan},
        )

    result = await paystack.initialize_payment(
        email,
        paystack.naira_to_kobo(PLAN_PRICES[Plan(target_plan)]),
        {
            "organizationId": str(tenant_id),
            "userId": str(user_id),
            "plan": target_plan,
            "upgradeFrom": current.value,
        },
    )
    if not result.success:
        raise UpstreamError(result.error or "Failed to initialize payment")
    logger.info("Upgrade checkout opened for %s", target_plan, extra={"tenant_id": tenant_id})
    return result


# ── Downgrades and cancellation ─────────────────────────────

async def schedule_downgrade(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    target_plan: str,
    now: datetime | None = None,
) -> Subscription:
    """Record a downgrade to take effect at the end of the billing period."""
    if target_plan not in (Plan.STARTER, Plan.PROFESSIONAL):
        raise ValidationError("Invalid target plan. Choose starter or professional.")
    now = now or utcnow()
    db = TenantDB(session, tenant_id)
    sub = await db.find_one(Subscription)
    if sub is None:
        raise NotFoundError("No subscription found")
    if plan_rank(target_plan) >= plan_rank(sub.plan):
        raise ValidationError(
            "Target plan must be lower than your current plan",
            details={"currentPlan": sub.plan, "targetPlan": target_plan},
        )

    max_allowed = get_max_staff(target_plan)
    active_staff = await db.count(Staff, {"is_active": True})
    if max_allowed != UNLIMITED and active_staff > max_allowed:
        raise StaffLimitError(
            f"You have {active_staff} active staff members. The {target_plan} plan "
            f"allows {max_allowed}. Deactivate staff before downgrading.",
            details={
                "currentStaffCount": active_staff,
                "maxAllowed": max_allowed,
                "targetPlan": target_plan,
            },
        )

    sub.downgrade_target_plan = target_plan
    sub.downgrade_scheduled_for = sub.next_payment_date or now
    sub.downgrade_requested_at = now
    sub.updated_at = now
    session.add(sub)
    await session.commit()
    await session.refresh(sub)
    logger.info(
        "Downgrade to %s scheduled for %s", target_plan, sub.downgrade_scheduled_for,
        extra={"tenant_id": tenant_id},
    )
    return sub


async def cancel_scheduled_downgrade(session: AsyncSession, tenant_id: uuid.UUID) -> Subscription:
    sub = await get_subscription(session, tenant_id)
    if sub is None or sub.downgrade_target_plan is None:
        raise ValidationError("No scheduled downgrade found")
    sub.downgrade_target_plan = None
    sub.downgrade_scheduled_for = None
    sub.downgrade_requested_at = None
    sub.updated_at = utcnow()
    session.add(sub)
    await session.commit()
    await session.refresh(sub)
    return sub


async def cancel_subscription(
    session: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None
) -> Subscription:
    """Cancel locally. Disabling the provider subscription is the caller's concern."""
    now = now or utcnow()
    sub = await get_subscription(session, tenant_id)
    if sub is None:
        raise NotFoundError("No subscription found")
    if sub.status == SubscriptionStatus.CANCELLED:
        raise ValidationError("Subscription is already cancelled")
    sub.status = SubscriptionStatus.CANCELLED
    sub.subscription_end_date = now
    sub.updated_at = now
    session.add(sub)
    await _mirror_to_organization(session, tenant_id, status=SubscriptionStatus.CANCELLED)
    await session.commit()
    await session.refresh(sub)
    logger.info("Subscription cancelled", extra={"tenant_id": tenant_id})
    return sub


async def cancel_by_subscription_code(session: AsyncSession, subscription_code: str) -> bool:
    """Provider-initiated cancellation (``subscription.disable``)."""
    result = await session.execute(
        select(Subscription).where(Subscription.paystack_subscription_code == subscription_code)
    )
    sub = result.scalar_one_or_none()
    if sub is None:
        logger.warning("subscription.disable for unknown code %s", subscription_code)
        return False
    if sub.status != SubscriptionStatus.CANCELLED:
        sub.status = SubscriptionStatus.CANCELLED
        sub.subscription_end_date = sub.next_payment_date or utcnow()
        sub.updated_at = utcnow()
        session.add(sub)
        await _mirror_to_organization(
            session, sub.tenant_id, status=SubscriptionStatus.CANCELLED
        )
        await session.commit()
    return True


async def override_plan(
    session: AsyncSession, tenant_id: uuid.UUID, plan: Plan, now: datetime | None = None
) -> Subscription:
    """Platform-administrator plan change; no payment involved."""
    now = now or utcnow()
    db = TenantDB(session, tenant_id)
    sub = await db.find_one(Subscription)
    if sub is None:
        sub = Subscription(plan=plan)
        await db.insert_one(sub)
    sub.plan = plan
    sub.status = SubscriptionStatus.ACTIVE
    if plan != Plan.STARTER:
        sub.is_trial_active = False
    sub.downgrade_target_plan = None
    sub.downgrade_scheduled_for = None
    sub.downgrade_requested_at = None
    sub.updated_at = now
    session.add(sub)
    await _mirror_to_organization(session, tenant_id, plan=plan, status=SubscriptionStatus.ACTIVE)
    await session.commit()
    await session.refresh(sub)
    logger.info("Plan overridden to %s", plan, extra={"tenant_id": tenant_id})
    return sub


# ── Status ───────────────────────────────────────────────────

def to_read(sub: Subscription, now: datetime | None = None) -> SubscriptionRead:
    downgrade = None
    if sub.downgrade_target_plan and sub.downgrade_scheduled_for:
        downgrade = ScheduledDowngradeRead(
            target_plan=sub.downgrade_target_plan,
            scheduled_for=sub.downgrade_scheduled_for,
            requested_at=sub.downgrade_requested_at or sub.downgrade_scheduled_for,
        )
    return SubscriptionRead(
        plan=sub.plan,
        status=sub.status,
        is_trial_active=sub.is_trial_active,
        trial_end_date=sub.trial_end_date,
        trial_days_remaining=(
            get_trial_days_remaining(sub.trial_end_date, now) if sub.is_trial_active else 0
        ),
        needs_upgrade=needs_upgrade(sub.plan, sub.is_trial_active, sub.trial_end_date),
        amount=sub.amount,
        currency=sub.currency,
        last_payment_date=sub.last_payment_date,
        next_payment_date=sub.next_payment_date,
        subscription_end_date=sub.subscription_end_date,
        scheduled_downgrade=downgrade,
    )


async def get_subscription_status(
    session: AsyncSession, tenant_id: uuid.UUID
) -> SubscriptionRead:
    sub = await get_subscription(session, tenant_id)
    if sub is None:
        raise NotFoundError("No subscription found")
    return to_read(sub)


# ── Periodic sweep ───────────────────────────────────────────

async def run_subscription_sweep(
    session: AsyncSession, now: datetime | None = None
) -> dict[str, Any]:
    """Expire trials, apply due downgrades and flag overdue paid plans.

    Every step is a conditional UPDATE, so overlapping or repeated runs
    change nothing the first run did not.
    """
    now = now or utcnow()

    trials = await session.execute(
        update(Subscription)
        .where(
            Subscription.plan == Plan.STARTER,
            Subscription.is_trial_active.is_(True),  # type: ignore[attr-defined]
            Subscription.trial_end_date < now,  # type: ignore[operator]
        )
        .values(is_trial_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    due = (await session.execute(
        select(Subscription.id, Subscription.tenant_id, Subscription.downgrade_target_plan)
        .where(
            Subscription.downgrade_target_plan.is_not(None),  # type: ignore[union-attr]
            Subscription.downgrade_scheduled_for <= now,  # type: ignore[operator]
        )
    )).all()
    downgrades = 0
    for sub_id, tenant_id, target in due:
        values: dict[str, Any] = {
            "plan": target,
            "status": SubscriptionStatus.ACTIVE,
            "downgrade_target_plan": None,
            "downgrade_scheduled_for": None,
            "downgrade_requested_at": None,
            "updated_at": now,
        }
        if target == Plan.STARTER:
            values.update(amount=None, next_payment_date=None)
        result = await session.execute(
            update(Subscription)
            .where(Subscription.id == sub_id, Subscription.downgrade_target_plan == target)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            downgrades += 1
            await _mirror_to_organization(
                session, tenant_id, plan=target, status=SubscriptionStatus.ACTIVE
            )
            logger.info("Applied scheduled downgrade to %s", target, extra={"tenant_id": tenant_id})

    overdue = await session.execute(
        update(Subscription)
        .where(
            Subscription.plan.in_(list(PAID_PLANS)),  # type: ignore[attr-defined]
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.next_payment_date < now,  # type: ignore[operator]
        )
        .values(status=SubscriptionStatus.PAST_DUE, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(Organization)
        .where(
            Organization.id.in_(  # type: ignore[attr-defined]
                select(Subscription.tenant_id).where(
                    Subscription.status == SubscriptionStatus.PAST_DUE
                )
            ),
            Organization.subscription_status != SubscriptionStatus.PAST_DUE,
        )
        .values(subscription_status=SubscriptionStatus.PAST_DUE, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    await session.commit()
    summary = {
        "trials_expired": trials.rowcount or 0,
        "downgrades_applied": downgrades,
        "past_due": overdue.rowcount or 0,
        "ran_at": now.isoformat(),
    }
    logger.info("Subscription sweep finished: %s", summary)
    return summary
