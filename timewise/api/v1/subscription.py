"""Subscription status, upgrades, downgrades, cancellation and payment verification."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from timewise.api.deps import AdminAuth, Session, TenantAuth
from timewise.core.errors import ValidationError
from timewise.core.rate_limit import RateLimit, RateLimitPresets
from timewise.features.access import get_tenant_features
from timewise.features.plans import Plan
from timewise.models.organization import Organization
from timewise.models.subscription import SubscriptionRead
from timewise.services import paystack
from timewise.services import subscriptions as lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["subscription"])
payments_router = APIRouter(prefix="/payments", tags=["payments"])


# ── Schemas ──────────────────────────────────────────────────

class SubscriptionStatusResponse(BaseModel):
    subscription: SubscriptionRead
    features: dict


class UpgradeRequest(BaseModel):
    plan: Plan


class UpgradeResponse(BaseModel):
    success: bool = True
    authorization_url: str
    reference: str


class DowngradeRequest(BaseModel):
    target_plan: Plan


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(min_length=1, max_length=255)
    plan: Plan | None = None


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    message: str
    already_processed: bool
    subscription: SubscriptionRead | None


# ── Routes ───────────────────────────────────────────────────

@router.get("/status", response_model=SubscriptionStatusResponse)
async def subscription_status(auth: TenantAuth, session: Session) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse(
        subscription=await lifecycle.get_subscription_status(session, auth.tenant_id),  # type: ignore[arg-type]
        features=await get_tenant_features(session, auth.tenant_id),  # type: ignore[arg-type]
    )


@router.post(
    "/upgrade",
    response_model=UpgradeResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.PAYMENT))],
)
async def upgrade(body: UpgradeRequest, auth: AdminAuth, session: Session) -> UpgradeResponse:
    result = await lifecycle.start_upgrade(
        session,
        auth.tenant_id,  # type: ignore[arg-type]
        target_plan=body.plan,
        email=auth.email,
        user_id=auth.user_id,
    )
    return UpgradeResponse(
        authorization_url=result.authorization_url or "",
        reference=result.reference or "",
    )


@router.post("/downgrade", response_model=SubscriptionRead)
async def downgrade(body: DowngradeRequest, auth: AdminAuth, session: Session) -> SubscriptionRead:
    sub = await lifecycle.schedule_downgrade(session, auth.tenant_id, body.target_plan)  # type: ignore[arg-type]
    return lifecycle.to_read(sub)


@router.post("/downgrade/cancel", response_model=SubscriptionRead)
async def cancel_downgrade(auth: AdminAuth, session: Session) -> SubscriptionRead:
    sub = await lifecycle.cancel_scheduled_downgrade(session, auth.tenant_id)  # type: ignore[arg-type]
    return lifecycle.to_read(sub)


@router.post("/cancel", response_model=SubscriptionRead)
async def cancel(auth: AdminAuth, session: Session) -> SubscriptionRead:
    sub = await lifecycle.get_subscription(session, auth.tenant_id)  # type: ignore[arg-type]
    if sub is not None and sub.status == "cancelled":
        raise ValidationError("Subscription is already cancelled")
    # Best-effort: a provider failure must not keep the tenant subscribed locally
    if sub is not None and sub.paystack_subscription_code:
        disabled = await paystack.disable_subscription(
            sub.paystack_subscription_code, sub.paystack_customer_code or ""
        )
        if not disabled:
            logger.warning(
                "Provider subscription not disabled; cancelling locally",
                extra={"tenant_id": auth.tenant_id},
            )
    sub = await lifecycle.cancel_subscription(session, auth.tenant_id)  # type: ignore[arg-type]
    return lifecycle.to_read(sub)


@payments_router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    dependencies=[Depends(RateLimit(RateLimitPresets.PAYMENT))],
)
async def verify_payment(
    body: VerifyPaymentRequest, auth: AdminAuth, session: Session
) -> VerifyPaymentResponse:
    """Confirm a checkout with Paystack and apply the upgrade once."""
    verified = await paystack.verify_payment(body.reference)
    plan = lifecycle.verify_payment_matches(verified, auth.tenant_id, body.plan)  # type: ignore[arg-type]

    sub, applied = await lifecycle.confirm_payment(
        session,
        auth.tenant_id,  # type: ignore[arg-type]
        plan=plan,
        reference=body.reference,
        amount_naira=paystack.kobo_to_naira(verified.amount),
        customer_code=verified.customer_code,
        source="verify",
    )
    org = await session.get(Organization, auth.tenant_id)
    logger.info(
        "Payment verified (applied=%s)", applied,
        extra={"tenant_id": auth.tenant_id, "reference": body.reference},
    )
    return VerifyPaymentResponse(
        message=(
            f"Upgraded {org.name if org else 'organization'} to {plan.value}" if applied
            else "Payment already processed"
        ),
        already_processed=not applied,
        subscription=lifecycle.to_read(sub) if sub else None,
    )
