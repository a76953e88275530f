"""Inbound Paystack webhooks.

Only the signature check can fail the request. Once an event is
authenticated it is always acknowledged with 200 so Paystack stops
retrying; processing errors are logged instead.
"""

import json
import logging
import uuid

from fastapi import APIRouter, Request

from timewise.api.deps import Session
from timewise.core.errors import TimeWiseError, UnauthenticatedError
from timewise.services import paystack
from timewise.services import subscriptions as lifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _handle_charge_success(session, data: dict) -> None:
    metadata = paystack.parse_metadata(data.get("metadata"))
    tenant_id = metadata.get("organizationId")
    reference = data.get("reference")
    if not tenant_id or not metadata.get("plan") or not reference:
        logger.warning("charge.success without organization metadata", extra={"reference": reference})
        return

    customer = data.get("customer") or {}
    subscription = data.get("subscription")
    verified = paystack.VerifiedPayment(
        success=True,
        status=data.get("status"),
        amount=int(data.get("amount") or 0),
        currency=data.get("currency"),
        reference=reference,
        metadata=metadata,
        customer_code=customer.get("customer_code"),
        customer_email=customer.get("email"),
    )
    plan = lifecycle.verify_payment_matches(verified, tenant_id)
    _, applied = await lifecycle.confirm_payment(
        session,
        uuid.UUID(str(tenant_id)),
        plan=plan,
        reference=reference,
        amount_naira=paystack.kobo_to_naira(verified.amount),
        customer_code=verified.customer_code,
        subscription_code=subscription.get("subscription_code") if isinstance(subscription, dict) else None,
        source="webhook",
    )
    logger.info(
        "charge.success processed (applied=%s)", applied,
        extra={"tenant_id": tenant_id, "reference": reference},
    )


async def _handle_subscription_disable(session, data: dict) -> None:
    tenant_id = paystack.parse_metadata(data.get("metadata")).get("organizationId")
    if tenant_id:
        try:
            await lifecycle.cancel_subscription(session, uuid.UUID(str(tenant_id)))
        except TimeWiseError as exc:
            logger.info("subscription.disable ignored: %s", exc.message, extra={"tenant_id": tenant_id})
        return
    code = data.get("subscription_code")
    if code:
        await lifecycle.cancel_by_subscription_code(session, code)
        return
    logger.warning("subscription.disable without organization or subscription code")


@router.post("/paystack")
async def paystack_webhook(request: Request, session: Session) -> dict:
    body = await request.body()
    if not paystack.verify_webhook_signature(body, request.headers.get("x-paystack-signature")):
        logger.warning("Rejected Paystack webhook with invalid signature")
        raise UnauthenticatedError("Invalid signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Paystack webhook body is not JSON")
        return {"received": True}

    kind = event.get("event")
    data = event.get("data") or {}
    logger.info("Paystack webhook %s", kind)
    try:
        if kind == "charge.success":
            await _handle_charge_success(session, data)
        elif kind == "subscription.disable":
            await _handle_subscription_disable(session, data)
        elif kind in ("subscription.create", "subscription.not_renew"):
            logger.info("Paystack %s for %s", kind, data.get("subscription_code"))
        else:
            logger.info("Unhandled Paystack event %s", kind)
    except (TimeWiseError, ValueError, KeyError, json.JSONDecodeError) as exc:
        await session.rollback()
        logger.error("Paystack webhook %s failed: %s", kind, exc)
    return {"received": True}
