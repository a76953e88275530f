"""Paystack client — transaction initialize / verify, subscription disable, webhook signatures.

Provider failures come back as unsuccessful results instead of exceptions;
callers decide whether a failure is fatal.
"""

import asyncio
import hashlib
import hmac
import json as jsonlib
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from timewise.core.config import get_settings

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0
MAX_RETRIES = 3
RETRY_DELAY = 1.0


@dataclass
class PaymentInitResult:
    success: bool
    authorization_url: str | None = None
    reference: str | None = None
    error: str | None = None


@dataclass
class VerifiedPayment:
    success: bool
    status: str | None = None
    amount: int = 0  # kobo
    currency: str | None = None
    reference: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    customer_code: str | None = None
    customer_email: str | None = None
    error: str | None = None


def naira_to_kobo(naira: int | float) -> int:
    return round(naira * 100)


def kobo_to_naira(kobo: int) -> int:
    return kobo // 100


def parse_metadata(raw: Any) -> dict:
    """Paystack echoes metadata back either as an object or as a JSON string."""
    if isinstance(raw, str):
        try:
            raw = jsonlib.loads(raw or "{}")
        except ValueError:
            logger.warning("Ignoring unparseable payment metadata")
            return {}
    return raw if isinstance(raw, dict) else {}


async def _request(method: str, path: str, json: dict | None = None) -> httpx.Response:
    """Call Paystack, retrying 5xx / transport errors with exponential backoff.

    4xx responses are returned immediately; timeouts are not retried.
    """
    settings = get_settings()
    headers = {"Authorization": f"Bearer {settings.paystack_secret_key}"}
    last_error: Exception | None = None

    async with httpx.AsyncClient(base_url=settings.paystack_base_url, timeout=REQUEST_TIMEOUT) as client:
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await client.request(method, path, json=json, headers=headers)
                if resp.status_code < 500:
                    return resp
                last_error = httpx.HTTPStatusError(
                    f"Server error: {resp.status_code}", request=resp.request, response=resp
                )
            except httpx.TimeoutException:
                raise
            except httpx.TransportError as exc:
                last_error = exc

            if attempt < MAX_RETRIES:
                await asyncio.sleep(RETRY_DELAY * 2**attempt)

    raise last_error or RuntimeError("Paystack request failed after retries")


async def initialize_payment(
    email: str, amount_kobo: int, metadata: dict[str, Any]
) -> PaymentInitResult:
    settings = get_settings()
    try:
        resp = await _request("POST", "/transaction/initialize", json={
            "email": email,
            "amount": amount_kobo,
            "currency": "NGN",
            "metadata": metadata,
            "callback_url": f"{settings.app_url}/payment/callback",
        })
        data = resp.json()
    except (httpx.HTTPError, RuntimeError, ValueError) as exc:
        logger.error("Paystack initialize failed: %s", exc)
        return PaymentInitResult(success=False, error="Payment initialization failed")

    if not data.get("status"):
        return PaymentInitResult(
            success=False, error=data.get("message") or "Failed to initialize payment"
        )
    return PaymentInitResult(
        success=True,
        authorization_url=data["data"]["authorization_url"],
        reference=data["data"]["reference"],
    )


async def verify_payment(reference: str) -> VerifiedPayment:
    try:
        resp = await _request("GET", f"/transaction/verify/{reference}")
        data = resp.json()
    except (httpx.HTTPError, RuntimeError, ValueError) as exc:
        logger.error("Paystack verify failed: %s", exc, extra={"reference": reference})
        return VerifiedPayment(success=False, error="Payment verification failed")

    if not data.get("status"):
        return VerifiedPayment(
            success=False, error=data.get("message") or "Payment verification failed"
        )
    tx = data["data"]
    customer = tx.get("customer") or {}
    return VerifiedPayment(
        success=True,
        status=tx.get("status"),
        amount=int(tx.get("amount") or 0),
        currency=tx.get("currency"),
        reference=tx.get("reference"),
        metadata=parse_metadata(tx.get("metadata")),
        customer_code=customer.get("customer_code"),
        customer_email=customer.get("email"),
    )


async def disable_subscription(subscription_code: str, email_token: str) -> bool:
    try:
        resp = await _request("POST", "/subscription/disable", json={
            "code": subscription_code,
            "token": email_token,
        })
        data = resp.json()
    except (httpx.HTTPError, RuntimeError, ValueError) as exc:
        logger.error("Paystack subscription disable failed: %s", exc)
        return False
    if not data.get("status"):
        logger.warning("Paystack refused to disable %s: %s", subscription_code, data.get("message"))
        return False
    return True


def verify_webhook_signature(body: bytes, signature: str | None) -> bool:
    """HMAC-SHA512 of the raw body with the secret key, compared in constant time."""
    secret = get_settings().paystack_secret_key
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)
