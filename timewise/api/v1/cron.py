"""Scheduler-triggered maintenance, authenticated by the shared cron secret."""

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from timewise.api.deps import Session, authorization_header
from timewise.core.config import get_settings
from timewise.core.errors import UnauthenticatedError
from timewise.core.security import extract_token
from timewise.services.subscriptions import run_subscription_sweep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


async def require_cron_secret(
    authorization: Annotated[str | None, Depends(authorization_header)],
) -> None:
    secret = get_settings().cron_secret
    token = extract_token(authorization)
    if not secret or not token or not hmac.compare_digest(token.encode(), secret.encode()):
        logger.warning("Rejected cron call")
        raise UnauthenticatedError("Invalid cron secret")


@router.post("/check-subscriptions", dependencies=[Depends(require_cron_secret)])
async def check_subscriptions(session: Session) -> dict:
    summary = await run_subscription_sweep(session)
    return {"success": True, **summary}
