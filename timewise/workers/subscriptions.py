"""Periodic job: expire trials, apply due downgrades, mark lapsed plans."""

import logging

from timewise.core.database import async_session_factory
from timewise.services.subscriptions import run_subscription_sweep

logger = logging.getLogger(__name__)


async def check_subscriptions(ctx: dict) -> dict:
    """Run the subscription sweep in its own session.

    Safe to run concurrently with the ``/v1/cron/check-subscriptions``
    endpoint; every transition is a conditional update.
    """
    async with async_session_factory() as session:
        summary = await run_subscription_sweep(session)
    logger.info(
        "Subscription sweep: %d trials expired, %d downgrades applied, %d past due",
        summary["trials_expired"], summary["downgrades_applied"], summary["past_due"],
    )
    return summary
