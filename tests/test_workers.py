"""The arq subscription job."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from timewise.features.plans import Plan
from timewise.models.base import utcnow
from timewise.workers.main import WorkerSettings
from timewise.workers.subscriptions import check_subscriptions


def test_worker_registers_hourly_sweep():
    assert check_subscriptions in WorkerSettings.functions
    [job] = WorkerSettings.cron_jobs
    assert job.coroutine is check_subscriptions
    assert job.minute == 0
    assert job.run_at_startup is True


@pytest.mark.asyncio
async def test_check_subscriptions_runs_sweep(session, test_session_factory, make_tenant):
    tenant = await make_tenant(plan=Plan.STARTER)
    tenant.subscription.trial_end_date = utcnow() - timedelta(minutes=1)
    session.add(tenant.subscription)
    await session.commit()

    with patch("timewise.workers.subscriptions.async_session_factory", test_session_factory):
        summary = await check_subscriptions({})
    assert summary["trials_expired"] == 1
    assert summary["downgrades_applied"] == 0

    await session.refresh(tenant.subscription)
    assert tenant.subscription.is_trial_active is False
