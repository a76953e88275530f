"""ARQ worker entrypoint."""

from arq import cron
from arq.connections import RedisSettings

from timewise.core.config import get_settings
from timewise.core.logging import configure_logging
from timewise.workers.subscriptions import check_subscriptions


def _redis_settings() -> RedisSettings:
    """Parse REDIS_URL into ARQ RedisSettings."""
    return RedisSettings.from_dsn(get_settings().redis_url)


async def startup(ctx: dict) -> None:
    """Called when the worker starts."""
    from timewise.core.database import init_db
    configure_logging(get_settings().log_level)
    await init_db()


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [check_subscriptions]
    cron_jobs = [cron(check_subscriptions, minute=0, run_at_startup=True)]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 10
    job_timeout = 300


if __name__ == "__main__":
    from arq import run_worker
    run_worker(WorkerSettings)  # type: ignore[arg-type]
