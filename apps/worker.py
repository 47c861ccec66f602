"""arq worker configuration for background integrity jobs."""

from typing import Any, ClassVar

from packages.common.config import get_settings
from packages.common.database import close_pool
from packages.common.logging import configure_logging
from packages.jobs.service import build_redis_settings
from packages.jobs.tasks import job_integrity_check, job_integrity_repair
from packages.protection.service import close_data_protection

settings = get_settings()
configure_logging(debug=settings.debug, json_output=not settings.debug)


async def shutdown(ctx: dict[str, Any]) -> None:
    """Drain background verification and release the database pool."""
    await close_data_protection()
    await close_pool()


class WorkerSettings:
    """arq worker settings."""

    functions: ClassVar = [job_integrity_check, job_integrity_repair]
    on_shutdown: ClassVar = shutdown
    redis_settings: ClassVar = build_redis_settings(settings.redis_url)
    queue_name: ClassVar = settings.job_queue_name
    max_tries: ClassVar = settings.job_max_retries
    allow_abort_jobs: ClassVar = True
