"""arq worker tasks for integrity check/repair jobs."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from packages.common.config import get_settings
from packages.common.exceptions import AuthorizationError, ValidationError
from packages.common.logging import get_logger, log_context
from packages.jobs.service import JobRecord, load_job_record, save_job_record
from packages.protection.service import get_data_protection
from packages.srs.models import utcnow

logger = get_logger(module=__name__)

# Failures that a retry cannot fix.
NON_RETRYABLE = (ValidationError, AuthorizationError)


class JobCancelledError(Exception):
    """Raised inside a job body when the record was cancelled meanwhile."""


class JobRun:
    """Read-modify-write access to one job's Redis record from inside the worker."""

    def __init__(self, redis: Any, job_id: str, attempt: int) -> None:
        self.redis = redis
        self.job_id = job_id
        self.attempt = attempt
        self.ttl_seconds = get_settings().job_result_ttl_seconds

    async def load(self) -> JobRecord:
        record = await load_job_record(self.redis, self.job_id)
        if record is None:
            raise ValueError(f"Job not found: {self.job_id}")
        return record

    async def update(self, *, finished: bool = False, **changes: Any) -> JobRecord:
        record = await self.load()
        if "progress" in changes:
            changes["progress"] = max(0.0, min(100.0, changes["progress"]))
        if finished:
            changes["finished_at"] = utcnow()
            changes["progress"] = 100.0
        record = record.model_copy(update=changes)
        await save_job_record(self.redis, record, self.ttl_seconds)
        return record

    async def start(self, message: str, progress: float) -> None:
        record = await self.load()
        await self.update(
            status="running",
            progress=progress,
            attempts=self.attempt,
            message=message,
            started_at=record.started_at or utcnow(),
        )

    async def progress(self, message: str, progress: float) -> None:
        await self.update(status="running", progress=progress, message=message)

    async def raise_if_cancelled(self) -> None:
        record = await self.load()
        if record.cancel_requested or record.status in {"cancel_requested", "cancelled"}:
            raise JobCancelledError(self.job_id)


def _user_scope(payload: dict[str, Any]) -> str | None:
    user_id = payload.get("user_id")
    if user_id is None:
        return None
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("user_id must be a non-empty string", context={"field": "user_id"})
    return user_id.strip()


async def _run_job(
    ctx: dict[str, Any],
    job_id: str,
    job_name: str,
    start_message: str,
    body: Callable[[JobRun], Awaitable[dict[str, Any]]],
) -> dict[str, Any]:
    """Drive one job through running -> succeeded/failed/cancelled.

    A retryable failure below ``job_max_retries`` marks the record retrying
    and re-raises so arq schedules another try.
    """
    run = JobRun(ctx["redis"], job_id, int(ctx.get("job_try", 1)))
    await run.start(start_message, progress=5.0)

    try:
        await run.raise_if_cancelled()
        result = await body(run)
    except JobCancelledError:
        await run.update(status="cancelled", message="Cancelled", finished=True)
        return {"cancelled": True}
    except Exception as exc:
        retryable = not isinstance(exc, NON_RETRYABLE)
        if retryable and run.attempt < get_settings().job_max_retries:
            await run.update(
                status="retrying",
                progress=0.0,
                error=str(exc),
                message=f"Retrying after error: {type(exc).__name__}",
            )
            logger.exception(f"{job_name}_failed_retrying", job_id=job_id, attempt=run.attempt)
            raise

        await run.update(
            status="failed",
            error=str(exc),
            message=f"Job failed: {type(exc).__name__}",
            finished=True,
        )
        logger.exception(f"{job_name}_failed_terminal", job_id=job_id, attempt=run.attempt)
        return {"error": str(exc)}

    await run.update(status="succeeded", message="Job completed", result=result, finished=True)
    logger.info(f"{job_name}_succeeded", job_id=job_id, attempt=run.attempt)
    return result


async def job_integrity_check(
    ctx: dict[str, Any],
    job_id: str,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Background task: scan decks (one user or all) and store the report."""

    async def _check(run: JobRun) -> dict[str, Any]:
        user_id = _user_scope(payload)
        with log_context(job_id=job_id, user_id=user_id):
            report = await get_data_protection().checker.check(user_id)
        return report.to_dict()

    return await _run_job(ctx, job_id, "job_integrity_check", "Starting integrity check", _check)


async def job_integrity_repair(
    ctx: dict[str, Any],
    job_id: str,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """Background task: repair decks, then re-check so the result shows what remains."""

    async def _repair(run: JobRun) -> dict[str, Any]:
        user_id = _user_scope(payload)
        checker = get_data_protection().checker
        with log_context(job_id=job_id, user_id=user_id):
            repaired = await checker.repair(user_id)
            await run.raise_if_cancelled()
            await run.progress("Verifying repaired decks", 70.0)
            report = await checker.check(user_id)
        return {
            "repaired_decks": repaired,
            "remaining_issues": report.issue_count,
            "recommendations": report.recommendations,
        }

    return await _run_job(ctx, job_id, "job_integrity_repair", "Starting repair", _repair)
