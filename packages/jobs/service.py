"""Background integrity jobs backed by arq and Redis.

Job metadata lives in Redis next to the arq queue so the API can report
progress without talking to the worker.
"""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from typing import Any, Literal
from urllib.parse import urlparse
from uuid import uuid4

from arq.connections import ArqRedis, RedisSettings, create_pool
from pydantic import BaseModel, Field, field_validator

from packages.common.config import Settings, get_settings
from packages.common.exceptions import MemoryDeckError
from packages.common.logging import get_logger
from packages.srs.models import coerce_datetime, utcnow

logger = get_logger(module=__name__)

JobType = Literal["integrity", "repair"]
JobStatus = Literal[
    "queued",
    "scheduled",
    "running",
    "retrying",
    "succeeded",
    "failed",
    "cancel_requested",
    "cancelled",
]

JOB_KEY_PREFIX = "memorydeck:job:"
TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed", "cancelled"})
# Not yet picked up by a worker, so cancelling takes effect immediately.
WAITING_STATUSES: frozenset[str] = frozenset({"queued", "scheduled", "retrying"})

# arq function name registered in WorkerSettings for each job type.
TASK_NAMES: dict[str, str] = {
    "integrity": "job_integrity_check",
    "repair": "job_integrity_repair",
}


class JobBackendUnavailableError(MemoryDeckError):
    """Redis/arq backend is unavailable."""


def build_redis_settings(redis_url: str) -> RedisSettings:
    """arq connection settings for ``redis_url`` with short connect timeouts."""
    if urlparse(redis_url).scheme not in {"redis", "rediss"}:
        raise ValueError("redis_url must use redis:// or rediss://")
    return dataclasses.replace(
        RedisSettings.from_dsn(redis_url),
        conn_timeout=1,
        conn_retries=1,
        conn_retry_delay=1,
    )


class JobRecord(BaseModel):
    """Persisted metadata for an async job."""

    job_id: str
    job_type: JobType
    status: JobStatus
    payload: dict[str, Any] = Field(default_factory=dict)
    progress: float = 0.0
    message: str | None = None
    attempts: int = 0
    max_retries: int = 3
    cancel_requested: bool = False
    created_at: datetime | None = None
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    result: dict[str, Any] | None = None
    error: str | None = None

    @field_validator("created_at", "scheduled_for", "started_at", "finished_at", mode="before")
    @classmethod
    def _lenient_timestamp(cls, v: Any) -> datetime | None:
        try:
            return coerce_datetime(v)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def request_cancel(self, now: datetime) -> None:
        """Cancel a waiting job outright; flag a running one for the worker to stop."""
        self.cancel_requested = True
        if self.status in WAITING_STATUSES:
            self.status = "cancelled"
            self.progress = 100.0
            self.finished_at = now
            self.message = "Cancelled before execution"
        else:
            self.status = "cancel_requested"
            self.message = "Cancellation requested"


def _job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


async def save_job_record(redis: Any, record: JobRecord, ttl_seconds: int) -> None:
    """Persist a job record in Redis."""
    await redis.set(_job_key(record.job_id), record.model_dump_json(), ex=ttl_seconds)


async def load_job_record(redis: Any, job_id: str) -> JobRecord | None:
    """Load a job record from Redis."""
    raw = await redis.get(_job_key(job_id))
    if raw is None:
        return None
    return JobRecord.model_validate_json(raw)


class ArqJobManager:
    """Queue and inspect background jobs using arq."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._redis: ArqRedis | None = None

    async def connect(self) -> ArqRedis:
        """Connect to Redis/arq pool if needed."""
        if self._redis is None:
            try:
                self._redis = await create_pool(build_redis_settings(self.settings.redis_url))
            except Exception as exc:
                raise JobBackendUnavailableError(f"Failed to connect to Redis: {exc}") from exc
        return self._redis

    async def close(self) -> None:
        """Close Redis pool."""
        if self._redis is not None:
            await self._redis.close()
            self._redis = None

    async def enqueue_integrity_job(
        self,
        payload: dict[str, Any],
        run_at: datetime | None = None,
    ) -> JobRecord:
        """Enqueue an integrity scan (payload: optional ``user_id``)."""
        return await self.enqueue("integrity", payload, run_at)

    async def enqueue_repair_job(
        self,
        payload: dict[str, Any],
        run_at: datetime | None = None,
    ) -> JobRecord:
        """Enqueue an integrity repair (payload: optional ``user_id``)."""
        return await self.enqueue("repair", payload, run_at)

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any],
        run_at: datetime | None = None,
    ) -> JobRecord:
        """Record the job as queued (or scheduled for ``run_at``) and hand it to arq."""
        redis = await self.connect()
        now = utcnow()
        if run_at is not None and run_at.tzinfo is None:
            run_at = run_at.replace(tzinfo=UTC)

        record = JobRecord(
            job_id=str(uuid4()),
            job_type=job_type,
            status="scheduled" if run_at is not None and run_at > now else "queued",
            payload=payload,
            created_at=now,
            scheduled_for=run_at,
            max_retries=self.settings.job_max_retries,
            message="Job accepted",
        )
        await save_job_record(redis, record, self.settings.job_result_ttl_seconds)

        job = await redis.enqueue_job(
            TASK_NAMES[job_type],
            job_id=record.job_id,
            payload=payload,
            _job_id=record.job_id,
            _queue_name=self.settings.job_queue_name,
            _defer_until=run_at,
        )
        if job is None:
            raise JobBackendUnavailableError(f"Failed to enqueue job '{record.job_id}'")

        logger.info(
            "job_enqueued",
            job_id=record.job_id,
            job_type=job_type,
            run_at=run_at.isoformat() if run_at else None,
        )
        return record

    async def get_job(self, job_id: str) -> JobRecord | None:
        """Get current job metadata."""
        return await load_job_record(await self.connect(), job_id)

    async def cancel_job(self, job_id: str) -> JobRecord | None:
        """Request cancellation. Finished jobs are returned unchanged."""
        redis = await self.connect()
        record = await load_job_record(redis, job_id)
        if record is None or record.is_terminal:
            return record

        record.request_cancel(utcnow())
        await save_job_record(redis, record, self.settings.job_result_ttl_seconds)
        logger.info("job_cancel_requested", job_id=job_id, status=record.status)
        return record


_job_manager: ArqJobManager | None = None


async def get_job_manager(settings: Settings | None = None) -> ArqJobManager:
    """Get cached job manager."""
    global _job_manager
    if _job_manager is None:
        _job_manager = ArqJobManager(settings)
    return _job_manager


async def close_job_manager() -> None:
    """Close cached job manager resources."""
    global _job_manager
    if _job_manager is not None:
        await _job_manager.close()
        _job_manager = None
