"""Background jobs package."""

from packages.jobs.service import (
    ArqJobManager,
    JobBackendUnavailableError,
    JobRecord,
    JobStatus,
    JobType,
    close_job_manager,
    get_job_manager,
)

__all__ = [
    "ArqJobManager",
    "JobBackendUnavailableError",
    "JobRecord",
    "JobStatus",
    "JobType",
    "close_job_manager",
    "get_job_manager",
]

