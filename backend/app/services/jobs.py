"""Processing job state machine and persistence."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import get_logger
from app.models.schemas import JobStatus
from app.models.tables import ProcessingJob

logger = get_logger(__name__)

# Jobs parked in NEEDS_MAPPING do not hold the period.
_ACTIVE = (
    JobStatus.PARSING,
    JobStatus.VALIDATING,
    JobStatus.GPT_NORMALIZE,
    JobStatus.GPT_PROCESSING,
    JobStatus.LOADING,
    JobStatus.AGGREGATING,
)

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PARSING: frozenset({JobStatus.VALIDATING, JobStatus.FAILED}),
    JobStatus.VALIDATING: frozenset(
        {JobStatus.NEEDS_MAPPING, JobStatus.LOADING, JobStatus.DONE, JobStatus.FAILED}
    ),
    JobStatus.NEEDS_MAPPING: frozenset({JobStatus.VALIDATING, JobStatus.GPT_NORMALIZE, JobStatus.FAILED}),
    JobStatus.GPT_NORMALIZE: frozenset({JobStatus.GPT_PROCESSING, JobStatus.NEEDS_MAPPING, JobStatus.FAILED}),
    JobStatus.GPT_PROCESSING: frozenset({JobStatus.VALIDATING, JobStatus.NEEDS_MAPPING, JobStatus.FAILED}),
    JobStatus.LOADING: frozenset({JobStatus.AGGREGATING, JobStatus.PARTIAL_OK, JobStatus.FAILED}),
    JobStatus.AGGREGATING: frozenset({JobStatus.DONE, JobStatus.PARTIAL_OK, JobStatus.FAILED}),
    JobStatus.DONE: frozenset(),
    JobStatus.PARTIAL_OK: frozenset(),
    JobStatus.FAILED: frozenset(),
}

STAGE_PROGRESS: dict[JobStatus, int] = {
    JobStatus.PARSING: 10,
    JobStatus.VALIDATING: 30,
    JobStatus.NEEDS_MAPPING: 35,
    JobStatus.GPT_NORMALIZE: 40,
    JobStatus.GPT_PROCESSING: 45,
    JobStatus.LOADING: 60,
    JobStatus.AGGREGATING: 85,
    JobStatus.DONE: 100,
    JobStatus.PARTIAL_OK: 100,
    JobStatus.FAILED: 100,
}


class InvalidTransition(RuntimeError):
    """Raised when a job is moved along an edge the state machine does not allow."""

    def __init__(self, job_id: str, current: JobStatus, target: JobStatus) -> None:
        super().__init__(f"Job {job_id} cannot move from {current.value} to {target.value}")
        self.job_id = job_id
        self.current = current
        self.target = target


class JobNotFound(LookupError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[current]


def _eta_seconds(started: float | None, progress: int) -> float | None:
    if started is None or progress <= 0 or progress >= 100:
        return None
    elapsed = max(time.time() - started, 0.0)
    return round(elapsed * (100 - progress) / progress, 1)


class JobTracker:
    """Creates jobs and applies status transitions, each in its own transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        *,
        job_type: str,
        company_id: str | None = None,
        user_id: str | None = None,
        template_name: str | None = None,
        file_hash: str | None = None,
        period_type: str = "annual",
        period_year: int | None = None,
        stats: dict[str, Any] | None = None,
    ) -> ProcessingJob:
        stats_json = {
            "stage": JobStatus.PARSING.value,
            "progress_pct": STAGE_PROGRESS[JobStatus.PARSING],
            "message": "Reading uploaded files",
            "started_at": time.time(),
            **(stats or {}),
        }
        job = ProcessingJob(
            job_type=job_type,
            company_id=company_id,
            user_id=user_id,
            template_name=template_name,
            file_hash=file_hash,
            period_type=period_type,
            period_year=period_year,
            status=JobStatus.PARSING.value,
            stats_json=stats_json,
        )
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)
        logger.info("job.created", job_id=job.id, job_type=job_type, company_id=company_id)
        return job

    async def get(self, job_id: str) -> ProcessingJob:
        async with self._session_factory() as session:
            job = await session.get(ProcessingJob, job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        message: str,
        error: str | None = None,
        **stats: Any,
    ) -> ProcessingJob:
        """Move ``job_id`` to ``status`` and merge ``stats`` into ``stats_json``.

        Raises :class:`InvalidTransition` for edges outside :data:`TRANSITIONS`.
        """

        async with self._session_factory() as session:
            job = await session.get(ProcessingJob, job_id, with_for_update=True)
            if job is None:
                raise JobNotFound(job_id)
            current = JobStatus(job.status)
            if not can_transition(current, status):
                raise InvalidTransition(job_id, current, status)

            progress = STAGE_PROGRESS[status]
            merged = dict(job.stats_json or {})
            merged.update(stats)
            merged.update(
                {
                    "stage": status.value,
                    "progress_pct": progress,
                    "message": message,
                    "eta_seconds": _eta_seconds(merged.get("started_at"), progress),
                }
            )
            job.status = status.value
            job.stats_json = merged
            if error is not None:
                job.error_message = error
            await session.commit()
            await session.refresh(job)

        logger.info(
            "job.transition",
            job_id=job_id,
            from_status=current.value,
            to_status=status.value,
            progress_pct=progress,
        )
        return job

    async def fail(self, job_id: str, message: str, **stats: Any) -> ProcessingJob:
        return await self.transition(job_id, JobStatus.FAILED, message=message, error=message, **stats)

    async def find_active(
        self,
        company_id: str,
        *,
        period_type: str = "annual",
        period_year: int | None = None,
        exclude: str | None = None,
    ) -> ProcessingJob | None:
        """Return a non-terminal job loading data for the same company and period."""

        stmt = select(ProcessingJob).where(
            ProcessingJob.company_id == company_id,
            ProcessingJob.period_type == period_type,
            ProcessingJob.status.in_([status.value for status in _ACTIVE]),
        )
        if period_year is not None:
            stmt = stmt.where(ProcessingJob.period_year == period_year)
        if exclude is not None:
            stmt = stmt.where(ProcessingJob.id != exclude)
        async with self._session_factory() as session:
            return await session.scalar(stmt.limit(1))

    async def find_duplicate(self, file_hash: str, *, within_hours: int) -> ProcessingJob | None:
        """Return a successful job for the same content hash inside the duplicate window."""

        since = datetime.now(timezone.utc) - timedelta(hours=within_hours)
        stmt = (
            select(ProcessingJob)
            .where(
                ProcessingJob.file_hash == file_hash,
                ProcessingJob.created_at >= since,
                ProcessingJob.status.in_([JobStatus.DONE.value, JobStatus.PARTIAL_OK.value]),
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            return await session.scalar(stmt)
