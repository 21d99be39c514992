"""Import job lifecycle management.

The manager is the only component that mutates import jobs. It enforces:

- at most one active (pending or in_progress) job per site; every path
  that creates or reactivates a job re-checks this inside a per-site lock
- ordered progress: writes for one job are serialized and a stale update
  never overwrites newer progress
- a batch is stored and counted together, or not at all once the job has
  stopped
- a bounded number of manual retries per job
"""

import asyncio
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import Any

import structlog

from analytics_import.core.exceptions import (
    ConflictException,
    InvalidStateException,
    NotFoundException,
    RetryLimitExceededException,
    ValidationException,
)
from analytics_import.data_pipeline.adapters.base import DataSourceType
from analytics_import.data_pipeline.reports import ReportType
from analytics_import.import_engine.jobs import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_RETRIES,
    ImportJob,
    ImportJobStatus,
    JobDateRange,
    utc_now,
)
from analytics_import.import_engine.stores import ImportJobStore

logger = structlog.get_logger(__name__)


def _require_not_terminal(job: ImportJob) -> None:
    if job.is_terminal:
        raise InvalidStateException(
            f"Cannot update progress of a {job.status.value} job",
            current_status=job.status.value,
        )


class ImportJobManager:
    """Create, advance and recover import jobs."""

    def __init__(
        self,
        store: ImportJobStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the manager.

        Args:
            store: Job persistence
            batch_size: Rows per batch for new jobs
            max_retries: Retry budget for new jobs
            clock: Source of the current (timezone-aware) time
        """
        self.store = store
        self.batch_size = batch_size
        self.max_retries = max_retries
        self._clock = clock
        # Locks live only while some coroutine holds or waits on them
        self._resource_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._job_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _resource_lock(self, resource_id: str) -> asyncio.Lock:
        return self._resource_locks.setdefault(resource_id, asyncio.Lock())

    def _job_lock(self, job_id: str) -> asyncio.Lock:
        return self._job_locks.setdefault(job_id, asyncio.Lock())

    async def _require(self, job_id: str) -> ImportJob:
        job = await self.store.get(job_id)
        if job is None:
            raise NotFoundException("Job", job_id)
        return job

    async def _ensure_no_other_active(self, job: ImportJob) -> None:
        active = await self.store.find_active(job.resource_id)
        if active is not None and active.id != job.id:
            raise ConflictException(
                f"Another import is already in progress for site {job.resource_id}"
            )

    async def create_job(
        self,
        resource_id: str,
        external_property_id: str,
        date_range: JobDateRange,
        estimated_rows: int | None = None,
        *,
        user_id: str | None = None,
        report_type: ReportType | str = ReportType.OVERVIEW,
        format: DataSourceType | str = DataSourceType.GA4_API,
    ) -> ImportJob:
        """Create a pending job for a site.

        Raises:
            ValidationException: If the date range ends before it starts
            ConflictException: If the site already has an active job
        """
        if date_range.end < date_range.start:
            raise ValidationException("End date must not be before start date")
        if estimated_rows is not None and estimated_rows < 0:
            raise ValidationException("Estimated rows must not be negative")

        async with self._resource_lock(resource_id):
            if await self.store.find_active(resource_id) is not None:
                raise ConflictException(
                    f"An import is already in progress for site {resource_id}"
                )

            job = ImportJob(
                resource_id=resource_id,
                external_property_id=external_property_id,
                date_range=date_range,
                user_id=user_id,
                report_type=ReportType(report_type),
                format=DataSourceType(format),
                total_rows=estimated_rows or 0,
                batch_size=self.batch_size,
                max_retries=self.max_retries,
                started_at=self._clock(),
            )
            await self.store.insert(job)

        logger.info(
            "import_job_created",
            job_id=job.id,
            resource_id=resource_id,
            total_batches=job.total_batches,
        )
        return job

    async def get_job(self, job_id: str) -> ImportJob | None:
        return await self.store.get(job_id)

    async def list_jobs_for_site(self, resource_id: str) -> list[ImportJob]:
        """Job history for a site, newest first."""
        return await self.store.list_for_resource(resource_id)

    async def set_total_rows(self, job_id: str, total_rows: int) -> ImportJob:
        """Record the row total once the source reports it."""
        async with self._job_lock(job_id):
            job = await self._require(job_id)
            if job.is_terminal:
                raise InvalidStateException(
                    f"Cannot update a {job.status.value} job", current_status=job.status.value
                )
            job.total_rows = max(total_rows, job.imported_rows)
            await self.store.save(job)
            return job

    async def update_progress(
        self,
        job_id: str,
        imported_rows: int,
        current_batch: int,
    ) -> ImportJob:
        """Record progress after a batch.

        Reaching the row total completes the job; any other update leaves it
        in progress. Updates older than the recorded progress are ignored.

        Raises:
            NotFoundException: If the job does not exist
            InvalidStateException: If the job is already terminal
        """
        async with self._job_lock(job_id):
            job = await self._require(job_id)
            _require_not_terminal(job)
            return await self._advance(job, imported_rows, current_batch)

    async def commit_batch(
        self,
        job_id: str,
        row_count: int,
        write: Callable[[ImportJob], Awaitable[Any]],
    ) -> ImportJob:
        """Store one batch and count it as a single step.

        ``write`` runs under the job's lock after the job is re-read, so a
        cancel either lands before the batch (nothing is written) or after it
        (the batch is fully written and counted).

        Raises:
            NotFoundException: If the job does not exist
            InvalidStateException: If the job is no longer active
        """
        async with self._job_lock(job_id):
            job = await self._require(job_id)
            _require_not_terminal(job)
            await write(job)
            return await self._advance(
                job, job.imported_rows + row_count, job.current_batch + 1
            )

    async def _advance(self, job: ImportJob, imported_rows: int, current_batch: int) -> ImportJob:
        if imported_rows < job.imported_rows or current_batch < job.current_batch:
            logger.warning(
                "stale_progress_ignored",
                job_id=job.id,
                imported_rows=imported_rows,
                current_batch=current_batch,
                recorded_rows=job.imported_rows,
                recorded_batch=job.current_batch,
            )
            return job

        job.imported_rows = imported_rows
        job.current_batch = current_batch

        if job.total_rows > 0 and imported_rows >= job.total_rows:
            job.mark(ImportJobStatus.COMPLETED, self._clock())
            logger.info("import_job_completed", job_id=job.id, rows=imported_rows)
        elif job.status != ImportJobStatus.IN_PROGRESS:
            job.mark(ImportJobStatus.IN_PROGRESS, self._clock())

        await self.store.save(job)
        return job

    async def update_status(
        self,
        job_id: str,
        status: ImportJobStatus | str,
        error: str | None = None,
    ) -> ImportJob:
        """Set a job's status directly.

        Raises:
            NotFoundException: If the job does not exist
            InvalidStateException: If the job is completed
            ConflictException: If reactivating while the site has another active job
        """
        status = ImportJobStatus(status)
        job = await self._require(job_id)

        async with self._resource_lock(job.resource_id), self._job_lock(job_id):
            job = await self._require(job_id)
            if status.is_active and job.is_terminal:
                await self._ensure_no_other_active(job)

            job.mark(status, self._clock(), error=error)
            await self.store.save(job)

        if status == ImportJobStatus.FAILED:
            logger.warning("import_job_failed", job_id=job_id, error=job.error)
        return job

    async def cancel_job(self, job_id: str) -> ImportJob:
        """Cancel a job, keeping its progress counters as they are."""
        async with self._job_lock(job_id):
            job = await self._require(job_id)

            if job.status == ImportJobStatus.COMPLETED:
                raise InvalidStateException(
                    "Cannot cancel a completed job", current_status=job.status.value
                )
            if job.status == ImportJobStatus.CANCELLED:
                raise InvalidStateException(
                    "Job is already cancelled", current_status=job.status.value
                )

            job.mark(ImportJobStatus.CANCELLED, self._clock())
            await self.store.save(job)

        logger.info("import_job_cancelled", job_id=job_id, imported_rows=job.imported_rows)
        return job

    async def resume_job(self, job_id: str) -> ImportJob:
        """Continue a failed or cancelled job from its recorded progress.

        Raises:
            InvalidStateException: If the job is not failed or cancelled
            ConflictException: If the site has another active job
        """
        job = await self._require(job_id)

        async with self._resource_lock(job.resource_id), self._job_lock(job_id):
            job = await self._require(job_id)

            if job.status == ImportJobStatus.COMPLETED:
                raise InvalidStateException(
                    "Cannot resume a completed job", current_status=job.status.value
                )
            if job.status not in (ImportJobStatus.FAILED, ImportJobStatus.CANCELLED):
                raise InvalidStateException(
                    f"Cannot resume job with status: {job.status.value}",
                    current_status=job.status.value,
                )

            await self._ensure_no_other_active(job)

            job.mark(ImportJobStatus.IN_PROGRESS, self._clock())
            await self.store.save(job)

        logger.info(
            "import_job_resumed",
            job_id=job_id,
            imported_rows=job.imported_rows,
            current_batch=job.current_batch,
        )
        return job

    async def retry_failed_job(self, job_id: str) -> ImportJob:
        """Retry a failed job, spending one unit of its retry budget.

        Raises:
            InvalidStateException: If the job is not failed
            RetryLimitExceededException: If the retry budget is used up
            ConflictException: If the site has another active job
        """
        job = await self._require(job_id)

        async with self._resource_lock(job.resource_id), self._job_lock(job_id):
            job = await self._require(job_id)

            if job.status != ImportJobStatus.FAILED:
                raise InvalidStateException(
                    "Can only retry failed jobs", current_status=job.status.value
                )
            if job.retry_count >= job.max_retries:
                raise RetryLimitExceededException()

            await self._ensure_no_other_active(job)

            job.retry_count += 1
            job.mark(ImportJobStatus.IN_PROGRESS, self._clock())
            await self.store.save(job)

        logger.info(
            "import_job_retried",
            job_id=job_id,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
        )
        return job

    async def create_checkpoint(self, job_id: str) -> None:
        """Snapshot the current batch and row count for recovery."""
        async with self._job_lock(job_id):
            job = await self._require(job_id)
            job.last_checkpoint = job.snapshot(self._clock())
            await self.store.save(job)

    async def has_active_import(self, resource_id: str) -> bool:
        return await self.store.find_active(resource_id) is not None

    async def get_active_job_for_site(self, resource_id: str) -> ImportJob | None:
        return await self.store.find_active(resource_id)

    async def delete_job(self, job_id: str) -> bool:
        async with self._job_lock(job_id):
            return await self.store.delete(job_id)

    async def cleanup_old_jobs(self, days_old: int) -> int:
        """Delete terminal jobs that ended at least ``days_old`` days ago.

        Active jobs are kept regardless of age.

        Returns:
            Number of jobs deleted
        """
        cutoff = self._clock() - timedelta(days=days_old)
        deleted = await self.store.delete_terminal_before(cutoff)
        if deleted:
            logger.info("old_import_jobs_deleted", count=deleted, days_old=days_old)
        return deleted
