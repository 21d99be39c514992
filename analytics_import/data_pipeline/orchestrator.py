"""Import orchestrator for coordinating import jobs.

The orchestrator is the entry point for the API layer. It handles:
- Ownership checks before any job is created, read or removed
- Synchronous payload imports (json, csv)
- Background API pulls, one asyncio task per active job
- Restarting pulls interrupted by a service restart
- Scheduled cleanup of old terminal jobs
"""

import asyncio
from datetime import date
from typing import Any

import structlog

from analytics_import.core.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from analytics_import.data_pipeline.adapters.base import DataSourceType
from analytics_import.data_pipeline.adapters.google_analytics import validate_property_id
from analytics_import.data_pipeline.import_service import ImportService
from analytics_import.data_pipeline.reports import ReportType
from analytics_import.data_pipeline.transformers import parse_import_payload
from analytics_import.import_engine.jobs import ImportJob, ImportJobStatus, JobDateRange
from analytics_import.import_engine.manager import ImportJobManager
from analytics_import.import_engine.stores import HistoricalStore, OwnershipCheck

logger = structlog.get_logger(__name__)


class ImportOrchestrator:
    """Orchestrates import jobs across the manager, worker and storage."""

    def __init__(
        self,
        job_manager: ImportJobManager,
        import_service: ImportService,
        historical_store: HistoricalStore,
        ownership: OwnershipCheck,
        cleanup_days: int = 30,
        cleanup_interval_seconds: float = 3600,
    ):
        """Initialize orchestrator.

        Args:
            job_manager: Owner of job state
            import_service: Worker that runs jobs
            historical_store: Imported record storage
            ownership: Site ownership lookups
            cleanup_days: Age after which terminal jobs are deleted
            cleanup_interval_seconds: Delay between scheduled cleanups
        """
        self.job_manager = job_manager
        self.import_service = import_service
        self.historical_store = historical_store
        self.ownership = ownership
        self.cleanup_days = cleanup_days
        self.cleanup_interval_seconds = cleanup_interval_seconds

        self._tasks: dict[str, asyncio.Task] = {}
        self._cleanup_task: asyncio.Task | None = None

    async def _run(self, job_id: str, previous: asyncio.Task | None) -> None:
        # A worker for the same job may still be finishing an in-flight batch
        # after a cancel; never let two workers write for one job.
        if previous is not None:
            await asyncio.wait([previous])
        try:
            await self.import_service.run_job(job_id)
        except NotFoundException:
            logger.info("import_job_gone", job_id=job_id)

    def _spawn(self, job_id: str) -> asyncio.Task:
        previous = self._tasks.get(job_id)
        if previous is not None and previous.done():
            previous = None

        task = asyncio.create_task(self._run(job_id, previous), name=f"import-{job_id}")
        self._tasks[job_id] = task

        def _done(finished: asyncio.Task) -> None:
            if self._tasks.get(job_id) is finished:
                del self._tasks[job_id]

        task.add_done_callback(_done)
        return task

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def wait(self, job_id: str) -> None:
        """Wait for a job's worker task, if one is running."""
        task = self._tasks.get(job_id)
        if task is not None:
            await task

    async def _require_owner(self, user_id: str, resource_id: str) -> None:
        if not await self.ownership.is_owner(user_id, resource_id):
            raise ForbiddenException("Access denied to this site")

    async def get_job_for_user(self, job_id: str, user_id: str) -> ImportJob:
        """Fetch a job the user is allowed to see.

        Raises:
            NotFoundException: If the job does not exist
            ForbiddenException: If the user does not own the job's site
        """
        job = await self.job_manager.get_job(job_id)
        if job is None:
            raise NotFoundException("Job", job_id)
        await self._require_owner(user_id, job.resource_id)
        return job

    async def list_jobs(self, user_id: str, resource_id: str) -> list[ImportJob]:
        await self._require_owner(user_id, resource_id)
        return await self.job_manager.list_jobs_for_site(resource_id)

    async def submit(
        self,
        user_id: str,
        resource_id: str,
        external_property_id: str,
        start: date,
        end: date,
        format: str,
        report_type: ReportType | str = ReportType.OVERVIEW,
        estimated_rows: int | None = None,
        data: Any = None,
    ) -> ImportJob:
        """Create an import job and start it.

        API pulls run in the background; payload imports are parsed and
        stored before this returns.

        Raises:
            ForbiddenException: If the user does not own the site
            ValidationException: On an unsupported format, bad property id or bad payload
            ConflictException: If the site already has an active import
        """
        await self._require_owner(user_id, resource_id)

        try:
            source = DataSourceType(format)
        except ValueError:
            raise ValidationException(
                f"Unsupported format: {format}",
                details={"supported_formats": [s.value for s in DataSourceType]},
            ) from None

        records: list[dict[str, Any]] = []
        if source.is_payload:
            if data is None:
                raise ValidationException("Import data is required for this format")
            try:
                records = parse_import_payload(data, source)
            except ValueError as e:
                raise ValidationException("Failed to parse data", details={"error": str(e)}) from e
        elif not validate_property_id(external_property_id):
            raise ValidationException(
                "Invalid property ID format. Expected: properties/123456789"
            )

        job = await self.job_manager.create_job(
            resource_id,
            external_property_id,
            JobDateRange(start=start, end=end),
            estimated_rows=len(records) if source.is_payload else estimated_rows,
            user_id=user_id,
            report_type=report_type,
            format=source,
        )

        if source.is_payload:
            await self.import_service.import_records(job.id, records)
            return await self.job_manager.get_job(job.id) or job

        self._spawn(job.id)
        return job

    async def _require_api_job(self, job_id: str, user_id: str) -> None:
        job = await self.get_job_for_user(job_id, user_id)
        if job.format.is_payload:
            # Uploaded data is not kept, there is nothing to re-run
            raise ValidationException("Only API imports can be resumed or retried")

    async def resume(self, job_id: str, user_id: str) -> ImportJob:
        await self._require_api_job(job_id, user_id)
        job = await self.job_manager.resume_job(job_id)
        self._spawn(job.id)
        return job

    async def retry(self, job_id: str, user_id: str) -> ImportJob:
        await self._require_api_job(job_id, user_id)
        job = await self.job_manager.retry_failed_job(job_id)
        self._spawn(job.id)
        return job

    async def cancel(self, job_id: str, user_id: str) -> ImportJob:
        await self.get_job_for_user(job_id, user_id)
        return await self.job_manager.cancel_job(job_id)

    async def delete_import(self, job_id: str, user_id: str) -> int:
        """Cancel an import if active, then remove its stored records and the job.

        Returns:
            Number of historical records deleted
        """
        job = await self.get_job_for_user(job_id, user_id)
        if job.is_active:
            await self.job_manager.cancel_job(job_id)

        deleted_records = await self.historical_store.delete_for_import(job_id)
        await self.job_manager.delete_job(job_id)

        logger.info("import_deleted", job_id=job_id, records_deleted=deleted_records)
        return deleted_records

    async def recover_interrupted(self) -> int:
        """Restart API pulls left active by a previous process.

        Returns:
            Number of workers started
        """
        started = 0
        for job in await self.job_manager.store.list_active():
            if self.is_running(job.id):
                continue
            if job.format.is_payload:
                await self.job_manager.update_status(
                    job.id, ImportJobStatus.FAILED, error="Interrupted before completion"
                )
                continue
            self._spawn(job.id)
            started += 1
        if started:
            logger.info("interrupted_imports_restarted", count=started)
        return started

    async def cleanup(self, days_old: int | None = None) -> int:
        return await self.job_manager.cleanup_old_jobs(
            self.cleanup_days if days_old is None else days_old
        )

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval_seconds)
            try:
                await self.cleanup()
            except Exception as e:
                logger.error("scheduled_cleanup_failed", error=str(e))

    def start_scheduler(self) -> None:
        """Start periodic cleanup of old jobs."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="import-cleanup")

    async def close(self) -> None:
        """Stop the scheduler and worker tasks.

        Interrupted jobs stay active and are picked up by
        ``recover_interrupted`` on the next start.
        """
        tasks = list(self._tasks.values())
        if self._cleanup_task is not None:
            tasks.append(self._cleanup_task)
            self._cleanup_task = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
