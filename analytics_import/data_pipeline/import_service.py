"""Import service for loading report data into historical storage."""

from collections.abc import Callable
from dataclasses import replace
from typing import Any

import structlog

from analytics_import.core.exceptions import (
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from analytics_import.data_pipeline.adapters.base import ImportResult
from analytics_import.data_pipeline.adapters.google_analytics import GoogleAnalyticsClient
from analytics_import.data_pipeline.adapters.google_oauth import TokenManager
from analytics_import.data_pipeline.reports import build_report
from analytics_import.data_pipeline.transformers import (
    UNKNOWN_DATE_KEY,
    detect_date_range,
    dimension_fields,
    report_to_records,
    storage_key,
)
from analytics_import.import_engine.jobs import ImportJob, ImportJobStatus, utc_now
from analytics_import.import_engine.manager import ImportJobManager
from analytics_import.import_engine.stores import HistoricalStore

logger = structlog.get_logger(__name__)

# access token -> report client
ClientFactory = Callable[[str], GoogleAnalyticsClient]


class ImportService:
    """Runs import jobs: stores uploaded payloads or pulls reports batch by batch."""

    def __init__(
        self,
        job_manager: ImportJobManager,
        historical_store: HistoricalStore,
        token_manager: TokenManager | None = None,
        client_factory: ClientFactory | None = None,
        checkpoint_interval: int = 5,
    ):
        """Initialize import service.

        Args:
            job_manager: Owner of job state
            historical_store: Destination for imported records
            token_manager: Provides valid access tokens for API pulls
            client_factory: Builds a report client for an access token
            checkpoint_interval: Batches between checkpoints
        """
        self.job_manager = job_manager
        self.historical_store = historical_store
        self.token_manager = token_manager
        self.client_factory = client_factory or (lambda token: GoogleAnalyticsClient(token))
        self.checkpoint_interval = max(1, checkpoint_interval)

    async def _store_records(
        self,
        job: ImportJob,
        records: list[dict[str, Any]],
        fallback_key: str,
        offset: int = 0,
        dimensions: list[str] | None = None,
    ) -> int:
        """Store records, each tagged with its row position in the import."""
        for position, record in enumerate(records, start=offset):
            await self.historical_store.put_batch(
                job.resource_id,
                storage_key(record, fallback_key, dimensions),
                record,
                import_id=job.id,
                source=job.format.value,
                contribution_id=f"{job.id}:{position}",
            )
        return len(records)

    async def _fail(self, job_id: str, result: ImportResult, error: Exception) -> None:
        result.status = "failed"
        result.add_error(str(error))
        logger.error("import_job_error", job_id=job_id, error=str(error))

        job = await self.job_manager.get_job(job_id)
        if job is None or not job.is_active:
            # Cancelled or deleted while the failing batch ran
            return
        try:
            await self.job_manager.update_status(job_id, ImportJobStatus.FAILED, error=str(error))
        except InvalidStateException as e:
            logger.warning("import_job_fail_skipped", job_id=job_id, error=e.message)

    async def import_records(
        self,
        job_id: str,
        records: list[dict[str, Any]],
    ) -> ImportResult:
        """Store records parsed from an uploaded payload and complete the job.

        Args:
            job_id: Pending job created for the upload
            records: Parsed records

        Returns:
            Import result with statistics
        """
        job = await self.job_manager.get_job(job_id)
        if job is None:
            raise NotFoundException("Job", job_id)

        result = ImportResult(job_id=job_id, source=job.format, started_at=utc_now())

        try:
            await self.job_manager.update_status(job_id, ImportJobStatus.IN_PROGRESS)
            await self.job_manager.set_total_rows(job_id, len(records))

            async def write(current: ImportJob) -> None:
                result.records_stored = await self._store_records(
                    current, records, UNKNOWN_DATE_KEY
                )

            job = await self.job_manager.commit_batch(job_id, len(records), write)
            result.rows_processed = len(records)
            result.batches_processed = 1
            if job.status != ImportJobStatus.COMPLETED:
                await self.job_manager.update_status(job_id, ImportJobStatus.COMPLETED)
            result.status = "completed"

        except Exception as e:
            await self._fail(job_id, result, e)

        result.completed_at = utc_now()
        logger.info(
            "payload_import_finished",
            job_id=job_id,
            status=result.status,
            records_stored=result.records_stored,
            date_range=detect_date_range(records),
        )
        return result

    async def run_job(self, job_id: str) -> ImportResult:
        """Pull a job's report from the API until the data runs out.

        Each batch requests ``batch_size`` rows at the job's current offset,
        so a resumed job continues where it stopped. A batch is stored and
        counted in one step under the job's lock; a batch that finishes after
        the job was cancelled is discarded. Rows carry their position in the
        import, so a batch re-fetched after a failure is not counted twice.

        Returns:
            Import result with statistics
        """
        job = await self.job_manager.get_job(job_id)
        if job is None:
            raise NotFoundException("Job", job_id)

        result = ImportResult(job_id=job_id, source=job.format, started_at=utc_now())
        client: GoogleAnalyticsClient | None = None

        start = job.date_range.start.isoformat()
        end = job.date_range.end.isoformat()
        template = build_report(job.report_type, job.external_property_id, start, end)
        fallback_key = f"{start}_{end}"

        log = logger.bind(job_id=job_id, resource_id=job.resource_id)
        log.info("import_job_started", offset=job.imported_rows)

        try:
            if job.status == ImportJobStatus.PENDING:
                job = await self.job_manager.update_status(job_id, ImportJobStatus.IN_PROGRESS)

            while True:
                job = await self.job_manager.get_job(job_id)
                if job is None or not job.is_active:
                    result.status = job.status.value if job else "cancelled"
                    break

                access_token = await self._access_token(job)
                if client is None:
                    client = self.client_factory(access_token)
                else:
                    client.access_token = access_token

                offset = job.imported_rows
                page = await client.run_report(
                    replace(template, limit=job.batch_size, offset=offset)
                )
                records = report_to_records(page)
                dimensions = dimension_fields(page)

                async def write(current: ImportJob) -> None:
                    result.records_stored += await self._store_records(
                        current, records, fallback_key, offset, dimensions
                    )

                try:
                    if page.row_count and page.row_count != job.total_rows:
                        await self.job_manager.set_total_rows(job_id, page.row_count)
                    job = await self.job_manager.commit_batch(job_id, len(page.rows), write)
                except (InvalidStateException, NotFoundException) as e:
                    # Stopped while the batch was in flight
                    result.rows_discarded += len(page.rows)
                    result.status = e.details.get("status", "cancelled")
                    log.info("batch_discarded", rows=len(page.rows), status=result.status)
                    break

                result.rows_processed += len(page.rows)
                result.batches_processed += 1

                batch = job.current_batch
                if batch % self.checkpoint_interval == 0:
                    await self.job_manager.create_checkpoint(job_id)

                if job.status == ImportJobStatus.COMPLETED:
                    result.status = "completed"
                    break

                if len(page.rows) < job.batch_size:
                    await self.job_manager.update_status(job_id, ImportJobStatus.COMPLETED)
                    result.status = "completed"
                    break

        except Exception as e:
            await self._fail(job_id, result, e)
        finally:
            if client is not None:
                await client.close()

        result.completed_at = utc_now()
        log.info(
            "import_job_finished",
            status=result.status,
            batches=result.batches_processed,
            rows=result.rows_processed,
        )
        return result

    async def _access_token(self, job: ImportJob) -> str:
        if self.token_manager is None:
            raise ValidationException("No token manager configured for API imports")
        if not job.user_id:
            raise ValidationException("Import job has no owning user")
        tokens = await self.token_manager.get_valid_token(job.user_id)
        return tokens.access_token
