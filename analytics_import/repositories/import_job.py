"""Import job repository and the SQL-backed job store."""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_import.core.exceptions import ConflictException, NotFoundException
from analytics_import.data_pipeline.adapters.base import DataSourceType
from analytics_import.data_pipeline.reports import ReportType
from analytics_import.db.models import ImportJobRecord
from analytics_import.db.session import get_db_context
from analytics_import.import_engine.jobs import (
    ACTIVE_STATUSES,
    Checkpoint,
    ImportJob,
    ImportJobStatus,
    JobDateRange,
)
from analytics_import.repositories.base import BaseRepository, parse_uuid

ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; stored times are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def job_to_row(job: ImportJob) -> dict[str, Any]:
    """Map a domain job to column values."""
    checkpoint = job.last_checkpoint
    return {
        "resource_id": job.resource_id,
        "external_property_id": job.external_property_id,
        "user_id": job.user_id,
        "report_type": job.report_type.value,
        "format": job.format.value,
        "status": job.status.value,
        "error": job.error,
        "start_date": job.date_range.start,
        "end_date": job.date_range.end,
        "total_rows": job.total_rows,
        "imported_rows": job.imported_rows,
        "batch_size": job.batch_size,
        "current_batch": job.current_batch,
        "retry_count": job.retry_count,
        "max_retries": job.max_retries,
        "checkpoint_batch": checkpoint.batch if checkpoint else None,
        "checkpoint_rows": checkpoint.rows_imported if checkpoint else None,
        "checkpoint_at": checkpoint.timestamp if checkpoint else None,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "failed_at": job.failed_at,
        "cancelled_at": job.cancelled_at,
    }


def row_to_job(row: ImportJobRecord) -> ImportJob:
    """Map a row back to a domain job."""
    checkpoint = None
    if row.checkpoint_at is not None:
        checkpoint = Checkpoint(
            batch=row.checkpoint_batch or 0,
            rows_imported=row.checkpoint_rows or 0,
            timestamp=_aware(row.checkpoint_at),
        )

    return ImportJob(
        id=str(row.id),
        resource_id=row.resource_id,
        external_property_id=row.external_property_id,
        date_range=JobDateRange(start=row.start_date, end=row.end_date),
        status=ImportJobStatus(row.status),
        user_id=row.user_id,
        report_type=ReportType(row.report_type),
        format=DataSourceType(row.format),
        total_rows=row.total_rows,
        imported_rows=row.imported_rows,
        batch_size=row.batch_size,
        current_batch=row.current_batch,
        retry_count=row.retry_count,
        max_retries=row.max_retries,
        last_checkpoint=checkpoint,
        error=row.error,
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        failed_at=_aware(row.failed_at),
        cancelled_at=_aware(row.cancelled_at),
    )


class ImportJobRepository(BaseRepository[ImportJobRecord]):
    """Repository for ImportJobRecord operations."""

    model = ImportJobRecord

    async def get_active_for_resource(self, resource_id: str) -> ImportJobRecord | None:
        """Get the pending or in-progress job for a site, if any."""
        return await self.first(
            ImportJobRecord.resource_id == resource_id,
            ImportJobRecord.status.in_(ACTIVE_VALUES),
        )

    async def get_active(self) -> Sequence[ImportJobRecord]:
        return await self.find(ImportJobRecord.status.in_(ACTIVE_VALUES))

    async def get_for_resource(self, resource_id: str) -> Sequence[ImportJobRecord]:
        """Get a site's jobs, newest first."""
        return await self.find(
            ImportJobRecord.resource_id == resource_id,
            order_by=ImportJobRecord.started_at.desc(),
        )

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs whose terminal timestamp is at or before cutoff."""
        return await self.delete_where(
            or_(
                and_(
                    ImportJobRecord.status == ImportJobStatus.COMPLETED.value,
                    ImportJobRecord.completed_at <= cutoff,
                ),
                and_(
                    ImportJobRecord.status == ImportJobStatus.FAILED.value,
                    ImportJobRecord.failed_at <= cutoff,
                ),
                and_(
                    ImportJobRecord.status == ImportJobStatus.CANCELLED.value,
                    ImportJobRecord.cancelled_at <= cutoff,
                ),
            )
        )


class SqlImportJobStore:
    """Job store on the ``import_jobs`` table.

    The partial unique index turns a second active job for a site into an
    ``IntegrityError``, reported as ``ConflictException``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def insert(self, job: ImportJob) -> None:
        try:
            async with get_db_context(self.session_factory) as db:
                await ImportJobRepository(db).create({"id": uuid.UUID(job.id), **job_to_row(job)})
        except IntegrityError as e:
            raise ConflictException(
                f"An import is already in progress for site {job.resource_id}"
            ) from e

    async def save(self, job: ImportJob) -> None:
        try:
            async with get_db_context(self.session_factory) as db:
                repo = ImportJobRepository(db)
                row = await repo.get(uuid.UUID(job.id))
                if row is None:
                    raise NotFoundException("Job", job.id)
                await repo.update(row, job_to_row(job))
        except IntegrityError as e:
            raise ConflictException(
                f"Another import is already in progress for site {job.resource_id}"
            ) from e

    async def get(self, job_id: str) -> ImportJob | None:
        key = parse_uuid(job_id)
        if key is None:
            return None
        async with get_db_context(self.session_factory) as db:
            row = await ImportJobRepository(db).get(key)
            return row_to_job(row) if row else None

    async def delete(self, job_id: str) -> bool:
        key = parse_uuid(job_id)
        if key is None:
            return False
        async with get_db_context(self.session_factory) as db:
            return await ImportJobRepository(db).delete(key)

    async def find_active(self, resource_id: str) -> ImportJob | None:
        async with get_db_context(self.session_factory) as db:
            row = await ImportJobRepository(db).get_active_for_resource(resource_id)
            return row_to_job(row) if row else None

    async def list_active(self) -> list[ImportJob]:
        async with get_db_context(self.session_factory) as db:
            return [row_to_job(r) for r in await ImportJobRepository(db).get_active()]

    async def list_for_resource(self, resource_id: str) -> list[ImportJob]:
        async with get_db_context(self.session_factory) as db:
            rows = await ImportJobRepository(db).get_for_resource(resource_id)
            return [row_to_job(r) for r in rows]

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        async with get_db_context(self.session_factory) as db:
            return await ImportJobRepository(db).delete_terminal_before(cutoff)
