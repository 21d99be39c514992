"""Import job domain model and its status transitions."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum

from analytics_import.core.exceptions import InvalidStateException
from analytics_import.data_pipeline.adapters.base import DataSourceType
from analytics_import.data_pipeline.reports import ReportType

DEFAULT_BATCH_SIZE = 1000
DEFAULT_MAX_RETRIES = 3


def utc_now() -> datetime:
    return datetime.now(UTC)


class ImportJobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({ImportJobStatus.PENDING, ImportJobStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset(
    {ImportJobStatus.COMPLETED, ImportJobStatus.FAILED, ImportJobStatus.CANCELLED}
)


@dataclass(frozen=True)
class JobDateRange:
    """Inclusive range of days to import. Fixed once the job exists."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


@dataclass(frozen=True)
class Checkpoint:
    """Progress snapshot a resumed job continues from."""

    batch: int
    rows_imported: int
    timestamp: datetime


@dataclass
class ImportJob:
    """One historical data pull for one site.

    ``status`` only changes through ``mark``, which also keeps exactly one
    terminal timestamp in step with a terminal status.
    """

    resource_id: str
    external_property_id: str
    date_range: JobDateRange
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ImportJobStatus = ImportJobStatus.PENDING

    user_id: str | None = None
    report_type: ReportType = ReportType.OVERVIEW
    format: DataSourceType = DataSourceType.GA4_API

    # Progress
    total_rows: int = 0
    imported_rows: int = 0
    batch_size: int = DEFAULT_BATCH_SIZE
    current_batch: int = 0

    # Recovery
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    last_checkpoint: Checkpoint | None = None
    error: str | None = None

    # Timestamps
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @property
    def total_batches(self) -> int:
        """Number of batches needed, 0 while the row total is unknown."""
        if self.total_rows <= 0:
            return 0
        return -(-self.total_rows // self.batch_size)

    @property
    def progress(self) -> int:
        """Percent complete, rounded half up."""
        if self.status == ImportJobStatus.COMPLETED:
            return 100
        if self.total_rows <= 0:
            return 0
        return (self.imported_rows * 200 + self.total_rows) // (2 * self.total_rows)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def terminal_at(self) -> datetime | None:
        """Timestamp of the terminal status, if the job is terminal."""
        return {
            ImportJobStatus.COMPLETED: self.completed_at,
            ImportJobStatus.FAILED: self.failed_at,
            ImportJobStatus.CANCELLED: self.cancelled_at,
        }.get(self.status)

    def mark(
        self,
        status: ImportJobStatus,
        now: datetime,
        error: str | None = None,
    ) -> None:
        """Move to ``status``.

        Completed is absorbing. Reaching a terminal status stamps its own
        timestamp and clears the others; going back to an active status
        clears all of them along with any error.
        """
        status = ImportJobStatus(status)
        if self.status == ImportJobStatus.COMPLETED and status != ImportJobStatus.COMPLETED:
            raise InvalidStateException(
                f"Cannot change status of a completed job to {status.value}",
                current_status=self.status.value,
            )
        if status == self.status and status.is_terminal:
            if status == ImportJobStatus.FAILED and error:
                self.error = error
            return

        self.status = status
        self.completed_at = now if status == ImportJobStatus.COMPLETED else None
        self.failed_at = now if status == ImportJobStatus.FAILED else None
        self.cancelled_at = now if status == ImportJobStatus.CANCELLED else None

        if status == ImportJobStatus.FAILED:
            self.error = error or "Import failed"
        elif status.is_active:
            self.error = None

        if status == ImportJobStatus.COMPLETED and self.imported_rows > self.total_rows:
            self.total_rows = self.imported_rows

    def snapshot(self, now: datetime) -> Checkpoint:
        return Checkpoint(batch=self.current_batch, rows_imported=self.imported_rows, timestamp=now)
