"""Base adapter interface for reporting data sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from analytics_import.data_pipeline.reports import Property, ReportRequest, ReportResponse


class DataSourceType(str, Enum):
    """Supported import formats.

    ``GA4_API`` pulls from the reporting API in batches; the other
    formats carry an exported payload in the request itself.
    """

    GA4_API = "ga4-api"
    JSON = "json"
    CSV = "csv"
    UA_CSV = "ua-csv"

    @property
    def is_payload(self) -> bool:
        """Check if the format carries its data inline."""
        return self is not DataSourceType.GA4_API


@dataclass
class ImportResult:
    """Result of running one import job."""

    job_id: str
    source: DataSourceType
    started_at: datetime
    completed_at: datetime | None = None
    status: str = "running"  # running, completed, failed, cancelled

    batches_processed: int = 0
    rows_processed: int = 0
    records_stored: int = 0
    rows_discarded: int = 0

    errors: list[str] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        """Add an error message."""
        self.errors.append(error)

    @property
    def has_errors(self) -> bool:
        """Check if import had errors."""
        return len(self.errors) > 0


class ReportSource(ABC):
    """Abstract base class for paginated dimension/metric report sources."""

    @property
    @abstractmethod
    def source_type(self) -> DataSourceType:
        """Return the type of this data source."""
        ...

    @abstractmethod
    async def list_properties(self) -> list["Property"]:
        """List the properties the current credentials can read."""
        ...

    @abstractmethod
    async def run_report(self, request: "ReportRequest") -> "ReportResponse":
        """Run a single report page.

        Args:
            request: Report definition including limit and offset

        Returns:
            One page of report rows
        """
        ...

    @abstractmethod
    async def run_report_with_pagination(
        self,
        request: "ReportRequest",
        *,
        page_size: int | None = None,
        max_results: int | None = None,
    ) -> "ReportResponse":
        """Run a report across pages until data or the result cap runs out."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None

    async def health_check(self) -> bool:
        """Check if the data source is accessible.

        Returns:
            True if accessible, False otherwise
        """
        return True
