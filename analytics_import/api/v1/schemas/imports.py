"""Import-related Pydantic schemas."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from analytics_import.data_pipeline.adapters.base import DataSourceType
from analytics_import.data_pipeline.reports import ReportType
from analytics_import.import_engine.jobs import ImportJobStatus


class DateRangeSchema(BaseModel):
    """Inclusive date range."""

    model_config = ConfigDict(from_attributes=True)

    start: date
    end: date


class ImportCreate(BaseModel):
    """Request body for starting an import."""

    resource_id: str = Field(..., min_length=1, description="Site to import into")
    external_property_id: str = Field(
        ...,
        min_length=1,
        description="Source property, e.g. properties/123456789",
    )
    date_range: DateRangeSchema
    format: str = Field(..., description="ga4-api, json, csv or ua-csv")
    report_type: ReportType = ReportType.OVERVIEW
    estimated_rows: int | None = Field(None, ge=0)
    data: Any = Field(None, description="Exported payload for json/csv imports")


class CheckpointSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch: int
    rows_imported: int
    timestamp: datetime


class ImportJobSummary(BaseModel):
    """Import job as shown to the dashboard."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    resource_id: str
    external_property_id: str
    status: ImportJobStatus
    format: DataSourceType
    report_type: ReportType
    date_range: DateRangeSchema

    # Progress
    total_rows: int
    imported_rows: int
    batch_size: int
    current_batch: int
    total_batches: int
    progress: int

    # Recovery
    retry_count: int
    max_retries: int
    last_checkpoint: CheckpointSchema | None = None
    error: str | None = None

    # Timestamps
    started_at: datetime
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None


class ImportHistoryResponse(BaseModel):
    resource_id: str
    active_job_id: str | None = None
    imports: list[ImportJobSummary]


class ImportDeleteResponse(BaseModel):
    id: str
    deleted: bool = True
    records_deleted: int = 0
