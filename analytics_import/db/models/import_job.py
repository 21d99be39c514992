"""ImportJob model - historical data import jobs."""

from datetime import date, datetime

from sqlalchemy import CheckConstraint, Date, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from analytics_import.db.base import Base, TimestampMixin

ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'in_progress')"


class ImportJobRecord(Base, TimestampMixin):
    """Import job row.

    The partial unique index on ``resource_id`` over active statuses makes
    the database reject a second pending/in-progress job for one site.
    """

    __tablename__ = "import_jobs"

    # Target and source
    resource_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Site the data is imported into",
    )
    external_property_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Source property (properties/123456789)",
    )
    user_id: Mapped[str | None] = mapped_column(
        String(100),
        comment="User who requested the import",
    )
    report_type: Mapped[str] = mapped_column(String(20), nullable=False, default="overview")
    format: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="ga4-api",
        comment="ga4-api, json, csv, ua-csv",
    )

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="pending, in_progress, completed, failed, cancelled",
    )
    error: Mapped[str | None] = mapped_column(Text)

    # Date range (inclusive)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Progress
    total_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    imported_rows: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    current_batch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Recovery
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    checkpoint_batch: Mapped[int | None] = mapped_column(Integer)
    checkpoint_rows: Mapped[int | None] = mapped_column(Integer)
    checkpoint_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Timestamps
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Indexes
    __table_args__ = (
        Index(
            "uq_import_jobs_active_resource",
            "resource_id",
            unique=True,
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
        ),
        Index("idx_import_jobs_resource_started", "resource_id", "started_at"),
        Index("idx_import_jobs_status", "status"),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'failed', 'cancelled')",
            name="ck_import_jobs_status",
        ),
        CheckConstraint("imported_rows >= 0", name="ck_import_jobs_imported_rows"),
    )

    def __repr__(self) -> str:
        return f"<ImportJobRecord {self.id} {self.resource_id} {self.status}>"
