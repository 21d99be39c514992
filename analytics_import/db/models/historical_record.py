"""HistoricalRecord model - imported analytics per day or per dimension value."""

from typing import Any

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from analytics_import.db.base import Base, TimestampMixin


class HistoricalRecord(Base, TimestampMixin):
    """Merged imported metrics for one site and one date key."""

    __tablename__ = "historical_records"

    resource_id: Mapped[str] = mapped_column(String(100), nullable=False)
    date_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="YYYY-MM-DD, or start_end:dimension values for reports without a date",
    )
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=dict,
    )

    # Source rows already merged in, see SqlHistoricalStore.put_batch
    contributions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Provenance of the last write
    import_id: Mapped[str | None] = mapped_column(String(36))
    source: Mapped[str | None] = mapped_column(String(20))

    __table_args__ = (
        UniqueConstraint("resource_id", "date_key", name="uq_historical_resource_date"),
        Index("idx_historical_import", "import_id"),
    )
