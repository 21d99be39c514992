"""Historical record repository and the SQL-backed historical store."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_import.data_pipeline.transformers import merge_historical_data
from analytics_import.db.models import HistoricalRecord
from analytics_import.db.session import get_db_context
from analytics_import.repositories.base import BaseRepository


class HistoricalRecordRepository(BaseRepository[HistoricalRecord]):
    """Repository for HistoricalRecord operations."""

    model = HistoricalRecord

    async def get_by_key(self, resource_id: str, date_key: str) -> HistoricalRecord | None:
        return await self.first(
            HistoricalRecord.resource_id == resource_id,
            HistoricalRecord.date_key == date_key,
        )

    async def delete_by_import(self, import_id: str) -> int:
        """Remove every record last written by an import."""
        return await self.delete_where(HistoricalRecord.import_id == import_id)


class SqlHistoricalStore:
    """Historical store on the ``historical_records`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def put_batch(
        self,
        resource_id: str,
        date_key: str,
        record: dict[str, Any],
        *,
        import_id: str | None = None,
        source: str | None = None,
        contribution_id: str | None = None,
    ) -> None:
        """Merge a record into the stored one for the same site and date key.

        A record whose ``contribution_id`` is already listed on the row was
        merged by an earlier attempt and is skipped.
        """
        contributions = [contribution_id] if contribution_id else []
        async with get_db_context(self.session_factory) as db:
            repo = HistoricalRecordRepository(db)
            existing = await repo.get_by_key(resource_id, date_key)

            if existing is None:
                await repo.create(
                    {
                        "resource_id": resource_id,
                        "date_key": date_key,
                        "data": merge_historical_data(None, record),
                        "contributions": contributions,
                        "import_id": import_id,
                        "source": source,
                    }
                )
                return

            if contribution_id and contribution_id in existing.contributions:
                return

            await repo.update(
                existing,
                {
                    "contributions": [*existing.contributions, *contributions],
                    # New dict so the JSON column registers the change
                    "data": merge_historical_data(existing.data, record),
                    "import_id": import_id,
                    "source": source,
                },
            )

    async def get(self, resource_id: str, date_key: str) -> dict[str, Any] | None:
        async with get_db_context(self.session_factory) as db:
            row = await HistoricalRecordRepository(db).get_by_key(resource_id, date_key)
            return dict(row.data) if row else None

    async def delete_for_import(self, import_id: str) -> int:
        async with get_db_context(self.session_factory) as db:
            return await HistoricalRecordRepository(db).delete_by_import(import_id)
