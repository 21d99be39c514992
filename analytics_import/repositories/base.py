"""Base repository shared by the SQL stores."""

import uuid
from collections.abc import Sequence
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from analytics_import.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


def parse_uuid(value: str | uuid.UUID) -> uuid.UUID | None:
    """Parse an id coming from outside; None if it is not a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class BaseRepository(Generic[ModelType]):
    """Row access for one model inside a caller-owned session.

    Repositories flush but never commit; the session context that created
    them decides the transaction boundary. Subclass and set ``model``:

        class SiteRepository(BaseRepository[Site]):
            model = Site
    """

    model: type[ModelType]

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get(self, id: uuid.UUID) -> ModelType | None:
        """Get a row by primary key."""
        return await self.db.get(self.model, id)

    async def first(self, *conditions) -> ModelType | None:
        """First row matching all conditions, if any."""
        result = await self.db.execute(select(self.model).where(*conditions).limit(1))
        return result.scalars().first()

    async def find(self, *conditions, order_by=None) -> Sequence[ModelType]:
        """All rows matching the conditions.

        Args:
            *conditions: SQLAlchemy filter conditions
            order_by: Optional ordering clause

        Returns:
            Matching rows
        """
        query = select(self.model).where(*conditions)
        if order_by is not None:
            query = query.order_by(order_by)
        result = await self.db.execute(query)
        return result.scalars().all()

    async def count(self, *conditions) -> int:
        query = select(func.count()).select_from(self.model)
        if conditions:
            query = query.where(*conditions)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def create(self, values: dict[str, Any]) -> ModelType:
        """Insert a row and flush so constraint violations surface here.

        Raises:
            IntegrityError: If a unique index or constraint rejects the row
        """
        row = self.model(**values)
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def update(self, row: ModelType, values: dict[str, Any]) -> ModelType:
        """Apply column values to a loaded row and flush."""
        for column, value in values.items():
            if hasattr(row, column):
                setattr(row, column, value)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def delete(self, id: uuid.UUID) -> bool:
        """Delete a row by primary key. Returns False if it did not exist."""
        row = await self.get(id)
        if row is None:
            return False
        await self.db.delete(row)
        await self.db.flush()
        return True

    async def delete_where(self, *conditions) -> int:
        """Bulk delete matching rows.

        Returns:
            Number of rows deleted
        """
        result = await self.db.execute(delete(self.model).where(*conditions))
        return result.rowcount or 0
