"""Site repository and the SQL-backed ownership check."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_import.db.models import Site
from analytics_import.db.session import get_db_context
from analytics_import.repositories.base import BaseRepository, parse_uuid


class SiteRepository(BaseRepository[Site]):
    """Repository for Site operations."""

    model = Site

    async def is_owned_by(self, site_id: str, user_id: str) -> bool:
        key = parse_uuid(site_id)
        if key is None:
            return False
        return await self.count(Site.id == key, Site.user_id == user_id) > 0


class SqlOwnershipCheck:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def is_owner(self, user_id: str, resource_id: str) -> bool:
        async with get_db_context(self.session_factory) as db:
            return await SiteRepository(db).is_owned_by(resource_id, user_id)
