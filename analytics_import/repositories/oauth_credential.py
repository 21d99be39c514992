"""OAuth credential repository and the SQL-backed credential store."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_import.data_pipeline.adapters.google_oauth import OAuthTokenSet
from analytics_import.db.models import OAuthCredential
from analytics_import.db.session import get_db_context
from analytics_import.repositories.base import BaseRepository


class OAuthCredentialRepository(BaseRepository[OAuthCredential]):
    """Repository for OAuthCredential operations."""

    model = OAuthCredential

    async def get_by_user(self, user_id: str) -> OAuthCredential | None:
        return await self.first(OAuthCredential.user_id == user_id)


class SqlCredentialStore:
    """Credential store on the ``oauth_credentials`` table, one row per user."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_tokens(self, user_id: str) -> OAuthTokenSet | None:
        async with get_db_context(self.session_factory) as db:
            row = await OAuthCredentialRepository(db).get_by_user(user_id)
            if row is None:
                return None
            return OAuthTokenSet(
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                expires_at=row.expires_at,
                token_type=row.token_type,
                scope=row.scope,
            )

    async def save_tokens(self, user_id: str, tokens: OAuthTokenSet) -> None:
        async with get_db_context(self.session_factory) as db:
            repo = OAuthCredentialRepository(db)
            row = await repo.get_by_user(user_id)
            values = {"user_id": user_id, **tokens.to_dict()}
            if row is None:
                await repo.create(values)
            else:
                await repo.update(row, values)

    async def delete_tokens(self, user_id: str) -> None:
        async with get_db_context(self.session_factory) as db:
            repo = OAuthCredentialRepository(db)
            row = await repo.get_by_user(user_id)
            if row is not None:
                await repo.delete(row.id)
