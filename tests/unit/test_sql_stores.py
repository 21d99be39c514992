"""Tests for the SQL-backed stores on an in-memory SQLite database."""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from analytics_import.core.exceptions import ConflictException
from analytics_import.data_pipeline.adapters.google_oauth import OAuthTokenSet
from analytics_import.db.base import Base
from analytics_import.db.models import Site
from analytics_import.import_engine import (
    ImportJob,
    ImportJobManager,
    ImportJobStatus,
    JobDateRange,
)
from analytics_import.repositories import (
    SqlCredentialStore,
    SqlHistoricalStore,
    SqlImportJobStore,
    SqlOwnershipCheck,
)

RANGE = JobDateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh schema on a single shared SQLite connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def job_store(session_factory) -> SqlImportJobStore:
    return SqlImportJobStore(session_factory)


class TestSqlImportJobStore:
    """Tests for SqlImportJobStore."""

    @pytest.mark.asyncio
    async def test_round_trip(self, job_store):
        job = ImportJob("site-1", "properties/1", RANGE, user_id="user-1", total_rows=100)
        await job_store.insert(job)

        loaded = await job_store.get(job.id)

        assert loaded.id == job.id
        assert loaded.date_range == RANGE
        assert loaded.status == ImportJobStatus.PENDING
        assert loaded.total_rows == 100
        assert loaded.started_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_ids(self, job_store):
        assert await job_store.get(str(uuid.uuid4())) is None
        assert await job_store.get("not-a-uuid") is None
        assert not await job_store.delete("not-a-uuid")

    @pytest.mark.asyncio
    async def test_database_rejects_second_active_job(self, job_store):
        """Test the partial unique index backs the one-active-job rule."""
        await job_store.insert(ImportJob("site-1", "properties/1", RANGE))

        with pytest.raises(ConflictException):
            await job_store.insert(ImportJob("site-1", "properties/1", RANGE))

    @pytest.mark.asyncio
    async def test_terminal_jobs_do_not_conflict(self, job_store):
        first = ImportJob("site-1", "properties/1", RANGE)
        await job_store.insert(first)
        first.mark(ImportJobStatus.CANCELLED, datetime.now(UTC))
        await job_store.save(first)

        await job_store.insert(ImportJob("site-1", "properties/1", RANGE))

        assert len(await job_store.list_for_resource("site-1")) == 2
        assert (await job_store.find_active("site-1")).id != first.id

    @pytest.mark.asyncio
    async def test_manager_on_sql_store(self, job_store):
        """Test the full lifecycle persists through the SQL store."""
        manager = ImportJobManager(job_store, batch_size=10)
        job = await manager.create_job("site-1", "properties/1", RANGE, 25, user_id="user-1")

        await manager.update_progress(job.id, 10, 1)
        await manager.create_checkpoint(job.id)
        await manager.update_progress(job.id, 25, 3)

        job = await manager.get_job(job.id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.completed_at is not None
        assert job.last_checkpoint.rows_imported == 10
        assert not await manager.has_active_import("site-1")

    @pytest.mark.asyncio
    async def test_cleanup(self, job_store):
        now = datetime.now(UTC)
        manager = ImportJobManager(job_store, clock=lambda: now - timedelta(days=40))
        for i in range(5):
            job = await manager.create_job(f"site-{i}", "properties/1", RANGE)
            await manager.update_status(job.id, ImportJobStatus.FAILED, error="x")
        active = await manager.create_job("site-active", "properties/1", RANGE)

        deleted = await ImportJobManager(job_store).cleanup_old_jobs(30)

        assert deleted == 5
        assert await job_store.get(active.id) is not None


class TestSqlHistoricalStore:
    """Tests for SqlHistoricalStore."""

    @pytest.mark.asyncio
    async def test_merges_on_same_key(self, session_factory):
        store = SqlHistoricalStore(session_factory)

        await store.put_batch("site-1", "2024-01-01", {"sessions": 3, "page": "/a"}, import_id="j1")
        await store.put_batch("site-1", "2024-01-01", {"sessions": 4, "page": "/b"}, import_id="j1")

        record = await store.get("site-1", "2024-01-01")
        assert record == {"sessions": 7, "page": "/b"}

    @pytest.mark.asyncio
    async def test_repeated_contribution_is_merged_once(self, session_factory):
        """Test a row written again by a retried batch is not summed twice."""
        store = SqlHistoricalStore(session_factory)

        for _ in range(2):
            await store.put_batch(
                "site-1", "2024-01-01", {"sessions": 3}, import_id="j1", contribution_id="j1:0"
            )
        await store.put_batch(
            "site-1", "2024-01-01", {"sessions": 4}, import_id="j1", contribution_id="j1:1"
        )

        assert await store.get("site-1", "2024-01-01") == {"sessions": 7}

    @pytest.mark.asyncio
    async def test_delete_for_import(self, session_factory):
        store = SqlHistoricalStore(session_factory)
        await store.put_batch("site-1", "2024-01-01", {"sessions": 1}, import_id="j1")
        await store.put_batch("site-1", "2024-01-02", {"sessions": 1}, import_id="j1")
        await store.put_batch("site-1", "2024-01-03", {"sessions": 1}, import_id="j2")

        assert await store.delete_for_import("j1") == 2
        assert await store.get("site-1", "2024-01-01") is None
        assert await store.get("site-1", "2024-01-03") is not None


class TestSqlCredentialStore:
    @pytest.mark.asyncio
    async def test_save_load_delete(self, session_factory):
        store = SqlCredentialStore(session_factory)
        tokens = OAuthTokenSet("access", "refresh", 1_700_000_000_000, scope="s")

        await store.save_tokens("user-1", tokens)
        await store.save_tokens("user-1", OAuthTokenSet("access-2", "refresh", 1, scope="s"))

        assert (await store.load_tokens("user-1")).access_token == "access-2"
        await store.delete_tokens("user-1")
        assert await store.load_tokens("user-1") is None


class TestSqlOwnershipCheck:
    @pytest.mark.asyncio
    async def test_is_owner(self, session_factory):
        site_id = uuid.uuid4()
        async with session_factory() as session:
            session.add(Site(id=site_id, user_id="user-1", domain="example.com"))
            await session.commit()

        check = SqlOwnershipCheck(session_factory)
        assert await check.is_owner("user-1", str(site_id))
        assert not await check.is_owner("user-2", str(site_id))
        assert not await check.is_owner("user-1", "not-a-uuid")
