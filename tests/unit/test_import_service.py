"""Unit tests for the import worker and orchestrator."""

import asyncio
import json
from datetime import date

import pytest

from analytics_import.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateException,
    NotFoundException,
    ValidationException,
)
from analytics_import.data_pipeline.reports import ReportResponse
from analytics_import.import_engine import ImportJobStatus, InMemoryHistoricalStore, JobDateRange
from tests.conftest import OTHER_USER_ID, PROPERTY_ID, SITE_ID, USER_ID

RANGE = JobDateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))


class CancellingClient:
    """Report client that cancels its job while the request is in flight."""

    def __init__(self, manager, job_id, page: ReportResponse):
        self.manager = manager
        self.job_id = job_id
        self.page = page
        self.access_token = None

    async def run_report(self, request):
        await self.manager.cancel_job(self.job_id)
        return self.page

    async def close(self):
        return None


class InterruptedStore(InMemoryHistoricalStore):
    """Historical store that runs ``on_write`` before its n-th write."""

    def __init__(self, at_call: int, on_write):
        super().__init__()
        self.at_call = at_call
        self.on_write = on_write
        self.calls = 0

    async def put_batch(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self.at_call:
            await self.on_write()
        await super().put_batch(*args, **kwargs)


class TestRunJob:
    """Tests for ImportService.run_job against the fake API."""

    @pytest.mark.asyncio
    async def test_imports_all_batches(self, services, fake_api, historical_store, connected_user):
        """Test 25 rows at batch size 10 finish in three batches."""
        fake_api.total_rows = 25
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )

        result = await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert result.status == "completed"
        assert result.batches_processed == 3
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 25
        assert job.total_rows == 25
        assert job.current_batch == 3
        assert job.progress == 100
        assert len(fake_api.report_calls) == 3
        assert len(historical_store) == 25

        record = await historical_store.get(SITE_ID, "2024-01-01")
        assert record["sessions"] == 1
        assert record["_import_id"] == job.id
        assert record["_source"] == "ga4-api"

    @pytest.mark.asyncio
    async def test_empty_report_completes(self, services, fake_api, connected_user):
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )

        result = await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert result.status == "completed"
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 0

    @pytest.mark.asyncio
    async def test_checkpoints_every_interval(self, services, fake_api, connected_user):
        fake_api.total_rows = 65
        services.import_service.checkpoint_interval = 2
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )

        await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert job.last_checkpoint.batch == 6
        assert job.last_checkpoint.rows_imported == 60

    @pytest.mark.asyncio
    async def test_api_error_fails_job(self, services, fake_api, connected_user):
        fake_api.total_rows = 25
        fake_api.report_failures = [403]
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )

        result = await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert result.status == "failed"
        assert job.status == ImportJobStatus.FAILED
        assert job.error == "API Error 403: status 403"
        assert job.failed_at is not None

    @pytest.mark.asyncio
    async def test_missing_connection_fails_job(self, services, fake_api):
        job = await services.job_manager.create_job(SITE_ID, PROPERTY_ID, RANGE, user_id=USER_ID)

        await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert job.status == ImportJobStatus.FAILED
        assert "not found" in job.error
        assert fake_api.report_calls == []

    @pytest.mark.asyncio
    async def test_resume_continues_from_offset(self, services, fake_api, connected_user):
        """Test a resumed job requests rows from where it stopped."""
        fake_api.total_rows = 25
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, 25, user_id=connected_user
        )
        await services.job_manager.update_progress(job.id, 10, 1)
        await services.job_manager.cancel_job(job.id)
        await services.job_manager.resume_job(job.id)

        await services.import_service.run_job(job.id)

        assert json.loads(fake_api.report_calls[0].content)["offset"] == 10
        job = await services.job_manager.get_job(job.id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 25

    @pytest.mark.asyncio
    async def test_batch_after_cancel_is_discarded(
        self, services, fake_api, historical_store, connected_user
    ):
        """Test rows fetched after a cancel are neither stored nor counted."""
        fake_api.total_rows = 5
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )
        page = ReportResponse.from_payload(
            {
                "dimensionHeaders": [{"name": "date"}],
                "metricHeaders": [{"name": "sessions"}],
                "rows": [
                    {"dimensionValues": [{"value": "20240101"}], "metricValues": [{"value": "3"}]}
                ],
                "rowCount": 1,
            }
        )
        services.import_service.client_factory = lambda token: CancellingClient(
            services.job_manager, job.id, page
        )

        result = await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert result.status == "cancelled"
        assert result.rows_discarded == 1
        assert job.status == ImportJobStatus.CANCELLED
        assert job.imported_rows == 0
        assert len(historical_store) == 0

    @pytest.mark.asyncio
    async def test_cancel_during_writes_then_resume(self, services, fake_api, connected_user):
        """Test a cancel landing mid-batch never leaves rows stored but uncounted."""
        fake_api.total_rows = 25
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )
        tasks = []

        async def cancel_in_background():
            tasks.append(asyncio.create_task(services.job_manager.cancel_job(job.id)))
            await asyncio.sleep(0)

        store = InterruptedStore(at_call=15, on_write=cancel_in_background)
        services.import_service.historical_store = store

        result = await services.import_service.run_job(job.id)
        await asyncio.gather(*tasks)

        cancelled = await services.job_manager.get_job(job.id)
        assert result.status == "cancelled"
        assert cancelled.status == ImportJobStatus.CANCELLED
        assert cancelled.imported_rows == 20
        assert len(store) == 20

        await services.job_manager.resume_job(job.id)
        await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 25
        assert len(store) == 25
        assert (await store.get(SITE_ID, "2024-01-12"))["sessions"] == 12

    @pytest.mark.asyncio
    async def test_retry_after_partial_batch_does_not_double_count(
        self, services, fake_api, connected_user
    ):
        """Test rows written before a mid-batch failure are not merged again on retry."""
        fake_api.total_rows = 25
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )

        async def fail_once():
            raise RuntimeError("storage unavailable")

        store = InterruptedStore(at_call=15, on_write=fail_once)
        services.import_service.historical_store = store

        result = await services.import_service.run_job(job.id)

        failed = await services.job_manager.get_job(job.id)
        assert result.status == "failed"
        assert failed.status == ImportJobStatus.FAILED
        assert failed.imported_rows == 10
        assert len(store) == 14

        await services.job_manager.retry_failed_job(job.id)
        await services.import_service.run_job(job.id)

        job = await services.job_manager.get_job(job.id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 25
        for day in range(1, 26):
            record = await store.get(SITE_ID, f"2024-01-{day:02d}")
            assert record["sessions"] == day

    @pytest.mark.asyncio
    async def test_undated_report_rows_stay_separate(
        self, services, fake_api, historical_store, connected_user
    ):
        """Test each page of a pages report is stored under its own key."""
        fake_api.total_rows = 5
        job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user, report_type="pages"
        )

        await services.import_service.run_job(job.id)

        assert len(historical_store) == 5
        record = await historical_store.get(
            SITE_ID, "2024-01-01_2024-01-31:pagePath-3|pageTitle-3"
        )
        assert record["page"] == "pagePath-3"
        assert record["title"] == "pageTitle-3"
        assert record["sessions"] == 4


class TestImportRecords:
    @pytest.mark.asyncio
    async def test_payload_completes_job(self, services, historical_store):
        job = await services.job_manager.create_job(
            SITE_ID, "", RANGE, user_id=USER_ID, format="json"
        )
        records = [{"date": "2024-01-01", "sessions": 2}, {"page": "/", "sessions": 1}]

        result = await services.import_service.import_records(job.id, records)

        job = await services.job_manager.get_job(job.id)
        assert result.status == "completed"
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 2
        assert (await historical_store.get(SITE_ID, "unknown:/"))["sessions"] == 1


class TestOrchestrator:
    """Tests for ImportOrchestrator."""

    @pytest.mark.asyncio
    async def test_submit_runs_in_background(self, services, fake_api, connected_user):
        fake_api.total_rows = 15

        job = await services.orchestrator.submit(
            USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 1, 31), "ga4-api"
        )
        await services.orchestrator.wait(job.id)

        job = await services.job_manager.get_job(job.id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 15

    @pytest.mark.asyncio
    async def test_submit_requires_ownership(self, services):
        with pytest.raises(ForbiddenException):
            await services.orchestrator.submit(
                OTHER_USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 1, 2), "ga4-api"
            )

    @pytest.mark.asyncio
    async def test_submit_validates_property(self, services):
        with pytest.raises(ValidationException) as exc_info:
            await services.orchestrator.submit(
                USER_ID, SITE_ID, "123", date(2024, 1, 1), date(2024, 1, 2), "ga4-api"
            )
        assert exc_info.value.message == "Invalid property ID format. Expected: properties/123456789"

    @pytest.mark.asyncio
    async def test_submit_unsupported_format(self, services):
        with pytest.raises(ValidationException) as exc_info:
            await services.orchestrator.submit(
                USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 1, 2), "xml"
            )
        assert "ga4-api" in exc_info.value.details["supported_formats"]

    @pytest.mark.asyncio
    async def test_submit_payload(self, services, historical_store):
        job = await services.orchestrator.submit(
            USER_ID,
            SITE_ID,
            "",
            date(2024, 1, 1),
            date(2024, 1, 2),
            "csv",
            data="date,sessions\n20240101,4\n20240102,6",
        )

        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 2
        assert (await historical_store.get(SITE_ID, "2024-01-02"))["sessions"] == 6

    @pytest.mark.asyncio
    async def test_submit_payload_required(self, services):
        with pytest.raises(ValidationException):
            await services.orchestrator.submit(
                USER_ID, SITE_ID, "", date(2024, 1, 1), date(2024, 1, 2), "json"
            )

    @pytest.mark.asyncio
    async def test_submit_conflict(self, services, fake_api, connected_user):
        fake_api.total_rows = 15
        job = await services.orchestrator.submit(
            USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 1, 31), "ga4-api"
        )
        with pytest.raises(ConflictException):
            await services.orchestrator.submit(
                USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 1, 31), "ga4-api"
            )
        await services.orchestrator.wait(job.id)

    @pytest.mark.asyncio
    async def test_submit_unparsable_payload(self, services):
        with pytest.raises(ValidationException) as exc_info:
            await services.orchestrator.submit(
                USER_ID, SITE_ID, "", date(2024, 1, 1), date(2024, 1, 2), "json", data="{oops"
            )
        assert exc_info.value.message == "Failed to parse data"
        assert not await services.job_manager.has_active_import(SITE_ID)

    @pytest.mark.asyncio
    async def test_payload_jobs_cannot_be_retried(self, services):
        job = await services.job_manager.create_job(
            SITE_ID, "", RANGE, user_id=USER_ID, format="csv"
        )
        await services.job_manager.update_status(job.id, ImportJobStatus.FAILED, error="x")

        with pytest.raises(ValidationException) as exc_info:
            await services.orchestrator.retry(job.id, USER_ID)
        assert exc_info.value.message == "Only API imports can be resumed or retried"

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, services, fake_api, connected_user):
        fake_api.total_rows = 5
        fake_api.report_failures = [403]
        job = await services.orchestrator.submit(
            USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 1, 31), "ga4-api"
        )
        await services.orchestrator.wait(job.id)
        assert (await services.job_manager.get_job(job.id)).status == ImportJobStatus.FAILED

        job = await services.orchestrator.retry(job.id, USER_ID)
        assert job.retry_count == 1
        await services.orchestrator.wait(job.id)

        job = await services.job_manager.get_job(job.id)
        assert job.status == ImportJobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_delete_import_removes_records(self, services, historical_store):
        job = await services.orchestrator.submit(
            USER_ID,
            SITE_ID,
            "",
            date(2024, 1, 1),
            date(2024, 1, 2),
            "csv",
            data="date,sessions\n20240101,4\n20240102,6",
        )

        deleted = await services.orchestrator.delete_import(job.id, USER_ID)

        assert deleted == 2
        assert len(historical_store) == 0
        with pytest.raises(NotFoundException):
            await services.orchestrator.get_job_for_user(job.id, USER_ID)

    @pytest.mark.asyncio
    async def test_cancel_then_resume_never_runs_two_workers(
        self, services, fake_api, connected_user
    ):
        fake_api.total_rows = 45
        job = await services.orchestrator.submit(
            USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 2, 28), "ga4-api"
        )
        try:
            await services.orchestrator.cancel(job.id, USER_ID)
        except InvalidStateException:
            # The worker may already have finished
            pass
        job = await services.job_manager.get_job(job.id)
        if job.status == ImportJobStatus.CANCELLED:
            await services.orchestrator.resume(job.id, USER_ID)
        await services.orchestrator.wait(job.id)

        job = await services.job_manager.get_job(job.id)
        assert job.status == ImportJobStatus.COMPLETED
        assert job.imported_rows == 45

    @pytest.mark.asyncio
    async def test_recover_interrupted(self, services, fake_api, connected_user):
        fake_api.total_rows = 5
        api_job = await services.job_manager.create_job(
            SITE_ID, PROPERTY_ID, RANGE, user_id=connected_user
        )
        payload_job = await services.job_manager.create_job(
            "site-2", "", RANGE, user_id=USER_ID, format="csv"
        )

        started = await services.orchestrator.recover_interrupted()
        await services.orchestrator.wait(api_job.id)

        assert started == 1
        assert (await services.job_manager.get_job(api_job.id)).status == ImportJobStatus.COMPLETED
        payload_job = await services.job_manager.get_job(payload_job.id)
        assert payload_job.status == ImportJobStatus.FAILED
        assert payload_job.error == "Interrupted before completion"

    @pytest.mark.asyncio
    async def test_close_stops_workers(self, services, connected_user):
        started = asyncio.Event()
        release = asyncio.Event()

        class BlockingClient:
            access_token = None

            async def run_report(self, request):
                started.set()
                await release.wait()

            async def close(self):
                return None

        services.import_service.client_factory = lambda token: BlockingClient()
        job = await services.orchestrator.submit(
            USER_ID, SITE_ID, PROPERTY_ID, date(2024, 1, 1), date(2024, 1, 31), "ga4-api"
        )
        await started.wait()

        await services.orchestrator.close()

        assert not services.orchestrator.is_running(job.id)
        assert (await services.job_manager.get_job(job.id)).is_active
