"""Wiring of the import components from settings."""

from dataclasses import dataclass

import httpx
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_import.core.config import Settings
from analytics_import.core.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from analytics_import.data_pipeline.adapters.google_analytics import GoogleAnalyticsClient
from analytics_import.data_pipeline.adapters.google_oauth import TokenManager
from analytics_import.data_pipeline.import_service import ClientFactory, ImportService
from analytics_import.data_pipeline.orchestrator import ImportOrchestrator
from analytics_import.import_engine.manager import ImportJobManager
from analytics_import.import_engine.stores import (
    CredentialStore,
    HistoricalStore,
    ImportJobStore,
    OwnershipCheck,
)
from analytics_import.repositories import (
    SqlCredentialStore,
    SqlHistoricalStore,
    SqlImportJobStore,
    SqlOwnershipCheck,
)


@dataclass
class ServiceContainer:
    """Long-lived components shared by every request."""

    settings: Settings
    job_manager: ImportJobManager
    token_manager: TokenManager
    historical_store: HistoricalStore
    ownership: OwnershipCheck
    import_service: ImportService
    orchestrator: ImportOrchestrator
    rate_limiter: RateLimiter
    client_factory: ClientFactory

    async def close(self) -> None:
        await self.orchestrator.close()
        await self.token_manager.close()


def build_rate_limiter(settings: Settings, redis_client: redis.Redis | None) -> RateLimiter:
    if redis_client is not None and settings.use_redis_rate_limiter:
        return RedisRateLimiter(
            redis_client,
            max_requests=settings.ga_rate_limit_requests,
            window_seconds=settings.ga_rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(
        max_requests=settings.ga_rate_limit_requests,
        window_seconds=settings.ga_rate_limit_window_seconds,
    )


def build_services(
    settings: Settings,
    job_store: ImportJobStore,
    credential_store: CredentialStore,
    historical_store: HistoricalStore,
    ownership: OwnershipCheck,
    rate_limiter: RateLimiter | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServiceContainer:
    """Assemble the services on the given stores.

    ``transport`` is passed to every outbound httpx client.
    """
    job_manager = ImportJobManager(
        job_store,
        batch_size=settings.import_batch_size,
        max_retries=settings.import_max_retries,
    )
    token_manager = TokenManager(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
        credential_store=credential_store,
        timeout=settings.ga_request_timeout,
        transport=transport,
    )

    rate_limiter = rate_limiter or build_rate_limiter(settings, None)

    def report_client(access_token: str) -> GoogleAnalyticsClient:
        return GoogleAnalyticsClient(
            access_token=access_token,
            timeout=settings.ga_request_timeout,
            max_retries=settings.ga_max_retries,
            retry_delay=settings.ga_retry_delay,
            page_size=settings.ga_page_size,
            max_results=settings.ga_max_results,
            base_url=settings.ga_api_base_url,
            rate_limiter=rate_limiter,
            transport=transport,
        )

    import_service = ImportService(
        job_manager,
        historical_store,
        token_manager=token_manager,
        client_factory=report_client,
        checkpoint_interval=settings.import_checkpoint_interval,
    )
    orchestrator = ImportOrchestrator(
        job_manager,
        import_service,
        historical_store,
        ownership,
        cleanup_days=settings.import_cleanup_days,
        cleanup_interval_seconds=settings.import_cleanup_interval_seconds,
    )

    return ServiceContainer(
        settings=settings,
        job_manager=job_manager,
        token_manager=token_manager,
        historical_store=historical_store,
        ownership=ownership,
        import_service=import_service,
        orchestrator=orchestrator,
        rate_limiter=rate_limiter,
        client_factory=report_client,
    )


def build_sql_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: redis.Redis | None = None,
) -> ServiceContainer:
    """Assemble the services on the SQL stores."""
    return build_services(
        settings,
        job_store=SqlImportJobStore(session_factory),
        credential_store=SqlCredentialStore(session_factory),
        historical_store=SqlHistoricalStore(session_factory),
        ownership=SqlOwnershipCheck(session_factory),
        rate_limiter=build_rate_limiter(settings, redis_client),
    )
