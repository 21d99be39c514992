"""Google Analytics 4 Data API adapter.

Wraps the reporting API behind the ``ReportSource`` interface and hides
pagination, transient failures and timeouts from callers:

- 429 responses and network-level failures are retried with exponential
  backoff (``retry_delay * 2**attempt``) up to ``max_retries`` times
- any other error status fails immediately with the provider's message
- every request is bounded by ``timeout`` seconds
"""

import asyncio
import re
from dataclasses import replace
from typing import Any

import httpx
import structlog

from analytics_import.core.exceptions import (
    ExternalServiceException,
    RateLimitException,
    ReportApiException,
    RequestTimeoutException,
    ValidationException,
)
from analytics_import.core.rate_limit import RateLimiter
from analytics_import.core.retry import RetryPolicy, SleepFunc, execute_with_retry
from analytics_import.data_pipeline.adapters.base import DataSourceType, ReportSource
from analytics_import.data_pipeline.reports import (
    Property,
    ReportRequest,
    ReportResponse,
)

logger = structlog.get_logger(__name__)

PROPERTY_ID_PATTERN = re.compile(r"properties/[0-9]+")


def validate_property_id(property_id: str) -> bool:
    """Check the strict ``properties/<digits>`` format.

    No surrounding whitespace and no trailing path segments are accepted.
    """
    if not isinstance(property_id, str):
        return False
    return PROPERTY_ID_PATTERN.fullmatch(property_id) is not None


def is_retryable_error(exc: Exception) -> bool:
    """Rate limiting and network failures are transient; timeouts are not."""
    if isinstance(exc, RateLimitException):
        return True
    return isinstance(exc, httpx.TransportError) and not isinstance(
        exc, httpx.TimeoutException
    )


def extract_error_message(response: httpx.Response) -> str:
    """Pull the provider's message out of an error body, if any."""
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase

    if isinstance(data, dict):
        if data.get("message"):
            return str(data["message"])
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.reason_phrase


class GoogleAnalyticsClient(ReportSource):
    """Client for the GA4 Data API.

    The access token is read per request and never persisted; callers
    replace ``access_token`` after refreshing it.
    """

    BASE_URL = "https://analyticsdata.googleapis.com/v1beta"

    def __init__(
        self,
        access_token: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        page_size: int = 100,
        max_results: int = 10000,
        base_url: str | None = None,
        rate_limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """Initialize the client.

        Args:
            access_token: OAuth bearer token
            timeout: Per-request deadline in seconds
            max_retries: Retries after the first attempt for transient errors
            retry_delay: Base backoff delay in seconds
            page_size: Default rows per page when paginating
            max_results: Default cap on accumulated rows when paginating
            base_url: Override for the API root
            rate_limiter: Optional limiter consulted per property before each call
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
            sleep: Awaitable used for backoff delays
        """
        self.access_token = access_token
        self.timeout = timeout
        self.retry_policy = RetryPolicy(max_retries=max_retries, base_delay=retry_delay)
        self.page_size = page_size
        self.max_results = max_results
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.rate_limiter = rate_limiter
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    @property
    def source_type(self) -> DataSourceType:
        return DataSourceType.GA4_API

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "User-Agent": "Analytics-Import/1.0",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    validate_property_id = staticmethod(validate_property_id)

    async def _send(
        self,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
        limit_key: str | None = None,
    ) -> httpx.Response:
        """Issue one request without retrying."""
        if not self.access_token:
            raise ValidationException("Access token is required")

        if self.rate_limiter is not None and limit_key:
            if not await self.rate_limiter.acquire(limit_key):
                logger.info("rate_limiter_blocked", key=limit_key)
                raise RateLimitException()

        client = await self._get_client()
        try:
            response = await asyncio.wait_for(
                client.request(
                    method,
                    url,
                    json=json,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise RequestTimeoutException() from exc

        if response.status_code == 429:
            raise RateLimitException()

        if not response.is_success:
            raise ReportApiException(response.status_code, extract_error_message(response))

        return response

    async def _request(
        self,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
        limit_key: str | None = None,
    ) -> httpx.Response:
        """Issue a request, retrying transient failures with backoff."""
        try:
            return await execute_with_retry(
                lambda: self._send(method, url, json=json, limit_key=limit_key),
                self.retry_policy,
                is_retryable=is_retryable_error,
                sleep=self._sleep,
            )
        except httpx.TransportError as exc:
            logger.error("ga_network_error", url=url, error=str(exc))
            raise ExternalServiceException("Google Analytics", str(exc)) from exc

    async def list_properties(self) -> list[Property]:
        """Fetch the properties visible to the current token.

        Returns:
            List of properties; empty bodies and empty lists both give []
        """
        response = await self._request("GET", f"{self.base_url}/properties")
        if not response.content:
            return []

        data = response.json()
        if isinstance(data, list):
            items = data
        else:
            items = (data or {}).get("properties") or []
        return [Property.from_payload(item) for item in items]

    async def run_report(self, request: ReportRequest) -> ReportResponse:
        """Run one report request (a single page).

        Args:
            request: Report definition

        Returns:
            Parsed report page
        """
        response = await self._request(
            "POST",
            f"{self.base_url}/{request.property}:runReport",
            json=request.to_payload(),
            limit_key=request.property,
        )
        return ReportResponse.from_payload(response.json() if response.content else None)

    async def run_report_with_pagination(
        self,
        request: ReportRequest,
        *,
        page_size: int | None = None,
        max_results: int | None = None,
    ) -> ReportResponse:
        """Run a report page by page and accumulate the rows.

        Stops when a page is shorter than ``page_size`` or once
        ``max_results`` rows have been collected. Headers come from the last
        non-empty page.
        """
        page_size = page_size or self.page_size
        max_results = max_results or self.max_results

        result = ReportResponse()
        offset = 0

        while len(result.rows) < max_results:
            page = await self.run_report(replace(request, limit=page_size, offset=offset))

            if page.rows:
                result.rows.extend(page.rows)
                result.dimension_headers = page.dimension_headers
                result.metric_headers = page.metric_headers
                result.metadata = page.metadata

            if len(page.rows) < page_size:
                break

            offset += page_size

        result.rows = result.rows[:max_results]
        result.row_count = len(result.rows)
        return result

    async def health_check(self) -> bool:
        """Check if the API accepts the current token."""
        try:
            await self.list_properties()
        except (ExternalServiceException, ReportApiException, ValidationException):
            return False
        return True
