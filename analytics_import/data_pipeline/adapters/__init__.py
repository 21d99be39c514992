"""Data source adapters for the pipeline."""

from analytics_import.data_pipeline.adapters.base import (
    DataSourceType,
    ImportResult,
    ReportSource,
)
from analytics_import.data_pipeline.adapters.google_analytics import (
    GoogleAnalyticsClient,
    validate_property_id,
)
from analytics_import.data_pipeline.adapters.google_oauth import (
    OAuthTokenSet,
    TokenManager,
    TokenValidationResult,
)

__all__ = [
    "DataSourceType",
    "GoogleAnalyticsClient",
    "ImportResult",
    "OAuthTokenSet",
    "ReportSource",
    "TokenManager",
    "TokenValidationResult",
    "validate_property_id",
]
