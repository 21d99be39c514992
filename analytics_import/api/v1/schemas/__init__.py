"""Pydantic schemas for API v1."""

from analytics_import.api.v1.schemas.google_analytics import (
    AuthUrlResponse,
    ConnectionResponse,
    DisconnectResponse,
    OAuthCallbackRequest,
    PropertiesResponse,
    PropertySchema,
)
from analytics_import.api.v1.schemas.imports import (
    CheckpointSchema,
    DateRangeSchema,
    ImportCreate,
    ImportDeleteResponse,
    ImportHistoryResponse,
    ImportJobSummary,
)

__all__ = [
    "AuthUrlResponse",
    "CheckpointSchema",
    "ConnectionResponse",
    "DateRangeSchema",
    "DisconnectResponse",
    "ImportCreate",
    "ImportDeleteResponse",
    "ImportHistoryResponse",
    "ImportJobSummary",
    "OAuthCallbackRequest",
    "PropertiesResponse",
    "PropertySchema",
]
