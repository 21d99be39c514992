"""Repository layer for data access.

All repositories are exported from this module:
    from analytics_import.repositories import ImportJobRepository, SqlImportJobStore
"""

from analytics_import.repositories.base import BaseRepository
from analytics_import.repositories.historical_record import (
    HistoricalRecordRepository,
    SqlHistoricalStore,
)
from analytics_import.repositories.import_job import ImportJobRepository, SqlImportJobStore
from analytics_import.repositories.oauth_credential import (
    OAuthCredentialRepository,
    SqlCredentialStore,
)
from analytics_import.repositories.site import SiteRepository, SqlOwnershipCheck

__all__ = [
    "BaseRepository",
    "HistoricalRecordRepository",
    "ImportJobRepository",
    "OAuthCredentialRepository",
    "SiteRepository",
    "SqlCredentialStore",
    "SqlHistoricalStore",
    "SqlImportJobStore",
    "SqlOwnershipCheck",
]
