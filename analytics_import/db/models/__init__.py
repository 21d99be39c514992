"""SQLAlchemy ORM models.

All models are exported from this module for easy importing:
    from analytics_import.db.models import ImportJobRecord, Site
"""

from analytics_import.db.models.historical_record import HistoricalRecord
from analytics_import.db.models.import_job import ImportJobRecord
from analytics_import.db.models.oauth_credential import OAuthCredential
from analytics_import.db.models.site import Site

__all__ = [
    "HistoricalRecord",
    "ImportJobRecord",
    "OAuthCredential",
    "Site",
]
