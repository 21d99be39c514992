"""Import job engine.

Owns the import job state machine and the storage interfaces it runs on.
"""

from analytics_import.import_engine.jobs import (
    Checkpoint,
    ImportJob,
    ImportJobStatus,
    JobDateRange,
)
from analytics_import.import_engine.manager import ImportJobManager
from analytics_import.import_engine.stores import (
    CredentialStore,
    HistoricalStore,
    ImportJobStore,
    InMemoryCredentialStore,
    InMemoryHistoricalStore,
    InMemoryImportJobStore,
    InMemorySiteRegistry,
    OwnershipCheck,
)

__all__ = [
    "Checkpoint",
    "CredentialStore",
    "HistoricalStore",
    "ImportJob",
    "ImportJobManager",
    "ImportJobStatus",
    "ImportJobStore",
    "InMemoryCredentialStore",
    "InMemoryHistoricalStore",
    "InMemoryImportJobStore",
    "InMemorySiteRegistry",
    "JobDateRange",
    "OwnershipCheck",
]
