"""Storage interfaces the import engine depends on, with in-memory versions.

The SQL-backed implementations live in ``analytics_import.repositories``.
"""

import copy
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from analytics_import.core.exceptions import ConflictException
from analytics_import.data_pipeline.transformers import merge_historical_data
from analytics_import.import_engine.jobs import ImportJob

if TYPE_CHECKING:
    from analytics_import.data_pipeline.adapters.google_oauth import OAuthTokenSet


class ImportJobStore(Protocol):
    """Persistence for import jobs.

    ``insert`` and ``save`` must refuse a second active job for a resource
    by raising ``ConflictException``.
    """

    async def insert(self, job: ImportJob) -> None: ...

    async def save(self, job: ImportJob) -> None: ...

    async def get(self, job_id: str) -> ImportJob | None: ...

    async def delete(self, job_id: str) -> bool: ...

    async def find_active(self, resource_id: str) -> ImportJob | None: ...

    async def list_active(self) -> list[ImportJob]: ...

    async def list_for_resource(self, resource_id: str) -> list[ImportJob]: ...

    async def delete_terminal_before(self, cutoff: datetime) -> int: ...


class CredentialStore(Protocol):
    async def load_tokens(self, user_id: str) -> "OAuthTokenSet | None": ...

    async def save_tokens(self, user_id: str, tokens: "OAuthTokenSet") -> None: ...

    async def delete_tokens(self, user_id: str) -> None: ...


class HistoricalStore(Protocol):
    """Imported records keyed by (resource, date key).

    ``put_batch`` merges into an existing record: numeric fields are summed,
    everything else is overwritten. A ``contribution_id`` already merged into
    the record is skipped, so re-importing the same source rows after a
    failure or resume does not count them twice.
    """

    async def put_batch(
        self,
        resource_id: str,
        date_key: str,
        record: dict[str, Any],
        *,
        import_id: str | None = None,
        source: str | None = None,
        contribution_id: str | None = None,
    ) -> None: ...

    async def get(self, resource_id: str, date_key: str) -> dict[str, Any] | None: ...

    async def delete_for_import(self, import_id: str) -> int: ...


class OwnershipCheck(Protocol):
    async def is_owner(self, user_id: str, resource_id: str) -> bool: ...


class InMemoryImportJobStore:
    """Dict-backed job store. Jobs are copied in and out."""

    def __init__(self) -> None:
        self._jobs: dict[str, ImportJob] = {}

    def _check_active(self, job: ImportJob) -> None:
        if not job.is_active:
            return
        for other in self._jobs.values():
            if other.id != job.id and other.resource_id == job.resource_id and other.is_active:
                raise ConflictException(
                    f"An import is already in progress for site {job.resource_id}"
                )

    async def insert(self, job: ImportJob) -> None:
        if job.id in self._jobs:
            raise ConflictException(f"Job {job.id} already exists")
        self._check_active(job)
        self._jobs[job.id] = copy.deepcopy(job)

    async def save(self, job: ImportJob) -> None:
        self._check_active(job)
        self._jobs[job.id] = copy.deepcopy(job)

    async def get(self, job_id: str) -> ImportJob | None:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def delete(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    async def find_active(self, resource_id: str) -> ImportJob | None:
        for job in self._jobs.values():
            if job.resource_id == resource_id and job.is_active:
                return copy.deepcopy(job)
        return None

    async def list_active(self) -> list[ImportJob]:
        return [copy.deepcopy(j) for j in self._jobs.values() if j.is_active]

    async def list_for_resource(self, resource_id: str) -> list[ImportJob]:
        jobs = [copy.deepcopy(j) for j in self._jobs.values() if j.resource_id == resource_id]
        return sorted(jobs, key=lambda j: j.started_at, reverse=True)

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal and job.terminal_at is not None and job.terminal_at <= cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return len(expired)


class InMemoryCredentialStore:
    def __init__(self) -> None:
        self._tokens: dict[str, "OAuthTokenSet"] = {}

    async def load_tokens(self, user_id: str) -> "OAuthTokenSet | None":
        tokens = self._tokens.get(user_id)
        return copy.copy(tokens) if tokens else None

    async def save_tokens(self, user_id: str, tokens: "OAuthTokenSet") -> None:
        self._tokens[user_id] = copy.copy(tokens)

    async def delete_tokens(self, user_id: str) -> None:
        self._tokens.pop(user_id, None)


class InMemoryHistoricalStore:
    def __init__(self) -> None:
        self._records: dict[tuple[str, str], dict[str, Any]] = {}
        self._contributions: dict[tuple[str, str], set[str]] = {}

    async def put_batch(
        self,
        resource_id: str,
        date_key: str,
        record: dict[str, Any],
        *,
        import_id: str | None = None,
        source: str | None = None,
        contribution_id: str | None = None,
    ) -> None:
        key = (resource_id, date_key)
        if contribution_id is not None:
            applied = self._contributions.setdefault(key, set())
            if contribution_id in applied:
                return
            applied.add(contribution_id)

        merged = merge_historical_data(self._records.get(key), record)
        merged["_imported"] = True
        merged["_import_id"] = import_id
        merged["_source"] = source
        self._records[key] = merged

    async def get(self, resource_id: str, date_key: str) -> dict[str, Any] | None:
        record = self._records.get((resource_id, date_key))
        return dict(record) if record else None

    async def delete_for_import(self, import_id: str) -> int:
        keys = [k for k, r in self._records.items() if r.get("_import_id") == import_id]
        for key in keys:
            del self._records[key]
            self._contributions.pop(key, None)
        return len(keys)

    def __len__(self) -> int:
        return len(self._records)


class InMemorySiteRegistry:
    """Ownership lookups from a site -> user mapping."""

    def __init__(self, sites: dict[str, str] | None = None) -> None:
        self._owners: dict[str, str] = dict(sites or {})

    def add_site(self, site_id: str, user_id: str) -> None:
        self._owners[site_id] = user_id

    async def is_owner(self, user_id: str, resource_id: str) -> bool:
        return self._owners.get(resource_id) == user_id
