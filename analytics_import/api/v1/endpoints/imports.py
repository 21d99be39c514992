"""Historical import endpoints."""

from fastapi import APIRouter, Query, status

from analytics_import.api.deps import CurrentUser, Orchestrator
from analytics_import.api.v1.schemas import (
    ImportCreate,
    ImportDeleteResponse,
    ImportHistoryResponse,
    ImportJobSummary,
)

router = APIRouter(prefix="/imports", tags=["Imports"])


@router.post("", response_model=ImportJobSummary, status_code=status.HTTP_201_CREATED)
async def create_import(
    body: ImportCreate,
    user_id: CurrentUser,
    orchestrator: Orchestrator,
) -> ImportJobSummary:
    """Start an import for a site.

    ``ga4-api`` imports run in the background and are polled through
    ``GET /imports/{id}``; payload formats are stored before responding.
    """
    job = await orchestrator.submit(
        user_id=user_id,
        resource_id=body.resource_id,
        external_property_id=body.external_property_id,
        start=body.date_range.start,
        end=body.date_range.end,
        format=body.format,
        report_type=body.report_type,
        estimated_rows=body.estimated_rows,
        data=body.data,
    )
    return ImportJobSummary.model_validate(job)


@router.get("", response_model=ImportHistoryResponse)
async def list_imports(
    user_id: CurrentUser,
    orchestrator: Orchestrator,
    resource_id: str = Query(..., min_length=1, description="Site to list imports for"),
) -> ImportHistoryResponse:
    """Import history for a site, newest first."""
    jobs = await orchestrator.list_jobs(user_id, resource_id)
    active = next((j for j in jobs if j.is_active), None)
    return ImportHistoryResponse(
        resource_id=resource_id,
        active_job_id=active.id if active else None,
        imports=[ImportJobSummary.model_validate(j) for j in jobs],
    )


@router.get("/{import_id}", response_model=ImportJobSummary)
async def get_import(
    import_id: str,
    user_id: CurrentUser,
    orchestrator: Orchestrator,
) -> ImportJobSummary:
    """Get one import with its progress."""
    job = await orchestrator.get_job_for_user(import_id, user_id)
    return ImportJobSummary.model_validate(job)


@router.delete("/{import_id}", response_model=ImportDeleteResponse)
async def delete_import(
    import_id: str,
    user_id: CurrentUser,
    orchestrator: Orchestrator,
) -> ImportDeleteResponse:
    """Cancel an import if it is running and remove it with its stored records."""
    records_deleted = await orchestrator.delete_import(import_id, user_id)
    return ImportDeleteResponse(id=import_id, records_deleted=records_deleted)


@router.post("/{import_id}/cancel", response_model=ImportJobSummary)
async def cancel_import(
    import_id: str,
    user_id: CurrentUser,
    orchestrator: Orchestrator,
) -> ImportJobSummary:
    """Stop an import, keeping what was imported so far."""
    job = await orchestrator.cancel(import_id, user_id)
    return ImportJobSummary.model_validate(job)


@router.post("/{import_id}/retry", response_model=ImportJobSummary)
async def retry_import(
    import_id: str,
    user_id: CurrentUser,
    orchestrator: Orchestrator,
) -> ImportJobSummary:
    """Retry a failed import."""
    job = await orchestrator.retry(import_id, user_id)
    return ImportJobSummary.model_validate(job)


@router.post("/{import_id}/resume", response_model=ImportJobSummary)
async def resume_import(
    import_id: str,
    user_id: CurrentUser,
    orchestrator: Orchestrator,
) -> ImportJobSummary:
    """Resume a failed or cancelled import from where it stopped."""
    job = await orchestrator.resume(import_id, user_id)
    return ImportJobSummary.model_validate(job)
