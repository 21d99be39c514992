"""Shared FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, Header, Request

from analytics_import.core.exceptions import UnauthorizedException
from analytics_import.data_pipeline.adapters.google_oauth import TokenManager
from analytics_import.data_pipeline.orchestrator import ImportOrchestrator
from analytics_import.services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    """Services built at startup and kept on the application state."""
    return request.app.state.services


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Identity of the caller, set by the upstream auth layer.

    Raises:
        UnauthorizedException: If the header is missing
    """
    if not x_user_id:
        raise UnauthorizedException()
    return x_user_id


def get_orchestrator(
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> ImportOrchestrator:
    return services.orchestrator


def get_token_manager(
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> TokenManager:
    return services.token_manager


CurrentUser = Annotated[str, Depends(get_current_user_id)]
Orchestrator = Annotated[ImportOrchestrator, Depends(get_orchestrator)]
Tokens = Annotated[TokenManager, Depends(get_token_manager)]
Services = Annotated[ServiceContainer, Depends(get_services)]
