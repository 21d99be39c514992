"""Google Analytics connection endpoints."""

import secrets

from fastapi import APIRouter

from analytics_import.api.deps import CurrentUser, Services, Tokens
from analytics_import.api.v1.schemas import (
    AuthUrlResponse,
    ConnectionResponse,
    DisconnectResponse,
    OAuthCallbackRequest,
    PropertiesResponse,
    PropertySchema,
)
from analytics_import.core.exceptions import OAuthException

router = APIRouter(prefix="/google-analytics", tags=["Google Analytics"])


@router.get("/auth-url", response_model=AuthUrlResponse)
async def get_auth_url(user_id: CurrentUser, tokens: Tokens) -> AuthUrlResponse:
    """Consent URL the dashboard redirects the user to."""
    state = secrets.token_urlsafe(16)
    return AuthUrlResponse(auth_url=tokens.generate_auth_url(state), state=state)


@router.post("/callback", response_model=ConnectionResponse)
async def oauth_callback(
    body: OAuthCallbackRequest,
    user_id: CurrentUser,
    tokens: Tokens,
) -> ConnectionResponse:
    """Exchange the authorization code and store the tokens."""
    token_set = await tokens.exchange_code_for_tokens(body.code)
    if not tokens.validate_scope(token_set.scope):
        raise OAuthException("Analytics read-only access was not granted")

    await tokens.save_tokens(user_id, token_set)
    return ConnectionResponse(
        connected=True,
        scope=token_set.scope,
        expires_at=token_set.expires_at,
    )


@router.delete("/connection", response_model=DisconnectResponse)
async def disconnect(user_id: CurrentUser, tokens: Tokens) -> DisconnectResponse:
    """Revoke and forget the user's tokens."""
    revoked = await tokens.disconnect(user_id)
    return DisconnectResponse(revoked=revoked)


@router.get("/properties", response_model=PropertiesResponse)
async def list_properties(user_id: CurrentUser, services: Services) -> PropertiesResponse:
    """Properties the connected account can import from."""
    token_set = await services.token_manager.get_valid_token(user_id)
    client = services.client_factory(token_set.access_token)
    try:
        properties = await client.list_properties()
    finally:
        await client.close()

    return PropertiesResponse(
        properties=[PropertySchema.model_validate(p) for p in properties]
    )
