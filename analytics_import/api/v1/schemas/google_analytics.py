"""Google Analytics connection schemas."""

from pydantic import BaseModel, ConfigDict, Field


class AuthUrlResponse(BaseModel):
    auth_url: str
    state: str


class OAuthCallbackRequest(BaseModel):
    code: str = Field(..., description="Authorization code from the consent redirect")
    state: str | None = None


class ConnectionResponse(BaseModel):
    """Connection state after a successful authorization."""

    connected: bool
    scope: str | None = None
    expires_at: int | None = Field(None, description="Access token expiry, epoch milliseconds")


class DisconnectResponse(BaseModel):
    disconnected: bool = True
    revoked: bool


class PropertySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    display_name: str
    property_type: str | None = None
    time_zone: str | None = None
    currency_code: str | None = None


class PropertiesResponse(BaseModel):
    properties: list[PropertySchema]
