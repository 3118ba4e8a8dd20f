"""OAuth client settings."""

from pydantic import BaseModel, Field

from codex_multi_proxy.auth.oauth.constants import (
    OAUTH_AUTHORIZE_URL,
    OAUTH_CLIENT_ID,
    OAUTH_REDIRECT_URI,
    OAUTH_SCOPE,
    OAUTH_TOKEN_URL,
)


class OAuthSettings(BaseModel):
    """Endpoints and client identity used for token exchange."""

    client_id: str = Field(default=OAUTH_CLIENT_ID)
    authorize_url: str = Field(default=OAUTH_AUTHORIZE_URL)
    token_url: str = Field(default=OAUTH_TOKEN_URL)
    redirect_uri: str = Field(default=OAUTH_REDIRECT_URI)
    scope: str = Field(default=OAUTH_SCOPE)
    timeout_seconds: float = Field(default=30.0, gt=0)
    refresh_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per refresh when the transport fails",
    )
