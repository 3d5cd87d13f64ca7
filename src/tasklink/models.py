"""Canonical Pydantic models shared across all tasklink modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration** -- persisted as JSON in the user's config directory:
    :class:`ProviderSettings`.

**Authorization state** -- produced and consumed by the auth core:
    :class:`AuthSession`, :class:`TokenPair`, and :class:`TokenGrant`.

**Provider identity** -- decoded from the provider's ``/users/me`` answer:
    :class:`Workspace` and :class:`Identity`.

Identity models use ``extra="allow"`` so that fields the provider adds are
preserved in ``model_extra``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_AUTHORIZATION_URL = "https://app.asana.com/-/oauth_authorize"
DEFAULT_TOKEN_URL = "https://app.asana.com/-/oauth_token"
DEFAULT_API_BASE_URL = "https://app.asana.com/api/1.0"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8765/auth/callback/asana"
# user keys become file names under the data directory
USER_KEY_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Configuration ---


class ProviderSettings(BaseModel):
    """Connection settings for the project-management provider.

    Loaded by :func:`~tasklink.config.load_settings`, which layers
    environment variables over ``config.json`` over these defaults.

    A deployment is a *confidential* client when ``client_secret`` is set;
    only then is the secret sent to the token endpoint. Otherwise PKCE alone
    protects the exchange.

    Example::

        ProviderSettings(
            client_id="1200000000000",
            redirect_uri="http://127.0.0.1:8765/auth/callback/asana",
        )
    """

    client_id: Optional[str] = Field(default=None, description="OAuth2 client id")
    client_secret: Optional[str] = Field(
        default=None,
        description="Client secret for confidential deployments; env:VAR and file:/path accepted",
    )
    redirect_uri: Optional[str] = Field(
        default=DEFAULT_REDIRECT_URI, description="Registered redirect URI"
    )
    authorization_url: str = DEFAULT_AUTHORIZATION_URL
    token_url: str = DEFAULT_TOKEN_URL
    api_base_url: str = DEFAULT_API_BASE_URL
    scope: str = Field(default="default", description="Requested OAuth2 scope")
    fallback_access_token: Optional[str] = Field(
        default=None,
        description="Deployment-level token used when no user token is stored",
    )
    static_state: Optional[str] = Field(
        default=None,
        description="Fixed authorization state; a random one per attempt when unset",
    )
    auth_timeout: float = Field(
        default=300.0, description="Seconds to wait for the consent window"
    )
    poll_interval: float = Field(
        default=0.5, description="Seconds between checks of the consent window"
    )
    request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    verify_ssl: bool = True
    refresh_skew: float = Field(
        default=30.0,
        description="Refresh proactively this many seconds before expiry",
    )
    user_key: str = Field(
        default="default",
        pattern=USER_KEY_PATTERN,
        max_length=64,
        description="Local account name scoping stored tokens and preferences",
    )

    @property
    def is_confidential(self) -> bool:
        """Whether a client secret is configured."""
        return bool(self.client_secret)

    @property
    def app_origin(self) -> Optional[str]:
        """The hosting application's origin, derived from the redirect URI."""
        if not self.redirect_uri:
            return None
        parts = urlsplit(self.redirect_uri)
        if not parts.scheme or not parts.netloc:
            return None
        return f"{parts.scheme}://{parts.netloc}"


# --- Authorization state ---


class AuthSession(BaseModel):
    """A pending authorization attempt.

    Single-use: it is created by
    :meth:`~tasklink.auth.popup.PopupAuthorizer.initiate_auth` and consumed
    by :meth:`~tasklink.auth.token_service.TokenService.exchange_code`.
    """

    verifier: str
    state: str
    created_at: datetime = Field(default_factory=_utcnow)


class TokenPair(BaseModel):
    """The access/refresh token pair held by the credential store."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[datetime] = Field(
        default=None, description="When the access token expires (None = unknown)"
    )

    def expires_within(self, seconds: float) -> bool:
        """Return ``True`` if the access token is known to expire within *seconds*."""
        if self.expires_at is None:
            return False
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return _utcnow() + timedelta(seconds=seconds) >= expires


class TokenGrant(BaseModel):
    """A successful token endpoint answer.

    Asana embeds the authorizing user in a ``data`` member; it is exposed
    as :attr:`identity`. Any other provider-specific fields end up in
    ``model_extra``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[float] = None
    identity: Optional[dict[str, Any]] = Field(default=None, alias="data")

    def to_token_pair(self, issued_at: Optional[datetime] = None) -> TokenPair:
        """Build the :class:`TokenPair` to persist for this grant."""
        expires_at = None
        if self.expires_in is not None:
            expires_at = (issued_at or _utcnow()) + timedelta(seconds=self.expires_in)
        return TokenPair(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            expires_at=expires_at,
        )


# --- Provider identity ---


class Workspace(BaseModel):
    """A tenant the current user belongs to."""

    model_config = ConfigDict(extra="allow")

    gid: str
    name: str = ""


class Identity(BaseModel):
    """The current user as reported by ``GET /users/me``."""

    model_config = ConfigDict(extra="allow")

    gid: str
    name: str = ""
    email: Optional[str] = None
    workspaces: list[Workspace] = Field(default_factory=list)
