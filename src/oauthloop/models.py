"""Canonical Pydantic models shared across all oauthloop modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Configuration models** -- loaded from the client secret file, the user's
config directory, the environment, and CLI flags:
    :class:`ClientCredentials`, :class:`InstalledClient`,
    :class:`ClientSecretFile`, and :class:`FlowSettings`.

**Flow models** -- created once per login run and discarded afterwards:
    :class:`PKCEParameters`, :class:`FlowState`, and :class:`CallbackResult`.

**Provider response models** -- decoded from the provider's JSON endpoints:
    :class:`ProviderEndpoints`, :class:`TokenSet`,
    :class:`TokenVerificationResult`, :class:`UserProfile`, and the aggregate
    :class:`FlowResult`.

Provider response models use ``extra="allow"`` so that fields a provider adds
beyond the documented ones are preserved in ``model_extra`` and survive a
round trip through :meth:`~pydantic.BaseModel.model_dump`.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
DEFAULT_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
DEFAULT_SCOPES = ["openid", "profile", "email"]


# --- Configuration ---


class ClientCredentials(BaseModel):
    """OAuth client identity registered with the provider.

    Immutable for the duration of a run. Emptiness is checked by the flow
    orchestrator before anything else happens.

    Example::

        ClientCredentials(client_id="123.apps.example.com", client_secret="s3cr3t")
    """

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str

    def is_complete(self) -> bool:
        """Return True when neither field is empty or whitespace."""
        return bool(self.client_id.strip() and self.client_secret.strip())


class InstalledClient(BaseModel):
    """The ``installed`` section of a downloaded ``client_secret*.json`` file."""

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str
    redirect_uris: list[str] = Field(default_factory=list)
    auth_uri: Optional[str] = None
    token_uri: Optional[str] = None

    def credentials(self) -> ClientCredentials:
        """Return the client id and secret as :class:`ClientCredentials`."""
        return ClientCredentials(
            client_id=self.client_id, client_secret=self.client_secret
        )


class ClientSecretFile(BaseModel):
    """Top-level shape of an installed-app client secret file."""

    model_config = ConfigDict(extra="allow")

    installed: InstalledClient


class FlowSettings(BaseModel):
    """Tunable parameters for a login run.

    Resolved by :func:`oauthloop.config.resolve_settings` from defaults, the
    user config file, ``OAUTHLOOP_*`` environment variables, and CLI flags.
    """

    timeout: float = Field(default=120.0, gt=0, description="Seconds to wait for the callback")
    poll_interval: float = Field(default=0.05, gt=0, description="Accept polling interval in seconds")
    port_range_start: int = Field(default=15000, ge=1, le=65535)
    port_range_end: int = Field(default=29000, ge=2, le=65536, description="Exclusive upper bound")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request provider timeout")
    discovery_url: str = DEFAULT_DISCOVERY_URL
    tokeninfo_url: str = DEFAULT_TOKENINFO_URL
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    verify_token: bool = True
    fetch_userinfo: bool = True

    @property
    def port_range(self) -> range:
        """The loopback ports to probe, in order."""
        return range(self.port_range_start, self.port_range_end)


# --- Flow ---


class PKCEParameters(BaseModel):
    """PKCE code verifier and its S256 challenge (:rfc:`7636`).

    Created once per run by :func:`oauthloop.oauth.pkce.generate_pkce`.
    """

    model_config = ConfigDict(frozen=True)

    code_verifier: str = Field(min_length=43, max_length=128)
    code_challenge: str
    method: str = "S256"


class FlowState(BaseModel):
    """Per-run CSRF token and the loopback redirect target it travels with."""

    model_config = ConfigDict(frozen=True)

    state: str
    redirect_uri: str
    port: int = Field(ge=1, le=65535)


class CallbackResult(BaseModel):
    """Parameters recaptured from the single inbound redirect request.

    When ``error`` is set the callback is a provider-reported denial and
    ``code`` / ``state`` are left unset. Otherwise both are strings, empty
    when the parameter was absent.
    """

    model_config = ConfigDict(frozen=True)

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return bool(self.error)


# --- Provider responses ---


class ProviderEndpoints(BaseModel):
    """Endpoints taken from an OpenID Connect discovery document."""

    model_config = ConfigDict(extra="allow")

    issuer: Optional[str] = None
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: Optional[str] = None
    revocation_endpoint: Optional[str] = None
    jwks_uri: Optional[str] = None
    scopes_supported: list[str] = Field(default_factory=list)
    code_challenge_methods_supported: list[str] = Field(default_factory=list)

    def supports_s256(self) -> bool:
        """Return False only when the provider lists methods and S256 is not among them."""
        if not self.code_challenge_methods_supported:
            return True
        return "S256" in self.code_challenge_methods_supported


class TokenSet(BaseModel):
    """Token endpoint response for the authorization code grant."""

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int = 0
    scope: str = ""
    refresh_token: str = ""
    id_token: Optional[str] = None


class TokenVerificationResult(BaseModel):
    """Response of the provider's tokeninfo endpoint.

    Google returns every claim as a string, including ``exp`` and
    ``expires_in``.
    """

    model_config = ConfigDict(extra="allow")

    access_type: Optional[str] = None
    aud: Optional[str] = None
    azp: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[str] = None
    exp: Optional[str] = None
    expires_in: Optional[str] = None
    scope: Optional[str] = None
    sub: Optional[str] = None


class UserProfile(BaseModel):
    """Response of the provider's userinfo endpoint."""

    model_config = ConfigDict(extra="allow")

    sub: str
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    name: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    locale: Optional[str] = None
    picture: Optional[str] = None


class FlowResult(BaseModel):
    """Everything a successful run produced.

    ``verification`` is ``None`` when token verification was disabled or
    failed (it is a non-fatal diagnostic); ``profile`` is ``None`` only when
    userinfo fetching was disabled or the provider has no userinfo endpoint.
    """

    tokens: TokenSet
    verification: Optional[TokenVerificationResult] = None
    profile: Optional[UserProfile] = None
