"""OAuth2 installed-app flow orchestrator.

:class:`FlowOrchestrator` sequences one complete Authorization Code + PKCE
login:

1. Validate the client credentials.
2. Generate the CSRF ``state`` and the PKCE parameters.
3. Reserve a loopback port and derive ``redirect_uri``.
4. Hand the authorization URL to the browser opener.
5. Block on the loopback listener, bounded by ``settings.timeout``.
6. Reject provider-reported errors.
7. Reject a callback whose ``state`` differs from the one sent.
8. Reject an empty authorization code.
9. Exchange the code for tokens.
10. Optionally verify the access token and fetch the user's profile.

The flow is strictly sequential and fail-fast. Every failure surfaces as an
:class:`~oauthloop.exceptions.OAuthLoopError` subclass, and the loopback
port is released on every exit path.

:func:`run` is the single entry point used by the CLI: it discovers the
provider endpoints and runs one orchestrated flow.
"""

from __future__ import annotations

import hmac
import webbrowser
from typing import Callable, Optional

from oauthloop.exceptions import (
    AuthorizationDeniedError,
    BrowserLaunchError,
    InvalidConfigurationError,
    MissingAuthorizationCodeError,
    OAuthLoopError,
    StateMismatchError,
)
from oauthloop.models import (
    ClientCredentials,
    FlowResult,
    FlowSettings,
    FlowState,
    InstalledClient,
    ProviderEndpoints,
    TokenSet,
    TokenVerificationResult,
    UserProfile,
)
from oauthloop.oauth.callback_server import LoopbackCallbackServer
from oauthloop.oauth.pkce import generate_pkce, generate_state
from oauthloop.oauth.provider import ProviderClient
from oauthloop.oauth.urls import build_authorization_url
from oauthloop.output import OutputManager, get_output

BrowserOpener = Callable[[str], object]


def open_system_browser(url: str) -> None:
    """Open *url* in the user's default browser.

    Raises:
        BrowserLaunchError: If no browser could be launched.
    """
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as exc:
        raise BrowserLaunchError(f"Could not open a browser: {exc}") from exc
    if not opened:
        raise BrowserLaunchError("No usable browser found to open the authorization URL")


class FlowOrchestrator:
    """Runs one OAuth2 Authorization Code + PKCE flow against fixed endpoints.

    Parameters are injected so that tests can stub the browser, the provider
    HTTP calls, and the logger.

    Args:
        endpoints: The provider's authorization, token, and userinfo endpoints.
        settings: Timeouts, port range, scopes, and optional-step switches.
        open_browser: Callable receiving the authorization URL. Any exception
            it raises, or a ``False`` return value, aborts the flow with
            :class:`~oauthloop.exceptions.BrowserLaunchError`.
        provider: Client for the provider's token, tokeninfo, and userinfo
            endpoints.
        log: Receives progress diagnostics through ``info`` / ``warning`` /
            ``error`` / ``debug``.
    """

    def __init__(
        self,
        endpoints: ProviderEndpoints,
        settings: Optional[FlowSettings] = None,
        open_browser: BrowserOpener = open_system_browser,
        provider: Optional[ProviderClient] = None,
        log: Optional[OutputManager] = None,
    ) -> None:
        self.endpoints = endpoints
        self.settings = settings or FlowSettings()
        self.open_browser = open_browser
        self.provider = provider or ProviderClient(self.settings.request_timeout)
        self.log = log or get_output()
        self.flow_state: Optional[FlowState] = None

    def run(self, credentials: ClientCredentials) -> FlowResult:
        """Run the complete flow for *credentials*.

        Returns:
            A :class:`~oauthloop.models.FlowResult` with the token set and,
            when enabled, the verification result and user profile.

        Raises:
            InvalidConfigurationError: If a credential field is empty or the
                provider does not support S256.
            NoPortAvailableError: If no loopback port can be reserved.
            BrowserLaunchError: If the browser opener fails.
            CallbackTimeoutError: If nobody completes consent in time.
            TransportError: On listener or provider transport failures.
            AuthorizationDeniedError: If the provider reports an error.
            StateMismatchError: If the callback ``state`` does not match.
            MissingAuthorizationCodeError: If the callback has no code.
            TokenExchangeError: If the code cannot be redeemed.
            DecodeError: If the userinfo response is malformed.
        """
        # 1. Credentials
        if not credentials.is_complete():
            raise InvalidConfigurationError("client_id and client_secret must not be empty")
        if not self.endpoints.supports_s256():
            raise InvalidConfigurationError(
                "Provider does not support the S256 code challenge method"
            )

        self.log.info("Starting authorization...")

        # 2. CSRF state + PKCE
        state = generate_state()
        pkce = generate_pkce()

        with LoopbackCallbackServer(
            ports=self.settings.port_range,
            poll_interval=self.settings.poll_interval,
            log=self.log,
        ) as server:
            # 3. Loopback port
            port = server.reserve_port()
            self.flow_state = FlowState(state=state, redirect_uri=server.redirect_uri, port=port)
            self.log.debug(f"Redirect URI: {self.flow_state.redirect_uri}")

            # 4. Consent page
            url = build_authorization_url(
                self.endpoints.authorization_endpoint,
                client_id=credentials.client_id,
                redirect_uri=self.flow_state.redirect_uri,
                state=state,
                code_challenge=pkce.code_challenge,
                scopes=self.settings.scopes,
            )
            self._launch_browser(url)

            # 5. Callback
            callback = server.await_callback(timeout=self.settings.timeout)

        # 6. Provider-reported error
        if callback.error:
            raise AuthorizationDeniedError(callback.error, callback.error_description)

        # 7. CSRF check, before the code is used for anything
        if not callback.state or not hmac.compare_digest(
            callback.state.encode("utf-8"), state.encode("ascii")
        ):
            raise StateMismatchError(
                "State parameter mismatch in authorization callback (possible CSRF attack)"
            )

        # 8. Code
        if not callback.code:
            raise MissingAuthorizationCodeError("No authorization code in callback")

        # 9. Token exchange
        self.log.info("Exchanging authorization code for tokens...")
        tokens = self.provider.exchange_code(
            self.endpoints.token_endpoint,
            client_id=credentials.client_id,
            client_secret=credentials.client_secret,
            code=callback.code,
            code_verifier=pkce.code_verifier,
            redirect_uri=self.flow_state.redirect_uri,
            state=callback.state,
        )
        self.log.debug(
            f"Received {tokens.token_type} token (expires in {tokens.expires_in}s, "
            f"refresh token {'present' if tokens.refresh_token else 'absent'})"
        )

        # 10. Optional diagnostics
        verification = self._verify(tokens)
        profile = self._fetch_profile(tokens)

        self.log.success("Authorization complete.")
        return FlowResult(tokens=tokens, verification=verification, profile=profile)

    def _launch_browser(self, url: str) -> None:
        self.log.info("Opening the authorization page in your browser...")
        self.log.info(f"If it does not open, visit: {url}")
        try:
            opened = self.open_browser(url)
        except BrowserLaunchError:
            raise
        except Exception as exc:
            raise BrowserLaunchError(f"Could not open a browser: {exc}") from exc
        if opened is False:
            raise BrowserLaunchError("No usable browser found to open the authorization URL")

    def _verify(self, tokens: TokenSet) -> Optional[TokenVerificationResult]:
        """Query tokeninfo; failures are logged and treated as non-fatal."""
        if not self.settings.verify_token or not self.settings.tokeninfo_url:
            return None
        self.log.info("Verifying access token...")
        try:
            return self.provider.verify_token(self.settings.tokeninfo_url, tokens.access_token)
        except OAuthLoopError as exc:
            self.log.warning(f"Token verification failed: {exc}")
            return None

    def _fetch_profile(self, tokens: TokenSet) -> Optional[UserProfile]:
        if not self.settings.fetch_userinfo:
            return None
        if not self.endpoints.userinfo_endpoint:
            self.log.warning("Provider has no userinfo endpoint; skipping profile lookup")
            return None
        self.log.info("Fetching user profile...")
        return self.provider.fetch_userinfo(self.endpoints.userinfo_endpoint, tokens.access_token)


def resolve_endpoints(
    settings: FlowSettings,
    provider: ProviderClient,
    installed: Optional[InstalledClient] = None,
) -> ProviderEndpoints:
    """Determine the provider endpoints for a run.

    Uses the discovery document when ``settings.discovery_url`` is set;
    otherwise falls back to the ``auth_uri`` / ``token_uri`` of the client
    secret file.

    Raises:
        InvalidConfigurationError: If discovery is disabled and the client
            secret file does not name both endpoints.
    """
    if settings.discovery_url:
        return provider.discover(settings.discovery_url)
    if installed is not None and installed.auth_uri and installed.token_uri:
        return ProviderEndpoints(
            authorization_endpoint=installed.auth_uri,
            token_endpoint=installed.token_uri,
        )
    raise InvalidConfigurationError(
        "No discovery URL configured and the client secret file has no auth_uri/token_uri"
    )


def run(
    credentials: ClientCredentials,
    settings: Optional[FlowSettings] = None,
    open_browser: BrowserOpener = open_system_browser,
    log: Optional[OutputManager] = None,
    installed: Optional[InstalledClient] = None,
) -> FlowResult:
    """Discover the provider and run one installed-app login for *credentials*.

    This is the entry point consumed by the CLI. See
    :meth:`FlowOrchestrator.run` for the errors it raises; discovery adds
    :class:`~oauthloop.exceptions.TransportError` and
    :class:`~oauthloop.exceptions.DecodeError`.
    """
    settings = settings or FlowSettings()
    log = log or get_output()
    provider = ProviderClient(settings.request_timeout)

    if not credentials.is_complete():
        raise InvalidConfigurationError("client_id and client_secret must not be empty")

    endpoints = resolve_endpoints(settings, provider, installed)
    log.debug(f"Authorization endpoint: {endpoints.authorization_endpoint}")
    log.debug(f"Token endpoint: {endpoints.token_endpoint}")

    orchestrator = FlowOrchestrator(
        endpoints,
        settings=settings,
        open_browser=open_browser,
        provider=provider,
        log=log,
    )
    return orchestrator.run(credentials)
