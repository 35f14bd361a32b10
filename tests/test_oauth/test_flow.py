"""Tests for the flow orchestrator and the ``run`` entry point.

The browser is replaced by a stub that reads the authorization URL and
fires the redirect at the loopback listener from a background thread, the
way a real browser would after consent.
"""

from __future__ import annotations

import threading
import time
from http.client import HTTPConnection
from typing import Any, Callable
from unittest.mock import MagicMock, patch

import httpx
import pytest

from oauthloop.exceptions import (
    AuthorizationDeniedError,
    BrowserLaunchError,
    CallbackTimeoutError,
    DecodeError,
    InvalidConfigurationError,
    MissingAuthorizationCodeError,
    StateMismatchError,
    TransportError,
)
from oauthloop.models import (
    ClientCredentials,
    FlowSettings,
    InstalledClient,
    ProviderEndpoints,
    TokenSet,
    TokenVerificationResult,
    UserProfile,
)
from oauthloop.oauth.flow import FlowOrchestrator, open_system_browser, resolve_endpoints, run
from oauthloop.oauth.pkce import derive_challenge
from oauthloop.oauth.provider import ProviderClient
from oauthloop.oauth.urls import parse_query_string
from oauthloop.output import OutputFormat, OutputManager

CREDENTIALS = ClientCredentials(client_id="123.apps.example.com", client_secret="s3cr3t")


def _quiet() -> OutputManager:
    return OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)


def _mock_response(payload: object, status_code: int = 200) -> MagicMock:
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.json.return_value = payload
    mock_response.text = str(payload)
    if status_code >= 400:
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(),
            response=mock_response,
        )
    else:
        mock_response.raise_for_status.return_value = None
    return mock_response


def _send_redirect(port: int, path: str, deadline: float = 5.0) -> None:
    """Hit the loopback listener, retrying until it accepts connections."""
    give_up = time.monotonic() + deadline
    while True:
        conn = HTTPConnection("127.0.0.1", port, timeout=5)
        try:
            conn.request("GET", path)
            conn.getresponse().read()
            return
        except ConnectionRefusedError:
            if time.monotonic() > give_up:
                return
            time.sleep(0.02)
        finally:
            conn.close()


class FakeBrowser:
    """Browser opener that answers the consent page with a scripted redirect.

    Args:
        respond: Receives the authorization request parameters and returns
            the query string to send back, or ``None`` to never call back.
    """

    def __init__(self, respond: Callable[[dict[str, str]], str | None]) -> None:
        self.respond = respond
        self.urls: list[str] = []
        self.params: dict[str, str] = {}
        self._threads: list[threading.Thread] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        self.params = parse_query_string(url.split("?", 1)[1])
        query = self.respond(self.params)
        if query is not None:
            port = int(self.params["redirect_uri"].rsplit(":", 1)[1])
            thread = threading.Thread(
                target=_send_redirect, args=(port, f"/?{query}"), daemon=True
            )
            thread.start()
            self._threads.append(thread)
        return True

    def join(self) -> None:
        for thread in self._threads:
            thread.join(timeout=5)


def _consent(params: dict[str, str]) -> str:
    return f"code=4%2F0AcodeXYZ&state={params['state']}&scope=openid%20email"


def _provider(tokens: TokenSet | None = None) -> MagicMock:
    provider = MagicMock(spec=ProviderClient)
    provider.exchange_code.return_value = tokens or TokenSet(
        access_token="ya29.token", expires_in=3599, refresh_token="1//r"
    )
    provider.verify_token.return_value = TokenVerificationResult(aud="123.apps.example.com")
    provider.fetch_userinfo.return_value = UserProfile(sub="1234", email="user@example.com")
    return provider


# ---------------------------------------------------------------------------
# Orchestrator happy path
# ---------------------------------------------------------------------------


class TestFlowOrchestratorSuccess:
    def test_full_flow(self, endpoints: ProviderEndpoints) -> None:
        browser = FakeBrowser(_consent)
        provider = _provider()
        settings = FlowSettings(timeout=5.0)
        orchestrator = FlowOrchestrator(
            endpoints, settings=settings, open_browser=browser, provider=provider, log=_quiet()
        )

        result = orchestrator.run(CREDENTIALS)
        browser.join()

        assert result.tokens.access_token == "ya29.token"
        assert result.verification is not None
        assert result.profile is not None and result.profile.sub == "1234"

        flow_state = orchestrator.flow_state
        assert flow_state is not None
        assert browser.params["state"] == flow_state.state
        assert browser.params["redirect_uri"] == f"http://localhost:{flow_state.port}"
        assert browser.params["client_id"] == CREDENTIALS.client_id
        assert browser.params["scope"] == "openid profile email"
        assert browser.params["code_challenge_method"] == "S256"

        kwargs = provider.exchange_code.call_args.kwargs
        assert kwargs["code"] == "4/0AcodeXYZ"
        assert kwargs["redirect_uri"] == flow_state.redirect_uri
        assert kwargs["state"] == flow_state.state
        assert derive_challenge(kwargs["code_verifier"]) == browser.params["code_challenge"]

        provider.verify_token.assert_called_once()
        provider.fetch_userinfo.assert_called_once_with(
            endpoints.userinfo_endpoint, "ya29.token"
        )

    def test_optional_steps_disabled(
        self, endpoints: ProviderEndpoints, fast_settings: FlowSettings
    ) -> None:
        browser = FakeBrowser(_consent)
        provider = _provider()
        result = FlowOrchestrator(
            endpoints, settings=fast_settings, open_browser=browser, provider=provider, log=_quiet()
        ).run(CREDENTIALS)
        browser.join()

        assert result.verification is None
        assert result.profile is None
        provider.verify_token.assert_not_called()
        provider.fetch_userinfo.assert_not_called()

    def test_fresh_state_each_run(self, endpoints: ProviderEndpoints, fast_settings: FlowSettings) -> None:
        states = []
        for _ in range(2):
            browser = FakeBrowser(_consent)
            FlowOrchestrator(
                endpoints, settings=fast_settings, open_browser=browser, provider=_provider(), log=_quiet()
            ).run(CREDENTIALS)
            browser.join()
            states.append(browser.params["state"])
        assert states[0] != states[1]

    def test_verification_failure_is_not_fatal(self, endpoints: ProviderEndpoints) -> None:
        browser = FakeBrowser(_consent)
        provider = _provider()
        provider.verify_token.side_effect = TransportError("tokeninfo down")
        log = MagicMock(spec=OutputManager)

        result = FlowOrchestrator(
            endpoints,
            settings=FlowSettings(timeout=5.0, fetch_userinfo=False),
            open_browser=browser,
            provider=provider,
            log=log,
        ).run(CREDENTIALS)
        browser.join()

        assert result.verification is None
        assert any("tokeninfo down" in str(c) for c in log.warning.call_args_list)

    def test_userinfo_failure_is_fatal(self, endpoints: ProviderEndpoints) -> None:
        browser = FakeBrowser(_consent)
        provider = _provider()
        provider.fetch_userinfo.side_effect = DecodeError("bad profile")

        with pytest.raises(DecodeError):
            FlowOrchestrator(
                endpoints,
                settings=FlowSettings(timeout=5.0, verify_token=False),
                open_browser=browser,
                provider=provider,
                log=_quiet(),
            ).run(CREDENTIALS)
        browser.join()

    def test_missing_userinfo_endpoint_skips_profile(self, fast_settings: FlowSettings) -> None:
        endpoints = ProviderEndpoints(
            authorization_endpoint="https://a.example/auth",
            token_endpoint="https://a.example/token",
        )
        browser = FakeBrowser(_consent)
        provider = _provider()
        settings = fast_settings.model_copy(update={"fetch_userinfo": True})

        result = FlowOrchestrator(
            endpoints, settings=settings, open_browser=browser, provider=provider, log=_quiet()
        ).run(CREDENTIALS)
        browser.join()

        assert result.profile is None
        provider.fetch_userinfo.assert_not_called()

    def test_tokens_never_logged(self, endpoints: ProviderEndpoints) -> None:
        browser = FakeBrowser(_consent)
        log = MagicMock(spec=OutputManager)
        FlowOrchestrator(
            endpoints,
            settings=FlowSettings(timeout=5.0),
            open_browser=browser,
            provider=_provider(),
            log=log,
        ).run(CREDENTIALS)
        browser.join()

        logged = " ".join(str(c) for c in log.method_calls)
        assert "ya29.token" not in logged
        assert "1//r" not in logged
        assert "4/0AcodeXYZ" not in logged


# ---------------------------------------------------------------------------
# Orchestrator failures
# ---------------------------------------------------------------------------


class TestFlowOrchestratorFailures:
    def _run(
        self,
        endpoints: ProviderEndpoints,
        respond: Callable[[dict[str, str]], str | None],
        timeout: float = 5.0,
        credentials: ClientCredentials = CREDENTIALS,
    ) -> tuple[MagicMock, Any]:
        browser = FakeBrowser(respond)
        provider = _provider()
        orchestrator = FlowOrchestrator(
            endpoints,
            settings=FlowSettings(timeout=timeout),
            open_browser=browser,
            provider=provider,
            log=_quiet(),
        )
        try:
            orchestrator.run(credentials)
        finally:
            browser.join()
        return provider, orchestrator

    def test_authorization_denied(self, endpoints: ProviderEndpoints) -> None:
        provider = _provider()
        browser = FakeBrowser(lambda p: "error=access_denied")
        orchestrator = FlowOrchestrator(
            endpoints, settings=FlowSettings(timeout=5.0), open_browser=browser,
            provider=provider, log=_quiet(),
        )
        with pytest.raises(AuthorizationDeniedError) as exc_info:
            orchestrator.run(CREDENTIALS)
        browser.join()

        assert exc_info.value.reason == "access_denied"
        assert exc_info.value.exit_code == 3
        provider.exchange_code.assert_not_called()

    def test_denied_with_description(self, endpoints: ProviderEndpoints) -> None:
        with pytest.raises(AuthorizationDeniedError, match="User cancelled"):
            self._run(endpoints, lambda p: "error=access_denied&error_description=User%20cancelled")

    def test_state_mismatch(self, endpoints: ProviderEndpoints) -> None:
        provider = _provider()
        browser = FakeBrowser(lambda p: "code=abc&state=forged")
        with pytest.raises(StateMismatchError):
            FlowOrchestrator(
                endpoints, settings=FlowSettings(timeout=5.0), open_browser=browser,
                provider=provider, log=_quiet(),
            ).run(CREDENTIALS)
        browser.join()
        provider.exchange_code.assert_not_called()

    def test_missing_state(self, endpoints: ProviderEndpoints) -> None:
        with pytest.raises(StateMismatchError):
            self._run(endpoints, lambda p: "code=abc")

    @pytest.mark.parametrize("state", ["%C3%A9", "%FF", "%E2%9C%93abc"])
    def test_non_ascii_state_is_mismatch(self, endpoints: ProviderEndpoints, state: str) -> None:
        provider = _provider()
        browser = FakeBrowser(lambda p: f"code=abc&state={state}")
        with pytest.raises(StateMismatchError):
            FlowOrchestrator(
                endpoints, settings=FlowSettings(timeout=5.0), open_browser=browser,
                provider=provider, log=_quiet(),
            ).run(CREDENTIALS)
        browser.join()
        provider.exchange_code.assert_not_called()

    def test_missing_code(self, endpoints: ProviderEndpoints) -> None:
        provider = _provider()
        browser = FakeBrowser(lambda p: f"state={p['state']}")
        with pytest.raises(MissingAuthorizationCodeError):
            FlowOrchestrator(
                endpoints, settings=FlowSettings(timeout=5.0), open_browser=browser,
                provider=provider, log=_quiet(),
            ).run(CREDENTIALS)
        browser.join()
        provider.exchange_code.assert_not_called()

    def test_timeout(self, endpoints: ProviderEndpoints) -> None:
        with pytest.raises(CallbackTimeoutError):
            self._run(endpoints, lambda p: None, timeout=0.2)

    @pytest.mark.parametrize(
        "credentials",
        [
            ClientCredentials(client_id="", client_secret="s"),
            ClientCredentials(client_id="c", client_secret=""),
            ClientCredentials(client_id="  ", client_secret="s"),
        ],
    )
    def test_empty_credentials(
        self, endpoints: ProviderEndpoints, credentials: ClientCredentials
    ) -> None:
        browser = MagicMock()
        with pytest.raises(InvalidConfigurationError):
            FlowOrchestrator(endpoints, open_browser=browser, log=_quiet()).run(credentials)
        browser.assert_not_called()

    def test_s256_not_supported(self) -> None:
        endpoints = ProviderEndpoints(
            authorization_endpoint="https://a.example/auth",
            token_endpoint="https://a.example/token",
            code_challenge_methods_supported=["plain"],
        )
        with pytest.raises(InvalidConfigurationError, match="S256"):
            FlowOrchestrator(endpoints, open_browser=MagicMock(), log=_quiet()).run(CREDENTIALS)

    def test_browser_raises(self, endpoints: ProviderEndpoints) -> None:
        def _broken(url: str) -> None:
            raise RuntimeError("no display")

        with pytest.raises(BrowserLaunchError, match="no display") as exc_info:
            FlowOrchestrator(endpoints, open_browser=_broken, log=_quiet()).run(CREDENTIALS)
        assert exc_info.value.exit_code == 5

    def test_browser_returns_false(self, endpoints: ProviderEndpoints) -> None:
        with pytest.raises(BrowserLaunchError):
            FlowOrchestrator(endpoints, open_browser=lambda url: False, log=_quiet()).run(CREDENTIALS)


class TestOpenSystemBrowser:
    def test_success(self) -> None:
        with patch("oauthloop.oauth.flow.webbrowser.open", return_value=True) as mock_open:
            open_system_browser("https://a.example/auth")
        mock_open.assert_called_once_with("https://a.example/auth")

    def test_no_browser(self) -> None:
        with patch("oauthloop.oauth.flow.webbrowser.open", return_value=False):
            with pytest.raises(BrowserLaunchError):
                open_system_browser("https://a.example/auth")


# ---------------------------------------------------------------------------
# Endpoint resolution and run()
# ---------------------------------------------------------------------------


_DISCOVERY_DOC = {
    "issuer": "https://accounts.example.com",
    "authorization_endpoint": "https://accounts.example.com/o/oauth2/v2/auth",
    "token_endpoint": "https://oauth2.example.com/token",
    "userinfo_endpoint": "https://openidconnect.example.com/v1/userinfo",
    "code_challenge_methods_supported": ["plain", "S256"],
}


class TestResolveEndpoints:
    def test_discovery(self) -> None:
        provider = MagicMock(spec=ProviderClient)
        provider.discover.return_value = ProviderEndpoints(**_DISCOVERY_DOC)
        endpoints = resolve_endpoints(FlowSettings(), provider)
        provider.discover.assert_called_once_with(FlowSettings().discovery_url)
        assert endpoints.token_endpoint == _DISCOVERY_DOC["token_endpoint"]

    def test_client_secret_fallback(self) -> None:
        installed = InstalledClient(
            client_id="c",
            client_secret="s",
            auth_uri="https://a.example/auth",
            token_uri="https://a.example/token",
        )
        provider = MagicMock(spec=ProviderClient)
        endpoints = resolve_endpoints(FlowSettings(discovery_url=""), provider, installed)
        provider.discover.assert_not_called()
        assert endpoints.authorization_endpoint == "https://a.example/auth"
        assert endpoints.userinfo_endpoint is None

    def test_nothing_configured(self) -> None:
        with pytest.raises(InvalidConfigurationError):
            resolve_endpoints(FlowSettings(discovery_url=""), MagicMock(spec=ProviderClient))


class TestRun:
    def test_end_to_end_returns_token_set_unchanged(self) -> None:
        token_payload = {
            "access_token": "ya29.a0AfH6",
            "expires_in": 3599,
            "refresh_token": "1//0gRefresh",
            "scope": "openid https://www.googleapis.com/auth/userinfo.email",
            "token_type": "Bearer",
            "id_token": "eyJhbGciOi.payload.sig",
        }
        browser = FakeBrowser(_consent)
        settings = FlowSettings(timeout=5.0, verify_token=False, fetch_userinfo=False)

        with patch(
            "oauthloop.oauth.provider.httpx.get", return_value=_mock_response(_DISCOVERY_DOC)
        ) as mock_get, patch(
            "oauthloop.oauth.provider.httpx.post", return_value=_mock_response(token_payload)
        ) as mock_post:
            result = run(CREDENTIALS, settings=settings, open_browser=browser, log=_quiet())
        browser.join()

        assert result.tokens.model_dump(exclude_none=True) == token_payload
        assert browser.urls[0].startswith(_DISCOVERY_DOC["authorization_endpoint"] + "?")
        mock_get.assert_called_once()
        assert mock_post.call_args.args[0] == _DISCOVERY_DOC["token_endpoint"]
        assert mock_post.call_args.kwargs["data"]["code"] == "4/0AcodeXYZ"

    def test_token_endpoint_rejection(self) -> None:
        browser = FakeBrowser(_consent)
        settings = FlowSettings(timeout=5.0, verify_token=False, fetch_userinfo=False)

        with patch(
            "oauthloop.oauth.provider.httpx.get", return_value=_mock_response(_DISCOVERY_DOC)
        ), patch(
            "oauthloop.oauth.provider.httpx.post",
            return_value=_mock_response({"error": "invalid_grant"}, status_code=400),
        ):
            from oauthloop.exceptions import TokenExchangeError

            with pytest.raises(TokenExchangeError, match="400"):
                run(CREDENTIALS, settings=settings, open_browser=browser, log=_quiet())
        browser.join()

    def test_empty_credentials_skip_discovery(self) -> None:
        with patch("oauthloop.oauth.provider.httpx.get") as mock_get:
            with pytest.raises(InvalidConfigurationError):
                run(ClientCredentials(client_id="", client_secret=""), log=_quiet())
        mock_get.assert_not_called()
