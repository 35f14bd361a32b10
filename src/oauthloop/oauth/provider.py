"""HTTP calls to the OAuth2 / OpenID Connect provider.

:class:`ProviderClient` covers the four provider-side endpoints the login
flow talks to:

- **discovery** -- ``GET`` the ``/.well-known/openid-configuration``
  document and extract the endpoints (:meth:`ProviderClient.discover`).
- **token** -- form ``POST`` exchanging the authorization code and PKCE
  verifier for a token set (:meth:`ProviderClient.exchange_code`).
- **tokeninfo** -- ``GET`` with an ``access_token`` query parameter
  (:meth:`ProviderClient.verify_token`).
- **userinfo** -- ``GET`` with an ``Authorization: Bearer`` header
  (:meth:`ProviderClient.fetch_userinfo`).

Every call is a single attempt with a per-request timeout. Nothing is
retried: an authorization code can be redeemed only once.
"""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from oauthloop.exceptions import DecodeError, OAuthLoopError, TokenExchangeError, TransportError
from oauthloop.models import ProviderEndpoints, TokenSet, TokenVerificationResult, UserProfile

DEFAULT_REQUEST_TIMEOUT = 30.0

_JSON_HEADERS = {"Accept": "application/json"}


def _decode_json(response: httpx.Response, what: str, failure: type[OAuthLoopError]) -> dict[str, Any]:
    """Return the response body as a JSON object or raise *failure*."""
    try:
        data = response.json()
    except ValueError as exc:
        raise failure(f"{what} returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise failure(f"{what} returned {type(data).__name__}, expected a JSON object")
    return data


def _to_model(model: type[BaseModel], data: dict[str, Any], what: str, failure: type[OAuthLoopError]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise failure(f"{what} response is incomplete: {exc}") from exc


class ProviderClient:
    """Blocking client for the provider's discovery, token, tokeninfo, and userinfo endpoints.

    Args:
        request_timeout: Per-request timeout in seconds.
    """

    def __init__(self, request_timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self.request_timeout = request_timeout

    def discover(self, discovery_url: str) -> ProviderEndpoints:
        """Fetch the OpenID Connect discovery document.

        Args:
            discovery_url: URL of the provider's discovery document
                (typically ``https://provider/.well-known/openid-configuration``).

        Returns:
            The provider's :class:`~oauthloop.models.ProviderEndpoints`.

        Raises:
            TransportError: If the document cannot be fetched.
            DecodeError: If it is not JSON or lacks ``authorization_endpoint``
                or ``token_endpoint``.
        """
        response = self._get(discovery_url, "OpenID discovery")
        doc = _decode_json(response, "OpenID discovery", DecodeError)
        return _to_model(ProviderEndpoints, doc, "OpenID discovery", DecodeError)

    def exchange_code(
        self,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        code: str,
        code_verifier: str,
        redirect_uri: str,
        state: str,
    ) -> TokenSet:
        """Exchange an authorization code for a token set.

        Args:
            token_endpoint: The provider's token endpoint.
            client_id: The registered client id.
            client_secret: The client secret (installed apps still send it).
            code: The authorization code from the callback.
            code_verifier: The PKCE code verifier proving possession.
            redirect_uri: The redirect URI used in the authorization request.
            state: The validated CSRF state from the callback.

        Returns:
            The decoded :class:`~oauthloop.models.TokenSet`.

        Raises:
            TokenExchangeError: On transport errors, non-2xx responses, or a
                body that is not a token set.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
            "state": state,
            "scope": "",
        }

        try:
            response = httpx.post(
                token_endpoint,
                data=data,
                headers=_JSON_HEADERS,
                timeout=self.request_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TokenExchangeError(
                f"Token exchange failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Token exchange failed: {exc}") from exc

        token_data = _decode_json(response, "Token endpoint", TokenExchangeError)
        if "access_token" not in token_data:
            raise TokenExchangeError("Token response missing 'access_token' field")
        return _to_model(TokenSet, token_data, "Token endpoint", TokenExchangeError)

    def verify_token(self, tokeninfo_url: str, access_token: str) -> TokenVerificationResult:
        """Ask the provider's tokeninfo endpoint about *access_token*.

        Raises:
            TransportError: If the request fails or the provider rejects the token.
            DecodeError: If the response is not a JSON object.
        """
        response = self._get(tokeninfo_url, "Token verification", params={"access_token": access_token})
        data = _decode_json(response, "Token verification", DecodeError)
        return _to_model(TokenVerificationResult, data, "Token verification", DecodeError)

    def fetch_userinfo(self, userinfo_endpoint: str, access_token: str) -> UserProfile:
        """Fetch the signed-in user's profile with a bearer token.

        Raises:
            TransportError: If the request fails or returns a non-2xx status.
            DecodeError: If the response is not a JSON object with a ``sub`` claim.
        """
        response = self._get(
            userinfo_endpoint,
            "Userinfo request",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = _decode_json(response, "Userinfo request", DecodeError)
        return _to_model(UserProfile, data, "Userinfo request", DecodeError)

    def _get(
        self,
        url: str,
        what: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        merged_headers = dict(_JSON_HEADERS)
        merged_headers.update(headers or {})
        try:
            response = httpx.get(
                url,
                params=params,
                headers=merged_headers,
                timeout=self.request_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"{what} failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{what} failed: {exc}") from exc
        return response
