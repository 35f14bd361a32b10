"""OAuth2 Authorization Code + PKCE building blocks for installed apps.

* :mod:`~oauthloop.oauth.pkce` -- code verifier, S256 challenge, and CSRF
  state generation.
* :mod:`~oauthloop.oauth.urls` -- strict percent-encoding, query-string
  parsing, and authorization URL construction.
* :mod:`~oauthloop.oauth.callback_server` -- the single-use loopback
  listener that captures the provider redirect.
* :mod:`~oauthloop.oauth.provider` -- discovery, token, tokeninfo, and
  userinfo HTTP calls.
* :mod:`~oauthloop.oauth.flow` -- the orchestrator tying them together.
"""

from oauthloop.oauth.callback_server import LoopbackCallbackServer, ServerState
from oauthloop.oauth.flow import FlowOrchestrator, open_system_browser, run
from oauthloop.oauth.pkce import derive_challenge, generate_pkce, generate_state, generate_verifier
from oauthloop.oauth.provider import ProviderClient
from oauthloop.oauth.urls import build_authorization_url, percent_decode, percent_encode

__all__ = [
    "FlowOrchestrator",
    "LoopbackCallbackServer",
    "ProviderClient",
    "ServerState",
    "build_authorization_url",
    "derive_challenge",
    "generate_pkce",
    "generate_state",
    "generate_verifier",
    "open_system_browser",
    "percent_decode",
    "percent_encode",
    "run",
]
