"""Login commands -- run the installed-app OAuth2 flow.

Provides two root-level commands:

* ``oauthloop login`` opens the consent page in the browser, captures the
  redirect on a loopback port, exchanges the code, and prints who signed in.
* ``oauthloop authorize-url`` prints the authorization URL a login would
  open for a given redirect port, without listening for the callback.

Typical workflow::

    oauthloop login --credentials ~/Downloads/
    oauthloop --json login --show-tokens | jq .tokens.access_token
"""

from __future__ import annotations

from typing import Any, Optional

import typer

from oauthloop.exceptions import OAuthLoopError
from oauthloop.models import FlowResult, ProviderEndpoints
from oauthloop.output import error, format_response, get_output, info

# Characters of a token shown on either side of the mask
_VISIBLE_CHARS = 4


def mask_token(token: str) -> str:
    """Return *token* with everything but its first and last characters hidden."""
    if not token:
        return ""
    if len(token) <= _VISIBLE_CHARS * 2:
        return "*" * len(token)
    return f"{token[:_VISIBLE_CHARS]}...{token[-_VISIBLE_CHARS:]}"


def render_result(result: FlowResult, show_tokens: bool = False) -> dict[str, Any]:
    """Build the stdout payload for a finished login.

    Token values are masked unless *show_tokens* is set; expiry, scope, and
    the presence of a refresh or ID token are always shown.
    """
    tokens = result.tokens
    if show_tokens:
        token_view: dict[str, Any] = tokens.model_dump(exclude_none=True)
    else:
        token_view = {
            "access_token": mask_token(tokens.access_token),
            "token_type": tokens.token_type,
            "expires_in": tokens.expires_in,
            "scope": tokens.scope,
            "refresh_token": "present" if tokens.refresh_token else "absent",
            "id_token": "present" if tokens.id_token else "absent",
        }

    payload: dict[str, Any] = {"tokens": token_view}
    if result.profile is not None:
        payload["profile"] = result.profile.model_dump(exclude_none=True)
    if result.verification is not None:
        payload["verification"] = result.verification.model_dump(exclude_none=True)
    return payload


def login_command(
    credentials: Optional[str] = typer.Option(
        None,
        "--credentials",
        "-c",
        help="client_secret*.json file or a directory to search.",
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Seconds to wait for the browser callback."
    ),
    discovery_url: Optional[str] = typer.Option(
        None, "--discovery-url", help="OpenID Connect discovery document URL."
    ),
    no_verify: bool = typer.Option(
        False, "--no-verify", help="Skip the tokeninfo check."
    ),
    no_userinfo: bool = typer.Option(
        False, "--no-userinfo", help="Skip fetching the user profile."
    ),
    show_tokens: bool = typer.Option(
        False, "--show-tokens", help="Print token values instead of masking them."
    ),
) -> None:
    """Sign in through the browser and print the signed-in identity.

    Resolves client credentials and settings, runs one Authorization Code +
    PKCE flow, and prints the profile and token metadata to stdout. Progress
    goes to stderr.

    Raises:
        typer.Exit: With the failing error's exit code.

    Example::

        oauthloop login --credentials ./client_secret_123.json --timeout 60
    """
    from oauthloop.config import resolve_credentials, resolve_settings
    from oauthloop.oauth.flow import run

    overrides: dict[str, Any] = {
        "timeout": timeout,
        "discovery_url": discovery_url,
    }
    if no_verify:
        overrides["verify_token"] = False
    if no_userinfo:
        overrides["fetch_userinfo"] = False

    try:
        settings = resolve_settings(overrides)
        client, installed = resolve_credentials(credentials)
        result = run(client, settings=settings, log=get_output(), installed=installed)
    except OAuthLoopError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    format_response(render_result(result, show_tokens=show_tokens))


def authorize_url_command(
    port: int = typer.Option(
        15000, "--port", min=1, max=65535, help="Loopback port for the redirect URI."
    ),
    credentials: Optional[str] = typer.Option(
        None,
        "--credentials",
        "-c",
        help="client_secret*.json file or a directory to search.",
    ),
    discovery_url: Optional[str] = typer.Option(
        None, "--discovery-url", help="OpenID Connect discovery document URL."
    ),
    show_verifier: bool = typer.Option(
        False, "--show-verifier", help="Also print the PKCE code verifier and state."
    ),
) -> None:
    """Print the authorization URL a login would open, without listening.

    A fresh state and PKCE pair are generated each time. Nothing listens on
    *port*, so completing consent in the browser leads nowhere; use this to
    inspect the request parameters.

    Raises:
        typer.Exit: With the failing error's exit code.
    """
    from oauthloop.config import resolve_credentials, resolve_settings
    from oauthloop.oauth.flow import resolve_endpoints
    from oauthloop.oauth.pkce import generate_pkce, generate_state
    from oauthloop.oauth.provider import ProviderClient
    from oauthloop.oauth.urls import build_authorization_url

    try:
        settings = resolve_settings({"discovery_url": discovery_url})
        client, installed = resolve_credentials(credentials)
        endpoints: ProviderEndpoints = resolve_endpoints(
            settings, ProviderClient(settings.request_timeout), installed
        )
    except OAuthLoopError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    state = generate_state()
    pkce = generate_pkce()
    redirect_uri = f"http://localhost:{port}"
    url = build_authorization_url(
        endpoints.authorization_endpoint,
        client_id=client.client_id,
        redirect_uri=redirect_uri,
        state=state,
        code_challenge=pkce.code_challenge,
        scopes=settings.scopes,
    )

    if show_verifier:
        format_response(
            {
                "url": url,
                "redirect_uri": redirect_uri,
                "state": state,
                "code_verifier": pkce.code_verifier,
                "code_challenge": pkce.code_challenge,
            }
        )
    else:
        info(f"Redirect URI: {redirect_uri}")
        get_output().print_data(url)
