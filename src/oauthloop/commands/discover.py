"""Discover command -- show a provider's OpenID Connect endpoints."""

from __future__ import annotations

from typing import Optional

import typer

from oauthloop.exceptions import OAuthLoopError
from oauthloop.exit_codes import EXIT_INVALID_CONFIG
from oauthloop.output import OutputFormat, error, get_output, print_table, warning


def discover_command(
    discovery_url: Optional[str] = typer.Option(
        None, "--discovery-url", help="OpenID Connect discovery document URL."
    ),
) -> None:
    """Fetch the discovery document and list the endpoints a login uses.

    Rich and plain output render a two-column table; ``--json`` prints the
    endpoints as an object.

    Raises:
        typer.Exit: With the failing error's exit code.
    """
    from oauthloop.config import resolve_settings
    from oauthloop.oauth.provider import ProviderClient

    try:
        settings = resolve_settings({"discovery_url": discovery_url})
        if not settings.discovery_url:
            error("No discovery URL configured.")
            raise typer.Exit(code=EXIT_INVALID_CONFIG)
        endpoints = ProviderClient(settings.request_timeout).discover(settings.discovery_url)
    except OAuthLoopError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    if not endpoints.supports_s256():
        warning("Provider does not advertise S256 PKCE; login will refuse to run.")

    data = endpoints.model_dump(exclude_none=True)
    output = get_output()
    if output.format == OutputFormat.JSON:
        output.format_response(data)
        return

    rows = [
        [key, ", ".join(value) if isinstance(value, list) else str(value)]
        for key, value in data.items()
    ]
    print_table(["Field", "Value"], rows, title=settings.discovery_url)
