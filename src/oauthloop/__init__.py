"""oauthloop -- OAuth 2.0 Authorization Code + PKCE login for installed apps.

This package runs the "installed app" flow from a terminal: it generates PKCE
parameters, opens the provider's consent page in the system browser,
captures the redirect on a single-use loopback listener, exchanges the
authorization code for tokens, and fetches the signed-in user's identity.

Typical workflow::

    oauthloop login --credentials ./client_secret.json

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG paths, settings resolution, and client secret discovery.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    oauth: PKCE, URL building, loopback callback server, provider client,
        and the flow orchestrator.
"""

__version__ = "0.1.0"
