"""Shared test fixtures for oauthloop.

Provides reusable fixtures for isolating configuration, managing output
state, writing client secret files, and running CLI commands. These
fixtures are automatically discovered by pytest and available to all test
modules without explicit imports.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from oauthloop.models import FlowSettings, ProviderEndpoints
from oauthloop.output import OutputFormat, OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    Resetting forces a fresh manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    so that tests never touch real user config. Clears all OAUTHLOOP_*
    environment variables and changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setattr("oauthloop.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in [
        "OAUTHLOOP_CLIENT_ID",
        "OAUTHLOOP_CLIENT_SECRET",
        "OAUTHLOOP_CREDENTIALS",
        "OAUTHLOOP_TIMEOUT",
        "OAUTHLOOP_REQUEST_TIMEOUT",
        "OAUTHLOOP_DISCOVERY_URL",
        "OAUTHLOOP_TOKENINFO_URL",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Client secret files
# ---------------------------------------------------------------------------


def write_client_secret(
    directory: Path,
    name: str = "client_secret_123.apps.example.com.json",
    client_id: str = "123.apps.example.com",
    client_secret: str = "s3cr3t",
    **extra: Any,
) -> Path:
    """Write an installed-app client secret file and return its path."""
    installed: dict[str, Any] = {
        "client_id": client_id,
        "client_secret": client_secret,
        "redirect_uris": ["http://localhost"],
        "auth_uri": "https://accounts.example.com/o/oauth2/auth",
        "token_uri": "https://oauth2.example.com/token",
    }
    installed.update(extra)
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"installed": installed}), encoding="utf-8")
    return path


@pytest.fixture
def make_client_secret():
    """Factory fixture wrapping :func:`write_client_secret`."""
    return write_client_secret


# ---------------------------------------------------------------------------
# Flow fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def endpoints() -> ProviderEndpoints:
    """Provider endpoints pointing at a fictional identity provider."""
    return ProviderEndpoints(
        issuer="https://accounts.example.com",
        authorization_endpoint="https://accounts.example.com/o/oauth2/v2/auth",
        token_endpoint="https://oauth2.example.com/token",
        userinfo_endpoint="https://openidconnect.example.com/v1/userinfo",
        code_challenge_methods_supported=["plain", "S256"],
    )


@pytest.fixture
def fast_settings() -> FlowSettings:
    """Settings with a short callback timeout and optional steps disabled."""
    return FlowSettings(timeout=5.0, verify_token=False, fetch_userinfo=False)


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Set up a quiet output manager for tests that don't care about output.

    Installs a PLAIN-format, quiet OutputManager as the global output
    and resets it after the test completes.
    """
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True, no_color=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def json_output() -> OutputManager:
    """Set up JSON output for tests that check JSON-formatted output."""
    output = OutputManager(format=OutputFormat.JSON, no_color=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
