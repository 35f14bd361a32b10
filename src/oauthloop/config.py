"""Configuration management with XDG paths, precedence resolution, and client secret discovery.

This module handles everything oauthloop reads before a login run starts:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.oauthloop/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir` (crash logs live under the data directory).
* **Settings** -- :func:`resolve_settings` merges CLI flags, ``OAUTHLOOP_*``
  environment variables, the user config file, and defaults into a
  :class:`~oauthloop.models.FlowSettings`.
* **Client credentials** -- :func:`load_client_secret` searches a file or
  directory tree for downloaded ``client_secret*.json`` files in the
  installed-app format, and :func:`resolve_credentials` layers the
  ``OAUTHLOOP_CLIENT_ID`` / ``OAUTHLOOP_CLIENT_SECRET`` environment
  variables on top.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from oauthloop.exceptions import InvalidConfigurationError
from oauthloop.models import ClientCredentials, ClientSecretFile, FlowSettings, InstalledClient
from oauthloop.output import debug, info

_APP_NAME = "oauthloop"
_CONFIG_FILENAME = "config.json"
_SECRET_PREFIX = "client_secret"
_SECRET_SUFFIX = ".json"

# Environment variable -> FlowSettings field
_ENV_SETTINGS = {
    "OAUTHLOOP_TIMEOUT": "timeout",
    "OAUTHLOOP_REQUEST_TIMEOUT": "request_timeout",
    "OAUTHLOOP_DISCOVERY_URL": "discovery_url",
    "OAUTHLOOP_TOKENINFO_URL": "tokeninfo_url",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/oauthloop/`` (default ``~/.config/oauthloop/``).
    On macOS/Windows: ``~/.oauthloop/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/oauthloop/`` (default ``~/.local/share/oauthloop/``).
    On macOS/Windows: ``~/.oauthloop/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Settings ---


def _config_path() -> Path:
    return get_config_dir() / _CONFIG_FILENAME


def load_user_settings() -> dict[str, Any]:
    """Load the raw settings mapping from the user config file.

    Returns:
        The decoded JSON object, or an empty dict when the file does not
        exist.

    Raises:
        InvalidConfigurationError: If the file is not a JSON object.
    """
    path = _config_path()
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise InvalidConfigurationError(f"Invalid config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidConfigurationError(f"Invalid config file {path}: expected a JSON object")
    return data


def resolve_settings(overrides: Optional[dict[str, Any]] = None) -> FlowSettings:
    """Resolve flow settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (``overrides``; ``None`` values are ignored)
        2. Environment variables (``OAUTHLOOP_TIMEOUT``,
           ``OAUTHLOOP_REQUEST_TIMEOUT``, ``OAUTHLOOP_DISCOVERY_URL``,
           ``OAUTHLOOP_TOKENINFO_URL``)
        3. User config (``~/.config/oauthloop/config.json``)
        4. Defaults

    Returns:
        The validated :class:`~oauthloop.models.FlowSettings`.

    Raises:
        InvalidConfigurationError: If any layer supplies an invalid value.
    """
    merged: dict[str, Any] = load_user_settings()

    for env_var, field in _ENV_SETTINGS.items():
        value = os.environ.get(env_var)
        if value:
            merged[field] = value

    for field, value in (overrides or {}).items():
        if value is not None:
            merged[field] = value

    try:
        settings = FlowSettings(**merged)
    except ValidationError as exc:
        raise InvalidConfigurationError(f"Invalid settings: {exc}") from exc

    if settings.port_range_start >= settings.port_range_end:
        raise InvalidConfigurationError(
            f"Empty loopback port range: {settings.port_range_start}-{settings.port_range_end}"
        )
    return settings


# --- Client credentials ---


def find_client_secret_files(location: Path) -> list[Path]:
    """Enumerate ``client_secret*.json`` files at or below *location*.

    A file path is returned as-is when its name matches; a directory is
    searched recursively. Results are sorted for a stable pick order.
    """
    if location.is_file():
        if location.name.startswith(_SECRET_PREFIX) and location.name.endswith(_SECRET_SUFFIX):
            return [location]
        return []
    if location.is_dir():
        return sorted(
            path
            for path in location.rglob(f"{_SECRET_PREFIX}*{_SECRET_SUFFIX}")
            if path.is_file()
        )
    return []


def parse_client_secret(path: Path) -> ClientSecretFile:
    """Parse one installed-app client secret file.

    Raises:
        InvalidConfigurationError: If the file cannot be read, is not valid
            JSON in the installed-app shape, or carries an empty client id or
            secret.
    """
    try:
        secret = ClientSecretFile.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        raise InvalidConfigurationError(f"Cannot parse client secret file {path}: {exc}") from exc

    if not secret.installed.client_id.strip():
        raise InvalidConfigurationError(f"Empty client_id in {path}")
    if not secret.installed.client_secret.strip():
        raise InvalidConfigurationError(f"Empty client_secret in {path}")
    return secret


def load_client_secret(location: Path | str = ".") -> InstalledClient:
    """Return the first usable installed-app client found under *location*.

    Files that fail to parse are skipped with an info message; the first one
    that parses wins.

    Raises:
        InvalidConfigurationError: If no usable client secret file exists.
    """
    root = Path(location).expanduser()
    files = find_client_secret_files(root)
    if not files:
        raise InvalidConfigurationError(f"No client_secret*.json found under {root}")

    for path in files:
        try:
            secret = parse_client_secret(path)
        except InvalidConfigurationError as exc:
            info(f"Skipping {path}: {exc}")
            continue
        debug(f"Using client secret file {path}")
        return secret.installed

    raise InvalidConfigurationError(f"No usable client_secret*.json found under {root}")


def resolve_credentials(
    location: Path | str | None = None,
) -> tuple[ClientCredentials, Optional[InstalledClient]]:
    """Resolve the client credentials for a run.

    ``OAUTHLOOP_CLIENT_ID`` and ``OAUTHLOOP_CLIENT_SECRET`` win when both are
    set. Otherwise the client secret file search starts at *location*, then
    ``OAUTHLOOP_CREDENTIALS``, then the current directory.

    Returns:
        A tuple of ``(credentials, installed_client_or_None)``. The installed
        client is ``None`` when the credentials came from the environment.
    """
    env_id = os.environ.get("OAUTHLOOP_CLIENT_ID")
    env_secret = os.environ.get("OAUTHLOOP_CLIENT_SECRET")
    if env_id and env_secret:
        return ClientCredentials(client_id=env_id, client_secret=env_secret), None

    search = location or os.environ.get("OAUTHLOOP_CREDENTIALS") or "."
    installed = load_client_secret(search)
    return installed.credentials(), installed
