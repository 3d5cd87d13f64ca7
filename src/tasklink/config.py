"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for tasklink:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.tasklink/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Provider settings** -- a single :class:`~tasklink.models.ProviderSettings`
  JSON file (``config.json``) holding the OAuth2 client registration and
  endpoint URLs.
* **Precedence resolution** -- :func:`load_settings` merges explicit
  overrides, ``TASKLINK_*`` environment variables, the config file and the
  model defaults into the effective settings.
* **Secret resolution** -- :func:`resolve_secret` reads ``env:VAR`` and
  ``file:/path`` sources so that secrets need not sit in ``config.json``.

All file writes go through :func:`atomic_write` (temp file then rename) so
that a crash never leaves a half-written file behind.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from tasklink.exceptions import ConfigurationError
from tasklink.models import ProviderSettings

_APP_NAME = "tasklink"
_CONFIG_FILENAME = "config.json"
_ENV_PREFIX = "TASKLINK_"


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

    On Linux/BSD: ``$XDG_CONFIG_HOME/tasklink/`` (default ``~/.config/tasklink/``).
    On macOS/Windows: ``~/.tasklink/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (tokens, pending sessions, preferences), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/tasklink/`` (default ``~/.local/share/tasklink/``).
    On macOS/Windows: ``~/.tasklink/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write *data* to *path* atomically using a temp file and rename.

    The temporary file is created next to *path* so that ``os.replace`` is an
    atomic rename on POSIX systems. When *mode* is given the permissions are
    applied before any content is written, so secrets are never readable by
    others, not even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Provider settings ---


def settings_path() -> Path:
    """Path to the settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def _read_settings_file() -> dict[str, Any]:
    path = settings_path()
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        raise ConfigurationError(f"Invalid config at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid config at {path}: expected a JSON object")
    return data


def _env_overrides() -> dict[str, str]:
    """Collect ``TASKLINK_<FIELD>`` environment variables for known settings fields."""
    overrides: dict[str, str] = {}
    for name in ProviderSettings.model_fields:
        value = os.environ.get(f"{_ENV_PREFIX}{name.upper()}")
        if value:
            overrides[name] = value
    return overrides


def load_settings(**overrides: Any) -> ProviderSettings:
    """Resolve the effective provider settings.

    Precedence (high to low):
        1. Keyword *overrides* whose value is not ``None``
        2. Environment variables (``TASKLINK_CLIENT_ID``, ``TASKLINK_REDIRECT_URI``, ...)
        3. ``config.json`` in :func:`get_config_dir`
        4. Model defaults

    Secret fields (``client_secret``, ``fallback_access_token``) are passed
    through :func:`resolve_secret` after merging.

    Raises:
        ConfigurationError: If the config file or a secret source is invalid.
    """
    data = _read_settings_file()
    data.update(_env_overrides())
    data.update({k: v for k, v in overrides.items() if v is not None})

    for key in ("client_secret", "fallback_access_token"):
        if data.get(key):
            data[key] = resolve_secret(data[key])

    try:
        return ProviderSettings.model_validate(data)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc


def save_setting(key: str, value: Optional[str]) -> ProviderSettings:
    """Set (or, with ``None``, remove) one key in ``config.json``.

    Only the file is touched; environment overrides are not baked in.

    Raises:
        ConfigurationError: If *key* is not a settings field or the value
            fails validation.
    """
    if key not in ProviderSettings.model_fields:
        known = ", ".join(sorted(ProviderSettings.model_fields))
        raise ConfigurationError(f"Unknown setting '{key}'. Known settings: {known}")

    data = _read_settings_file()
    if value is None:
        data.pop(key, None)
    else:
        data[key] = value

    try:
        settings = ProviderSettings.model_validate(data)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for '{key}': {exc}") from exc

    atomic_write(settings_path(), json.dumps(data, indent=2) + "\n")
    return settings


# --- Secret source resolution ---


def resolve_secret(source: str) -> str:
    """Resolve a secret from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - anything else -- returned unchanged as a literal value

    Raises:
        ConfigurationError: If the variable is unset or the file unreadable.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"Secret file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigurationError(f"Cannot read secret file {path}: {exc}") from exc

    return source


def require_client(settings: ProviderSettings) -> tuple[str, str]:
    """Return ``(client_id, redirect_uri)`` or fail fast.

    Raises:
        ConfigurationError: If either value is missing.
    """
    if not settings.client_id:
        raise ConfigurationError(
            "No OAuth2 client id configured (set TASKLINK_CLIENT_ID or "
            "`tasklink config set client_id ...`)"
        )
    if not settings.redirect_uri:
        raise ConfigurationError(
            "No redirect URI configured (set TASKLINK_REDIRECT_URI or "
            "`tasklink config set redirect_uri ...`)"
        )
    return settings.client_id, settings.redirect_uri
