"""Shared test fixtures for tasklink.

Provides isolated config environments, provider settings, canned provider
payloads and output state management. These fixtures are discovered by
pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from tasklink.models import ProviderSettings
from tasklink.output import OutputFormat, OutputManager, reset_output, set_output


TOKEN_URL = "https://provider.test/-/oauth_token"
AUTHORIZE_URL = "https://provider.test/-/oauth_authorize"
API_BASE_URL = "https://provider.test/api/1.0"
REDIRECT_URI = "http://127.0.0.1:8765/auth/callback/asana"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams the
    cached references go stale once the test finishes.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and data to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    clears all TASKLINK_* environment variables and changes the working
    directory to tmp_path.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("tasklink.config._is_xdg_platform", lambda: True)

    for name in ProviderSettings.model_fields:
        monkeypatch.delenv(f"TASKLINK_{name.upper()}", raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> ProviderSettings:
    """Public-client settings pointing at fake provider URLs."""
    return ProviderSettings(
        client_id="client-123",
        redirect_uri=REDIRECT_URI,
        authorization_url=AUTHORIZE_URL,
        token_url=TOKEN_URL,
        api_base_url=API_BASE_URL,
        auth_timeout=5,
        poll_interval=0.01,
    )


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN, quiet OutputManager for tests that don't care about output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Provider payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def identity_payload() -> dict[str, Any]:
    return {
        "data": {
            "gid": "u-1",
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "workspaces": [
                {"gid": "w-1", "name": "Engineering"},
                {"gid": "w-2", "name": "Personal"},
            ],
        }
    }
