"""Shared fixtures.

Every test runs with config, token and legacy paths redirected into a
temporary directory so nothing touches the real home directory.
"""

import json

import pytest

import mailbridge.config
import mailbridge.config.paths
from mailbridge.auth.client import ClientCredentials


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path, monkeypatch):
    """Point every mailbridge path at tmp_path."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("MAILBRIDGE_TOKEN_PATH", str(tmp_path / "tokens.json"))
    monkeypatch.setenv("MAILBRIDGE_OAUTH_PATH", str(tmp_path / "gcp-oauth.keys.json"))
    monkeypatch.delenv("MAILBRIDGE_ACCOUNT", raising=False)
    monkeypatch.delenv("MAILBRIDGE_LOG_LEVEL", raising=False)
    monkeypatch.setattr(
        mailbridge.config.paths, "LEGACY_TOKEN_FILE", tmp_path / "legacy" / "credentials.json"
    )
    monkeypatch.setattr(mailbridge.config, "_cached_config", None)
    return tmp_path


@pytest.fixture
def token_file(tmp_path):
    return tmp_path / "tokens.json"


@pytest.fixture
def legacy_file(tmp_path):
    return tmp_path / "legacy" / "credentials.json"


@pytest.fixture
def client_credentials():
    return ClientCredentials(client_id="client-id", client_secret="client-secret")


@pytest.fixture
def keys_file(tmp_path):
    """Write a valid OAuth keys file at MAILBRIDGE_OAUTH_PATH."""
    path = tmp_path / "gcp-oauth.keys.json"
    path.write_text(
        json.dumps(
            {
                "installed": {
                    "client_id": "client-id",
                    "client_secret": "client-secret",
                    "redirect_uris": ["http://localhost"],
                }
            }
        )
    )
    return path
