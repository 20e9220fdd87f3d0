"""Path resolution for mailbridge config, tokens and OAuth keys.

Follows the XDG Base Directory layout:
- Config: $XDG_CONFIG_HOME/mailbridge/ (default ~/.config/mailbridge/)
- Tokens: <config dir>/tokens.json (with restricted permissions)

Environment overrides are read when a path is resolved, so they take
effect for every store or client constructed afterwards.
"""

import os
from pathlib import Path

APP_NAME = "mailbridge"

# Environment variables consumed at initialization
TOKEN_PATH_ENV = "MAILBRIDGE_TOKEN_PATH"
OAUTH_PATH_ENV = "MAILBRIDGE_OAUTH_PATH"
CONFIG_ROOT_ENV = "XDG_CONFIG_HOME"

TOKEN_FILE_NAME = "tokens.json"
CONFIG_FILE_NAME = "config.toml"
OAUTH_KEYS_FILE_NAME = "gcp-oauth.keys.json"

# Pre-XDG location, kept only as a migration source
LEGACY_DIR = Path.home() / ".mailbridge"
LEGACY_TOKEN_FILE = LEGACY_DIR / "credentials.json"

# Repository root, last fallback for the OAuth keys file
PROJECT_ROOT = Path(__file__).resolve().parents[2]


def config_dir() -> Path:
    """Get the config directory, honouring XDG_CONFIG_HOME."""
    root = os.environ.get(CONFIG_ROOT_ENV)
    base = Path(root) if root else Path.home() / ".config"
    return base / APP_NAME


def config_file() -> Path:
    """Get the path of the optional config.toml."""
    return config_dir() / CONFIG_FILE_NAME


def token_path() -> Path:
    """Get the token store path.

    Priority: MAILBRIDGE_TOKEN_PATH > XDG_CONFIG_HOME > ~/.config
    """
    override = os.environ.get(TOKEN_PATH_ENV)
    if override:
        return Path(override).expanduser().resolve()
    return config_dir() / TOKEN_FILE_NAME


def legacy_token_path() -> Path:
    """Get the legacy token path (migration source only)."""
    return LEGACY_TOKEN_FILE


def oauth_keys_path() -> Path:
    """Get the OAuth client secret file path.

    Priority:
    1. MAILBRIDGE_OAUTH_PATH environment variable
    2. ~/.mailbridge/gcp-oauth.keys.json, if it exists
    3. gcp-oauth.keys.json in the project root

    The returned path may not exist; callers report that.
    """
    override = os.environ.get(OAUTH_PATH_ENV)
    if override:
        return Path(override).expanduser().resolve()

    user_path = LEGACY_DIR / OAUTH_KEYS_FILE_NAME
    if user_path.exists():
        return user_path

    return PROJECT_ROOT / OAUTH_KEYS_FILE_NAME


def ensure_config_dir() -> Path:
    """Create config directory if it doesn't exist.

    Returns the config directory path.
    """
    path = config_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_parent_dir(path: Path) -> Path:
    """Create the directory holding a credential file.

    Sets directory permissions to 700 (owner read/write/execute only)
    when we create it, to protect sensitive token data. Existing
    directories (for example a custom token path in $HOME) are left alone.

    Returns the parent directory path.
    """
    parent = path.parent
    if not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)
        parent.chmod(0o700)
    return parent
