"""Configuration management module.

Handles loading, saving, and accessing the mailbridge configuration.
Config is stored at ~/.config/mailbridge/config.toml and is optional:
every setting has a default, and environment variables override it.

Usage:
    from mailbridge.config import load_settings

    settings = load_settings()
    settings.callback_port  # 3000 unless configured
"""

import os
import tomllib
from dataclasses import dataclass

import tomli_w

from .paths import config_file, ensure_config_dir
from .schema import MailbridgeConfig
from .template import CONFIG_TEMPLATE

__all__ = [
    "Settings",
    "load_config",
    "load_settings",
    "save_config",
    "init_config",
    "set_config_value",
    "DEFAULT_ACCOUNT_MODE",
]

ACCOUNT_MODE_ENV = "MAILBRIDGE_ACCOUNT"
LOG_LEVEL_ENV = "MAILBRIDGE_LOG_LEVEL"

# Account used when none is configured, and for migrated legacy tokens
DEFAULT_ACCOUNT_MODE = "normal"

# Module-level cache for loaded config.
# Avoids repeated disk reads during a single CLI invocation.
_cached_config: MailbridgeConfig | None = None


@dataclass(frozen=True)
class Settings:
    """Effective settings after merging config.toml and the environment.

    Attributes:
        account_mode: Account used when a command names none.
        callback_port: Port of the local OAuth callback listener.
        auth_timeout: Seconds to wait for the OAuth callback.
        cache_ttl: Seconds that mailbox metadata stays fresh.
        remote_timeout: Upper bound in seconds for one Gmail API call.
        profile_timeout: Upper bound in seconds for profile and email lookups.
        log_level: Logging level name.
    """

    account_mode: str = DEFAULT_ACCOUNT_MODE
    callback_port: int = 3000
    auth_timeout: float = 300.0
    cache_ttl: float = 300.0
    remote_timeout: float = 30.0
    profile_timeout: float = 10.0
    log_level: str = "WARNING"


def load_config(*, force_reload: bool = False) -> MailbridgeConfig:
    """Load configuration from disk.

    Returns empty dict if config file doesn't exist.
    Uses module-level caching to avoid repeated disk reads.

    Args:
        force_reload: Bypass cache and read from disk (useful after saving).

    Returns:
        The configuration dictionary.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    path = config_file()
    if not path.exists():
        _cached_config = {}
        return _cached_config

    with open(path, "rb") as f:
        _cached_config = tomllib.load(f)

    return _cached_config


def save_config(config: MailbridgeConfig) -> None:
    """Save configuration to disk.

    Creates config directory if needed. Updates the module cache.

    Args:
        config: The configuration dictionary to save.
    """
    global _cached_config

    ensure_config_dir()

    with open(config_file(), "wb") as f:
        tomli_w.dump(config, f)

    # Keep cache in sync with disk
    _cached_config = config


def init_config(*, overwrite: bool = False) -> bool:
    """Initialize config directory and create template config file.

    Args:
        overwrite: If True, overwrite existing config file.

    Returns:
        True if config was created, False if it already existed.
    """
    ensure_config_dir()

    path = config_file()
    if path.exists() and not overwrite:
        return False

    path.write_text(CONFIG_TEMPLATE)
    return True


def load_settings(config: MailbridgeConfig | None = None) -> Settings:
    """Resolve effective settings.

    Environment variables win over config.toml, which wins over defaults.
    The account mode is validated here so a bad MAILBRIDGE_ACCOUNT fails
    at startup rather than mid-session.

    Args:
        config: Already loaded configuration, or None to load from disk.

    Returns:
        Frozen Settings instance.

    Raises:
        InvalidAccountId: If MAILBRIDGE_ACCOUNT is not a valid identifier.
    """
    # Imported here: auth imports config at module level
    from mailbridge.auth.accounts import validate_account_id

    if config is None:
        config = load_config()

    defaults = Settings()
    auth = config.get("auth", {})
    cache = config.get("cache", {})
    remote = config.get("remote", {})
    logging_section = config.get("logging", {})

    account_mode = os.environ.get(ACCOUNT_MODE_ENV)
    if account_mode is not None:
        # No lowercasing: the environment value must already be lowercase
        account_mode = validate_account_id(account_mode)
    else:
        account_mode = defaults.account_mode

    log_level = (
        os.environ.get(LOG_LEVEL_ENV)
        or logging_section.get("level")
        or defaults.log_level
    )

    return Settings(
        account_mode=account_mode,
        callback_port=int(auth.get("port", defaults.callback_port)),
        auth_timeout=float(auth.get("timeout_seconds", defaults.auth_timeout)),
        cache_ttl=float(cache.get("ttl_seconds", defaults.cache_ttl)),
        remote_timeout=float(remote.get("timeout_seconds", defaults.remote_timeout)),
        profile_timeout=float(
            remote.get("profile_timeout_seconds", defaults.profile_timeout)
        ),
        log_level=log_level.upper(),
    )


def set_config_value(key: str, value: str) -> None:
    """Set a configuration value using dot notation.

    Examples:
        set_config_value("auth.port", "8080")
        set_config_value("logging.level", "DEBUG")

    Args:
        key: Dot-separated key path (e.g., "cache.ttl_seconds").
        value: Value to set (will be type-converted for known fields).

    Raises:
        ValueError: If value cannot be converted to expected type.
    """
    config = load_config(force_reload=True)

    parts = key.split(".")

    # Navigate to parent dict, creating intermediate dicts as needed
    current: dict = config
    for part in parts[:-1]:
        if part not in current:
            current[part] = {}
        current = current[part]

    # Set the final value with type conversion
    final_key = parts[-1]
    converted_value = _convert_value(final_key, value)
    current[final_key] = converted_value

    save_config(config)


def _convert_value(key: str, value: str) -> str | int:
    """Convert string value to appropriate type based on field name.

    Known integer fields are converted to int, everything else stays str.

    Args:
        key: The field name (last part of dot notation key).
        value: The string value from CLI.

    Returns:
        Converted value (int for known numeric fields, str otherwise).

    Raises:
        ValueError: If value cannot be converted to expected type.
    """
    # Fields that should be integers
    int_fields = {"port", "timeout_seconds", "ttl_seconds", "profile_timeout_seconds"}

    if key in int_fields:
        return int(value)

    return value
