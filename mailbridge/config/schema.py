"""Configuration and token file schema definitions.

Uses TypedDict for type safety without runtime overhead.
These types match the structure of config.toml and tokens.json.
"""

from typing import TypedDict


class CredentialRecord(TypedDict, total=False):
    """Token material for one account, as stored in tokens.json.

    Attributes:
        access_token: Current OAuth access token.
        refresh_token: Long-lived refresh token (may be absent).
        expiry_date: Access token expiry, epoch milliseconds.
        cached_email: Email address resolved for the account.
        scope: Space-separated granted scopes, as returned by Google.
        token_type: Usually "Bearer".
        id_token: OpenID Connect ID token, when granted.
    """

    access_token: str
    refresh_token: str
    expiry_date: int
    cached_email: str
    scope: str
    token_type: str
    id_token: str


# tokens.json: account identifier -> credential record
TokenMapping = dict[str, CredentialRecord]


class AuthConfig(TypedDict, total=False):
    """Interactive authorization settings.

    Attributes:
        port: Local callback listener port.
        timeout_seconds: How long to wait for the browser callback.
    """

    port: int
    timeout_seconds: int


class CacheConfig(TypedDict, total=False):
    """Mailbox metadata cache settings.

    Attributes:
        ttl_seconds: How long fetched profile data stays fresh.
    """

    ttl_seconds: int


class RemoteConfig(TypedDict, total=False):
    """Gmail API call settings.

    Attributes:
        timeout_seconds: Upper bound for a single API call.
        profile_timeout_seconds: Upper bound for profile and email lookups.
    """

    timeout_seconds: int
    profile_timeout_seconds: int


class LoggingConfig(TypedDict, total=False):
    """Logging settings.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
    """

    level: str


class MailbridgeConfig(TypedDict, total=False):
    """Root configuration structure."""

    auth: AuthConfig
    cache: CacheConfig
    remote: RemoteConfig
    logging: LoggingConfig
