"""OAuth client credentials and live per-account clients.

Two things live here:

- ClientCredentials: the OAuth client (id, secret, redirect URIs) read from
  the gcp-oauth.keys.json file downloaded from Google Cloud Console.
- AccountClient: the in-memory, authenticated handle for one account. It
  wraps google.oauth2.credentials.Credentials, refreshes tokens, runs Gmail
  API requests off the event loop, and tells its listeners whenever it
  obtains new tokens so they can be persisted.

Blocking google-auth and googleapiclient calls run in worker threads via
asyncio.to_thread. Listener callbacks always run on the event loop.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import requests
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from mailbridge.config.paths import TOKEN_PATH_ENV, OAUTH_PATH_ENV, oauth_keys_path, token_path
from mailbridge.config.schema import CredentialRecord
from mailbridge.errors import (
    AuthInvalidGrant,
    CredentialsFileMalformed,
    CredentialsFileMissing,
    MailbridgeError,
    is_invalid_grant,
    map_google_error,
)

logger = logging.getLogger(__name__)

# Gmail API scopes requested on authorization.
# - gmail.modify: Read, label and trash messages
# - gmail.settings.basic: Manage filters
# - mail.google.com: Permanent deletion
GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.settings.basic",
    "https://mail.google.com/",
]

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
TOKENINFO_URI = "https://oauth2.googleapis.com/tokeninfo"

DEFAULT_REDIRECT_URI = "http://localhost:3000/oauth2callback"

# Refresh this long before the access token actually expires
EXPIRY_BUFFER = timedelta(minutes=5)

# Upper bound in seconds for one Gmail API call
DEFAULT_CALL_TIMEOUT = 30.0

# Called with (account_id, new token fields) after every token refresh
RefreshListener = Callable[[str, CredentialRecord], Awaitable[Any]]


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth client registration shared by all accounts.

    Attributes:
        client_id: Google Cloud OAuth client ID.
        client_secret: Google Cloud OAuth client secret.
        redirect_uris: Registered redirect URIs; the first is the default.
        project_id: Cloud project, billed as quota project when set.
    """

    client_id: str
    client_secret: str
    redirect_uris: tuple[str, ...] = (DEFAULT_REDIRECT_URI,)
    project_id: str | None = None

    @property
    def redirect_uri(self) -> str:
        """Get the default redirect URI."""
        return self.redirect_uris[0] if self.redirect_uris else DEFAULT_REDIRECT_URI

    def to_client_config(self, redirect_uri: str | None = None) -> dict:
        """Build OAuth client configuration dict.

        google_auth_oauthlib expects the JSON structure that normally comes
        from downloading credentials from Cloud Console. We construct it
        from our values so every key file shape ends up the same.

        Args:
            redirect_uri: Redirect URI to register first, if different.

        Returns:
            Client configuration in the "installed" format.
        """
        uris = list(self.redirect_uris)
        if redirect_uri and redirect_uri not in uris:
            uris.insert(0, redirect_uri)

        return {
            "installed": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": uris,
            }
        }


def credentials_help_message() -> str:
    """Explain where the OAuth keys file is looked up."""
    return f"""\
OAuth credentials not found. Provide them using one of these methods:

1. Environment variable:
   export {OAUTH_PATH_ENV}="/path/to/gcp-oauth.keys.json"

2. User config directory:
   Place gcp-oauth.keys.json in ~/.mailbridge/

3. Project directory:
   Place gcp-oauth.keys.json in the project root.

Tokens are saved to: {token_path()}
Set {TOKEN_PATH_ENV} to use a custom token location.

To get OAuth credentials, create an OAuth 2.0 client in Google Cloud Console
with the Gmail API enabled and download it as gcp-oauth.keys.json."""


def parse_client_credentials(keys: Mapping) -> ClientCredentials:
    """Read client credentials from any supported key file shape.

    Accepts the "installed" (desktop app) and "web" formats downloaded from
    Cloud Console, and a flat object with client_id/client_secret.

    Raises:
        CredentialsFileMalformed: If no shape matches or a field is missing.
    """
    if isinstance(keys.get("installed"), dict):
        section = keys["installed"]
    elif isinstance(keys.get("web"), dict):
        section = keys["web"]
    elif keys.get("client_id") and keys.get("client_secret"):
        section = keys
    else:
        raise CredentialsFileMalformed(
            'Invalid credentials file format. Expected either "installed", "web", '
            "or direct client_id/client_secret fields."
        )

    client_id = section.get("client_id")
    client_secret = section.get("client_secret")
    if not client_id or not client_secret:
        raise CredentialsFileMalformed("Client ID or Client Secret missing in credentials.")

    redirect_uris = tuple(section.get("redirect_uris") or (DEFAULT_REDIRECT_URI,))
    project_id = section.get("project_id") or keys.get("project_id")

    return ClientCredentials(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uris=redirect_uris,
        project_id=project_id,
    )


def load_client_credentials(path: Path | None = None) -> ClientCredentials:
    """Load the OAuth client from the keys file.

    Args:
        path: Keys file; resolved via oauth_keys_path() if None.

    Raises:
        CredentialsFileMissing: If the file does not exist.
        CredentialsFileMalformed: If it cannot be parsed.
    """
    path = Path(path) if path is not None else oauth_keys_path()

    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise CredentialsFileMissing(
            f"{credentials_help_message()}\n\nMissing file: {path}"
        ) from None

    try:
        keys = json.loads(content)
    except json.JSONDecodeError as e:
        raise CredentialsFileMalformed(f"Error loading OAuth keys from {path}: {e}") from e

    if not isinstance(keys, dict):
        raise CredentialsFileMalformed(f"Error loading OAuth keys from {path}: not a JSON object")

    return parse_client_credentials(keys)


# --- Conversions between stored records and google-auth credentials ---


def _expiry_from_millis(expiry_date: int | float | None) -> datetime | None:
    """Convert epoch milliseconds to the naive UTC datetime google-auth uses."""
    if not expiry_date:
        return None
    return datetime.fromtimestamp(expiry_date / 1000, tz=timezone.utc).replace(tzinfo=None)


def _expiry_to_millis(expiry: datetime | None) -> int | None:
    if expiry is None:
        return None
    return int(expiry.replace(tzinfo=timezone.utc).timestamp() * 1000)


def record_is_expired(record: Mapping, buffer: timedelta = timedelta(0)) -> bool:
    """Check a stored record's access token against the clock.

    A record without an access token counts as expired; one without an
    expiry date is trusted.
    """
    if not record.get("access_token"):
        return True
    expiry = _expiry_from_millis(record.get("expiry_date"))
    if expiry is None:
        return False
    return datetime.now(timezone.utc).replace(tzinfo=None) >= expiry - buffer


def credentials_to_record(credentials: Credentials) -> CredentialRecord:
    """Extract storable token fields from google-auth credentials.

    Fields google-auth does not have are omitted rather than set to None,
    so merging the result never blanks stored values.
    """
    record: dict = {
        "access_token": credentials.token,
        "refresh_token": credentials.refresh_token,
        "expiry_date": _expiry_to_millis(credentials.expiry),
        "token_type": "Bearer",
        "id_token": getattr(credentials, "id_token", None),
    }
    granted = getattr(credentials, "granted_scopes", None) or credentials.scopes
    if granted:
        record["scope"] = " ".join(granted)
    return {key: value for key, value in record.items() if value is not None}


def fetch_token_email(access_token: str, timeout: float = 10.0) -> str | None:
    """Ask Google's tokeninfo endpoint which address a token belongs to.

    Only works when the email scope was granted; returns None otherwise.
    Blocking: call through asyncio.to_thread.
    """
    response = requests.get(TOKENINFO_URI, params={"access_token": access_token}, timeout=timeout)
    if response.status_code != 200:
        return None
    return response.json().get("email") or None


@dataclass
class _PendingWrites:
    """Tracks listener tasks so their failures can be re-raised later."""

    tasks: set = field(default_factory=set)
    failures: list = field(default_factory=list)


class AccountClient:
    """Authenticated handle for one account.

    Owns the account's google-auth Credentials. Whenever a refresh yields
    new tokens, every registered listener is scheduled on the event loop
    with the new token fields; the caller that triggered the refresh does
    not wait for them. Use wait_persisted() to wait for, and surface
    failures of, those listener tasks.

    Example:
        client = AccountClient("work", client_credentials, record)
        client.add_refresh_listener(persist)
        await client.refresh_if_needed()
        profile = await client.execute(service.users().getProfile(userId="me"))
    """

    def __init__(
        self,
        account_id: str,
        client: ClientCredentials,
        record: Mapping | None = None,
        timeout: float = DEFAULT_CALL_TIMEOUT,
    ):
        """Initialize the handle.

        Args:
            account_id: Validated account identifier.
            client: OAuth client registration.
            record: Stored credential record, if any.
            timeout: Default upper bound in seconds for execute().
        """
        self.account_id = account_id
        self.timeout = timeout
        self._client = client
        self._listeners: list[RefreshListener] = []
        self._pending = _PendingWrites()
        self._credentials = self._build_credentials({})
        self.cached_email: str | None = None
        if record:
            self.set_tokens(record)

    def __repr__(self) -> str:
        return f"AccountClient({self.account_id!r})"

    @property
    def credentials(self) -> Credentials:
        """Get the current google-auth credentials.

        Replaced by set_tokens(); do not keep references across reloads.
        """
        return self._credentials

    @property
    def client(self) -> ClientCredentials:
        return self._client

    @property
    def access_token(self) -> str | None:
        return self._credentials.token

    @property
    def refresh_token(self) -> str | None:
        return self._credentials.refresh_token

    def _build_credentials(self, record: Mapping) -> Credentials:
        return Credentials(
            token=record.get("access_token"),
            refresh_token=record.get("refresh_token"),
            token_uri=TOKEN_URI,
            client_id=self._client.client_id,
            client_secret=self._client.client_secret,
            expiry=_expiry_from_millis(record.get("expiry_date")),
            quota_project_id=self._client.project_id,
        )

    def set_tokens(self, record: Mapping) -> None:
        """Replace token fields with a stored record."""
        self._credentials = self._build_credentials(record)
        self.cached_email = record.get("cached_email") or None

    def token_fields(self) -> CredentialRecord:
        """Get the current token fields in the stored record format."""
        return credentials_to_record(self._credentials)

    def is_expired(self, buffer: timedelta = EXPIRY_BUFFER) -> bool:
        """Check whether the access token is missing or about to expire."""
        return record_is_expired(self.token_fields(), buffer)

    # --- Refresh notification channel ---

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """Subscribe to new-token notifications."""
        self._listeners.append(listener)

    def remove_refresh_listener(self, listener: RefreshListener) -> None:
        """Unsubscribe a listener; unknown listeners are ignored."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify_refresh(self) -> None:
        """Schedule listeners with the new tokens without awaiting them."""
        tokens = self.token_fields()
        for listener in list(self._listeners):
            task = asyncio.ensure_future(listener(self.account_id, dict(tokens)))
            self._pending.tasks.add(task)
            task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: asyncio.Future) -> None:
        self._pending.tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                'Error saving updated tokens for account "%s": %s', self.account_id, error
            )
            self._pending.failures.append(error)

    async def wait_persisted(self) -> None:
        """Wait for scheduled listeners and re-raise the first failure.

        Raises:
            Exception: The first listener failure since the last call.
        """
        if self._pending.tasks:
            await asyncio.gather(*list(self._pending.tasks), return_exceptions=True)

        if self._pending.failures:
            failures, self._pending.failures = self._pending.failures, []
            raise failures[0]

    # --- Token refresh ---

    async def refresh(self) -> CredentialRecord:
        """Exchange the refresh token for a new access token.

        Listeners are notified with the new tokens.

        Returns:
            The new token fields.

        Raises:
            AuthInvalidGrant: If the refresh token was revoked or expired.
            MailbridgeError: For other refresh failures (see errors module).
        """
        if not self._credentials.refresh_token:
            raise AuthInvalidGrant(
                f'No refresh token available for account "{self.account_id}".'
            )

        logger.info('Refreshing access token for account "%s"', self.account_id)
        try:
            await asyncio.to_thread(self._credentials.refresh, Request())
        except RefreshError as e:
            if is_invalid_grant(e):
                logger.warning(
                    'Refresh token for account "%s" is invalid or revoked', self.account_id
                )
                raise AuthInvalidGrant(
                    f'Authentication token for account "{self.account_id}" is invalid '
                    "or expired."
                ) from e
            raise map_google_error(e) from e

        if not self._credentials.token:
            raise MailbridgeError("Received invalid tokens during refresh")

        self._notify_refresh()
        return self.token_fields()

    async def refresh_if_needed(self, buffer: timedelta = EXPIRY_BUFFER) -> bool:
        """Refresh when the access token is missing or close to expiry.

        Returns:
            True if a refresh happened.

        Raises:
            AuthInvalidGrant: If no usable token remains and no refresh is
                possible, or the refresh token was rejected.
        """
        if not self.is_expired(buffer):
            return False

        if not self._credentials.refresh_token:
            if self._credentials.token and not self.is_expired(timedelta(0)):
                # Inside the buffer but still usable; nothing to refresh with
                return False
            raise AuthInvalidGrant(
                f'No access or refresh token available for account "{self.account_id}".'
            )

        await self.refresh()
        return True

    # --- Remote calls ---

    async def execute(self, request: Any, timeout: float | None = None) -> Any:
        """Run a googleapiclient request off the event loop.

        google-auth may refresh the token inside the worker thread when it
        expires mid-call; such refreshes are detected afterwards and
        reported to listeners like any other.

        Args:
            request: An HttpRequest built from a googleapiclient service.
            timeout: Seconds before the wait is abandoned; the handle's
                default if None.

        Returns:
            The decoded JSON response.

        Raises:
            MailbridgeError: Mapped from the underlying failure.
        """
        token_before = self._credentials.token
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(request.execute), timeout or self.timeout
            )
        except Exception as e:
            raise map_google_error(e) from e
        finally:
            if self._credentials.token != token_before and self._credentials.token:
                self._notify_refresh()
