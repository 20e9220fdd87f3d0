"""Error taxonomy for mailbridge.

Every failure that reaches a caller is a MailbridgeError. The ``kind``
attribute tells the caller what to do about it:

- reauth: the account must be authorized again (``mailbridge accounts add``)
- transient: safe to retry later
- permanent: the request itself must change

Usage:
    from mailbridge.errors import AccountNotFound, map_google_error

    try:
        service.users().getProfile(userId="me").execute()
    except Exception as e:
        raise map_google_error(e) from e
"""

import asyncio
import json

from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

REAUTH = "reauth"
TRANSIENT = "transient"
PERMANENT = "permanent"

# Appended to messages so users know how to recover
_REAUTH_HINT = "Run 'mailbridge accounts add <account>' to authorize it again."


class MailbridgeError(Exception):
    """Base error for all mailbridge failures."""

    kind = PERMANENT


# --- Account identifiers and resolution ---


class InvalidAccountId(MailbridgeError, ValueError):
    """Account identifier violates the format or is a reserved name."""


class AccountNotFound(MailbridgeError, KeyError):
    """No stored credentials or live client for the account."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else "Account not found"


class NoAccountsAvailable(MailbridgeError):
    """The store holds no authenticated accounts."""


class AmbiguousAccount(MailbridgeError):
    """A write operation needs an explicit account among several."""


# --- Authorization ---


class AuthInvalidGrant(MailbridgeError):
    """Refresh token was revoked or has expired."""

    kind = REAUTH


class AuthFlowAlreadyRunning(MailbridgeError):
    """An interactive authorization session is already active."""

    kind = TRANSIENT


class AuthTimeout(MailbridgeError):
    """No authorization callback arrived in time."""

    kind = TRANSIENT


class AuthFlowFailed(MailbridgeError):
    """The authorization callback reported an error or the exchange failed."""

    kind = REAUTH


class CallbackPortInUse(MailbridgeError):
    """The local callback port is already bound by another process."""

    kind = TRANSIENT


# --- Files ---


class CredentialsFileMissing(MailbridgeError):
    """OAuth client secret file could not be found."""


class CredentialsFileMalformed(MailbridgeError, ValueError):
    """OAuth client secret file has none of the accepted shapes."""


class TokenFileCorrupted(MailbridgeError):
    """Token store could not be parsed; recovered by deleting the file."""


# --- Remote API ---


class RemoteError(MailbridgeError):
    """Base error for Gmail API failures."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RemoteUnavailable(RemoteError):
    """Network failure, timeout or 5xx response."""

    kind = TRANSIENT


class RemoteRateLimited(RemoteError):
    """HTTP 429: the caller should back off."""

    kind = TRANSIENT


class RemoteBadRequest(RemoteError):
    """HTTP 400."""


class RemoteUnauthorized(RemoteError):
    """HTTP 401: the access token was rejected."""

    kind = REAUTH


class RemoteForbidden(RemoteError):
    """HTTP 403."""


class RemoteNotFound(RemoteError):
    """HTTP 404: the message or resource does not exist."""


def describe(error: BaseException) -> str:
    """Render an error for users, with a recovery hint for reauth errors."""
    message = str(error) or error.__class__.__name__
    if getattr(error, "kind", None) == REAUTH:
        return f"{message} {_REAUTH_HINT}"
    return message


def _http_error_message(error: HttpError) -> str:
    """Extract the API's own error message from an HttpError body."""
    try:
        payload = json.loads(error.content.decode("utf-8"))
    except (ValueError, AttributeError, UnicodeDecodeError):
        return error.reason if hasattr(error, "reason") else str(error)

    detail = payload.get("error")
    if isinstance(detail, dict):
        return detail.get("message") or str(error)
    if isinstance(detail, str):
        # OAuth endpoints answer with {"error": "invalid_grant", ...}
        return payload.get("error_description") or detail
    return str(error)


def is_invalid_grant(error: BaseException) -> bool:
    """Check whether a refresh failure means the grant is gone for good."""
    if isinstance(error, RefreshError):
        # google-auth passes the token endpoint response as the second arg
        for arg in error.args:
            if isinstance(arg, dict) and arg.get("error") == "invalid_grant":
                return True
            if isinstance(arg, str) and "invalid_grant" in arg:
                return True
    return False


def map_google_error(error: BaseException) -> MailbridgeError:
    """Translate a Google client failure into the mailbridge taxonomy.

    Errors that already belong to the taxonomy are returned unchanged.

    Args:
        error: Exception raised by googleapiclient, google-auth or asyncio.

    Returns:
        The matching MailbridgeError (not raised).
    """
    if isinstance(error, MailbridgeError):
        return error

    if isinstance(error, RefreshError):
        if is_invalid_grant(error):
            return AuthInvalidGrant(
                "Authentication token is invalid or expired."
            )
        return RemoteUnavailable(f"Token refresh failed: {error}")

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return RemoteUnavailable("Gmail API call timed out.")

    if isinstance(error, HttpError):
        status = error.resp.status if error.resp is not None else None
        message = _http_error_message(error)

        if status == 400:
            return RemoteBadRequest(f"Bad Request: {message}", status)
        if status == 401:
            return RemoteUnauthorized(f"Authentication required: {message}", status)
        if status == 403:
            return RemoteForbidden(f"Access denied: {message}", status)
        if status == 404:
            return RemoteNotFound(f"Resource not found: {message}", status)
        if status == 429:
            return RemoteRateLimited(
                f"Rate limit exceeded. Please try again later. {message}", status
            )
        if status is not None and status >= 500:
            return RemoteUnavailable(f"Google API server error: {message}", status)
        return RemoteBadRequest(f"Google API error: {message}", status)

    if isinstance(error, (ConnectionError, OSError)):
        return RemoteUnavailable(f"Network error: {error}")

    return MailbridgeError(f"Internal error: {error}")
