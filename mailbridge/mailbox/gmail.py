"""Gmail API wrapper for identity lookups.

Wraps the Gmail API service for the two calls account resolution needs:
the mailbox profile and a minimal message-existence probe. Requests run
through AccountClient.execute, which keeps them off the event loop and
reports any token refresh google-auth performs along the way.
"""

import asyncio
import logging

from googleapiclient.discovery import build

from mailbridge.auth.client import AccountClient, fetch_token_email
from mailbridge.errors import MailbridgeError, RemoteNotFound

logger = logging.getLogger(__name__)

PROFILE_TIMEOUT = 10.0


class GmailClient:
    """Client for Gmail API identity operations.

    Build a new client after the account's tokens are reloaded; the
    service is bound to the credentials current at construction.

    Example:
        client = GmailClient(account)
        profile = await client.get_profile()
        exists = await client.message_exists("18c2f0a1b2c3d4e5")
    """

    def __init__(self, account: AccountClient, timeout: float | None = None):
        """Initialize Gmail client for an account.

        Args:
            account: Authenticated account handle.
            timeout: Upper bound in seconds for each API call; the account
                handle's default if None.
        """
        self._account = account
        self._timeout = timeout
        # Bundled discovery document; nothing is fetched here
        self._service = build(
            "gmail", "v1", credentials=account.credentials, cache_discovery=False
        )

    @property
    def account_id(self) -> str:
        return self._account.account_id

    async def get_profile(self, timeout: float | None = None) -> dict:
        """Get the mailbox profile.

        Returns:
            Dict with keys: emailAddress, messagesTotal, threadsTotal,
            historyId.

        Raises:
            MailbridgeError: Mapped from the API failure.
        """
        request = self._service.users().getProfile(userId="me")
        return await self._account.execute(request, timeout or self._timeout)

    async def message_exists(self, message_id: str) -> bool:
        """Check whether a message belongs to this mailbox.

        Uses format="minimal" so only IDs and labels come back.

        Returns:
            True if found, False on a 404.

        Raises:
            MailbridgeError: For any failure other than not-found.
        """
        request = (
            self._service.users()
            .messages()
            .get(userId="me", id=message_id, format="minimal")
        )
        try:
            await self._account.execute(request, self._timeout)
        except RemoteNotFound:
            return False
        return True


async def lookup_email(account: AccountClient, timeout: float = PROFILE_TIMEOUT) -> str | None:
    """Resolve the address an account's tokens belong to.

    Tries Google's tokeninfo endpoint first, then the Gmail profile.
    Best effort: failures are logged and give None.
    """
    token = account.access_token
    if token:
        try:
            email = await asyncio.wait_for(
                asyncio.to_thread(fetch_token_email, token, timeout), timeout
            )
        except Exception as e:
            logger.debug('Token info lookup failed for "%s": %s', account.account_id, e)
        else:
            if email:
                return email

    try:
        profile = await GmailClient(account).get_profile(timeout)
    except MailbridgeError as e:
        logger.warning('Could not fetch email for account "%s": %s', account.account_id, e)
        return None

    return profile.get("emailAddress") or None
