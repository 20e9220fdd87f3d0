"""Find which account owns an email address or a message."""

import logging
from collections.abc import Sequence

from mailbridge.auth.client import AccountClient
from mailbridge.mailbox.cache import MailboxCache
from mailbridge.mailbox.gmail import GmailClient
from mailbridge.mailbox.models import Found, NotFound, ProbeResult

logger = logging.getLogger(__name__)


class MessageLocator:
    """Resolves account ownership using cached metadata and Gmail probes.

    Example:
        locator = MessageLocator(cache)
        owner = await locator.find_account_for_message("18c2f0a1", clients)
    """

    def __init__(self, cache: MailboxCache, timeout: float | None = None):
        """Initialize the locator.

        Args:
            cache: Mailbox metadata cache shared with the registry.
            timeout: Upper bound in seconds for each probe; the account
                handle's default if None.
        """
        self._cache = cache
        self._timeout = timeout

    async def find_account_by_email(
        self, email: str, accounts: Sequence[AccountClient]
    ) -> str | None:
        """Get the account whose mailbox address matches, ignoring case."""
        wanted = email.lower()
        for mailbox in await self._cache.get_mailboxes(accounts):
            if mailbox.is_known and mailbox.email.lower() == wanted:
                return mailbox.account_id
        return None

    async def probe(self, account: AccountClient, message_id: str) -> ProbeResult:
        """Check one account for the message.

        Errors other than not-found are logged and count as NotFound, so
        one broken account does not stop the search.
        """
        try:
            exists = await GmailClient(account, self._timeout).message_exists(message_id)
        except Exception as e:
            logger.warning(
                'Probe for message %s failed on account "%s": %s',
                message_id,
                account.account_id,
                e,
            )
            return NotFound(account.account_id)

        return Found(account.account_id) if exists else NotFound(account.account_id)

    async def find_account_for_message(
        self, message_id: str, accounts: Sequence[AccountClient]
    ) -> str | None:
        """Get the account holding a message.

        With a single account no probe is made. Otherwise accounts are
        probed one at a time, in the given order.

        Returns:
            Account ID, or None if no account has the message.
        """
        if not accounts:
            return None
        if len(accounts) == 1:
            return accounts[0].account_id

        for account in accounts:
            result = await self.probe(account, message_id)
            if isinstance(result, Found):
                logger.debug('Message %s found in account "%s"', message_id, result.account_id)
                return result.account_id

        return None

    async def get_account_for_sending(
        self, from_email: str | None, accounts: Sequence[AccountClient]
    ) -> str | None:
        """Pick the account to send from.

        The sole account if there is one; otherwise the account whose
        address matches from_email. None means the caller must choose.
        """
        if len(accounts) == 1:
            return accounts[0].account_id
        if from_email:
            return await self.find_account_by_email(from_email, accounts)
        return None
