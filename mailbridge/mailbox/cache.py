"""Short-lived cache of mailbox profile metadata.

Entries are keyed by the set of accounts asked for, so "all accounts" and
"just work" are cached separately. While a fetch for a key is running,
further requests for the same key wait on it instead of calling Gmail
again.
"""

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass

from mailbridge.auth.client import AccountClient
from mailbridge.mailbox.gmail import PROFILE_TIMEOUT, GmailClient
from mailbridge.mailbox.models import MailboxInfo

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300.0


def cache_key(account_ids: Iterable[str]) -> str:
    """Build the cache key for a set of accounts: sorted, comma-joined."""
    return ",".join(sorted(account_ids))


@dataclass
class _Entry:
    mailboxes: list[MailboxInfo]
    fetched_at: float


class MailboxCache:
    """Profile metadata cache with a TTL and in-flight deduplication.

    Example:
        cache = MailboxCache(ttl=300)
        mailboxes = await cache.get_mailboxes(registry.clients())
        cache.clear()  # after accounts are added or removed
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        profile_timeout: float = PROFILE_TIMEOUT,
        clock=time.monotonic,
    ):
        """Initialize an empty cache.

        Args:
            ttl: Seconds an entry stays fresh.
            profile_timeout: Upper bound in seconds per profile call.
            clock: Monotonic time source, replaceable in tests.
        """
        self._ttl = ttl
        self._profile_timeout = profile_timeout
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._in_flight: dict[str, asyncio.Future] = {}
        self._generation = 0

    def __len__(self) -> int:
        return len(self._entries)

    async def get_mailboxes(self, accounts: Iterable[AccountClient]) -> list[MailboxInfo]:
        """Get mailbox metadata for the given accounts.

        Order of the result follows the sorted account IDs. Accounts whose
        profile cannot be fetched appear with email "unknown".

        Args:
            accounts: Account handles to describe.

        Returns:
            One MailboxInfo per account.
        """
        accounts = sorted(accounts, key=lambda account: account.account_id)
        key = cache_key(account.account_id for account in accounts)

        pending = self._in_flight.get(key)
        if pending is not None:
            logger.debug("Joining in-flight mailbox fetch for [%s]", key)
            return list(await asyncio.shield(pending))

        entry = self._entries.get(key)
        if entry is not None and self._clock() - entry.fetched_at < self._ttl:
            return list(entry.mailboxes)

        generation = self._generation
        task = asyncio.ensure_future(self._fetch_all(accounts))
        self._in_flight[key] = task
        try:
            mailboxes = await asyncio.shield(task)
        finally:
            # clear() may have dropped the registration meanwhile
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

        if generation == self._generation:
            self._entries[key] = _Entry(list(mailboxes), self._clock())

        return list(mailboxes)

    def clear(self) -> None:
        """Drop all entries and forget in-flight fetches.

        Fetches already running still answer their waiters but are not
        stored.
        """
        self._entries.clear()
        self._in_flight.clear()
        self._generation += 1
        logger.debug("Mailbox cache cleared")

    async def _fetch_all(self, accounts: list[AccountClient]) -> list[MailboxInfo]:
        logger.debug("Fetching mailbox profiles for %d account(s)", len(accounts))
        return list(
            await asyncio.gather(*(self._fetch_one(account) for account in accounts))
        )

    async def _fetch_one(self, account: AccountClient) -> MailboxInfo:
        try:
            profile = await GmailClient(account).get_profile(self._profile_timeout)
        except Exception as e:
            logger.warning(
                'Failed to fetch profile for account "%s": %s', account.account_id, e
            )
            return MailboxInfo(account.account_id)
        return MailboxInfo.from_profile(account.account_id, profile)
