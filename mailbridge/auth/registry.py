"""Live account handles, kept in step with the token store.

The registry owns one AccountClient per stored account. reload() makes
the in-memory set match the file: new accounts get a handle whose
refreshed tokens are written back through the store, removed accounts lose
theirs, and every handle picks up the latest stored tokens.

It also implements the default-account rule used when a caller names no
account:

- write operations use the sole account, or fail as ambiguous;
- read operations on one mailbox use the first account;
- read operations that fan out use every account.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from mailbridge.auth.accounts import normalize_account_id, validate_account_id
from mailbridge.auth.client import (
    DEFAULT_CALL_TIMEOUT,
    EXPIRY_BUFFER,
    AccountClient,
    ClientCredentials,
    load_client_credentials,
    record_is_expired,
)
from mailbridge.auth.store import CredentialStore
from mailbridge.config.schema import CredentialRecord
from mailbridge.errors import (
    AccountNotFound,
    AmbiguousAccount,
    InvalidAccountId,
    MailbridgeError,
    NoAccountsAvailable,
)
from mailbridge.mailbox.cache import MailboxCache
from mailbridge.mailbox.gmail import PROFILE_TIMEOUT, lookup_email
from mailbridge.mailbox.models import UNKNOWN_EMAIL

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"


@dataclass
class AccountSummary:
    """One row of the account listing.

    Attributes:
        account_id: Account identifier.
        email: Mailbox address, or "unknown".
        status: "active" if usable without re-authorization, else "expired".
    """

    account_id: str
    email: str
    status: str

    def to_dict(self) -> dict:
        return {"id": self.account_id, "email": self.email, "status": self.status}


class AccountRegistry:
    """Registry of authenticated account handles.

    Example:
        registry = AccountRegistry(CredentialStore(), cache=MailboxCache())
        await registry.reload()
        client = registry.resolve_for_write(None)
    """

    def __init__(
        self,
        store: CredentialStore | None = None,
        client_credentials: ClientCredentials | None = None,
        cache: MailboxCache | None = None,
        profile_timeout: float = PROFILE_TIMEOUT,
        remote_timeout: float = DEFAULT_CALL_TIMEOUT,
    ):
        """Initialize an empty registry; call reload() to populate it.

        Args:
            store: Token store; the default location if None.
            client_credentials: OAuth client; loaded from the keys file on
                first use if None.
            cache: Mailbox cache to clear when accounts change.
            profile_timeout: Upper bound in seconds for email lookups.
            remote_timeout: Default upper bound in seconds for API calls made
                through the account handles.
        """
        self._store = store if store is not None else CredentialStore()
        self._client_credentials = client_credentials
        self._cache = cache if cache is not None else MailboxCache()
        self._clients: dict[str, AccountClient] = {}
        self._profile_timeout = profile_timeout
        self._remote_timeout = remote_timeout

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def cache(self) -> MailboxCache:
        return self._cache

    @property
    def client_credentials(self) -> ClientCredentials:
        """Get the OAuth client, loading the keys file on first access.

        Raises:
            CredentialsFileMissing: If the keys file does not exist.
            CredentialsFileMalformed: If it cannot be parsed.
        """
        if self._client_credentials is None:
            self._client_credentials = load_client_credentials()
        return self._client_credentials

    def account_ids(self) -> list[str]:
        """Get the IDs of live accounts, sorted."""
        return sorted(self._clients)

    def clients(self) -> list[AccountClient]:
        """Get all live handles, sorted by account ID."""
        return [self._clients[account_id] for account_id in self.account_ids()]

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    # --- Reconciliation ---

    async def reload(self) -> dict[str, AccountClient]:
        """Make the live handles match the token store.

        Returns:
            Account ID to handle, for every usable stored account.
        """
        tokens = await self._store.load()
        return self._reconcile(tokens)

    def _reconcile(self, tokens: Mapping[str, CredentialRecord]) -> dict[str, AccountClient]:
        usable: dict[str, CredentialRecord] = {}
        for account_id, record in tokens.items():
            try:
                validate_account_id(account_id)
            except InvalidAccountId:
                logger.warning('Skipping invalid account ID in token file: "%s"', account_id)
                continue
            if not isinstance(record, dict) or not (
                record.get("access_token") or record.get("refresh_token")
            ):
                logger.warning('Skipping account "%s": no tokens stored', account_id)
                continue
            usable[account_id] = record

        previous = set(self._clients)

        for account_id in previous - set(usable):
            self._clients.pop(account_id).remove_refresh_listener(self._persist_refresh)
            logger.debug('Dropped handle for removed account "%s"', account_id)

        for account_id, record in usable.items():
            client = self._clients.get(account_id)
            if client is None:
                client = AccountClient(
                    account_id, self.client_credentials, timeout=self._remote_timeout
                )
                client.add_refresh_listener(self._persist_refresh)
                self._clients[account_id] = client
            client.set_tokens(record)

        if set(self._clients) != previous:
            self._cache.clear()

        return dict(self._clients)

    async def _persist_refresh(self, account_id: str, tokens: CredentialRecord) -> None:
        """Refresh listener: merge new tokens into the store.

        Failures propagate into the listener task, where AccountClient
        logs them and wait_persisted() re-raises them.
        """
        await self._store.merge_record(account_id, tokens, create=False)
        logger.debug('Saved refreshed tokens for account "%s"', account_id)

    # --- Lookup ---

    def get_client(self, account_id: str) -> AccountClient:
        """Get the live handle for an account.

        Raises:
            InvalidAccountId: If the ID is malformed.
            AccountNotFound: If no such account is authorized.
        """
        account_id = normalize_account_id(account_id)
        client = self._clients.get(account_id)
        if client is None:
            raise AccountNotFound(
                f'Account "{account_id}" not found. '
                f"Available accounts: {', '.join(self.account_ids()) or 'none'}"
            )
        return client

    def _require_accounts(self) -> list[AccountClient]:
        clients = self.clients()
        if not clients:
            raise NoAccountsAvailable(
                "No accounts configured. Run 'mailbridge accounts add <account>' first."
            )
        return clients

    def resolve_for_write(self, account_id: str | None = None) -> AccountClient:
        """Pick the account for an operation that changes a mailbox.

        Raises:
            NoAccountsAvailable: If no account is authorized.
            AmbiguousAccount: If several are and none was named.
        """
        if account_id:
            return self.get_client(account_id)

        clients = self._require_accounts()
        if len(clients) > 1:
            raise AmbiguousAccount(
                "Multiple accounts available; specify one of: "
                + ", ".join(self.account_ids())
            )
        return clients[0]

    def resolve_for_read(self, account_id: str | None = None) -> AccountClient:
        """Pick the account for a read on a single mailbox."""
        if account_id:
            return self.get_client(account_id)
        return self._require_accounts()[0]

    def resolve_many(self, account_ids: Iterable[str] | None = None) -> list[AccountClient]:
        """Pick the accounts for a read that fans out.

        All IDs are validated before any is used.
        """
        if account_ids:
            return [self.get_client(account_id) for account_id in account_ids]
        return self._require_accounts()

    # --- Mutation ---

    async def save_tokens(
        self,
        account_id: str,
        tokens: Mapping,
        email: str | None = None,
    ) -> AccountClient:
        """Store a fresh authorization and return the account's handle."""
        account_id = normalize_account_id(account_id)
        await self._store.replace_record(account_id, tokens, email=email)
        await self.reload()
        logger.info('Saved tokens for account "%s"', account_id)
        return self._clients[account_id]

    async def remove(self, account_id: str) -> None:
        """Remove an account from the store and drop its handle.

        Raises:
            AccountNotFound: If the account has no stored record.
        """
        account_id = normalize_account_id(account_id)
        await self._store.remove(account_id)
        client = self._clients.pop(account_id, None)
        if client is not None:
            client.remove_refresh_listener(self._persist_refresh)
        self._cache.clear()

    async def refresh_if_needed(self, account_id: str) -> AccountClient:
        """Refresh an account's token if it is expired or about to be.

        Raises:
            AuthInvalidGrant: If the refresh token was revoked.
        """
        client = self.get_client(account_id)
        await client.refresh_if_needed(EXPIRY_BUFFER)
        return client

    # --- Listing ---

    async def list_accounts(self) -> list[AccountSummary]:
        """Describe every stored account.

        Expired tokens are refreshed when possible and missing emails are
        looked up; both are written back to the store. Failures here only
        affect the reported status or email.
        """
        tokens = await self._store.load()
        self._reconcile(tokens)

        summaries = []
        for account_id in self.account_ids():
            client = self._clients[account_id]
            record = tokens[account_id]

            if client.refresh_token and record_is_expired(record):
                try:
                    await client.refresh()
                    await client.wait_persisted()
                except (MailbridgeError, OSError) as e:
                    logger.warning('Could not refresh account "%s": %s', account_id, e)

            fields = client.token_fields()
            active = bool(fields.get("refresh_token")) or not record_is_expired(fields)

            email = record.get("cached_email")
            if not email and active:
                email = await lookup_email(client, self._profile_timeout)
                if email:
                    await self._store.merge_record(account_id, {}, email=email, create=False)
                    client.cached_email = email

            summaries.append(
                AccountSummary(
                    account_id=account_id,
                    email=email or UNKNOWN_EMAIL,
                    status=STATUS_ACTIVE if active else STATUS_EXPIRED,
                )
            )

        return summaries
