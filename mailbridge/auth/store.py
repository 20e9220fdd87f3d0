"""Durable token storage for all accounts.

All accounts share one JSON file mapping account identifier to a
credential record:

{
    "work": {
        "access_token": "ya29...",
        "refresh_token": "1//0g...",
        "expiry_date": 1735689600000,
        "cached_email": "me@work.example"
    },
    "personal": {...}
}

The file lives at ~/.config/mailbridge/tokens.json (see config.paths) with
permissions 600. Every write is a full read-modify-write that runs while
holding the store's write lock. asyncio.Lock wakes waiters in FIFO order,
so writes apply in the order they were requested and each one sees the
result of all earlier writes. Files are replaced through a temporary file
and a rename, so a reader never sees a half-written file.

Nothing here guards against a second process writing the same file.
"""

import asyncio
import json
import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path

from mailbridge.config import DEFAULT_ACCOUNT_MODE
from mailbridge.config.paths import ensure_parent_dir, legacy_token_path, token_path
from mailbridge.config.schema import CredentialRecord, TokenMapping
from mailbridge.errors import AccountNotFound, TokenFileCorrupted

logger = logging.getLogger(__name__)

# A mutator receives the latest mapping; it may return a new mapping or
# modify the given one in place and return None.
Mutator = Callable[[TokenMapping], TokenMapping | None]


def is_single_account_shape(data: Mapping) -> bool:
    """Check for the old format with token fields at the top level.

    Token values are strings; a mapping under one of these keys is an
    account record whose id happens to match the field name.
    """
    return any(
        isinstance(data.get(field), str) and data.get(field)
        for field in ("access_token", "refresh_token")
    )


def merge_tokens(
    current: Mapping,
    update: Mapping,
    email: str | None = None,
) -> CredentialRecord:
    """Merge a token update into an existing record.

    Only fields present (and not None) in the update overwrite stored
    values. A missing refresh token keeps the stored one: Google only
    returns a refresh token on consent, not on refresh.

    Args:
        current: Stored record (may be empty).
        update: New token fields.
        email: Email address to cache, if resolved.

    Returns:
        New merged record; the inputs are not modified.
    """
    merged: dict = dict(current)
    merged.update({key: value for key, value in update.items() if value is not None})

    if not update.get("refresh_token") and current.get("refresh_token"):
        merged["refresh_token"] = current["refresh_token"]

    if email:
        merged["cached_email"] = email

    return merged


class CredentialStore:
    """Reads and writes the shared token file.

    The store is the only code that touches the token file. Callers get
    copies of the data, never live references.

    Example:
        store = CredentialStore()
        tokens = await store.load()
        await store.merge_record("work", {"access_token": "...", "expiry_date": 0})
        await store.remove("old")
    """

    def __init__(
        self,
        path: Path | None = None,
        legacy_path: Path | None = None,
        default_account: str = DEFAULT_ACCOUNT_MODE,
    ):
        """Initialize the store.

        Args:
            path: Token file; resolved from the environment if None.
            legacy_path: Old token file to migrate from; default location
                if None.
            default_account: Account that receives tokens migrated from
                the single-account format.
        """
        self._path = Path(path) if path is not None else token_path()
        self._legacy_path = (
            Path(legacy_path) if legacy_path is not None else legacy_token_path()
        )
        self._default_account = default_account
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        """Get the path of the token file."""
        return self._path

    # --- Public API ---

    async def load(self) -> TokenMapping:
        """Load all account records.

        Migrates the legacy file and the single-account format on the way.
        A corrupted file is deleted and treated as empty, so a bad file
        cannot lock every account out permanently.

        Returns:
            Mapping of account identifier to credential record.
        """
        async with self._write_lock:
            return self._load_locked()

    async def save(self, tokens: TokenMapping) -> None:
        """Replace the whole file with the given mapping."""
        async with self._write_lock:
            self._write(dict(tokens))

    async def update(self, mutator: Mutator) -> TokenMapping:
        """Apply a read-modify-write in the write queue.

        The mutator runs against the latest on-disk state. It must not do
        I/O of its own: remote calls belong outside the queue so a slow
        network cannot hold up other writes. An empty result deletes the
        file.

        Args:
            mutator: Function applied to the current mapping.

        Returns:
            The mapping as written.

        Raises:
            Whatever the mutator or the write raises. Later queued writes
            still run.
        """
        async with self._write_lock:
            current = self._load_locked()
            result = mutator(current)
            tokens = current if result is None else result

            if tokens:
                self._write(tokens)
            elif self._path.exists():
                self._delete_file()
                logger.info("All tokens cleared, file deleted")

            return dict(tokens)

    async def merge_record(
        self,
        account_id: str,
        update: Mapping,
        *,
        email: str | None = None,
        create: bool = True,
    ) -> CredentialRecord | None:
        """Merge new token fields into one account's record.

        Used for refreshes: fields absent from the update are preserved,
        including the refresh token.

        Args:
            account_id: Account to update.
            update: New token fields.
            email: Email address to cache, if resolved.
            create: If False, an account missing from the file (removed
                meanwhile) is left absent.

        Returns:
            The merged record, or None if the account was absent and
            create is False.
        """

        def apply(tokens: TokenMapping) -> None:
            if account_id not in tokens and not create:
                return
            tokens[account_id] = merge_tokens(tokens.get(account_id, {}), update, email)

        tokens = await self.update(apply)
        record = tokens.get(account_id)
        return dict(record) if record is not None else None

    async def replace_record(
        self,
        account_id: str,
        record: Mapping,
        *,
        email: str | None = None,
    ) -> CredentialRecord:
        """Store a fresh authorization for an account.

        Previous fields such as a stale cached email are dropped. A stored
        refresh token still survives if the new grant lacks one.

        Returns:
            The stored record.
        """

        def apply(tokens: TokenMapping) -> None:
            previous = tokens.get(account_id, {})
            kept = {}
            if previous.get("refresh_token"):
                kept["refresh_token"] = previous["refresh_token"]
            tokens[account_id] = merge_tokens(kept, record, email)

        tokens = await self.update(apply)
        return dict(tokens[account_id])

    async def remove(self, account_id: str) -> None:
        """Delete one account's record.

        Removing the last account deletes the file instead of leaving an
        empty object behind.

        Raises:
            AccountNotFound: If the account has no record.
        """

        def apply(tokens: TokenMapping) -> None:
            if account_id not in tokens:
                raise AccountNotFound(f'Account "{account_id}" not found')
            del tokens[account_id]

        remaining = await self.update(apply)
        if remaining:
            logger.info('Account "%s" removed', account_id)

    async def clear(self) -> None:
        """Delete every stored record."""
        async with self._write_lock:
            self._delete_file()
        logger.info("All tokens cleared, file deleted")

    async def account_ids(self) -> list[str]:
        """List stored account identifiers."""
        return list(await self.load())

    # --- File access (call with the write lock held) ---

    def _load_locked(self) -> TokenMapping:
        """Load with migrations. Caller holds the write lock."""
        if not self._path.exists():
            self._migrate_legacy()

        try:
            tokens = self._read_raw()
        except TokenFileCorrupted as e:
            logger.warning("%s; removing it", e)
            self._delete_file()
            return {}

        if is_single_account_shape(tokens):
            tokens = {self._default_account: tokens}
            self._write(tokens)
            logger.info(
                'Converted single-account token file to account "%s"',
                self._default_account,
            )

        return tokens

    def _read_raw(self) -> TokenMapping:
        """Read the file as-is, without migrations.

        Raises:
            TokenFileCorrupted: If the content is not a JSON object.
        """
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise TokenFileCorrupted(f"Token file {self._path} is corrupted: {e}") from e

        if not isinstance(data, dict):
            raise TokenFileCorrupted(
                f"Token file {self._path} is corrupted: expected a JSON object"
            )

        return data

    def _write(self, tokens: TokenMapping) -> None:
        """Write the whole mapping atomically with 600 permissions.

        This is the only place that writes the token file.
        """
        ensure_parent_dir(self._path)
        tmp_path = self._path.with_name(self._path.name + ".tmp")

        try:
            # Create with restrictive permissions from the start
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(tokens, f, indent=2)
            os.replace(tmp_path, self._path)
            self._path.chmod(0o600)
        except OSError as e:
            logger.error("Error writing token file %s: %s", self._path, e)
            tmp_path.unlink(missing_ok=True)
            raise

    def _delete_file(self) -> None:
        self._path.unlink(missing_ok=True)

    def _migrate_legacy(self) -> bool:
        """Copy tokens from the legacy location, if present.

        The legacy file is left in place. Single-account content is
        wrapped under the default account.

        Returns:
            True if tokens were migrated.
        """
        if not self._legacy_path.exists():
            return False

        try:
            legacy = json.loads(self._legacy_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Error reading legacy tokens %s: %s", self._legacy_path, e)
            return False

        if not legacy or not isinstance(legacy, dict):
            logger.warning("Invalid legacy token format, skipping migration")
            return False

        if is_single_account_shape(legacy):
            legacy = {self._default_account: legacy}

        self._write(legacy)
        logger.info(
            "Migrated tokens from legacy location %s to %s",
            self._legacy_path,
            self._path,
        )
        return True
