"""Run one operation against several accounts.

A failure on one account does not fail the others: results are collected
per account and a note lists the accounts that failed. With a single
target account there is nothing partial to report, so its error
propagates unchanged.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from mailbridge.auth.client import AccountClient
from mailbridge.errors import MailbridgeError, describe, map_google_error

logger = logging.getLogger(__name__)

Operation = Callable[[AccountClient], Awaitable[Any]]


@dataclass
class FanOutResult:
    """Per-account outcomes of a fan-out.

    Attributes:
        results: Account ID to operation result, for successful accounts.
        errors: Account ID to mapped error, for failed accounts.
    """

    results: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, MailbridgeError] = field(default_factory=dict)

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    @property
    def note(self) -> str | None:
        """Describe failed accounts, or None if all succeeded."""
        if not self.errors:
            return None
        lines = [
            f"Results incomplete: {len(self.errors)} of "
            f"{len(self.errors) + len(self.results)} account(s) failed."
        ]
        for account_id in sorted(self.errors):
            lines.append(f"- {account_id}: {describe(self.errors[account_id])}")
        return "\n".join(lines)


async def fan_out(accounts: Sequence[AccountClient], operation: Operation) -> FanOutResult:
    """Run an operation on every account concurrently.

    Args:
        accounts: Target accounts.
        operation: Coroutine function called with each account.

    Returns:
        Collected results and errors.

    Raises:
        MailbridgeError: The error of the only account, when there is
            exactly one.
    """
    if len(accounts) == 1:
        account = accounts[0]
        try:
            result = await operation(account)
        except Exception as e:
            raise map_google_error(e) from e
        return FanOutResult(results={account.account_id: result})

    outcomes = await asyncio.gather(
        *(operation(account) for account in accounts), return_exceptions=True
    )

    fan = FanOutResult()
    for account, outcome in zip(accounts, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            error = map_google_error(outcome)
            logger.warning('Operation failed for account "%s": %s', account.account_id, error)
            fan.errors[account.account_id] = error
        else:
            fan.results[account.account_id] = outcome
    return fan
