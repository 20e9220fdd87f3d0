"""Data models for mailbox metadata and ownership probes."""

from dataclasses import dataclass

# Placeholder used when an account's address cannot be resolved
UNKNOWN_EMAIL = "unknown"


@dataclass
class MailboxInfo:
    """Profile metadata for one account's mailbox.

    Attributes:
        account_id: Account the mailbox belongs to.
        email: Mailbox address, or "unknown" if it could not be fetched.
        messages_total: Number of messages, if known.
        threads_total: Number of threads, if known.
        history_id: Current Gmail history ID, if known.
    """

    account_id: str
    email: str = UNKNOWN_EMAIL
    messages_total: int | None = None
    threads_total: int | None = None
    history_id: str | None = None

    @classmethod
    def from_profile(cls, account_id: str, profile: dict) -> "MailboxInfo":
        """Create from a Gmail users.getProfile response."""
        messages_total = profile.get("messagesTotal")
        threads_total = profile.get("threadsTotal")
        return cls(
            account_id=account_id,
            email=profile.get("emailAddress") or UNKNOWN_EMAIL,
            messages_total=int(messages_total) if messages_total is not None else None,
            threads_total=int(threads_total) if threads_total is not None else None,
            history_id=profile.get("historyId"),
        )

    @property
    def is_known(self) -> bool:
        return self.email != UNKNOWN_EMAIL


@dataclass(frozen=True)
class Found:
    """Probe outcome: the account holds the message."""

    account_id: str


@dataclass(frozen=True)
class NotFound:
    """Probe outcome: the account does not hold the message."""

    account_id: str


ProbeResult = Found | NotFound
