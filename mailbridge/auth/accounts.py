"""Account identifier rules.

An account identifier names one authorized Gmail mailbox. It is used as
a key in tokens.json and as a command argument, so it is restricted to
characters that are safe everywhere: 1-64 lowercase letters, digits,
dashes and underscores, excluding names reserved by the filesystem.
"""

import re

from mailbridge.errors import InvalidAccountId

ACCOUNT_ID_PATTERN = re.compile(r"^[a-z0-9_-]{1,64}$")

# Names that cannot be used even though some match the pattern
RESERVED_NAMES = frozenset(
    {
        ".",
        "..",
        "con",
        "prn",
        "aux",
        "nul",
        "com1",
        "com2",
        "com3",
        "com4",
        "lpt1",
        "lpt2",
        "lpt3",
    }
)

_FORMAT_MESSAGE = (
    "Invalid account ID. Must be 1-64 characters: "
    "lowercase letters, numbers, dashes, underscores only."
)


def validate_account_id(account_id: str) -> str:
    """Check an account identifier without changing it.

    Args:
        account_id: Candidate identifier.

    Returns:
        The identifier, unchanged.

    Raises:
        InvalidAccountId: If the identifier is empty, reserved, or has
            characters outside [a-z0-9_-].
    """
    if not isinstance(account_id, str) or not account_id:
        raise InvalidAccountId(_FORMAT_MESSAGE)

    # Reserved names first: "." and ".." would only get the generic message
    if account_id in RESERVED_NAMES:
        raise InvalidAccountId(f'Account ID "{account_id}" is reserved and cannot be used.')

    if not ACCOUNT_ID_PATTERN.match(account_id):
        raise InvalidAccountId(_FORMAT_MESSAGE)

    return account_id


def normalize_account_id(account_id: str) -> str:
    """Lowercase and validate a caller-supplied identifier.

    Callers may type "Work"; lookups always use "work".

    Raises:
        InvalidAccountId: If the lowercased identifier is invalid.
    """
    if not isinstance(account_id, str):
        raise InvalidAccountId(_FORMAT_MESSAGE)
    return validate_account_id(account_id.lower())


def is_valid_account_id(account_id: str) -> bool:
    """Return True if the identifier passes validation as-is."""
    try:
        validate_account_id(account_id)
    except InvalidAccountId:
        return False
    return True
