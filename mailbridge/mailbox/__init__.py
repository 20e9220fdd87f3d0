"""Mailbox metadata and account ownership resolution."""

from .cache import MailboxCache
from .fanout import FanOutResult, fan_out
from .locator import MessageLocator
from .models import Found, MailboxInfo, NotFound

__all__ = [
    "FanOutResult",
    "Found",
    "MailboxCache",
    "MailboxInfo",
    "MessageLocator",
    "NotFound",
    "fan_out",
]
