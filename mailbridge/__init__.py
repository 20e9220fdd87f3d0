"""mailbridge - multi-account Gmail credential management.

Keeps OAuth2 tokens for any number of named Gmail accounts, refreshes them
transparently, and resolves which account owns a given mailbox or message.
"""

__version__ = "0.1.0"
