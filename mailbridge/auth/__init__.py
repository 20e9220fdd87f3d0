"""Authentication and credential lifecycle for Gmail accounts.

Usage:
    from mailbridge.auth import CredentialStore
    from mailbridge.auth.registry import AccountRegistry
    from mailbridge.auth.flow import AuthFlowCoordinator

    registry = AccountRegistry(CredentialStore())
    await registry.reload()

    # Interactive authorization (opens the browser)
    await AuthFlowCoordinator(registry).authenticate("work")

    # Authenticated handle for API calls
    client = registry.resolve_for_write("work")

The registry and flow modules build on mailbridge.mailbox, so they are
imported from their modules rather than re-exported here.
"""

from .accounts import normalize_account_id, validate_account_id
from .client import AccountClient, ClientCredentials, load_client_credentials
from .store import CredentialStore

__all__ = [
    "AccountClient",
    "ClientCredentials",
    "CredentialStore",
    "load_client_credentials",
    "normalize_account_id",
    "validate_account_id",
]
