"""Account commands: list, add and remove authorized Gmail accounts."""

import asyncio
import json

import typer
from typing_extensions import Annotated

from mailbridge.auth import CredentialStore
from mailbridge.auth.flow import AuthFlowCoordinator
from mailbridge.auth.registry import AccountRegistry
from mailbridge.config import Settings, load_settings
from mailbridge.errors import MailbridgeError, describe
from mailbridge.mailbox import MailboxCache

app = typer.Typer(help="Manage authorized Gmail accounts")


def _build_registry(settings: Settings) -> AccountRegistry:
    """Create a registry wired to the configured store and cache."""
    return AccountRegistry(
        CredentialStore(default_account=settings.account_mode),
        cache=MailboxCache(ttl=settings.cache_ttl, profile_timeout=settings.profile_timeout),
        profile_timeout=settings.profile_timeout,
        remote_timeout=settings.remote_timeout,
    )


def _fail(error: MailbridgeError) -> typer.Exit:
    typer.echo(describe(error), err=True)
    return typer.Exit(1)


@app.command("list")
def list_accounts(
    as_json: Annotated[
        bool, typer.Option("--json", help="Output as JSON")
    ] = False,
):
    """List authorized accounts with their email and token status."""
    settings = load_settings()

    async def run():
        registry = _build_registry(settings)
        return await registry.list_accounts()

    try:
        summaries = asyncio.run(run())
    except MailbridgeError as e:
        raise _fail(e)

    if as_json:
        typer.echo(json.dumps([summary.to_dict() for summary in summaries], indent=2))
        return

    if not summaries:
        typer.echo("No accounts configured.")
        typer.echo("Run 'mailbridge accounts add <account>' to authorize one.")
        return

    for summary in summaries:
        typer.echo(f"{summary.account_id:<20} {summary.email:<40} {summary.status}")


@app.command()
def add(
    account: Annotated[
        str | None,
        typer.Argument(help="Account ID (defaults to MAILBRIDGE_ACCOUNT or 'normal')"),
    ] = None,
    no_browser: Annotated[
        bool, typer.Option("--no-browser", help="Print the URL without opening a browser")
    ] = False,
):
    """Authorize a Gmail account in the browser.

    Re-running for an existing account replaces its tokens.
    """
    settings = load_settings()
    account_id = account or settings.account_mode

    async def run():
        registry = _build_registry(settings)
        await registry.reload()
        coordinator = AuthFlowCoordinator(
            registry,
            port=settings.callback_port,
            timeout=settings.auth_timeout,
        )
        authorized = await coordinator.authenticate(
            account_id,
            open_browser=not no_browser,
            notify=typer.echo,
        )
        return authorized, coordinator.email

    try:
        authorized, email = asyncio.run(run())
    except MailbridgeError as e:
        raise _fail(e)

    typer.echo()
    typer.echo("Authentication successful!")
    typer.echo(f'Account "{authorized}" connected' + (f" as {email}" if email else "."))


@app.command()
def remove(
    account: Annotated[str, typer.Argument(help="Account ID to remove")],
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")
    ] = False,
):
    """Remove an account and delete its stored tokens."""
    settings = load_settings()

    if not yes:
        typer.confirm(f'Remove account "{account}" and its tokens?', abort=True)

    async def run():
        registry = _build_registry(settings)
        await registry.reload()
        await registry.remove(account)

    try:
        asyncio.run(run())
    except MailbridgeError as e:
        raise _fail(e)

    typer.echo(f'Account "{account.lower()}" removed.')
