"""Main CLI entry point for mailbridge."""

import typer
from typing_extensions import Annotated

from mailbridge import __version__
from mailbridge.cli import commands
from mailbridge.config import load_settings
from mailbridge.errors import MailbridgeError, describe
from mailbridge.log import configure_logging

app = typer.Typer(
    name="mailbridge",
    help="Manage OAuth credentials for multiple Gmail accounts",
    no_args_is_help=True,
)

# Register command groups
app.add_typer(commands.accounts.app, name="accounts")
app.add_typer(commands.config.app, name="config")


@app.callback()
def setup(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")
    ] = False,
):
    """Configure logging before any command runs."""
    try:
        level = load_settings().log_level
    except MailbridgeError as e:
        typer.echo(describe(e), err=True)
        raise typer.Exit(1)

    configure_logging("DEBUG" if verbose else level)


@app.command()
def version():
    """Show version information."""
    typer.echo(f"mailbridge version {__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
