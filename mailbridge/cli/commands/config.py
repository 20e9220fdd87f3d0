"""Config command implementation.

Manages the optional mailbridge config.toml.
"""

import typer
from typing_extensions import Annotated

from mailbridge.config import init_config, load_config, load_settings, set_config_value
from mailbridge.config.paths import config_dir, config_file, oauth_keys_path, token_path

app = typer.Typer(help="Manage configuration")


@app.command()
def init(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Overwrite existing config")
    ] = False,
):
    """Initialize configuration directory and template config file."""
    created = init_config(overwrite=force)

    if created:
        typer.echo(f"Created config directory: {config_dir()}")
        typer.echo(f"Created config file: {config_file()}")
        typer.echo()
        typer.echo("Place gcp-oauth.keys.json, then run 'mailbridge accounts add <account>'.")
    else:
        typer.echo(f"Config already exists at {config_file()}")
        typer.echo("Use --force to overwrite.")


@app.command()
def show():
    """Display the effective configuration and file locations."""
    config = load_config()
    settings = load_settings(config)

    typer.echo(f"config file: {config_file()}" + ("" if config else " (not found, using defaults)"))
    typer.echo(f"token file:  {token_path()}")
    typer.echo(f"oauth keys:  {oauth_keys_path()}")
    typer.echo()
    typer.echo(f"account        = {settings.account_mode}")
    typer.echo(f"auth.port      = {settings.callback_port}")
    typer.echo(f"auth.timeout   = {settings.auth_timeout:g}s")
    typer.echo(f"cache.ttl      = {settings.cache_ttl:g}s")
    typer.echo(f"remote.timeout = {settings.remote_timeout:g}s")
    typer.echo(f"remote.profile_timeout = {settings.profile_timeout:g}s")
    typer.echo(f"logging.level  = {settings.log_level}")


@app.command("set")
def set_value(
    key: Annotated[
        str,
        typer.Argument(help="Configuration key (dot notation, e.g., 'auth.port')"),
    ],
    value: Annotated[str, typer.Argument(help="Configuration value")],
):
    """Set a configuration value using dot notation.

    Examples:
        mailbridge config set auth.port 8080
        mailbridge config set logging.level DEBUG
    """
    try:
        set_config_value(key, value)
        typer.echo(f"Set {key} = {value}")
    except ValueError as e:
        typer.echo(f"Invalid value: {e}", err=True)
        raise typer.Exit(1)
