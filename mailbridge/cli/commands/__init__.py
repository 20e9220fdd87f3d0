"""CLI commands module."""

from . import accounts, config

__all__ = ["accounts", "config"]
