"""Logging setup.

Modules log through ``logging.getLogger(__name__)``; this module only
decides where records go. Everything is written to stderr so command
output on stdout stays machine-readable.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Chatty third-party loggers, kept at WARNING unless we debug
_NOISY_LOGGERS = ("googleapiclient.discovery_cache", "aiohttp.access")


def configure_logging(level: str = "WARNING") -> None:
    """Route mailbridge logs to stderr at the given level.

    Safe to call more than once; the last call wins.

    Args:
        level: Level name such as "INFO" or "DEBUG". Unknown names fall
            back to WARNING.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.WARNING

    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    if numeric > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
