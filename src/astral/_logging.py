"""Logging configuration for astral.

Usage in other modules:
    import logging
    log = logging.getLogger(__name__)

    log.debug("Per-entry details (skipped archive members, fallbacks)")
    log.info("Phase summaries and counts")
    log.warning("Recoverable per-document problems")
    log.error("Errors that prevented an operation")

The log level can be configured via the ASTRAL_LOG_LEVEL environment variable
(DEBUG, INFO, WARNING, ERROR). Defaults to INFO.
"""

import logging
import os
import sys

_PACKAGE_LOGGER = "astral"


def configure_logging() -> None:
    """Configure logging for the astral package.

    Call this once at application startup (the CLI does it).
    Subsequent calls are no-ops.
    """
    root_logger = logging.getLogger(_PACKAGE_LOGGER)

    if root_logger.handlers:
        return

    level_name = os.environ.get("ASTRAL_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="[%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Avoid duplicate messages through the root logger
    root_logger.propagate = False


def set_quiet_mode(quiet: bool) -> None:
    """Only let errors through when quiet, restore the configured level otherwise."""
    root_logger = logging.getLogger(_PACKAGE_LOGGER)
    if quiet:
        level = logging.ERROR
    else:
        level_name = os.environ.get("ASTRAL_LOG_LEVEL", "INFO").upper()
        level = getattr(logging, level_name, logging.INFO)

    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)
