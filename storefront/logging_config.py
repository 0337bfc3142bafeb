"""Logging setup shared by the storefront core.

Modules log through ``logging.getLogger(__name__)``; the host application
calls :func:`setup_logging` once at startup.
"""
from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("storefront")

_configured = False


def setup_logging(level: str | int | None = None, *, with_sentry: bool = True) -> logging.Logger:
    """Configure the ``storefront`` logger hierarchy once.

    Level defaults to LOG_LEVEL (INFO when unset). With ``with_sentry`` the
    Sentry SDK is initialized as well; it stays disabled without SENTRY_DSN.
    """
    global _configured
    resolved = level if level is not None else os.getenv("LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    logger.setLevel(resolved)
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False
        _configured = True

        if with_sentry:
            from storefront.core.sentry_integration import init_sentry

            init_sentry(environment=os.getenv("ENVIRONMENT", "production"))

    return logger
