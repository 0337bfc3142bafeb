"""Sentry integration for error tracking."""
from __future__ import annotations

import logging
import os
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)


def init_sentry(
    dsn: str | None = None,
    environment: str = "production",
    enable_logging: bool = True,
    sample_rate: float = 1.0,
) -> bool:
    """Initialize Sentry error tracking.

    Args:
        dsn: Sentry DSN; falls back to SENTRY_DSN
        environment: Environment name (production, staging, development)
        enable_logging: Turn ERROR log records into Sentry events
        sample_rate: Error sampling rate (1.0 = 100%)

    Returns:
        True if Sentry was initialized
    """
    sentry_dsn = dsn or os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        logger.info("SENTRY_DSN not set - error tracking disabled")
        return False

    integrations = []
    if enable_logging:
        integrations.append(LoggingIntegration(level=logging.INFO, event_level=logging.ERROR))

    try:
        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=environment,
            integrations=integrations,
            sample_rate=sample_rate,
            send_default_pii=False,
        )
    except Exception as e:
        logger.error("Failed to initialize Sentry: %s", e)
        return False

    logger.info("Sentry initialized for %s environment", environment)
    return True


def capture_exception(error: BaseException, **extra: Any) -> None:
    """Capture exception and send to Sentry with additional context.

    Args:
        error: Exception to capture
        **extra: Context blocks, each a dict
    """
    try:
        with sentry_sdk.new_scope() as scope:
            for key, value in extra.items():
                scope.set_context(key, value if isinstance(value, dict) else {"value": value})
            sentry_sdk.capture_exception(error)
    except Exception as e:
        logger.error("Failed to capture exception in Sentry: %s", e)
