"""
Sentry Error Tracking
=====================

Centralized error tracking for the sheet-sync service.

Related files:
- pnlsync/main.py: Initializes Sentry on app startup
- pnlsync/services/batch_runner.py: Reports unexpected per-client failures
- pnlsync/workers/sheet_sync_worker.py: Initializes Sentry for CLI batch runs

Environment Variables:
- SENTRY_DSN: Sentry project DSN (Sentry stays disabled when unset)
- ENVIRONMENT: Environment name (production, staging, development)
"""

from __future__ import annotations

import os
import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)


def get_sentry_dsn() -> Optional[str]:
    """Get Sentry DSN from environment variable."""
    return os.environ.get("SENTRY_DSN")


def init_sentry() -> bool:
    """
    Initialize Sentry SDK.

    Returns:
        True if Sentry was initialized, False when no DSN is configured.
    """
    dsn = get_sentry_dsn()
    if not dsn:
        logger.info("[SENTRY] SENTRY_DSN not set - error tracking disabled")
        return False

    environment = os.environ.get("ENVIRONMENT", "development")

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.INFO,        # Capture INFO+ as breadcrumbs
                event_level=logging.ERROR,  # Send ERROR+ as events
            ),
        ],
        traces_sample_rate=0.1,
        # OAuth tokens travel in request bodies/headers
        send_default_pii=False,
        release=os.environ.get("RELEASE_VERSION"),
    )

    logger.debug("[SENTRY] Initialized for %s environment", environment)
    return True


def capture_exception(exception: Exception, extra: Optional[dict] = None) -> None:
    """
    Manually capture an exception to Sentry.

    Use this for exceptions that are caught and handled (e.g. one client
    failing inside a batch) but should still be tracked.

    Args:
        exception: The exception to capture
        extra: Additional context to attach to the event

    Example:
        except Exception as e:
            capture_exception(e, extra={"operation": "batch_sync", "client_id": str(client_id)})
    """
    with sentry_sdk.new_scope() as scope:
        if extra:
            for key, value in extra.items():
                scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
