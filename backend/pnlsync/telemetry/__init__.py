"""
Telemetry Module
================

Observability for the sheet-sync service.

Components:
- sentry.py: Error tracking

Usage:
    from pnlsync.telemetry import init_observability, capture_exception

    init_observability()
"""

from pnlsync.telemetry.sentry import (
    init_sentry,
    capture_exception,
)


def init_observability() -> dict:
    """
    Initialize all observability tools.

    Returns:
        Dict with status of each tool initialization: {"sentry": True/False}
    """
    return {
        "sentry": init_sentry(),
    }


__all__ = [
    "init_observability",
    "init_sentry",
    "capture_exception",
]
