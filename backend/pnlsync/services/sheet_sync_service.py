"""Client report sync (clear-and-rewrite).

WHAT:
    Pushes a client's derived daily P&L rows into their provisioned report
    sheet: clears the data region below the header, writes the fresh rows
    in ascending date order, then advances `last_synced_at`.

WHY:
    - Clear-then-write makes every sync idempotent: unchanged metrics always
      produce identical sheet content, and rows that fell out of the window
      disappear.
    - Syncs of one client are serialized so two writers never interleave
      their clear and write calls.
    - The watermark only moves after the write succeeded, so a failed sync
      is visible as stale.

REFERENCES:
    - pnlsync/services/metrics_aggregator.py (rows + format_row)
    - pnlsync/services/sheets_client.py (SheetsSession 401 retry)
    - pnlsync/services/client_locks.py (sync_lock)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from pnlsync.deps import Settings
from pnlsync.errors import (
    NotAuthenticatedError,
    NotProvisionedError,
    SyncInProgressError,
    SyncWriteError,
)
from pnlsync.report_layout import DATA_RANGE, DATA_START
from pnlsync.services.client_locks import sync_lock
from pnlsync.services.credential_store import CredentialStore, load_client
from pnlsync.services.metrics_aggregator import MetricsAggregator, format_row
from pnlsync.services.sheets_client import (
    GOOGLE_API_ERRORS,
    ReportSheetsClient,
    SheetsSession,
    describe_api_error,
)

logger = logging.getLogger(__name__)

MAX_WINDOW_DAYS = 365


class SyncEngine:
    """Writes one client's derived rows into their report sheet.

    Usage:
        engine = SyncEngine(db, CredentialStore(db, settings), settings)
        rows_written = engine.sync(client_id, window_days=30)
    """

    def __init__(
        self,
        db: Session,
        credential_store: CredentialStore,
        settings: Settings,
        sheets_factory=ReportSheetsClient,
        aggregator: Optional[MetricsAggregator] = None,
    ):
        self.db = db
        self.credentials = credential_store
        self.settings = settings
        self._sheets_factory = sheets_factory
        self.aggregator = aggregator or MetricsAggregator(db)

    def sync(self, client_id: UUID | str, window_days: Optional[int] = None) -> int:
        """Clear and rewrite the client's report data region.

        Returns:
            Number of data rows written.

        Raises:
            ValueError: window_days outside 1..365.
            SyncInProgressError: Another sync for the client did not finish in time.
            ClientNotFoundError / NotAuthenticatedError / NotProvisionedError
            SyncWriteError: Clear or write failed; watermark unchanged.
        """
        if window_days is None:
            window_days = self.settings.DEFAULT_SYNC_DAYS
        if not 1 <= window_days <= MAX_WINDOW_DAYS:
            raise ValueError(f"window_days must be between 1 and {MAX_WINDOW_DAYS}, got {window_days}")

        lock = sync_lock(client_id)
        if not lock.acquire(timeout=self.settings.SYNC_LOCK_TIMEOUT_SECONDS):
            logger.warning("[SHEET_SYNC] Sync already running for client %s", client_id)
            raise SyncInProgressError(f"A sync for client {client_id} is already in progress")
        try:
            return self._sync_locked(client_id, window_days)
        finally:
            lock.release()

    def _sync_locked(self, client_id: UUID | str, window_days: int) -> int:
        client = load_client(self.db, client_id)
        if not self.credentials.is_authenticated(client.id):
            raise NotAuthenticatedError("Client not authenticated with Google. Please connect first.")
        if not client.google_sheet_id:
            raise NotProvisionedError("Client has no report sheet. Create one first.")

        sheet_id = client.google_sheet_id
        rows = self.aggregator.compute(client.id, window_days)
        values = [format_row(row) for row in rows]
        logger.info(
            "[SHEET_SYNC] Client %s: %d rows for the last %d days",
            client_id,
            len(values),
            window_days,
        )

        session = SheetsSession(
            self.credentials,
            client.id,
            self._sheets_factory,
            timeout=self.settings.GOOGLE_HTTP_TIMEOUT_SECONDS,
        )

        try:
            session.call(lambda sheets: sheets.clear_range(sheet_id, DATA_RANGE))
        except GOOGLE_API_ERRORS as exc:
            logger.error("[SHEET_SYNC] Clear failed for client %s: %s", client_id, describe_api_error(exc))
            raise SyncWriteError(f"Failed to clear report data: {describe_api_error(exc)}") from exc

        if values:
            try:
                session.call(lambda sheets: sheets.write_range(sheet_id, DATA_START, values))
            except GOOGLE_API_ERRORS as exc:
                # The data region is empty now; the next successful sync restores it
                logger.error(
                    "[SHEET_SYNC] Write failed after clear for client %s: %s",
                    client_id,
                    describe_api_error(exc),
                )
                raise SyncWriteError(f"Failed to write report data: {describe_api_error(exc)}") from exc

        client.last_synced_at = datetime.now(timezone.utc)
        self.db.add(client)
        self.db.commit()

        logger.info("[SHEET_SYNC] Client %s synced: %d rows written", client_id, len(values))
        return len(values)
