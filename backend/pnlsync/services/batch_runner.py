"""Batch sync across all eligible clients.

WHAT:
    Selects clients with auto sync enabled and a provisioned sheet, and runs
    SyncEngine.sync for each on a thread pool, one DB session per client.

WHY:
    One client's expired grant or Google outage must never stop the others.
    Every failure is captured as a per-client result; the batch itself only
    fails if the eligible-client query does.

REFERENCES:
    - pnlsync/routers/cron.py (scheduler entry)
    - pnlsync/workers/sheet_sync_worker.py (CLI entry)
    - pnlsync/telemetry/sentry.py (unexpected failures)
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from pnlsync.deps import Settings
from pnlsync.errors import PnlSyncError
from pnlsync.models import Client
from pnlsync.services.credential_store import CredentialStore
from pnlsync.services.sheet_sync_service import MAX_WINDOW_DAYS, SyncEngine
from pnlsync.telemetry import capture_exception

logger = logging.getLogger(__name__)


@dataclass
class ClientSyncResult:
    client_id: str
    client_name: str
    success: bool
    rows_written: Optional[int] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None


@dataclass
class BatchSummary:
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    results: List[ClientSyncResult] = field(default_factory=list)


class BatchRunner:
    """Fans SyncEngine out over eligible clients with isolated failures.

    Usage:
        runner = BatchRunner(SessionLocal, get_settings())
        summary = runner.run(window_days=30)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings,
        engine_factory: Optional[Callable[[Session], SyncEngine]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.engine_factory = engine_factory or self._default_engine

    def _default_engine(self, db: Session) -> SyncEngine:
        return SyncEngine(db, CredentialStore(db, self.settings), self.settings)

    def eligible_clients(self) -> List[Tuple[UUID, str]]:
        db = self.session_factory()
        try:
            rows = (
                db.query(Client.id, Client.name)
                .filter(
                    Client.auto_sync_enabled.is_(True),
                    Client.google_sheet_id.isnot(None),
                )
                .order_by(Client.name.asc())
                .all()
            )
            return [(row.id, row.name) for row in rows]
        finally:
            db.close()

    def run(self, window_days: Optional[int] = None) -> BatchSummary:
        """Sync every eligible client.

        Raises:
            ValueError: window_days outside 1..365, before any client is touched.
        """
        if window_days is None:
            window_days = self.settings.DEFAULT_SYNC_DAYS
        if not 1 <= window_days <= MAX_WINDOW_DAYS:
            raise ValueError(f"window_days must be between 1 and {MAX_WINDOW_DAYS}, got {window_days}")
        targets = self.eligible_clients()
        logger.info("[BATCH_SYNC] Starting batch for %d clients (window=%d days)", len(targets), window_days)

        if not targets:
            return BatchSummary()

        max_workers = max(1, min(self.settings.BATCH_MAX_WORKERS, len(targets)))
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sheet-sync") as pool:
            results = list(
                pool.map(lambda target: self._sync_one(target[0], target[1], window_days), targets)
            )

        summary = BatchSummary(
            total=len(results),
            success_count=sum(1 for r in results if r.success),
            failure_count=sum(1 for r in results if not r.success),
            results=results,
        )
        logger.info(
            "[BATCH_SYNC] Completed: %d succeeded, %d failed",
            summary.success_count,
            summary.failure_count,
        )
        return summary

    def _sync_one(self, client_id: UUID, client_name: str, window_days: int) -> ClientSyncResult:
        db = self.session_factory()
        try:
            rows_written = self.engine_factory(db).sync(client_id, window_days)
            return ClientSyncResult(
                client_id=str(client_id),
                client_name=client_name,
                success=True,
                rows_written=rows_written,
            )
        except PnlSyncError as exc:
            db.rollback()
            logger.warning("[BATCH_SYNC] Client %s failed: %s: %s", client_id, exc.kind, exc.message)
            return ClientSyncResult(
                client_id=str(client_id),
                client_name=client_name,
                success=False,
                error_kind=exc.kind,
                message=exc.message,
            )
        except Exception as exc:
            db.rollback()
            logger.exception("[BATCH_SYNC] Unexpected failure for client %s", client_id)
            capture_exception(exc, extra={"client_id": str(client_id), "window_days": window_days})
            return ClientSyncResult(
                client_id=str(client_id),
                client_name=client_name,
                success=False,
                error_kind=type(exc).__name__,
                message=str(exc),
            )
        finally:
            db.close()
