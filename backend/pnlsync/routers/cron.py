"""Scheduler entry for the nightly report sync.

An external scheduler calls GET /cron/sync-google-sheets with
`Authorization: Bearer <CRON_SECRET>`. The secret check runs before any
client is read.
"""

import logging

from fastapi import APIRouter, Depends

from pnlsync.deps import get_batch_runner, require_cron_secret
from pnlsync.schemas import BatchSyncResponse, ClientSyncResultOut
from pnlsync.services.batch_runner import BatchRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.get(
    "/sync-google-sheets",
    response_model=BatchSyncResponse,
    dependencies=[Depends(require_cron_secret)],
)
def sync_google_sheets(runner: BatchRunner = Depends(get_batch_runner)) -> BatchSyncResponse:
    logger.info("[CRON] Batch sheet sync triggered")
    summary = runner.run()
    return BatchSyncResponse(
        total=summary.total,
        successCount=summary.success_count,
        failureCount=summary.failure_count,
        perClientResults=[
            ClientSyncResultOut(
                client_id=result.client_id,
                client_name=result.client_name,
                success=result.success,
                rows_written=result.rows_written,
                error_kind=result.error_kind,
                message=result.message,
            )
            for result in summary.results
        ],
    )
