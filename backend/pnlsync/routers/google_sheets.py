"""Report sheet endpoints (create, sync, status).

WHAT:
    Thin HTTP wrappers around SpreadsheetProvisioner and SyncEngine.

WHY:
    - Routers focus on request parsing and response shaping.
    - Business logic lives in the service layer, shared with the batch runner.
    - Service errors become JSON bodies in main.py's exception handler.

REFERENCES:
    - pnlsync/services/sheet_provisioner.py
    - pnlsync/services/sheet_sync_service.py
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from pnlsync.deps import get_credential_store, get_provisioner, get_sync_engine
from pnlsync.schemas import (
    CreateSheetRequest,
    CreateSheetResponse,
    SheetStatusResponse,
    SyncRequest,
    SyncResponse,
)
from pnlsync.services.credential_store import CredentialStore, load_client
from pnlsync.services.sheet_provisioner import SpreadsheetProvisioner
from pnlsync.services.sheet_sync_service import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/clients/{client_id}/google-sheets", tags=["Google Sheets"])


@router.post("/create", response_model=CreateSheetResponse)
def create_sheet(
    client_id: UUID,
    request: CreateSheetRequest | None = None,
    provisioner: SpreadsheetProvisioner = Depends(get_provisioner),
) -> CreateSheetResponse:
    """Provision the client's report sheet (delegates to service layer)."""
    logger.info("[PROVISION] HTTP create requested: client=%s", client_id)
    sheet = provisioner.create(client_id, title=request.sheet_title if request else None)
    return CreateSheetResponse(spreadsheetId=sheet.sheet_id, spreadsheetUrl=sheet.sheet_url)


@router.post("/sync", response_model=SyncResponse)
def sync_sheet(
    client_id: UUID,
    request: SyncRequest | None = None,
    engine: SyncEngine = Depends(get_sync_engine),
) -> SyncResponse:
    """Clear and rewrite the client's report (delegates to service layer)."""
    days = request.days if request else None
    logger.info("[SHEET_SYNC] HTTP sync requested: client=%s days=%s", client_id, days)
    rows_written = engine.sync(client_id, window_days=days)
    client = load_client(engine.db, client_id)
    return SyncResponse(rowsWritten=rows_written, spreadsheetUrl=client.google_sheet_url)


@router.get("/status", response_model=SheetStatusResponse)
def sheet_status(
    client_id: UUID,
    store: CredentialStore = Depends(get_credential_store),
) -> SheetStatusResponse:
    """Connection and provisioning state. Read-only."""
    client = load_client(store.db, client_id)
    return SheetStatusResponse(
        authenticated=store.is_authenticated(client.id),
        provisioned=bool(client.google_sheet_id),
        spreadsheetUrl=client.google_sheet_url,
        lastSyncedAt=client.last_synced_at,
        autoSyncEnabled=bool(client.auto_sync_enabled),
    )
