"""Report spreadsheet provisioning.

WHAT:
    Creates the client's "Daily P&L" spreadsheet on their own Google Drive:
    header row, header styling, column auto-size, status-tier conditional
    colouring, and sharing with the client's email. Records the sheet id and
    URL on the client only after every step succeeded.

WHY:
    A client without a sheet id is "not provisioned"; a half-configured sheet
    must never be recorded, so a failure after creation deletes the file
    (best effort) and leaves the client unchanged.

REFERENCES:
    - pnlsync/report_layout.py (headers, ranges, tints)
    - pnlsync/services/sheets_client.py (ReportSheetsClient, SheetsSession)
    - pnlsync/services/client_locks.py (provision_lock)
    - https://developers.google.com/sheets/api/reference/rest/v4/spreadsheets/request
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from pnlsync.deps import Settings
from pnlsync.errors import NotAuthenticatedError, PnlSyncError, ProvisionError
from pnlsync.models import Client
from pnlsync.report_layout import (
    COLUMN_COUNT,
    HEADER_BACKGROUND,
    HEADER_FOREGROUND,
    HEADER_RANGE,
    HEADERS,
    SHEET_TAB_TITLE,
    STATUS_COLUMN,
    STATUS_TINTS,
    STATUS_TOKENS,
    StatusTier,
)
from pnlsync.services.client_locks import provision_lock
from pnlsync.services.credential_store import CredentialStore, load_client
from pnlsync.services.sheets_client import (
    GOOGLE_API_ERRORS,
    ReportSheetsClient,
    SheetsSession,
    describe_api_error,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisionedSheet:
    sheet_id: str
    sheet_url: str


def build_format_requests(tab_id: int) -> List[dict]:
    """batchUpdate requests styling the header and colouring rows by status."""
    requests: List[dict] = [
        {
            "repeatCell": {
                "range": {
                    "sheetId": tab_id,
                    "startRowIndex": 0,
                    "endRowIndex": 1,
                    "startColumnIndex": 0,
                    "endColumnIndex": COLUMN_COUNT,
                },
                "cell": {
                    "userEnteredFormat": {
                        "backgroundColor": HEADER_BACKGROUND,
                        "horizontalAlignment": "CENTER",
                        "textFormat": {
                            "foregroundColor": HEADER_FOREGROUND,
                            "bold": True,
                        },
                    }
                },
                "fields": "userEnteredFormat(backgroundColor,textFormat,horizontalAlignment)",
            }
        },
        {
            "autoResizeDimensions": {
                "dimensions": {
                    "sheetId": tab_id,
                    "dimension": "COLUMNS",
                    "startIndex": 0,
                    "endIndex": COLUMN_COUNT,
                }
            }
        },
    ]

    # Whole data row tinted by the Status cell; rules follow row clears/rewrites
    for index, tier in enumerate((StatusTier.green, StatusTier.yellow, StatusTier.red)):
        requests.append({
            "addConditionalFormatRule": {
                "index": index,
                "rule": {
                    "ranges": [{
                        "sheetId": tab_id,
                        "startRowIndex": 1,
                        "startColumnIndex": 0,
                        "endColumnIndex": COLUMN_COUNT,
                    }],
                    "booleanRule": {
                        "condition": {
                            "type": "CUSTOM_FORMULA",
                            "values": [{"userEnteredValue": f'=${STATUS_COLUMN}2="{STATUS_TOKENS[tier]}"'}],
                        },
                        "format": {"backgroundColor": STATUS_TINTS[tier]},
                    },
                },
            }
        })
    return requests


class SpreadsheetProvisioner:
    """Creates and records a client's report spreadsheet.

    Usage:
        provisioner = SpreadsheetProvisioner(db, CredentialStore(db, settings), settings)
        sheet = provisioner.create(client_id)
    """

    def __init__(
        self,
        db: Session,
        credential_store: CredentialStore,
        settings: Settings,
        sheets_factory=ReportSheetsClient,
    ):
        self.db = db
        self.credentials = credential_store
        self.settings = settings
        self._sheets_factory = sheets_factory

    def create(self, client_id: UUID | str, title: Optional[str] = None) -> ProvisionedSheet:
        """Provision the report sheet for a client.

        Raises:
            ClientNotFoundError: Unknown client.
            NotAuthenticatedError: Client has not connected Google.
            ProvisionError: Already provisioned, provisioning already running,
                or any Google step failed.
        """
        client = load_client(self.db, client_id)
        lock = provision_lock(client.id)
        if not lock.acquire(timeout=self.settings.SYNC_LOCK_TIMEOUT_SECONDS):
            logger.warning("[PROVISION] Provisioning already running for client %s", client_id)
            raise ProvisionError(f"Provisioning for client {client_id} is already in progress")
        try:
            # A peer may have provisioned while we waited for the lock
            self.db.refresh(client)
            return self._create_locked(client, client_id, title)
        finally:
            lock.release()

    def _create_locked(self, client: Client, client_id: UUID | str, title: Optional[str]) -> ProvisionedSheet:
        if not self.credentials.is_authenticated(client.id):
            raise NotAuthenticatedError("Client not authenticated with Google. Please connect first.")
        if client.google_sheet_id:
            raise ProvisionError(f"Client already has a report sheet: {client.google_sheet_url}")

        title = (title or "").strip() or f"{client.name} - Daily P&L"
        email = client.email
        session = SheetsSession(
            self.credentials,
            client.id,
            self._sheets_factory,
            timeout=self.settings.GOOGLE_HTTP_TIMEOUT_SECONDS,
        )

        spreadsheet_id = None
        try:
            created = session.call(lambda sheets: sheets.create_spreadsheet(title, SHEET_TAB_TITLE))
            spreadsheet_id = created["spreadsheet_id"]
            logger.info("[PROVISION] Created spreadsheet %s for client %s", spreadsheet_id, client_id)

            session.call(lambda sheets: sheets.write_range(spreadsheet_id, HEADER_RANGE, [list(HEADERS)], "RAW"))
            format_requests = build_format_requests(created["tab_id"])
            session.call(lambda sheets: sheets.batch_update(spreadsheet_id, format_requests))
            session.call(lambda sheets: sheets.share_with(spreadsheet_id, email))
        except GOOGLE_API_ERRORS as exc:
            self._discard(session, spreadsheet_id)
            logger.error("[PROVISION] Failed for client %s: %s", client_id, describe_api_error(exc))
            raise ProvisionError(f"Failed to provision report sheet: {describe_api_error(exc)}") from exc
        except PnlSyncError as exc:
            # e.g. RefreshError while retrying a rejected call
            self._discard(session, spreadsheet_id)
            logger.error("[PROVISION] Failed for client %s: %s", client_id, exc.kind)
            raise ProvisionError(f"Failed to provision report sheet: {exc.message}") from exc

        client.google_sheet_id = spreadsheet_id
        client.google_sheet_url = created["spreadsheet_url"]
        self.db.add(client)
        self.db.commit()

        logger.info("[PROVISION] Client %s provisioned: %s", client_id, created["spreadsheet_url"])
        return ProvisionedSheet(sheet_id=spreadsheet_id, sheet_url=created["spreadsheet_url"])

    def _discard(self, session: SheetsSession, spreadsheet_id: Optional[str]) -> None:
        """Delete a half-built spreadsheet; failure here is logged, not raised."""
        if not spreadsheet_id:
            return
        try:
            session.call(lambda sheets: sheets.delete_file(spreadsheet_id))
            logger.info("[PROVISION] Deleted half-built spreadsheet %s", spreadsheet_id)
        except (*GOOGLE_API_ERRORS, PnlSyncError) as exc:
            logger.warning(
                "[PROVISION] Could not delete half-built spreadsheet %s: %s",
                spreadsheet_id,
                exc,
            )
