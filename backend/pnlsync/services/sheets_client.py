"""
ReportSheetsClient: typed wrapper around the Google Sheets v4 and Drive v3
services, built per call from one client's credential.

There is no module-level service or credential cache: every
instance belongs to exactly one client's access token, so a rotated token
or a different client can never reuse a stale authorized transport.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import google.auth.exceptions
import google_auth_httplib2
import httplib2
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from pnlsync.services.credential_store import GoogleCredential

logger = logging.getLogger(__name__)

# Type alias for a 2-D grid of cell values
ValueMatrix = list[list[Any]]


def is_unauthorized(exc: Exception) -> bool:
    """True for Google API responses rejecting the access token."""
    return isinstance(exc, HttpError) and getattr(exc.resp, "status", None) == 401


class ReportSheetsClient:
    """
    Sheets/Drive operations needed by the provisioner and the sync engine.

    Usage:
        sheets = ReportSheetsClient(credential, timeout=30)
        sheets.clear_range(spreadsheet_id, "'Daily P&L'!A2:J")
    """

    def __init__(self, credential: GoogleCredential, timeout: Optional[float] = None) -> None:
        self._credentials = credential.to_google_credentials()
        self._timeout = timeout
        self._sheets_svc = None
        self._drive_svc = None

    def _authorized_http(self) -> google_auth_httplib2.AuthorizedHttp:
        # Bounded socket timeout on every Google API call. No transport-level
        # refresh: a 401 must surface as HttpError so SheetsSession refreshes
        # through the credential store.
        return google_auth_httplib2.AuthorizedHttp(
            self._credentials,
            http=httplib2.Http(timeout=self._timeout),
            refresh_status_codes=(),
        )

    @property
    def _sheets(self) -> Any:
        if self._sheets_svc is None:
            self._sheets_svc = build("sheets", "v4", http=self._authorized_http(), cache_discovery=False)
        return self._sheets_svc

    @property
    def _drive(self) -> Any:
        if self._drive_svc is None:
            self._drive_svc = build("drive", "v3", http=self._authorized_http(), cache_discovery=False)
        return self._drive_svc

    # ── Create / format ──────────────────────────────────────────────────────

    def create_spreadsheet(self, title: str, tab_title: str, frozen_rows: int = 1) -> dict:
        """
        Create a single-tab spreadsheet.

        Returns:
            {"spreadsheet_id", "spreadsheet_url", "tab_id"}
        """
        body = {
            "properties": {"title": title, "locale": "en_US"},
            "sheets": [
                {
                    "properties": {
                        "title": tab_title,
                        "gridProperties": {"frozenRowCount": frozen_rows},
                    }
                }
            ],
        }
        result = self._sheets.spreadsheets().create(body=body).execute()
        tab_id = result["sheets"][0]["properties"]["sheetId"]
        logger.info("Created spreadsheet %s: %s", result["spreadsheetId"], title)
        return {
            "spreadsheet_id": result["spreadsheetId"],
            "spreadsheet_url": result["spreadsheetUrl"],
            "tab_id": tab_id,
        }

    def batch_update(self, spreadsheet_id: str, requests: list[dict]) -> None:
        self._sheets.spreadsheets().batchUpdate(
            spreadsheetId=spreadsheet_id,
            body={"requests": requests},
        ).execute()

    # ── Values ───────────────────────────────────────────────────────────────

    def write_range(
        self,
        spreadsheet_id: str,
        range_name: str,
        values: ValueMatrix,
        value_input_option: str = "USER_ENTERED",
    ) -> None:
        """
        Overwrite a range with the provided 2-D list of values.

        value_input_option:
            "USER_ENTERED"  -> "100.00" lands as a number, dates as dates
            "RAW"           -> stores values as-is
        """
        self._sheets.spreadsheets().values().update(
            spreadsheetId=spreadsheet_id,
            range=range_name,
            valueInputOption=value_input_option,
            body={"values": values},
        ).execute()
        logger.info("Wrote %d rows to %s in %s", len(values), range_name, spreadsheet_id)

    def clear_range(self, spreadsheet_id: str, range_name: str) -> None:
        """Clear all values in the given range (formatting preserved)."""
        self._sheets.spreadsheets().values().clear(
            spreadsheetId=spreadsheet_id,
            range=range_name,
            body={},
        ).execute()
        logger.info("Cleared range %s in %s", range_name, spreadsheet_id)

    # ── Drive ────────────────────────────────────────────────────────────────

    def share_with(self, file_id: str, email: str, role: str = "writer") -> None:
        """Grant a user access to the file and send Google's notification email."""
        self._drive.permissions().create(
            fileId=file_id,
            body={"type": "user", "role": role, "emailAddress": email},
            sendNotificationEmail=True,
            fields="id",
        ).execute()
        logger.info("Shared %s with %s as %s", file_id, email, role)

    def delete_file(self, file_id: str) -> None:
        self._drive.files().delete(fileId=file_id).execute()
        logger.info("Deleted file %s", file_id)


# Errors a Google API call can surface: HTTP status errors, transport
# failures, socket timeouts, and google-auth refusing a token-only credential
GOOGLE_API_ERRORS = (HttpError, httplib2.HttpLib2Error, OSError, google.auth.exceptions.GoogleAuthError)


def describe_api_error(exc: Exception) -> str:
    """Short, token-free description of a Google API failure."""
    if isinstance(exc, HttpError):
        return f"Google API returned {exc.resp.status}: {exc.reason}"
    return f"{type(exc).__name__}: {exc}"


class SheetsSession:
    """
    One client's Sheets/Drive access for the duration of one operation.

    Holds the live credential and performs at most one transparent
    refresh-and-retry when Google rejects the access token with 401.
    Any further failure is surfaced to the caller.

    Usage:
        session = SheetsSession(store, client_id, ReportSheetsClient, timeout=30)
        session.call(lambda sheets: sheets.clear_range(sheet_id, DATA_RANGE))
    """

    def __init__(self, credential_store, client_id, factory=ReportSheetsClient, timeout: Optional[float] = None):
        self._store = credential_store
        self._client_id = client_id
        self._factory = factory
        self._timeout = timeout
        self._refreshed = False
        self._sheets = factory(credential_store.live_credential(client_id), timeout)

    def call(self, fn):
        try:
            return fn(self._sheets)
        except HttpError as exc:
            if not is_unauthorized(exc) or self._refreshed:
                raise
            logger.warning("[SHEETS] Access token rejected for client %s; refreshing once", self._client_id)
            self._refreshed = True
            credential = self._store.live_credential(self._client_id, force_refresh=True)
            self._sheets = self._factory(credential, self._timeout)
            return fn(self._sheets)
