"""Pydantic request/response models for the sheet-sync HTTP surfaces.

Wire names are camelCase (the dashboard's contract); Python attributes stay
snake_case through field aliases.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

CAMEL_CONFIG = {"populate_by_name": True}


class CreateSheetRequest(BaseModel):
    """Optional title override for a new report sheet."""

    sheet_title: Optional[str] = Field(
        default=None,
        alias="sheetTitle",
        max_length=200,
        description="Spreadsheet title (default: '<client name> - Daily P&L')",
    )

    model_config = {
        **CAMEL_CONFIG,
        "json_schema_extra": {"example": {"sheetTitle": "Acme Store - Daily P&L"}},
    }


class CreateSheetResponse(BaseModel):
    spreadsheet_id: str = Field(alias="spreadsheetId", description="Google spreadsheet id")
    spreadsheet_url: str = Field(alias="spreadsheetUrl", description="Link to open the sheet")

    model_config = CAMEL_CONFIG


class SyncRequest(BaseModel):
    """Request for a manual report sync.

    WHAT: Size of the trailing date window to publish
    WHY: Lets the dashboard backfill more history than the default
    """

    days: Optional[int] = Field(
        default=None,
        ge=1,
        le=365,
        description="Trailing window in days (default: DEFAULT_SYNC_DAYS, 30)",
    )

    model_config = {"json_schema_extra": {"example": {"days": 30}}}


class SyncResponse(BaseModel):
    rows_written: int = Field(alias="rowsWritten", description="Data rows written below the header")
    spreadsheet_url: Optional[str] = Field(default=None, alias="spreadsheetUrl")

    model_config = CAMEL_CONFIG


class SheetStatusResponse(BaseModel):
    """Read-only connection/provisioning state for the dashboard."""

    authenticated: bool = Field(description="Google connected (both tokens stored)")
    provisioned: bool = Field(description="Report sheet created")
    spreadsheet_url: Optional[str] = Field(default=None, alias="spreadsheetUrl")
    last_synced_at: Optional[datetime] = Field(default=None, alias="lastSyncedAt")
    auto_sync_enabled: bool = Field(alias="autoSyncEnabled")

    model_config = CAMEL_CONFIG


class ClientSyncResultOut(BaseModel):
    client_id: str = Field(alias="clientId")
    client_name: str = Field(alias="clientName")
    success: bool
    rows_written: Optional[int] = Field(default=None, alias="rowsWritten")
    error_kind: Optional[str] = Field(default=None, alias="errorKind")
    message: Optional[str] = None

    model_config = CAMEL_CONFIG


class BatchSyncResponse(BaseModel):
    """Outcome of one cron batch across all eligible clients."""

    total: int
    success_count: int = Field(alias="successCount")
    failure_count: int = Field(alias="failureCount")
    per_client_results: List[ClientSyncResultOut] = Field(default_factory=list, alias="perClientResults")

    model_config = CAMEL_CONFIG


class ErrorResponse(BaseModel):
    error: str = Field(description="Error kind, e.g. NotProvisionedError")
    message: str


class HealthResponse(BaseModel):
    status: str = Field(description="Health status of the API")

    model_config = {"json_schema_extra": {"example": {"status": "ok"}}}
