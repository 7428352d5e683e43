"""Fixed layout of the client P&L report spreadsheet.

WHAT:
    Tab name, header row, data ranges, status tokens and tint colours.

WHY:
    The provisioner writes conditional-format rules that match the status
    token verbatim, and the sync engine writes that token into the status
    column. Both read the vocabulary from here so they can never drift.

REFERENCES:
    - pnlsync/services/sheet_provisioner.py (header + rules)
    - pnlsync/services/sheet_sync_service.py (data region)
    - pnlsync/services/metrics_aggregator.py (StatusTier)
"""

import enum


class StatusTier(str, enum.Enum):
    """Margin performance against the client's target margin."""
    green = "GREEN"
    yellow = "YELLOW"
    red = "RED"


SHEET_TAB_TITLE = "Daily P&L"

# Column order is part of the external contract
HEADERS = [
    "Date",
    "Revenue",
    "Orders",
    "AOV",
    "Ad Spend",
    "ROAS",
    "CPA",
    "Margin ($)",
    "Margin (%)",
    "Status",
]

COLUMN_COUNT = len(HEADERS)
LAST_COLUMN = chr(ord("A") + COLUMN_COUNT - 1)  # "J"
STATUS_COLUMN_INDEX = HEADERS.index("Status")
STATUS_COLUMN = chr(ord("A") + STATUS_COLUMN_INDEX)

HEADER_RANGE = f"'{SHEET_TAB_TITLE}'!A1:{LAST_COLUMN}1"
DATA_RANGE = f"'{SHEET_TAB_TITLE}'!A2:{LAST_COLUMN}"
DATA_START = f"'{SHEET_TAB_TITLE}'!A2"

STATUS_TOKENS = {
    StatusTier.green: "Good",
    StatusTier.yellow: "Warning",
    StatusTier.red: "Critical",
}

# Row tints applied by conditional formatting, keyed by tier
STATUS_TINTS = {
    StatusTier.green: {"red": 0.72, "green": 0.88, "blue": 0.8},
    StatusTier.yellow: {"red": 1.0, "green": 0.95, "blue": 0.8},
    StatusTier.red: {"red": 0.96, "green": 0.8, "blue": 0.8},
}

HEADER_BACKGROUND = {"red": 0.2, "green": 0.2, "blue": 0.2}
HEADER_FOREGROUND = {"red": 1.0, "green": 1.0, "blue": 1.0}

UNATTAINABLE_DISPLAY = "N/A"
