"""Row sources for the partner importer."""

from .csv_rows import CSVDataError, has_csv_payload, parse_csv_text
from .google_sheets import (
    GoogleSheetsClient,
    ServiceAccountCredentials,
    SheetsReadiness,
    check_sheets_readiness,
    load_service_account,
)
from .tabular import SheetFetchResult

__all__ = [
    "CSVDataError",
    "GoogleSheetsClient",
    "ServiceAccountCredentials",
    "SheetFetchResult",
    "SheetsReadiness",
    "check_sheets_readiness",
    "has_csv_payload",
    "load_service_account",
    "parse_csv_text",
]
