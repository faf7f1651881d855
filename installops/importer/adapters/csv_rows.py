"""Inline CSV row source.

Parses CSV text posted with an import request into the same header/rows
shape the Google Sheets source produces.
"""

from __future__ import annotations

import csv
import io

from installops.importer.errors import InvalidImportRequest

from .tabular import SheetFetchResult


class CSVDataError(InvalidImportRequest):
    """Raised when inline CSV text cannot be parsed."""


def has_csv_payload(csv_data: str | None) -> bool:
    return bool(csv_data and csv_data.strip())


def parse_csv_text(csv_data: str) -> SheetFetchResult:
    """
    Parse RFC 4180 CSV text. The first non-blank record is the header row.

    A leading byte-order mark is dropped and fully blank records are skipped;
    row line numbers count CSV records, blank ones included.
    """

    text = csv_data.lstrip("\ufeff")
    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        records = list(reader)
    except csv.Error as exc:
        raise CSVDataError(f"CSV data could not be parsed near line {reader.line_num}: {exc}") from exc

    header_index = next(
        (index for index, record in enumerate(records) if any(cell.strip() for cell in record)),
        None,
    )
    if header_index is None:
        raise CSVDataError("CSV data does not contain a header row.")
    return SheetFetchResult.from_values(records[header_index:], header_line=header_index + 1)
