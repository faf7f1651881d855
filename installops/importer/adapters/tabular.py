"""Shared result type for row sources (inline CSV, Google Sheets)."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Sequence


def _cell(value: object | None) -> str:
    if value is None:
        return ""
    return str(value)


def pad_row(row: Sequence[object | None], width: int) -> tuple[str, ...]:
    """Return ``row`` as strings, padded or truncated to ``width`` cells."""

    cells = tuple(_cell(value) for value in row[:width])
    if len(cells) < width:
        cells = cells + ("",) * (width - len(cells))
    return cells


def row_is_blank(row: Iterable[str]) -> bool:
    return all(not cell.strip() for cell in row)


@dataclass(frozen=True)
class SheetFetchResult:
    """Header list plus data rows, all as strings.

    ``total_rows`` counts every data row in the source, while ``rows`` may be
    a window of them starting at ``start_row`` (0-based, header excluded).
    ``line_numbers`` holds the 1-based source line of each row in ``rows``;
    blank source lines are dropped from ``rows`` but still counted there.
    """

    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]
    total_rows: int
    start_row: int = 0
    success: bool = True
    line_numbers: tuple[int, ...] = ()

    @classmethod
    def from_values(
        cls, values: Sequence[Sequence[object | None]], *, header_line: int = 1
    ) -> "SheetFetchResult":
        """Build a result from a grid whose first row is the header row at ``header_line``."""

        if not values:
            return cls(headers=(), rows=(), total_rows=0)
        headers = tuple(_cell(value).strip() for value in values[0])
        width = len(headers)
        numbered = [
            (header_line + index, pad_row(row, width))
            for index, row in enumerate(values[1:], start=1)
        ]
        numbered = [(line, row) for line, row in numbered if not row_is_blank(row)]
        return cls(
            headers=headers,
            rows=tuple(row for _, row in numbered),
            total_rows=len(numbered),
            line_numbers=tuple(line for line, _ in numbered),
        )

    def window(self, start_row: int = 0, max_rows: int | None = None) -> "SheetFetchResult":
        """Return the slice of data rows ``[start_row, start_row + max_rows)``."""

        start = max(0, start_row)
        stop = None if max_rows is None else start + max(0, max_rows)
        return replace(
            self,
            rows=self.rows[start:stop],
            line_numbers=self.line_numbers[start:stop],
            start_row=start,
        )

    def line_number(self, offset: int) -> int:
        """Source line of ``rows[offset]``, assuming no blank lines when untracked."""

        if offset < len(self.line_numbers):
            return self.line_numbers[offset]
        return self.start_row + offset + 2

    def as_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "headers": list(self.headers),
            "rows": [list(row) for row in self.rows],
            "total_rows": self.total_rows,
        }
