"""Column mapping from partner sheet headers to the typed partner job row."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from installops.importer.contracts import (
    get_partner_job_alias_map,
    get_partner_job_field_names,
    get_partner_job_field_specs,
    normalize_header,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ColumnMapping",
    "PartnerJobRow",
    "map_row",
    "resolve_column_mapping",
]


@dataclass(frozen=True)
class ColumnMapping:
    """Canonical field -> column index for one header row."""

    indexes: Mapping[str, int]
    sources: Mapping[str, str]
    missing_columns: tuple[str, ...] = ()
    ignored_headers: tuple[str, ...] = ()

    def has(self, field_name: str) -> bool:
        return field_name in self.indexes

    def as_dict(self) -> dict[str, object]:
        return {
            "resolved": dict(self.sources),
            "missing_columns": list(self.missing_columns),
            "ignored_headers": list(self.ignored_headers),
        }


@dataclass(frozen=True)
class PartnerJobRow:
    """One sheet row mapped onto canonical fields (trimmed strings or None).

    ``mapped_fields`` lists the fields that had a column in the sheet; a field
    without a column is absent, which is different from a blank cell.
    """

    row_number: int
    partner_external_id: str | None = None
    partner_status: str | None = None
    client_name: str | None = None
    client_email: str | None = None
    client_phone: str | None = None
    job_address: str | None = None
    postcode: str | None = None
    scheduled_date: str | None = None
    engineer: str | None = None
    total_amount: str | None = None
    job_type: str | None = None
    estimated_duration: str | None = None
    sub_partner: str | None = None
    partner_external_url: str | None = None
    mapped_fields: frozenset[str] = field(default_factory=frozenset)

    def has_column(self, field_name: str) -> bool:
        return field_name in self.mapped_fields


def _canonical_field(key: str, alias_map: Mapping[str, str]) -> str | None:
    return alias_map.get(normalize_header(key))


def _find_header(headers: Sequence[str], wanted: str) -> int | None:
    for index, header in enumerate(headers):
        if header == wanted:
            return index
    wanted_token = normalize_header(wanted)
    for index, header in enumerate(headers):
        if normalize_header(header) == wanted_token:
            return index
    return None


def resolve_column_mapping(headers: Sequence[str], column_mappings: Mapping[str, str] | None = None) -> ColumnMapping:
    """
    Resolve canonical fields to header positions.

    Profile mappings win (exact header, then case/spacing-insensitive). Fields
    the profile does not map, or maps to a header that is not present, fall
    back to the default header aliases. Headers matching no field are ignored.
    """

    alias_map = get_partner_job_alias_map()
    indexes: dict[str, int] = {}
    missing: list[str] = []

    for key, wanted_header in (column_mappings or {}).items():
        if not wanted_header:
            continue
        canonical = _canonical_field(str(key), alias_map)
        if canonical is None:
            logger.warning("Import profile maps unknown field %r; ignoring.", key)
            continue
        index = _find_header(headers, str(wanted_header))
        if index is None:
            missing.append(str(wanted_header))
            continue
        indexes.setdefault(canonical, index)

    claimed = set(indexes.values())
    for index, header in enumerate(headers):
        if index in claimed:
            continue
        canonical = alias_map.get(normalize_header(header))
        if canonical is None or canonical in indexes:
            continue
        indexes[canonical] = index
        claimed.add(index)

    ignored = tuple(header for index, header in enumerate(headers) if index not in claimed and header)
    sources = {name: headers[index] for name, index in indexes.items()}
    return ColumnMapping(
        indexes=indexes,
        sources=sources,
        missing_columns=tuple(missing),
        ignored_headers=ignored,
    )


def map_row(row_number: int, cells: Sequence[str], mapping: ColumnMapping) -> PartnerJobRow:
    """Project ``cells`` onto a :class:`PartnerJobRow` using ``mapping``."""

    specs = {spec.name: spec for spec in get_partner_job_field_specs()}
    values: dict[str, str | None] = {}
    for name in get_partner_job_field_names():
        index = mapping.indexes.get(name)
        if index is None:
            continue
        raw = cells[index] if index < len(cells) else None
        values[name] = specs[name].normalizer(raw)
    return PartnerJobRow(row_number=row_number, mapped_fields=frozenset(mapping.indexes), **values)
