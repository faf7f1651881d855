"""
Read-only comparison of a partner sheet against the orders already imported.

Used before (or after) a large import to spot duplicate or blank job ids and
jobs that never made it into the database.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func

from installops.importer.mapping import map_row, resolve_column_mapping
from installops.models import Client, Order, db
from installops.utils.importer import get_chunk_limits

from .bulk import existing_external_ids
from .normalize import is_valid_email, normalize_email
from .reconcile import fetch_source_rows, load_active_profile

logger = logging.getLogger(__name__)


@dataclass
class ImportAuditResult:
    sheet_analysis: dict[str, Any] = field(default_factory=dict)
    database_analysis: dict[str, Any] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "sheet_analysis": dict(self.sheet_analysis),
            "database_analysis": dict(self.database_analysis),
            "recommendations": list(self.recommendations),
        }


def _duplicates(values: list[str]) -> list[str]:
    return sorted(value for value, count in Counter(values).items() if count > 1)


def audit_partner_import(profile_id: int, *, csv_data: str | None = None, sheets_client=None) -> ImportAuditResult:
    """
    Analyse the profile's sheet (or ``csv_data``) without writing anything.
    """

    profile, partner = load_active_profile(profile_id)
    _, rows_limit = get_chunk_limits()
    source = fetch_source_rows(profile, csv_data=csv_data, max_rows=rows_limit, sheets_client=sheets_client)
    mapping = resolve_column_mapping(source.headers, profile.column_mappings)

    job_ids: list[str] = []
    emails: list[str] = []
    blank_job_ids = blank_emails = invalid_emails = blank_names = blank_contacts = 0
    for offset, cells in enumerate(source.rows):
        row = map_row(source.line_number(offset), cells, mapping)
        email = normalize_email(row.client_email)
        if email and not is_valid_email(email):
            invalid_emails += 1
            email = None
        if row.partner_external_id:
            job_ids.append(row.partner_external_id)
        else:
            blank_job_ids += 1
        if email:
            emails.append(email)
        else:
            blank_emails += 1
        if not row.client_name:
            blank_names += 1
        if not email and not row.client_name:
            blank_contacts += 1

    unique_job_ids = sorted(set(job_ids))
    duplicate_job_ids = _duplicates(job_ids)
    duplicate_emails = _duplicates(emails)

    existing = existing_external_ids(partner.id, unique_job_ids)
    existing_job_ids = sorted(existing)
    missing_job_ids = [job_id for job_id in unique_job_ids if job_id not in existing]

    total_orders = db.session.query(func.count(Order.id)).filter(Order.partner_id == partner.id).scalar() or 0
    total_clients = db.session.query(func.count(Client.id)).filter(Client.partner_id == partner.id).scalar() or 0

    recommendations: list[str] = []
    if not mapping.has("partner_external_id"):
        recommendations.append("No job id column was found. Check the profile's column mappings.")
    if duplicate_job_ids:
        recommendations.append(
            f"Found {len(duplicate_job_ids)} duplicate Job IDs in sheet. Only the first row of each will be imported."
        )
    if blank_job_ids:
        recommendations.append(f"Found {blank_job_ids} rows with blank Job IDs. These will be skipped during import.")
    if blank_contacts:
        recommendations.append(
            f"Found {blank_contacts} rows with neither a name nor an email. These will be skipped during import."
        )
    if blank_emails - blank_contacts > 0:
        recommendations.append(
            f"Found {blank_emails - blank_contacts} rows with blank or invalid emails. These will get placeholder emails."
        )
    if missing_job_ids:
        recommendations.append(
            f"{len(missing_job_ids)} Job IDs from sheet are missing from database. Run an import to add them."
        )

    result = ImportAuditResult(
        sheet_analysis={
            "total_rows": source.total_rows,
            "analysed_rows": len(source.rows),
            "total_job_ids": len(job_ids),
            "unique_job_ids": len(unique_job_ids),
            "duplicate_job_ids": duplicate_job_ids,
            "blank_job_ids": blank_job_ids,
            "total_emails": len(emails),
            "unique_emails": len(set(emails)),
            "duplicate_emails": duplicate_emails,
            "blank_emails": blank_emails,
            "invalid_emails": invalid_emails,
            "blank_names": blank_names,
            "column_mapping": mapping.as_dict(),
        },
        database_analysis={
            "existing_job_ids_count": len(existing_job_ids),
            "existing_job_ids": existing_job_ids,
            "missing_job_ids_count": len(missing_job_ids),
            "missing_job_ids": missing_job_ids,
            "total_orders_for_partner": int(total_orders),
            "total_clients_for_partner": int(total_clients),
        },
        recommendations=recommendations,
    )
    logger.info(
        "Partner import audit complete",
        extra={
            "importer_profile_id": profile.id,
            "importer_sheet_rows": len(source.rows),
            "importer_missing_job_ids": len(missing_job_ids),
        },
    )
    return result
