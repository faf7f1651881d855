"""Partner import pipeline helpers."""

from __future__ import annotations

from .audit import ImportAuditResult, audit_partner_import
from .bulk import bulk_upsert_clients, bulk_upsert_orders, existing_external_ids, write_import_log
from .cleanup import DeleteJobsRequest, DeleteJobsResult, delete_partner_jobs
from .lookups import RunLookups, StatusRule
from .normalize import UNSET, Patch, Unset
from .prepare import ClientPayload, OrderPayload, PreparedRow, RowIssue, RowSkip, placeholder_email, prepare_row
from .reconcile import (
    PartnerImportRequest,
    PartnerImportResult,
    fetch_source_rows,
    generate_run_id,
    load_active_profile,
    run_partner_import,
)
from .run_service import ImportRunService, RunFilters, RunListResult, RunSummary

__all__ = [
    "ClientPayload",
    "DeleteJobsRequest",
    "DeleteJobsResult",
    "ImportAuditResult",
    "ImportRunService",
    "OrderPayload",
    "PartnerImportRequest",
    "PartnerImportResult",
    "Patch",
    "PreparedRow",
    "RowIssue",
    "RowSkip",
    "RunFilters",
    "RunListResult",
    "RunLookups",
    "RunSummary",
    "StatusRule",
    "UNSET",
    "Unset",
    "audit_partner_import",
    "bulk_upsert_clients",
    "bulk_upsert_orders",
    "delete_partner_jobs",
    "existing_external_ids",
    "fetch_source_rows",
    "generate_run_id",
    "load_active_profile",
    "placeholder_email",
    "prepare_row",
    "run_partner_import",
    "write_import_log",
]
