"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_sheets_ready_gauge = Gauge(
    "importer_google_sheets_ready",
    "Whether Google Sheets credentials are configured and parseable (1) or not (0).",
)
_sheet_fetch_counter = Counter(
    "importer_sheet_fetches_total",
    "Google Sheets fetches by outcome.",
    ["outcome"],
)
_run_counter = Counter(
    "importer_partner_runs_total",
    "Partner import runs by outcome and mode.",
    ["outcome", "mode"],
)
_row_counter = Counter(
    "importer_partner_rows_total",
    "Partner import rows by result.",
    ["result"],
)
_batch_counter = Counter(
    "importer_partner_batches_total",
    "Bulk upsert batches by status.",
    ["status"],
)
_batch_duration = Histogram(
    "importer_partner_batch_duration_seconds",
    "Duration of one bulk client+order upsert batch in seconds.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)
_deleted_orders_counter = Counter(
    "importer_partner_orders_deleted_total",
    "Imported partner orders deleted, by mode.",
    ["mode"],
)


def record_sheets_readiness(ready: bool) -> None:
    """Set the Google Sheets readiness gauge."""

    _sheets_ready_gauge.set(1 if ready else 0)


def record_sheet_fetch(outcome: Literal["success", "failure"]) -> None:
    _sheet_fetch_counter.labels(outcome=outcome).inc()


def record_import_run(*, outcome: Literal["success", "failure"], dry_run: bool) -> None:
    _run_counter.labels(outcome=outcome, mode="dry_run" if dry_run else "write").inc()


def record_row_results(*, inserted: int, updated: int, skipped: int, errors: int) -> None:
    """Increment row counters for a finished run."""

    for result, count in (("inserted", inserted), ("updated", updated), ("skipped", skipped), ("error", errors)):
        if count:
            _row_counter.labels(result=result).inc(count)


def record_batch(*, status: Literal["success", "failure"], duration_seconds: float) -> None:
    """Capture metrics for one bulk upsert batch."""

    _batch_counter.labels(status=status).inc()
    _batch_duration.observe(max(duration_seconds, 0.0))


def record_jobs_deleted(*, count: int, dry_run: bool) -> None:
    """Count imported orders removed (or that a dry run would remove)."""

    if count:
        _deleted_orders_counter.labels(mode="dry_run" if dry_run else "write").inc(count)
