"""
Partner import reconciler.

Reads a partner's job rows (inline CSV or the profile's Google Sheet), maps
them onto clients and orders, and writes them in independently committed
batches. Every processed row ends up in exactly one of the inserted, updated,
skipped or errors lists; warnings are reported alongside.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Sequence

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from installops.importer.adapters import GoogleSheetsClient, SheetFetchResult, has_csv_payload, parse_csv_text
from installops.importer.errors import (
    AuditLogWriteError,
    BulkUpsertError,
    InvalidImportRequest,
    PartnerImportError,
    ProfileInactive,
    ProfileNotFound,
)
from installops.importer.mapping import map_row, resolve_column_mapping
from installops.importer.metrics import record_batch, record_import_run, record_row_results
from installops.models import ImportProfile, Partner, db
from installops.models.importer.schema import SOURCE_TYPE_GSHEET
from installops.utils.importer import get_batch_size, get_chunk_limits

from .bulk import bulk_upsert_clients, bulk_upsert_orders, existing_external_ids, write_import_log
from .lookups import RunLookups
from .prepare import (
    SKIP_ALREADY_IMPORTED,
    SKIP_DUPLICATE_IN_SHEET,
    PrepareContext,
    PreparedRow,
    RowIssue,
    RowSkip,
    prepare_row,
)

logger = logging.getLogger(__name__)

NO_DATA_SOURCE_MESSAGE = "No data source available - provide csv_data or configure Google Sheets in the profile"
_RUN_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_run_id(now_ms: int | None = None) -> str:
    """Return ``import_<epoch ms>_<9 random base36 chars>``."""

    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_RUN_ID_ALPHABET) for _ in range(9))
    return f"import_{stamp}_{suffix}"


def _as_bool(value: Any, name: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"", "0", "false", "no", "off"}:
            return False
    raise InvalidImportRequest(f"{name} must be a boolean.")


def _as_int(value: Any, name: str, *, minimum: int, maximum: int | None = None) -> int:
    if isinstance(value, bool):
        raise InvalidImportRequest(f"{name} must be an integer.")
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidImportRequest(f"{name} must be an integer.") from exc
    if maximum is None and number < minimum:
        raise InvalidImportRequest(f"{name} must be >= {minimum}.")
    if maximum is not None and not minimum <= number <= maximum:
        raise InvalidImportRequest(f"{name} must be between {minimum} and {maximum}.")
    return number


@dataclass(frozen=True)
class PartnerImportRequest:
    """Validated parameters of one reconciler run."""

    profile_id: int
    dry_run: bool = False
    csv_data: str | None = None
    start_row: int = 0
    max_rows: int | None = None
    job_ids_filter: tuple[str, ...] | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "PartnerImportRequest":
        """
        Build a request from a decoded JSON body, raising
        :class:`InvalidImportRequest` for missing or malformed parameters.
        """

        if not isinstance(payload, Mapping):
            raise InvalidImportRequest("Request body must be a JSON object.")

        raw_profile_id = payload.get("profile_id")
        if raw_profile_id is None or (isinstance(raw_profile_id, str) and not raw_profile_id.strip()):
            raise InvalidImportRequest("Missing required parameter: profile_id")
        profile_id = _as_int(raw_profile_id, "profile_id", minimum=1)

        csv_data = payload.get("csv_data")
        if csv_data is not None and not isinstance(csv_data, str):
            raise InvalidImportRequest("csv_data must be a string.")

        default_rows, rows_limit = get_chunk_limits()
        start_row = _as_int(payload.get("start_row") or 0, "start_row", minimum=0)
        raw_max_rows = payload.get("max_rows")
        if raw_max_rows is None or raw_max_rows == "":
            max_rows = default_rows
        else:
            max_rows = _as_int(raw_max_rows, "max_rows", minimum=1, maximum=rows_limit)

        raw_filter = payload.get("job_ids_filter")
        job_ids_filter: tuple[str, ...] | None = None
        if raw_filter is not None:
            if not isinstance(raw_filter, (list, tuple)):
                raise InvalidImportRequest("job_ids_filter must be a list of job ids.")
            cleaned = tuple(str(job_id).strip() for job_id in raw_filter if str(job_id).strip())
            job_ids_filter = cleaned or None

        return cls(
            profile_id=profile_id,
            dry_run=_as_bool(payload.get("dry_run"), "dry_run"),
            csv_data=csv_data if has_csv_payload(csv_data) else None,
            start_row=start_row,
            max_rows=max_rows,
            job_ids_filter=job_ids_filter,
        )


@dataclass
class PartnerImportResult:
    run_id: str
    dry_run: bool
    partner_id: int
    partner_name: str
    profile_id: int
    chunk_info: dict[str, Any] = field(default_factory=dict)
    processed: int = 0
    duplicates: int = 0
    inserted: list[dict[str, Any]] = field(default_factory=list)
    updated: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    performance_metrics: dict[str, Any] | None = None

    @property
    def counts(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "inserted": len(self.inserted),
            "updated": len(self.updated),
            "skipped": len(self.skipped),
            "duplicates": self.duplicates,
            "warnings": len(self.warnings),
            "errors": len(self.errors),
        }

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "run_id": self.run_id,
            "dry_run": self.dry_run,
            "profile_id": self.profile_id,
            "partner": {"id": self.partner_id, "name": self.partner_name},
            "chunk_info": dict(self.chunk_info),
            "results": self.counts,
            "details": {
                "inserted": list(self.inserted),
                "updated": list(self.updated),
                "skipped": list(self.skipped),
                "warnings": list(self.warnings),
                "errors": list(self.errors),
            },
        }
        if self.performance_metrics is not None:
            payload["performance_metrics"] = dict(self.performance_metrics)
        return payload


class _StageTimer:
    def __init__(self) -> None:
        self._started = time.perf_counter()
        self.stages: dict[str, float] = {}

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - started) * 1000
            self.stages[f"{name}_ms"] = round(self.stages.get(f"{name}_ms", 0.0) + elapsed, 2)

    def as_dict(self, *, rows: int, batches: int) -> dict[str, Any]:
        total_ms = (time.perf_counter() - self._started) * 1000
        return {
            "total_ms": round(total_ms, 2),
            **self.stages,
            "batch_count": batches,
            "rows_per_second": round(rows / (total_ms / 1000), 2) if total_ms > 0 and rows else 0.0,
        }


def load_active_profile(profile_id: int) -> tuple[ImportProfile, Partner]:
    """Load the profile and its partner, refusing missing or inactive ones."""

    profile = db.session.get(ImportProfile, profile_id)
    if profile is None:
        raise ProfileNotFound(f"Import profile {profile_id} not found")
    partner = profile.partner
    if partner is None:
        raise ProfileNotFound(f"Partner for import profile {profile_id} not found")
    if not profile.is_active:
        raise ProfileInactive(f"Import profile '{profile.name}' is inactive")
    if not partner.is_active:
        raise ProfileInactive(f"Partner '{partner.name}' is inactive")
    return profile, partner


def fetch_source_rows(
    profile: ImportProfile,
    *,
    csv_data: str | None,
    start_row: int = 0,
    max_rows: int | None = None,
    sheets_client: GoogleSheetsClient | None = None,
) -> SheetFetchResult:
    """Return the requested data-row window from inline CSV or the profile's sheet."""

    if has_csv_payload(csv_data):
        return parse_csv_text(csv_data).window(start_row, max_rows)

    if profile.source_type == SOURCE_TYPE_GSHEET and profile.gsheet_id and profile.gsheet_sheet_name:
        client = sheets_client or GoogleSheetsClient.from_app_config()
        return client.fetch_rows(
            profile.gsheet_id,
            profile.gsheet_sheet_name,
            start_row=start_row,
            max_rows=max_rows,
            sheet_row_limit=current_app.config.get("IMPORTER_SHEETS_MAX_ROWS"),
        )
    raise InvalidImportRequest(NO_DATA_SOURCE_MESSAGE)


def _row_detail(prepared: PreparedRow, *, order_id: int | None = None) -> dict[str, Any]:
    return {
        "row": prepared.row_number,
        "external_id": prepared.external_id,
        "client_email": prepared.client.email,
        "order_id": order_id,
    }


def _write_batches(
    candidates: Sequence[PreparedRow],
    result: PartnerImportResult,
    *,
    partner_id: int,
    batch_size: int,
    dry_run: bool,
) -> int:
    """Upsert ``candidates`` batch by batch. Returns the number of batches."""

    batch_count = 0
    for start in range(0, len(candidates), batch_size):
        batch = candidates[start : start + batch_size]
        batch_count += 1
        if dry_run:
            result.inserted.extend(_row_detail(prepared) for prepared in batch)
            continue

        started = time.perf_counter()
        try:
            client_rows = bulk_upsert_clients([prepared.client for prepared in batch], partner_id)
            client_ids = {row["email"]: row["client_id"] for row in client_rows}
            outcomes = bulk_upsert_orders([prepared.order for prepared in batch], client_ids=client_ids)
            db.session.commit()
        except (BulkUpsertError, SQLAlchemyError) as exc:
            db.session.rollback()
            record_batch(status="failure", duration_seconds=time.perf_counter() - started)
            message = exc.message if isinstance(exc, PartnerImportError) else str(exc)
            logger.error(
                "Partner import batch failed",
                extra={
                    "importer_run_id": result.run_id,
                    "importer_batch_number": batch_count,
                    "importer_batch_rows": len(batch),
                    "importer_error": message,
                },
            )
            result.errors.extend(
                dict(
                    RowIssue(
                        prepared.row_number,
                        f"Batch {batch_count} failed: {message}",
                        external_id=prepared.external_id,
                    ).as_dict(),
                    batch=batch_count,
                )
                for prepared in batch
            )
            continue

        record_batch(status="success", duration_seconds=time.perf_counter() - started)
        for prepared, outcome in zip(batch, outcomes):
            detail = _row_detail(prepared, order_id=outcome["order_id"])
            if outcome["was_insert"]:
                result.inserted.append(detail)
            else:
                result.updated.append(detail)
    return batch_count


def run_partner_import(
    request: PartnerImportRequest,
    *,
    triggered_by_user_id: int | None = None,
    sheets_client: GoogleSheetsClient | None = None,
) -> PartnerImportResult:
    """
    Execute one partner import run and return its result.

    Raises a :class:`PartnerImportError` subclass for problems that abort the
    whole run (unknown or inactive profile, no data source, sheet fetch
    failures). Batch write failures do not raise; they are reported as row
    errors. A run log that cannot be saved is reported as a warning.
    """

    try:
        return _run(request, triggered_by_user_id=triggered_by_user_id, sheets_client=sheets_client)
    except PartnerImportError:
        record_import_run(outcome="failure", dry_run=request.dry_run)
        raise


def _run(
    request: PartnerImportRequest,
    *,
    triggered_by_user_id: int | None,
    sheets_client: GoogleSheetsClient | None,
) -> PartnerImportResult:
    timer = _StageTimer()
    with timer.stage("load_profile"):
        profile, partner = load_active_profile(request.profile_id)

    run_id = generate_run_id()
    result = PartnerImportResult(
        run_id=run_id,
        dry_run=request.dry_run,
        partner_id=partner.id,
        partner_name=partner.name,
        profile_id=profile.id,
    )
    logger.info(
        "Partner import started",
        extra={
            "importer_run_id": run_id,
            "importer_profile_id": profile.id,
            "importer_partner_id": partner.id,
            "importer_dry_run": request.dry_run,
            "importer_source": "csv" if request.csv_data else profile.source_type,
        },
    )

    with timer.stage("fetch"):
        source = fetch_source_rows(
            profile,
            csv_data=request.csv_data,
            start_row=request.start_row,
            max_rows=request.max_rows,
            sheets_client=sheets_client,
        )

    end_row = source.start_row + len(source.rows)
    has_more = end_row < source.total_rows
    result.chunk_info = {
        "start_row": source.start_row,
        "end_row": end_row,
        "processed_count": 0,
        "total_rows": source.total_rows,
        "has_more": has_more,
        "next_start_row": end_row if has_more else None,
        "filtered_out": 0,
    }

    if not source.rows:
        logger.info("Partner import found no data rows", extra={"importer_run_id": run_id})
        record_import_run(outcome="success", dry_run=request.dry_run)
        return result

    with timer.stage("lookups"):
        lookups = RunLookups.build(profile)
        context = PrepareContext(
            partner_id=partner.id,
            partner_slug=partner.slug,
            run_id=run_id,
            lookups=lookups,
            job_duration_defaults=profile.job_duration_defaults or {},
        )
        column_mapping = resolve_column_mapping(source.headers, profile.column_mappings)
    if not column_mapping.has("partner_external_id"):
        logger.warning(
            "No job id column found in partner sheet",
            extra={"importer_run_id": run_id, "importer_headers": list(source.headers)},
        )

    job_filter = set(request.job_ids_filter) if request.job_ids_filter else None
    filtered_out = 0
    candidates: list[PreparedRow] = []
    seen_external_ids: set[str] = set()

    with timer.stage("mapping"):
        for offset, cells in enumerate(source.rows):
            row_number = source.line_number(offset)
            try:
                row = map_row(row_number, cells, column_mapping)
                if job_filter is not None and row.partner_external_id not in job_filter:
                    filtered_out += 1
                    continue
                prepared = prepare_row(row, context)
            except Exception as exc:  # noqa: BLE001
                logger.exception(
                    "Failed to map partner import row",
                    extra={"importer_run_id": run_id, "importer_row": row_number},
                )
                result.processed += 1
                result.errors.append(RowIssue(row_number, f"Row mapping failed: {exc}").as_dict())
                continue

            result.processed += 1
            if isinstance(prepared, RowSkip):
                result.skipped.append(prepared.as_dict())
                continue
            if prepared.external_id in seen_external_ids:
                result.duplicates += 1
                result.skipped.append(
                    RowSkip(
                        prepared.row_number,
                        SKIP_DUPLICATE_IN_SHEET,
                        external_id=prepared.external_id,
                        client_email=prepared.client.email,
                    ).as_dict()
                )
                continue
            seen_external_ids.add(prepared.external_id)
            result.warnings.extend(issue.as_dict() for issue in prepared.warnings)
            candidates.append(prepared)

        already_imported = existing_external_ids(partner.id, seen_external_ids)

    to_write: list[PreparedRow] = []
    for prepared in candidates:
        if prepared.external_id in already_imported:
            result.skipped.append(
                RowSkip(
                    prepared.row_number,
                    SKIP_ALREADY_IMPORTED,
                    external_id=prepared.external_id,
                    client_email=prepared.client.email,
                ).as_dict()
            )
        else:
            to_write.append(prepared)

    with timer.stage("write"):
        batch_count = _write_batches(
            to_write,
            result,
            partner_id=partner.id,
            batch_size=get_batch_size(),
            dry_run=request.dry_run,
        )

    result.chunk_info["processed_count"] = result.processed
    result.chunk_info["filtered_out"] = filtered_out
    if current_app.config.get("IMPORTER_INCLUDE_PERFORMANCE_METRICS", True):
        result.performance_metrics = timer.as_dict(rows=result.processed, batches=batch_count)

    if not request.dry_run:
        with timer.stage("audit_log"):
            try:
                write_import_log(
                    {
                        **result.as_dict(),
                        "partner_id": partner.id,
                        "profile_id": profile.id,
                        "created_by_user_id": triggered_by_user_id,
                    }
                )
            except AuditLogWriteError as exc:
                # Batches are already committed, so the caller still gets the outcome.
                logger.error(
                    "Partner import finished without a run log",
                    extra={"importer_run_id": run_id, "importer_error": exc.message},
                )
                result.warnings.append({"row": None, "message": f"Run log was not saved: {exc.message}"})

    counts = result.counts
    record_import_run(outcome="success", dry_run=request.dry_run)
    record_row_results(
        inserted=counts["inserted"],
        updated=counts["updated"],
        skipped=counts["skipped"],
        errors=counts["errors"],
    )
    logger.info(
        "Partner import finished",
        extra={"importer_run_id": run_id, "importer_counts": counts},
    )
    return result
