"""
Importer blueprint endpoints: partner import, audit, imported job deletion,
sheet preview, run history and health checks.
"""

from __future__ import annotations

import time
from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import NoResultFound

from config.monitoring import ImporterMonitoring
from installops.importer.adapters import GoogleSheetsClient, check_sheets_readiness
from installops.importer.errors import InvalidImportRequest, PartnerImportError
from installops.importer.pipeline import (
    ImportRunService,
    DeleteJobsRequest,
    PartnerImportRequest,
    RunFilters,
    audit_partner_import,
    delete_partner_jobs,
    run_partner_import,
)
from installops.models import db
from installops.utils.importer import get_chunk_limits, is_importer_enabled

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")

DEFAULT_PREVIEW_SHEET = "Sheet1"
DEFAULT_PREVIEW_ROWS = 10

_run_service = ImportRunService()


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"success": False, "error": message}), status


def _ensure_importer_enabled_api():
    if not is_importer_enabled(current_app):
        return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)
    return None


def _ensure_authenticated_api():
    if not current_user.is_authenticated:
        return _json_error("Authentication required.", HTTPStatus.UNAUTHORIZED)
    return None


def _ensure_admin_api():
    if not getattr(current_user, "is_admin", False):
        return _json_error("Admin access required.", HTTPStatus.FORBIDDEN)
    return None


def _guard_admin_api():
    """Run the enabled, authenticated and admin checks in order."""
    for check in (_ensure_importer_enabled_api, _ensure_authenticated_api, _ensure_admin_api):
        response = check()
        if response:
            return response
    return None


@importer_blueprint.errorhandler(PartnerImportError)
def _handle_partner_import_error(exc: PartnerImportError):
    db.session.rollback()
    current_app.logger.warning(
        "Partner import request failed",
        extra={"importer_error": exc.message, "importer_status_code": int(exc.status_code)},
    )
    return _json_error(exc.message, exc.status_code)


@importer_blueprint.get("/health")
def importer_healthcheck():
    """
    Lightweight health endpoint with the importer flag and Google Sheets readiness.
    """
    importer_state = current_app.extensions.get("importer", {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": is_importer_enabled(current_app),
                "worker_enabled": importer_state.get("worker_enabled", False),
                "google_sheets": check_sheets_readiness().as_dict(),
            }
        ),
        HTTPStatus.OK,
    )


@importer_blueprint.get("/worker_health")
def importer_worker_health():
    """
    Validate importer worker availability via the heartbeat task.
    """
    guard_response = _guard_admin_api()
    if guard_response:
        return guard_response

    importer_state = current_app.extensions.get("importer", {})
    worker_enabled = importer_state.get("worker_enabled", False)
    try:
        timeout_seconds = float(request.args.get("timeout", 5))
    except ValueError:
        return _json_error("timeout must be a number of seconds.", HTTPStatus.BAD_REQUEST)
    if not 0 < timeout_seconds <= 60:
        return _json_error("timeout must be between 0 and 60 seconds.", HTTPStatus.BAD_REQUEST)

    payload = {
        "importer_enabled": True,
        "worker_enabled": worker_enabled,
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }

    if not worker_enabled:
        payload["status"] = "disabled"
        payload["message"] = "Worker flag disabled; start the worker or set IMPORTER_WORKER_ENABLED=true."
        return jsonify(payload), HTTPStatus.OK

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR

    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR

    result = task.apply_async()
    try:
        payload["status"] = "ok"
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        return jsonify(payload), HTTPStatus.OK
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), HTTPStatus.GATEWAY_TIMEOUT
    except Exception as exc:  # pragma: no cover - defensive logging
        current_app.logger.exception("Importer worker health check failed.", exc_info=exc)
        payload["status"] = "error"
        payload["error"] = str(exc)
        return jsonify(payload), HTTPStatus.INTERNAL_SERVER_ERROR


@importer_blueprint.post("/partner-import")
def partner_import():
    """Run the partner import reconciler for one profile."""
    guard_response = _guard_admin_api()
    if guard_response:
        return guard_response

    start_time = time.perf_counter()
    try:
        import_request = PartnerImportRequest.from_payload(request.get_json(silent=True))
        result = run_partner_import(import_request, triggered_by_user_id=current_user.id)
    except PartnerImportError as exc:
        ImporterMonitoring.record_partner_import(
            duration_seconds=time.perf_counter() - start_time, status=str(int(exc.status_code))
        )
        raise
    except Exception as exc:  # pragma: no cover - defensive logging
        db.session.rollback()
        current_app.logger.exception("Partner import failed unexpectedly.", exc_info=exc)
        ImporterMonitoring.record_partner_import(duration_seconds=time.perf_counter() - start_time, status="error")
        return _json_error(f"Import failed: {exc}", HTTPStatus.INTERNAL_SERVER_ERROR)

    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_partner_import(duration_seconds=duration, status="success")
    payload = result.as_dict()
    current_app.logger.info(
        "Partner import completed via API",
        extra={
            "importer_run_id": result.run_id,
            "importer_profile_id": result.profile_id,
            "importer_dry_run": result.dry_run,
            "importer_results": payload["results"],
            "importer_response_time_ms": round(duration * 1000, 2),
            "user_id": current_user.id,
        },
    )
    return jsonify(payload), HTTPStatus.OK


@importer_blueprint.post("/partner-import/audit")
def partner_import_audit():
    """Compare a partner sheet with the orders already imported."""
    guard_response = _guard_admin_api()
    if guard_response:
        return guard_response

    body = request.get_json(silent=True) or {}
    seed = PartnerImportRequest.from_payload({"profile_id": body.get("profile_id"), "csv_data": body.get("csv_data")})
    result = audit_partner_import(seed.profile_id, csv_data=seed.csv_data)
    return jsonify({"success": True, "audit_results": result.as_dict()}), HTTPStatus.OK


@importer_blueprint.post("/partner-jobs/delete")
def partner_jobs_delete():
    """Delete a partner's imported orders, optionally only those from one run."""
    guard_response = _guard_admin_api()
    if guard_response:
        return guard_response

    delete_request = DeleteJobsRequest.from_payload(request.get_json(silent=True))
    result = delete_partner_jobs(delete_request, triggered_by_user_id=current_user.id)
    return jsonify(result.as_dict()), HTTPStatus.OK


@importer_blueprint.post("/sheets/preview")
def sheets_preview():
    """Fetch headers and a window of rows from a Google Sheet."""
    guard_response = _guard_admin_api()
    if guard_response:
        return guard_response

    body = request.get_json(silent=True) or {}
    gsheet_id = str(body.get("gsheet_id") or "").strip()
    if not gsheet_id:
        raise InvalidImportRequest("Missing required parameter: gsheet_id")
    sheet_name = str(body.get("sheet_name") or DEFAULT_PREVIEW_SHEET).strip()

    _, rows_limit = get_chunk_limits()
    try:
        start_row = max(0, int(body.get("start_row") or 0))
        max_rows = int(body.get("max_rows") or body.get("preview_rows") or DEFAULT_PREVIEW_ROWS)
    except (TypeError, ValueError) as exc:
        raise InvalidImportRequest("start_row and max_rows must be integers.") from exc
    max_rows = min(max(1, max_rows), rows_limit)

    client = GoogleSheetsClient.from_app_config()
    result = client.fetch_rows(
        gsheet_id,
        sheet_name,
        start_row=start_row,
        max_rows=max_rows,
        sheet_row_limit=current_app.config.get("IMPORTER_SHEETS_MAX_ROWS"),
    )
    return jsonify(result.as_dict()), HTTPStatus.OK


def _parse_filters() -> RunFilters:
    raw = request.args
    return RunFilters.coerce(
        page=raw.get("page"),
        page_size=raw.get("per_page") or raw.get("page_size"),
        sort=raw.get("sort"),
        partner_id=raw.get("partner_id"),
        profile_id=raw.get("profile_id"),
        created_from=raw.get("created_from"),
        created_to=raw.get("created_to"),
        include_dry_runs=raw.get("include_dry_runs"),
    )


@importer_blueprint.get("/runs")
def importer_runs_list():
    guard_response = _guard_admin_api()
    if guard_response:
        return guard_response

    try:
        filters = _parse_filters()
    except ValueError as exc:
        ImporterMonitoring.record_runs_list(duration_seconds=0.0, status="invalid_request", result_count=0)
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    start_time = time.perf_counter()
    try:
        result = _run_service.list_runs(filters)
    except Exception as exc:  # pragma: no cover - defensive logging
        current_app.logger.exception("Importer runs list failed.", exc_info=exc)
        ImporterMonitoring.record_runs_list(
            duration_seconds=time.perf_counter() - start_time, status="error", result_count=0
        )
        return _json_error("Failed to load runs.", HTTPStatus.INTERNAL_SERVER_ERROR)

    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_runs_list(duration_seconds=duration, status="success", result_count=len(result.items))

    response_payload = {
        "runs": [item.as_dict() for item in result.items],
        "total": result.total,
        "page": result.page,
        "page_size": result.page_size,
        "total_pages": result.total_pages,
        "filters": {
            "page": filters.page,
            "page_size": filters.page_size,
            "sort": filters.sort,
            "partner_id": filters.partner_id,
            "profile_id": filters.profile_id,
            "created_from": filters.created_from.isoformat() if filters.created_from else None,
            "created_to": filters.created_to.isoformat() if filters.created_to else None,
            "include_dry_runs": filters.include_dry_runs,
        },
    }

    current_app.logger.info(
        "Importer runs list retrieved",
        extra={
            "importer_run_count": len(result.items),
            "importer_total_runs": result.total,
            "importer_response_time_ms": round(duration * 1000, 2),
            "user_id": current_user.id,
        },
    )
    return jsonify(response_payload), HTTPStatus.OK


@importer_blueprint.get("/runs/<run_id>")
def importer_run_detail(run_id: str):
    guard_response = _guard_admin_api()
    if guard_response:
        return guard_response

    start_time = time.perf_counter()
    try:
        payload = _run_service.get_run_detail(run_id)
    except NoResultFound:
        ImporterMonitoring.record_runs_detail(duration_seconds=time.perf_counter() - start_time, status="not_found")
        return _json_error(f"Import run {run_id} not found.", HTTPStatus.NOT_FOUND)

    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_runs_detail(duration_seconds=duration, status="success")
    current_app.logger.info(
        "Importer run detail accessed",
        extra={
            "importer_run_id": run_id,
            "importer_response_time_ms": round(duration * 1000, 2),
            "user_id": current_user.id,
        },
    )
    return jsonify(payload), HTTPStatus.OK
