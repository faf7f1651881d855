"""
Importer Celery tasks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from celery import shared_task

from installops.importer.errors import PartnerImportError
from installops.importer.pipeline import PartnerImportRequest, run_partner_import
from installops.models import db

logger = logging.getLogger(__name__)


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="importer.partner_import", bind=True)
def partner_import(self, *, payload: dict[str, Any], triggered_by_user_id: int | None = None) -> dict[str, Any]:
    """
    Run the partner import reconciler on the worker.

    ``payload`` has the same shape as the ``POST /importer/partner-import``
    body. Import errors are returned as ``{success: false, error}`` so the
    caller can read them from the result backend.
    """
    try:
        request = PartnerImportRequest.from_payload(payload)
        result = run_partner_import(request, triggered_by_user_id=triggered_by_user_id)
    except PartnerImportError as exc:
        db.session.rollback()
        logger.warning(
            "Queued partner import failed",
            extra={
                "importer_task_id": self.request.id,
                "importer_profile_id": (payload or {}).get("profile_id"),
                "importer_error": exc.message,
            },
        )
        return {"success": False, "error": exc.message, "status_code": int(exc.status_code)}

    summary = result.as_dict()
    summary["task_id"] = self.request.id
    return summary
