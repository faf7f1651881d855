"""
Removal of imported partner jobs.

Deleting a partner's imported orders, optionally only those written by one
import run, undoes an import. Clients are kept since they may own other
orders.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy.exc import SQLAlchemyError

from installops.importer.errors import InvalidImportRequest, JobDeletionError, PartnerNotFound
from installops.importer.metrics import record_jobs_deleted
from installops.models import Order, Partner, db

from .reconcile import _as_bool, _as_int

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 200
ORDER_ID_SAMPLE_SIZE = 5


@dataclass(frozen=True)
class DeleteJobsRequest:
    partner_id: int
    import_run_id: str | None = None
    dry_run: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "DeleteJobsRequest":
        if not isinstance(payload, Mapping):
            raise InvalidImportRequest("Request body must be a JSON object.")
        raw_partner_id = payload.get("partner_id")
        if raw_partner_id is None or (isinstance(raw_partner_id, str) and not raw_partner_id.strip()):
            raise InvalidImportRequest("partner_id is required")

        raw_run_id = payload.get("import_run_id")
        if raw_run_id is not None and not isinstance(raw_run_id, str):
            raise InvalidImportRequest("import_run_id must be a string.")
        return cls(
            partner_id=_as_int(raw_partner_id, "partner_id", minimum=1),
            import_run_id=(raw_run_id or "").strip() or None,
            dry_run=_as_bool(payload.get("dry_run"), "dry_run"),
        )


@dataclass
class DeleteJobsResult:
    partner_id: int
    import_run_id: str | None
    dry_run: bool
    stats: dict[str, int] = field(default_factory=lambda: {"orders": 0})
    order_ids_sample: list[int] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.stats["orders"]:
            return "No matching orders found"
        return "Dry run complete" if self.dry_run else "Jobs deleted successfully"

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "message": self.message,
            "partner_id": self.partner_id,
            "import_run_id": self.import_run_id,
            "dry_run": self.dry_run,
            "stats": dict(self.stats),
        }
        if self.dry_run:
            payload["order_ids_sample"] = list(self.order_ids_sample)
        return payload


def _target_order_ids(partner_id: int, import_run_id: str | None) -> list[int]:
    query = db.session.query(Order.id).filter(Order.partner_id == partner_id, Order.is_partner_job.is_(True))
    if import_run_id:
        query = query.filter(Order.partner_metadata["import_run_id"].as_string() == import_run_id)
    return [row[0] for row in query.order_by(Order.id).all()]


def delete_partner_jobs(
    request: DeleteJobsRequest,
    *,
    triggered_by_user_id: int | None = None,
    batch_size: int = DELETE_BATCH_SIZE,
) -> DeleteJobsResult:
    """
    Delete the partner's imported orders, or only count them on a dry run.

    All deletes commit together; a database failure rolls every batch back
    and raises :class:`JobDeletionError`.
    """

    partner = db.session.get(Partner, request.partner_id)
    if partner is None:
        raise PartnerNotFound(f"Partner {request.partner_id} not found")

    order_ids = _target_order_ids(partner.id, request.import_run_id)
    result = DeleteJobsResult(
        partner_id=partner.id,
        import_run_id=request.import_run_id,
        dry_run=request.dry_run,
        stats={"orders": len(order_ids)},
        order_ids_sample=order_ids[:ORDER_ID_SAMPLE_SIZE],
    )
    log_extra = {
        "importer_partner_id": partner.id,
        "importer_run_id": request.import_run_id,
        "importer_dry_run": request.dry_run,
        "importer_order_count": len(order_ids),
        "user_id": triggered_by_user_id,
    }
    if request.dry_run or not order_ids:
        logger.info("Partner job deletion counted", extra=log_extra)
        record_jobs_deleted(count=len(order_ids), dry_run=request.dry_run)
        return result

    try:
        for start in range(0, len(order_ids), batch_size):
            batch = order_ids[start : start + batch_size]
            db.session.query(Order).filter(Order.id.in_(batch)).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Partner job deletion failed", extra={**log_extra, "importer_error": str(exc)})
        raise JobDeletionError(f"Failed to delete orders: {exc}") from exc

    record_jobs_deleted(count=len(order_ids), dry_run=False)
    logger.info("Partner jobs deleted", extra=log_extra)
    return result
