"""
Bulk write helpers used by the partner import reconciler.

The upsert helpers flush but never commit: the caller owns the transaction
so a whole batch commits or rolls back together.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy.exc import SQLAlchemyError

from installops.importer.errors import AuditLogWriteError, BulkUpsertError
from installops.models import Client, ImportRunLog, Order, db
from installops.models.base import utcnow

from .prepare import ClientPayload, OrderPayload

logger = logging.getLogger(__name__)


def existing_external_ids(partner_id: int, external_ids: Iterable[str]) -> set[str]:
    """Return the subset of ``external_ids`` that already have an order for the partner."""

    wanted = {external_id for external_id in external_ids if external_id}
    if not wanted:
        return set()
    found: set[str] = set()
    ordered = sorted(wanted)
    # Chunked to stay under SQLite's bound parameter limit.
    for start in range(0, len(ordered), 500):
        chunk = ordered[start : start + 500]
        rows = (
            db.session.query(Order.partner_external_id)
            .filter(Order.partner_id == partner_id, Order.partner_external_id.in_(chunk))
            .all()
        )
        found.update(row[0] for row in rows)
    return found


def bulk_upsert_clients(clients: Sequence[ClientPayload], partner_id: int) -> list[dict[str, Any]]:
    """
    Insert clients whose email is unknown and return ``[{email, client_id}]``.

    Existing clients are matched by normalized email and left untouched; the
    first payload per email wins within the call.
    """

    unique: dict[str, ClientPayload] = {}
    for payload in clients:
        unique.setdefault(payload.email.strip().lower(), payload)
    if not unique:
        return []

    try:
        existing = {
            client.email: client.id
            for client in db.session.query(Client).filter(Client.email.in_(list(unique))).all()
        }
        created: list[Client] = []
        for email, payload in unique.items():
            if email in existing:
                continue
            client = Client(
                email=email,
                full_name=payload.full_name,
                phone=payload.phone,
                address=payload.address,
                postcode=payload.postcode,
                partner_id=partner_id,
            )
            db.session.add(client)
            created.append(client)
        db.session.flush()
    except SQLAlchemyError as exc:
        raise BulkUpsertError(f"Client upsert failed: {exc}") from exc

    existing.update({client.email: client.id for client in created})
    return [{"email": email, "client_id": existing[email]} for email in unique]


def bulk_upsert_orders(orders: Sequence[OrderPayload], *, client_ids: Mapping[str, int]) -> list[dict[str, Any]]:
    """
    Insert or update orders keyed by (partner_id, partner_external_id).

    Updates only touch the fields the payload carries; ``UNSET`` fields keep
    their stored values. Returns ``[{order_id, partner_external_id, was_insert}]``
    in payload order.
    """

    if not orders:
        return []

    try:
        keys = {(payload.partner_id, payload.partner_external_id) for payload in orders}
        partner_ids = {partner_id for partner_id, _ in keys}
        external_ids = [external_id for _, external_id in keys]
        stored = {
            (order.partner_id, order.partner_external_id): order
            for order in db.session.query(Order)
            .filter(Order.partner_id.in_(partner_ids), Order.partner_external_id.in_(external_ids))
            .all()
        }

        outcomes: list[tuple[Order, OrderPayload, bool]] = []
        for payload in orders:
            key = (payload.partner_id, payload.partner_external_id)
            values = payload.column_values()
            order = stored.get(key)
            if order is None:
                client_id = client_ids.get(payload.client_email)
                if client_id is None:
                    raise BulkUpsertError(f"No client id resolved for {payload.client_email}")
                order = Order(
                    partner_id=payload.partner_id,
                    partner_external_id=payload.partner_external_id,
                    client_id=client_id,
                    is_partner_job=True,
                    **values,
                )
                db.session.add(order)
                stored[key] = order
                outcomes.append((order, payload, True))
            else:
                for column, value in values.items():
                    setattr(order, column, value)
                outcomes.append((order, payload, False))
        db.session.flush()
    except SQLAlchemyError as exc:
        raise BulkUpsertError(f"Order upsert failed: {exc}") from exc

    return [
        {"order_id": order.id, "partner_external_id": payload.partner_external_id, "was_insert": was_insert}
        for order, payload, was_insert in outcomes
    ]


def write_import_log(summary: Mapping[str, Any]) -> ImportRunLog:
    """
    Persist the run summary as an :class:`ImportRunLog` row and commit.

    Raises :class:`AuditLogWriteError` when the row cannot be written.
    """

    results = summary.get("results", {})
    details = summary.get("details", {})
    log = ImportRunLog(
        run_id=summary["run_id"],
        partner_id=summary["partner_id"],
        profile_id=summary["profile_id"],
        dry_run=bool(summary.get("dry_run", False)),
        total_rows=int(summary.get("chunk_info", {}).get("total_rows", 0)),
        processed_count=int(results.get("processed", 0)),
        inserted_count=int(results.get("inserted", 0)),
        updated_count=int(results.get("updated", 0)),
        skipped_count=int(results.get("skipped", 0)),
        duplicate_count=int(results.get("duplicates", 0)),
        warning_count=int(results.get("warnings", 0)),
        error_count=int(results.get("errors", 0)),
        warnings=list(details.get("warnings", [])),
        errors=list(details.get("errors", [])),
        skipped_details=list(details.get("skipped", [])),
        chunk_info=dict(summary.get("chunk_info", {})),
        created_by_user_id=summary.get("created_by_user_id"),
        finished_at=utcnow(),
    )
    try:
        db.session.add(log)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(
            "Failed to write import run log",
            extra={"importer_run_id": summary["run_id"], "importer_error": str(exc)},
        )
        raise AuditLogWriteError(f"Failed to write import run log: {exc}") from exc
    return log
