"""
Turn mapped partner job rows into client and order write payloads.

Every field of :class:`OrderPayload` is either a value (``None`` included,
meaning "write null") or ``UNSET`` meaning "leave the stored value alone".
A field whose column is absent from the sheet is always ``UNSET``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Union

from installops.importer.mapping import PartnerJobRow

from .lookups import RunLookups
from .normalize import (
    UNSET,
    Patch,
    Unset,
    clamp_duration,
    is_valid_email,
    normalize_email,
    normalize_job_type_key,
    normalize_phone,
    parse_amount,
    parse_duration,
    parse_scheduled_date,
)

UNKNOWN_CLIENT_NAME = "Unknown"
PLACEHOLDER_EMAIL_DOMAIN = "import.invalid"

SKIP_MISSING_EXTERNAL_ID = "missing_external_id"
SKIP_MISSING_CONTACT = "missing_name_and_email"
SKIP_ALREADY_IMPORTED = "already_imported"
SKIP_DUPLICATE_IN_SHEET = "duplicate_in_sheet"

_PLACEHOLDER_TOKEN_RE = re.compile(r"[^a-z0-9._-]+")

OptionalText = Union[str, None, Unset]


@dataclass(frozen=True)
class RowIssue:
    """A warning or error attached to one sheet row."""

    row_number: int
    message: str
    external_id: str | None = None
    field: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"row": self.row_number, "message": self.message}
        if self.external_id:
            payload["external_id"] = self.external_id
        if self.field:
            payload["field"] = self.field
        return payload


@dataclass(frozen=True)
class RowSkip:
    row_number: int
    reason: str
    external_id: str | None = None
    client_email: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_number,
            "external_id": self.external_id,
            "client_email": self.client_email,
            "reason": self.reason,
        }


@dataclass
class ClientPayload:
    email: str
    full_name: str
    phone: str | None = None
    address: str | None = None
    postcode: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "full_name": self.full_name,
            "phone": self.phone,
            "address": self.address,
            "postcode": self.postcode,
        }


@dataclass
class OrderPayload:
    partner_id: int
    partner_external_id: str
    client_email: str
    status: OptionalText = UNSET
    partner_status: OptionalText = UNSET
    scheduled_install_date: Union[datetime, None, Unset] = UNSET
    engineer_id: Union[int, None, Unset] = UNSET
    total_amount: Patch = UNSET
    job_type: OptionalText = UNSET
    estimated_duration_hours: Patch = UNSET
    scheduling_suppressed: Union[bool, Unset] = UNSET
    scheduling_suppression_reason: OptionalText = UNSET
    sub_partner: OptionalText = UNSET
    partner_external_url: OptionalText = UNSET
    job_address: OptionalText = UNSET
    postcode: OptionalText = UNSET
    partner_metadata: Union[dict, Unset] = UNSET

    KEY_FIELDS = ("partner_id", "partner_external_id", "client_email")

    def column_values(self) -> dict[str, Any]:
        """Order column values to write, with ``UNSET`` fields left out."""

        values: dict[str, Any] = {}
        for item in fields(self):
            if item.name in self.KEY_FIELDS:
                continue
            value = getattr(self, item.name)
            if value is UNSET:
                continue
            values[item.name] = value
        return values


@dataclass
class PreparedRow:
    row_number: int
    external_id: str
    client: ClientPayload
    order: OrderPayload
    warnings: list[RowIssue] = field(default_factory=list)


@dataclass(frozen=True)
class PrepareContext:
    partner_id: int
    partner_slug: str
    run_id: str
    lookups: RunLookups
    job_duration_defaults: Mapping[str, Any] = field(default_factory=dict)


def placeholder_email(external_id: str, partner_slug: str) -> str:
    """Deterministic, undeliverable email for a client row that has a name but no email."""

    local = _PLACEHOLDER_TOKEN_RE.sub("-", external_id.strip().lower()).strip("-.") or "job"
    return f"{local}@{partner_slug}.{PLACEHOLDER_EMAIL_DOMAIN}"


def _column(row: PartnerJobRow, name: str) -> Any:
    if not row.has_column(name):
        return UNSET
    return getattr(row, name)


def _default_duration(job_type: str | None, defaults: Mapping[str, Any]) -> Patch:
    if not job_type or not defaults:
        return UNSET
    configured = defaults.get(normalize_job_type_key(job_type))
    if configured is None:
        return UNSET
    return clamp_duration(Decimal(str(configured)))


def prepare_row(row: PartnerJobRow, context: PrepareContext) -> PreparedRow | RowSkip:
    """
    Validate and normalize one mapped row.

    Returns a :class:`RowSkip` for rows without an external id or without
    both a client name and email. Cell-level problems become warnings on the
    returned :class:`PreparedRow` and never reject the row.
    """

    external_id = row.partner_external_id
    if not external_id:
        return RowSkip(row.row_number, SKIP_MISSING_EXTERNAL_ID, client_email=normalize_email(row.client_email))

    warnings: list[RowIssue] = []

    def warn(field_name: str, message: str) -> None:
        warnings.append(RowIssue(row.row_number, message, external_id=external_id, field=field_name))

    email = normalize_email(row.client_email)
    if email and not is_valid_email(email):
        warn("client_email", f"Invalid email '{row.client_email}'; treated as missing")
        email = None
    name = row.client_name

    if not email and not name:
        return RowSkip(row.row_number, SKIP_MISSING_CONTACT, external_id=external_id)
    if not email:
        email = placeholder_email(external_id, context.partner_slug)
        warn("client_email", f"No client email; using placeholder {email}")

    phone, phone_warning = normalize_phone(row.client_phone)
    if phone_warning:
        warn("client_phone", phone_warning)

    client = ClientPayload(
        email=email,
        full_name=name or UNKNOWN_CLIENT_NAME,
        phone=phone,
        address=row.job_address,
        postcode=row.postcode,
    )

    order = OrderPayload(
        partner_id=context.partner_id,
        partner_external_id=external_id,
        client_email=email,
        job_type=_column(row, "job_type"),
        sub_partner=_column(row, "sub_partner"),
        partner_external_url=_column(row, "partner_external_url"),
        job_address=_column(row, "job_address"),
        postcode=_column(row, "postcode"),
    )

    if row.has_column("partner_status"):
        rule, status_warning = context.lookups.resolve_status(row.partner_status)
        if status_warning:
            warn("partner_status", status_warning)
        order.status = rule.internal_status
        order.partner_status = row.partner_status
        order.scheduling_suppressed = rule.suppress_scheduling
        order.scheduling_suppression_reason = rule.suppression_reason if rule.suppress_scheduling else None

    if row.has_column("scheduled_date"):
        order.scheduled_install_date = parse_scheduled_date(row.scheduled_date)

    if row.has_column("engineer"):
        engineer_id, engineer_warning = context.lookups.resolve_engineer(row.engineer)
        if engineer_warning:
            warn("engineer", engineer_warning)
        order.engineer_id = engineer_id

    if row.has_column("total_amount"):
        amount, amount_warning = parse_amount(row.total_amount)
        if amount_warning:
            warn("total_amount", amount_warning)
        order.total_amount = amount

    duration: Patch = UNSET
    if row.estimated_duration:
        duration, duration_warning = parse_duration(row.estimated_duration)
        if duration_warning:
            warn("estimated_duration", duration_warning)
    else:
        duration = _default_duration(row.job_type, context.job_duration_defaults)
    order.estimated_duration_hours = duration

    order.partner_metadata = {
        "import_run_id": context.run_id,
        "original_status": row.partner_status,
        "source_row": row.row_number,
    }

    return PreparedRow(
        row_number=row.row_number,
        external_id=external_id,
        client=client,
        order=order,
        warnings=warnings,
    )
