"""Canonical partner job contract.

Partner sheets use arbitrary column headers. Each canonical field below lists
the header aliases recognized when an import profile does not map the field
explicitly. Headers that resolve to no canonical field are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping, Tuple

Normalizer = Callable[[object | None], str | None]


def _strip_to_none(value: object | None) -> str | None:
    if value is None:
        return None
    token = str(value).strip()
    return token or None


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical partner job field."""

    name: str
    description: str
    aliases: Tuple[str, ...] = ()
    normalizer: Normalizer = _strip_to_none

    def headers(self) -> Tuple[str, ...]:
        """Return the canonical header plus aliases for matching."""

        return (self.name, *self.aliases)


PARTNER_JOB_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="partner_external_id",
        description="Partner's own job reference; unique per partner.",
        aliases=("job_id", "job_ref", "job_reference", "external_id", "partner_job_id", "order_id", "job_number"),
    ),
    FieldSpec(
        name="partner_status",
        description="Job status as written by the partner.",
        aliases=("status", "job_status", "partner_job_status"),
    ),
    FieldSpec(
        name="client_name",
        description="Customer full name.",
        aliases=("customer_name", "name", "full_name", "customer"),
    ),
    FieldSpec(
        name="client_email",
        description="Customer email address; clients are matched on it.",
        aliases=("customer_email", "email", "email_address", "customer_email_address"),
    ),
    FieldSpec(
        name="client_phone",
        description="Customer phone number (UK).",
        aliases=("customer_phone", "phone", "phone_number", "mobile", "telephone", "contact_number"),
    ),
    FieldSpec(
        name="job_address",
        description="Installation address.",
        aliases=("address", "customer_address", "customer_address_line_1", "installation_address", "site_address"),
    ),
    FieldSpec(
        name="postcode",
        description="Installation postcode.",
        aliases=("post_code", "postal_code", "customer_address_post_code", "customer_postcode", "zip", "zip_code"),
    ),
    FieldSpec(
        name="scheduled_date",
        description="Booked installation date.",
        aliases=("install_date", "installation_date", "scheduled_install_date", "booking_date", "date"),
    ),
    FieldSpec(
        name="engineer",
        description="Engineer name or email as the partner knows them.",
        aliases=("engineer_name", "engineer_email", "assigned_engineer", "assigned_engineers", "installer"),
    ),
    FieldSpec(
        name="total_amount",
        description="Job value in pounds.",
        aliases=("amount", "quote_amount", "price", "job_value", "value", "total"),
    ),
    FieldSpec(
        name="job_type",
        description="Job type label; keys the default duration table.",
        aliases=("type", "job_category", "service_type", "install_type", "installation_type"),
    ),
    FieldSpec(
        name="estimated_duration",
        description="Estimated job duration (decimal hours, H:MM or 'Xh Ym').",
        aliases=("duration", "job_duration", "estimated_duration_hours", "scheduled_duration_hours", "hours"),
    ),
    FieldSpec(
        name="sub_partner",
        description="Dealer or sub-partner that sold the job.",
        aliases=("partner_account", "dealer", "sub_contractor", "subpartner"),
    ),
    FieldSpec(
        name="partner_external_url",
        description="Link to the job in the partner's system.",
        aliases=("job_url", "url", "link", "partner_url"),
    ),
)


def get_partner_job_field_specs() -> Tuple[FieldSpec, ...]:
    """Return the canonical partner job field specifications."""

    return PARTNER_JOB_FIELDS


def get_partner_job_field_names() -> Tuple[str, ...]:
    """Return all canonical field names, in contract order."""

    return tuple(field.name for field in PARTNER_JOB_FIELDS)


def get_partner_job_alias_map() -> Mapping[str, str]:
    """Map normalized header tokens to canonical names (includes aliases)."""

    mapping: dict[str, str] = {}
    for field in PARTNER_JOB_FIELDS:
        for header in field.headers():
            mapping.setdefault(normalize_header(header), field.name)
    return mapping


def normalize_header(header: str) -> str:
    """Normalize a sheet header for comparison (case/space/underscore agnostic)."""

    token = header.strip().lstrip("\ufeff").lower()
    for char in (" ", "-", "."):
        token = token.replace(char, "_")
    return token
