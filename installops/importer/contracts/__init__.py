"""Canonical ingest contract helpers for importer sources."""

from __future__ import annotations

from .partner_job import (
    PARTNER_JOB_FIELDS,
    FieldSpec,
    get_partner_job_alias_map,
    get_partner_job_field_names,
    get_partner_job_field_specs,
    normalize_header,
)

__all__ = [
    "FieldSpec",
    "PARTNER_JOB_FIELDS",
    "get_partner_job_alias_map",
    "get_partner_job_field_names",
    "get_partner_job_field_specs",
    "normalize_header",
]
