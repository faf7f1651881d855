"""Loading import profiles from YAML files.

Profiles are normally edited in the admin UI; YAML files let operators seed
or version them alongside deployments (``flask importer load-profile``).
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from installops.importer.contracts import get_partner_job_alias_map, normalize_header
from installops.importer.pipeline.normalize import MAX_DURATION_HOURS, normalize_job_type_key
from installops.models import Partner, db
from installops.models.importer.schema import SOURCE_TYPE_GSHEET, SOURCE_TYPES, ImportProfile

SOURCE_TYPE_ALIASES = {"google_sheets": SOURCE_TYPE_GSHEET, "google_sheet": SOURCE_TYPE_GSHEET, "sheets": SOURCE_TYPE_GSHEET}


class MappingLoadError(RuntimeError):
    """Raised when a profile specification cannot be loaded or validated."""


@dataclass(frozen=True)
class ProfileSpec:
    name: str
    partner_name: str
    partner_slug: str
    source_type: str
    gsheet_id: str | None
    gsheet_sheet_name: str | None
    is_active: bool
    column_mappings: Mapping[str, str]
    status_mappings: Mapping[str, str]
    status_actions: Mapping[str, Any]
    status_override_rules: Mapping[str, bool]
    engineer_mapping_rules: Sequence[Mapping[str, Any]]
    job_duration_defaults: Mapping[str, float]
    checksum: str
    path: Path | None = field(default=None, compare=False)


def _require_mapping(raw: Any, label: str) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise MappingLoadError(f"'{label}' must be a mapping, got {type(raw).__name__}.")
    return dict(raw)


def _validate_column_mappings(raw: Any) -> dict[str, str]:
    alias_map = get_partner_job_alias_map()
    resolved: dict[str, str] = {}
    for key, header in _require_mapping(raw, "column_mappings").items():
        canonical = alias_map.get(normalize_header(str(key)))
        if canonical is None:
            raise MappingLoadError(f"Unknown field '{key}' in column_mappings.")
        if canonical in resolved:
            raise MappingLoadError(f"Field '{canonical}' is mapped more than once.")
        if header is None or not str(header).strip():
            continue
        resolved[canonical] = str(header).strip()
    return resolved


def _validate_status_actions(raw: Any) -> dict[str, Any]:
    actions = _require_mapping(raw, "status_actions")
    for status, details in actions.items():
        if not isinstance(details, Mapping):
            raise MappingLoadError(f"status_actions['{status}'] must be a mapping.")
        if "actions" in details and not isinstance(details["actions"], Mapping):
            raise MappingLoadError(f"status_actions['{status}'].actions must be a mapping.")
    return actions


def _validate_engineer_rules(raw: Any) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MappingLoadError("'engineer_mapping_rules' must be a list.")
    rules: list[dict[str, Any]] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            raise MappingLoadError(f"Engineer mapping rule must be a mapping, got {entry!r}")
        identifier = str(entry.get("partner_identifier") or "").strip()
        if not identifier:
            raise MappingLoadError(f"Engineer mapping rule missing 'partner_identifier': {entry!r}")
        if not entry.get("engineer_id") and not entry.get("engineer_email"):
            raise MappingLoadError(f"Engineer mapping rule for '{identifier}' needs engineer_id or engineer_email.")
        rules.append(dict(entry, partner_identifier=identifier))
    return rules


def _validate_duration_defaults(raw: Any) -> dict[str, float]:
    defaults: dict[str, float] = {}
    for job_type, hours in _require_mapping(raw, "job_duration_defaults").items():
        key = normalize_job_type_key(job_type)
        if not key:
            raise MappingLoadError(f"Invalid job type key {job_type!r} in job_duration_defaults.")
        try:
            value = Decimal(str(hours))
        except InvalidOperation as exc:
            raise MappingLoadError(f"Duration for '{job_type}' must be numeric, got {hours!r}.") from exc
        if value <= 0 or value > MAX_DURATION_HOURS:
            raise MappingLoadError(f"Duration for '{job_type}' must be between 0 and {MAX_DURATION_HOURS} hours.")
        defaults[key] = float(value)
    return defaults


def _compute_checksum(raw: Mapping[str, Any]) -> str:
    encoded = json.dumps(raw, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def parse_profile_spec(raw: Mapping[str, Any], *, path: Path | None = None) -> ProfileSpec:
    """Validate an already-parsed profile document."""

    if not isinstance(raw, Mapping):
        raise MappingLoadError("Profile document must be a mapping.")
    try:
        name = str(raw["name"]).strip()
        partner = raw["partner"]
    except KeyError as exc:
        raise MappingLoadError(f"Missing required profile attribute: {exc}") from exc
    if not name:
        raise MappingLoadError("Profile name cannot be empty.")

    if isinstance(partner, Mapping):
        partner_name = str(partner.get("name") or "").strip()
        partner_slug = str(partner.get("slug") or "").strip().lower()
    else:
        partner_name = str(partner).strip()
        partner_slug = ""
    if not partner_name:
        raise MappingLoadError("Profile partner name cannot be empty.")
    if not partner_slug:
        partner_slug = "-".join(partner_name.lower().split())

    raw_source = str(raw.get("source_type") or "csv").strip().lower()
    source_type = SOURCE_TYPE_ALIASES.get(raw_source, raw_source)
    if source_type not in SOURCE_TYPES:
        raise MappingLoadError(f"Unsupported source_type '{raw_source}'. Expected one of: {', '.join(SOURCE_TYPES)}.")

    gsheet_id = str(raw.get("gsheet_id") or "").strip() or None
    gsheet_sheet_name = str(raw.get("gsheet_sheet_name") or "").strip() or None
    if source_type == SOURCE_TYPE_GSHEET and not (gsheet_id and gsheet_sheet_name):
        raise MappingLoadError("Google Sheets profiles require gsheet_id and gsheet_sheet_name.")

    override_rules = {
        str(status): bool(flag) for status, flag in _require_mapping(raw.get("status_override_rules"), "status_override_rules").items()
    }
    status_mappings = {
        str(status): str(internal)
        for status, internal in _require_mapping(raw.get("status_mappings"), "status_mappings").items()
        if internal
    }

    return ProfileSpec(
        name=name,
        partner_name=partner_name,
        partner_slug=partner_slug,
        source_type=source_type,
        gsheet_id=gsheet_id,
        gsheet_sheet_name=gsheet_sheet_name,
        is_active=bool(raw.get("is_active", True)),
        column_mappings=_validate_column_mappings(raw.get("column_mappings")),
        status_mappings=status_mappings,
        status_actions=_validate_status_actions(raw.get("status_actions")),
        status_override_rules=override_rules,
        engineer_mapping_rules=tuple(_validate_engineer_rules(raw.get("engineer_mapping_rules"))),
        job_duration_defaults=_validate_duration_defaults(raw.get("job_duration_defaults")),
        checksum=_compute_checksum(raw),
        path=path,
    )


def load_profile_spec(path: str | Path) -> ProfileSpec:
    """
    Load and validate a YAML import profile specification.
    """

    path = Path(path)
    if not path.exists():
        raise MappingLoadError(f"Profile file not found at {path}")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise MappingLoadError(f"Failed to parse profile YAML at {path}: {exc}") from exc
    return parse_profile_spec(raw, path=path)


def apply_profile_spec(spec: ProfileSpec) -> tuple[ImportProfile, bool]:
    """
    Create or update the partner and import profile described by ``spec``.

    Partners are matched by slug and profiles by (partner, name). Returns the
    profile and whether it was newly created. Commits the session.
    """

    partner = Partner.query.filter_by(slug=spec.partner_slug).one_or_none()
    if partner is None:
        partner = Partner(name=spec.partner_name, slug=spec.partner_slug, is_active=True)
        db.session.add(partner)
        db.session.flush()

    profile = ImportProfile.query.filter_by(partner_id=partner.id, name=spec.name).one_or_none()
    created = profile is None
    if created:
        profile = ImportProfile(partner_id=partner.id, name=spec.name)
        db.session.add(profile)

    profile.source_type = spec.source_type
    profile.gsheet_id = spec.gsheet_id
    profile.gsheet_sheet_name = spec.gsheet_sheet_name
    profile.is_active = spec.is_active
    profile.column_mappings = dict(spec.column_mappings)
    profile.status_mappings = dict(spec.status_mappings)
    profile.status_actions = dict(spec.status_actions)
    profile.status_override_rules = dict(spec.status_override_rules)
    profile.engineer_mapping_rules = [dict(rule) for rule in spec.engineer_mapping_rules]
    profile.job_duration_defaults = dict(spec.job_duration_defaults)
    db.session.commit()
    return profile, created
