"""
Per-run lookup tables for engineers and partner statuses.

Both tables are plain dictionaries built once when a run starts and dropped
with it, so edits to engineers or profiles take effect on the next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from installops.models import DEFAULT_ORDER_STATUS, Engineer, ImportProfile, db

logger = logging.getLogger(__name__)


def _key(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


@dataclass(frozen=True)
class StatusRule:
    """Internal handling for one partner status."""

    internal_status: str = DEFAULT_ORDER_STATUS
    suppress_scheduling: bool = False
    suppression_reason: str | None = None
    bucket: str | None = None


DEFAULT_STATUS_RULE = StatusRule()


def build_engineer_map(profile: ImportProfile) -> dict[str, int]:
    """
    Map lower-cased engineer identifiers to engineer ids.

    Active engineers are indexed by name and email; the profile's
    ``engineer_mapping_rules`` are applied on top so partner-specific
    nicknames win over coincidental name matches.
    """

    engineers = db.session.query(Engineer).filter(Engineer.is_active.is_(True)).all()
    mapping: dict[str, int] = {}
    by_email: dict[str, int] = {}
    for engineer in engineers:
        if engineer.name:
            mapping.setdefault(_key(engineer.name), engineer.id)
        if engineer.email:
            by_email[_key(engineer.email)] = engineer.id
    mapping.update(by_email)

    for rule in profile.engineer_mapping_rules or []:
        identifier = _key(rule.get("partner_identifier"))
        if not identifier:
            continue
        engineer_id = rule.get("engineer_id")
        if not engineer_id and rule.get("engineer_email"):
            engineer_id = by_email.get(_key(rule["engineer_email"]))
        if not engineer_id:
            logger.warning(
                "Engineer mapping rule does not resolve to an active engineer",
                extra={"importer_profile_id": profile.id, "importer_partner_identifier": identifier},
            )
            continue
        mapping[identifier] = int(engineer_id)
    return mapping


def _rule_from_action(details: Mapping[str, Any]) -> StatusRule:
    actions = details.get("actions") or {}
    return StatusRule(
        internal_status=str(details.get("jms_status") or DEFAULT_ORDER_STATUS),
        suppress_scheduling=bool(actions.get("suppress_scheduling", False)),
        suppression_reason=actions.get("suppression_reason") or None,
        bucket=details.get("bucket") or None,
    )


def build_status_table(profile: ImportProfile) -> dict[str, StatusRule]:
    """
    Map lower-cased partner statuses to :class:`StatusRule`.

    ``status_actions`` are the richest source; ``status_mappings`` fill in
    statuses that have no action entry and ``status_override_rules`` force
    the suppression flag last.
    """

    table: dict[str, StatusRule] = {}
    for status, details in (profile.status_actions or {}).items():
        if isinstance(details, Mapping):
            table[_key(status)] = _rule_from_action(details)

    for status, internal in (profile.status_mappings or {}).items():
        key = _key(status)
        if key and internal and key not in table:
            table[key] = StatusRule(internal_status=str(internal))

    for status, suppress in (profile.status_override_rules or {}).items():
        key = _key(status)
        if not key:
            continue
        base = table.get(key, DEFAULT_STATUS_RULE)
        table[key] = StatusRule(
            internal_status=base.internal_status,
            suppress_scheduling=bool(suppress),
            suppression_reason=base.suppression_reason if suppress else None,
            bucket=base.bucket,
        )
    return table


@dataclass
class RunLookups:
    engineers: dict[str, int] = field(default_factory=dict)
    statuses: dict[str, StatusRule] = field(default_factory=dict)

    @classmethod
    def build(cls, profile: ImportProfile) -> "RunLookups":
        return cls(engineers=build_engineer_map(profile), statuses=build_status_table(profile))

    def resolve_engineer(self, identifier: str | None) -> tuple[int | None, str | None]:
        """Return ``(engineer_id, warning)``; blank identifiers are not warned."""

        key = _key(identifier)
        if not key:
            return None, None
        engineer_id = self.engineers.get(key)
        if engineer_id is None:
            return None, f"Engineer '{identifier}' not found; left unassigned"
        return engineer_id, None

    def resolve_status(self, partner_status: str | None) -> tuple[StatusRule, str | None]:
        """Return ``(rule, warning)``; unmapped statuses fall back to the default status."""

        key = _key(partner_status)
        if not key:
            return DEFAULT_STATUS_RULE, None
        rule = self.statuses.get(key)
        if rule is None:
            return DEFAULT_STATUS_RULE, f"Unmapped partner status '{partner_status}'; defaulted to {DEFAULT_ORDER_STATUS}"
        return rule, None
