"""
Service helpers for partner import run history: filtering, pagination and
serialization of :class:`ImportRunLog` rows.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, time, timezone
from typing import Any, Mapping

from sqlalchemy import and_
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from installops.models import ImportRunLog, User, db

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100
DEFAULT_SORT = "-created_at"

VALID_SORT_FIELDS = {
    "id": ImportRunLog.id,
    "created_at": ImportRunLog.created_at,
    "finished_at": ImportRunLog.finished_at,
    "partner_id": ImportRunLog.partner_id,
    "profile_id": ImportRunLog.profile_id,
    "error_count": ImportRunLog.error_count,
}


@dataclass(frozen=True)
class RunFilters:
    """Canonical set of filter options applied to run history queries."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    sort: str = DEFAULT_SORT
    partner_id: int | None = None
    profile_id: int | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    include_dry_runs: bool = True

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        sort: str | None = None,
        partner_id: int | str | None = None,
        profile_id: int | str | None = None,
        created_from: str | datetime | None = None,
        created_to: str | datetime | None = None,
        include_dry_runs: str | bool | None = None,
    ) -> "RunFilters":
        """
        Coerce mixed user input into a validated ``RunFilters`` instance.
        """

        resolved_page = _coerce_positive_int(page, fallback=DEFAULT_PAGE)
        resolved_size = min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)

        resolved_sort = sort or DEFAULT_SORT
        sort_key = resolved_sort.lstrip("-")
        if sort_key not in VALID_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{sort_key}'.")

        resolved_from = _coerce_datetime(created_from)
        resolved_to = _coerce_datetime(created_to, end_of_day=True)
        if resolved_from and resolved_to and resolved_from > resolved_to:
            raise ValueError("created_from must be before created_to.")

        return cls(
            page=resolved_page,
            page_size=resolved_size,
            sort=resolved_sort,
            partner_id=_coerce_optional_id(partner_id, "partner_id"),
            profile_id=_coerce_optional_id(profile_id, "profile_id"),
            created_from=resolved_from,
            created_to=resolved_to,
            include_dry_runs=_coerce_bool(include_dry_runs, default=True),
        )


@dataclass(slots=True)
class RunSummary:
    """Summarized representation of an import run log."""

    run_id: str
    partner_id: int
    partner_name: str | None
    profile_id: int
    profile_name: str | None
    dry_run: bool
    created_at: datetime | None
    finished_at: datetime | None
    total_rows: int
    processed: int
    inserted: int
    updated: int
    skipped: int
    duplicates: int
    warnings: int
    errors: int
    created_by: Mapping[str, Any] | None

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("created_at", "finished_at"):
            value = payload[key]
            payload[key] = value.isoformat() if value else None
        return payload


@dataclass(slots=True)
class RunListResult:
    """Paginated result set for import runs."""

    items: list[RunSummary]
    total: int
    page: int
    page_size: int
    total_pages: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "items": [item.as_dict() for item in self.items],
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
        }


class ImportRunService:
    """Facade for querying import run logs with consistent filtering semantics."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def list_runs(self, filters: RunFilters) -> RunListResult:
        query = self._apply_filters(self.session.query(ImportRunLog), filters)

        total = query.count()
        if total == 0:
            return RunListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        rows = (
            query.order_by(_resolve_sort_expression(filters.sort), ImportRunLog.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        total_pages = (total + filters.page_size - 1) // filters.page_size
        return RunListResult(
            items=[self.summarize(run) for run in rows],
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            total_pages=total_pages,
        )

    def get_run(self, run_id: str) -> ImportRunLog:
        run = self.session.query(ImportRunLog).filter(ImportRunLog.run_id == run_id).one_or_none()
        if run is None:
            raise NoResultFound(f"Import run {run_id} not found.")
        return run

    def get_run_detail(self, run_id: str) -> dict[str, Any]:
        """Summary fields plus the stored warning, error and skip lists."""

        run = self.get_run(run_id)
        payload = self.summarize(run).as_dict()
        payload.update(
            {
                "chunk_info": dict(run.chunk_info or {}),
                "details": {
                    "warnings": list(run.warnings or []),
                    "errors": list(run.errors or []),
                    "skipped": list(run.skipped_details or []),
                },
            }
        )
        return payload

    def summarize(self, run: ImportRunLog) -> RunSummary:
        created_by = None
        if run.created_by_user_id:
            user: User | None = self.session.get(User, run.created_by_user_id)
            if user:
                created_by = {"id": user.id, "email": user.email, "display_name": user.full_name or user.email}

        return RunSummary(
            run_id=run.run_id,
            partner_id=run.partner_id,
            partner_name=run.partner.name if run.partner else None,
            profile_id=run.profile_id,
            profile_name=run.profile.name if run.profile else None,
            dry_run=bool(run.dry_run),
            created_at=run.created_at,
            finished_at=run.finished_at,
            total_rows=run.total_rows or 0,
            processed=run.processed_count or 0,
            inserted=run.inserted_count or 0,
            updated=run.updated_count or 0,
            skipped=run.skipped_count or 0,
            duplicates=run.duplicate_count or 0,
            warnings=run.warning_count or 0,
            errors=run.error_count or 0,
            created_by=created_by,
        )

    def _apply_filters(self, query, filters: RunFilters):
        predicates = []
        if filters.partner_id is not None:
            predicates.append(ImportRunLog.partner_id == filters.partner_id)
        if filters.profile_id is not None:
            predicates.append(ImportRunLog.profile_id == filters.profile_id)
        if not filters.include_dry_runs:
            predicates.append(ImportRunLog.dry_run.is_(False))
        if filters.created_from:
            predicates.append(ImportRunLog.created_at >= filters.created_from)
        if filters.created_to:
            predicates.append(ImportRunLog.created_at <= filters.created_to)
        if predicates:
            query = query.filter(and_(*predicates))
        return query


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.isdigit():
        return max(1, int(candidate))
    raise ValueError(f"Expected positive integer for pagination, received '{candidate}'.")


def _coerce_optional_id(candidate: int | str | None, name: str) -> int | None:
    if candidate in (None, ""):
        return None
    if isinstance(candidate, int):
        return candidate
    if isinstance(candidate, str) and candidate.strip().isdigit():
        return int(candidate.strip())
    raise ValueError(f"{name} must be an integer, received '{candidate}'.")


def _coerce_datetime(candidate: str | datetime | None, *, end_of_day: bool = False) -> datetime | None:
    if candidate in (None, ""):
        return None
    if isinstance(candidate, datetime):
        return candidate if candidate.tzinfo else candidate.replace(tzinfo=timezone.utc)
    text = str(candidate).strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if fmt == "%Y-%m-%d":
            parsed = datetime.combine(parsed.date(), time.max if end_of_day else time.min)
        return parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unable to parse datetime value '{candidate}'. Expected ISO-like formats.")


def _coerce_bool(candidate: str | bool | None, *, default: bool) -> bool:
    if candidate is None:
        return default
    if isinstance(candidate, bool):
        return candidate
    normalized = candidate.strip().lower()
    if normalized in ("1", "true", "yes", "y", "on"):
        return True
    if normalized in ("0", "false", "no", "n", "off"):
        return False
    return default


def _resolve_sort_expression(sort: str):
    descending = sort.startswith("-")
    expression = VALID_SORT_FIELDS.get(sort.lstrip("-"))
    if expression is None:
        raise ValueError(f"Unsupported sort field '{sort}'.")
    return expression.desc() if descending else expression.asc()
