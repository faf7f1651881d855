from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import NoResultFound

from installops.importer.pipeline.run_service import ImportRunService, RunFilters
from installops.models import ImportRunLog, db


@pytest.fixture
def run_factory(profile, partner):
    created: list[ImportRunLog] = []

    def _factory(*, dry_run: bool = False, errors: int = 0, created_offset_days: int = 0, user=None) -> ImportRunLog:
        created_at = datetime.now(timezone.utc) - timedelta(days=created_offset_days)
        run = ImportRunLog(
            run_id=f"import_{1700000000000 + len(created)}_abcdefghi",
            partner_id=partner.id,
            profile_id=profile.id,
            dry_run=dry_run,
            total_rows=10,
            processed_count=10,
            inserted_count=8,
            skipped_count=2 - min(errors, 2),
            error_count=errors,
            warnings=[{"row": 2, "message": "Invalid phone number '1'"}],
            errors=[{"row": 3, "message": "Batch 1 failed: boom"}] * errors,
            skipped_details=[{"row": 4, "reason": "already_imported"}],
            chunk_info={"start_row": 0, "end_row": 10, "total_rows": 10, "has_more": False},
            created_by_user_id=user.id if user else None,
            created_at=created_at,
            finished_at=created_at,
        )
        db.session.add(run)
        db.session.commit()
        created.append(run)
        return run

    return _factory


def test_list_runs_newest_first_with_pagination(run_factory):
    oldest = run_factory(created_offset_days=3)
    middle = run_factory(created_offset_days=2)
    newest = run_factory(created_offset_days=1)

    service = ImportRunService()
    first_page = service.list_runs(RunFilters.coerce(page=1, page_size=2))

    assert first_page.total == 3
    assert first_page.total_pages == 2
    assert [item.run_id for item in first_page.items] == [newest.run_id, middle.run_id]

    second_page = service.list_runs(RunFilters.coerce(page="2", page_size="2"))
    assert [item.run_id for item in second_page.items] == [oldest.run_id]


def test_list_runs_filters(run_factory, profile_factory):
    run_factory(dry_run=True)
    kept = run_factory(errors=1)

    service = ImportRunService()
    without_dry_runs = service.list_runs(RunFilters.coerce(include_dry_runs="false"))
    assert [item.run_id for item in without_dry_runs.items] == [kept.run_id]

    other_profile = profile_factory(name="Other")
    assert service.list_runs(RunFilters.coerce(profile_id=str(other_profile.id))).total == 0

    by_errors = service.list_runs(RunFilters.coerce(sort="-error_count"))
    assert by_errors.items[0].run_id == kept.run_id


def test_run_detail_includes_stored_lists(run_factory, admin_user):
    run = run_factory(errors=1, user=admin_user)

    detail = ImportRunService().get_run_detail(run.run_id)

    assert detail["run_id"] == run.run_id
    assert detail["partner_name"] == "Acme Chargers"
    assert detail["profile_name"] == "Default"
    assert detail["inserted"] == 8
    assert detail["created_by"]["email"] == admin_user.email
    assert detail["details"]["errors"] == [{"row": 3, "message": "Batch 1 failed: boom"}]
    assert detail["details"]["skipped"][0]["reason"] == "already_imported"
    assert detail["chunk_info"]["has_more"] is False
    assert isinstance(detail["created_at"], str)


def test_get_run_missing_raises():
    with pytest.raises(NoResultFound):
        ImportRunService().get_run("import_0_missing")


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"sort": "name"}, "Unsupported sort field"),
        ({"page": "zero"}, "Expected positive integer"),
        ({"partner_id": "abc"}, "partner_id must be an integer"),
        ({"created_from": "2025-02-01", "created_to": "2025-01-01"}, "created_from must be before created_to"),
        ({"created_from": "yesterday"}, "Unable to parse datetime"),
    ],
)
def test_filter_coercion_errors(kwargs, message):
    with pytest.raises(ValueError, match=message):
        RunFilters.coerce(**kwargs)


def test_filter_defaults():
    filters = RunFilters.coerce(page_size=1000)

    assert filters.page == 1
    assert filters.page_size == 100
    assert filters.sort == "-created_at"
    assert filters.include_dry_runs is True
