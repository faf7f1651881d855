from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from installops.importer.adapters import SheetFetchResult
from installops.importer.errors import (
    AuditLogWriteError,
    BulkUpsertError,
    InvalidImportRequest,
    ProfileInactive,
    ProfileNotFound,
)
from installops.importer.pipeline import reconcile
from installops.importer.pipeline.reconcile import (
    NO_DATA_SOURCE_MESSAGE,
    PartnerImportRequest,
    generate_run_id,
    run_partner_import,
)
from installops.models import Client, ImportRunLog, Order, db


def _run(profile, csv_data, **payload):
    request = PartnerImportRequest.from_payload({"profile_id": profile.id, "csv_data": csv_data, **payload})
    return run_partner_import(request)


def _assert_accounted(result):
    counts = result.counts
    assert counts["processed"] == counts["inserted"] + counts["updated"] + counts["skipped"] + counts["errors"]


def test_worked_example_inserts_then_skips(profile, worked_example_csv):
    first = _run(profile, worked_example_csv)

    assert first.counts["inserted"] == 1
    assert first.counts["skipped"] == 0
    client = Client.query.filter_by(email="john@x.com").one()
    assert client.full_name == "John Doe"
    order = Order.query.filter_by(partner_external_id="J-100").one()
    assert order.client_id == client.id
    assert order.is_partner_job is True
    assert order.status == "awaiting_install_booking"
    assert order.partner_metadata["import_run_id"] == first.run_id
    assert ImportRunLog.query.filter_by(run_id=first.run_id).one().inserted_count == 1

    second = _run(profile, worked_example_csv)

    assert second.counts["inserted"] == 0
    assert second.counts["skipped"] == 1
    assert second.skipped[0]["reason"] == "already_imported"
    assert Order.query.count() == 1
    assert ImportRunLog.query.count() == 2


def test_dry_run_writes_nothing(profile, worked_example_csv):
    result = _run(profile, worked_example_csv, dry_run=True)

    assert result.dry_run is True
    assert result.counts["inserted"] == 1
    assert result.inserted[0]["order_id"] is None
    assert Client.query.count() == 0
    assert Order.query.count() == 0
    assert ImportRunLog.query.count() == 0


def test_skip_rules_and_sheet_duplicates(profile):
    csv_data = (
        "Job Id,Customer Email,Customer Name\n"
        ",nobody@x.com,No Id\n"
        "J-1,,\n"
        "J-2,ann@x.com,Ann\n"
        "J-2,ann@x.com,Ann Again\n"
    )

    result = _run(profile, csv_data)

    reasons = [entry["reason"] for entry in result.skipped]
    assert reasons == ["missing_external_id", "missing_name_and_email", "duplicate_in_sheet"]
    assert result.duplicates == 1
    assert result.counts["inserted"] == 1
    assert [entry["row"] for entry in result.skipped] == [2, 3, 5]
    _assert_accounted(result)


def test_name_without_email_gets_placeholder(profile, partner):
    result = _run(profile, "Job Id,Customer Email,Customer Name\nJ/7 A,,Jo Bloggs\n")

    assert result.counts["inserted"] == 1
    client = Client.query.one()
    assert client.email == f"j-7-a@{partner.slug}.import.invalid"
    assert client.full_name == "Jo Bloggs"
    assert any(warning["field"] == "client_email" for warning in result.warnings)


def test_invalid_email_and_phone_are_warnings_not_rejections(profile):
    csv_data = "Job Id,Customer Email,Customer Name,Phone\nJ-1,not-an-email,Pat,123\n"

    result = _run(profile, csv_data)

    assert result.counts["inserted"] == 1
    fields = sorted(warning["field"] for warning in result.warnings)
    assert fields == ["client_email", "client_email", "client_phone"]
    assert Client.query.one().phone is None


def test_unparseable_duration_warns_once_and_leaves_value_unset(profile):
    csv_data = "Job Id,Customer Email,Customer Name,Duration\nJ-1,a@x.com,A,abc\n"

    result = _run(profile, csv_data)

    assert result.counts["warnings"] == 1
    assert result.warnings[0]["field"] == "estimated_duration"
    assert Order.query.one().estimated_duration_hours is None


def test_job_type_default_duration_applies_when_cell_blank(profile_factory):
    profile = profile_factory(name="Durations", job_duration_defaults={"homecharger": 3.5})
    csv_data = "Job Id,Customer Email,Customer Name,Job Type,Duration\nJ-1,a@x.com,A,Home Charger,\nJ-2,b@x.com,B,Home Charger,2:15\n"

    _run(profile, csv_data)

    durations = {order.partner_external_id: order.estimated_duration_hours for order in Order.query.all()}
    assert durations == {"J-1": Decimal("3.50"), "J-2": Decimal("2.25")}


def test_status_rules_and_engineer_resolution(profile_factory, engineer):
    profile = profile_factory(
        name="Statuses",
        status_mappings={"Booked": "install_booked"},
        status_actions={
            "Cancelled": {
                "jms_status": "cancelled",
                "bucket": "closed",
                "actions": {"suppress_scheduling": True, "suppression_reason": "Partner cancelled"},
            }
        },
        status_override_rules={"On Hold": True},
        engineer_mapping_rules=[{"partner_identifier": "Sammy", "engineer_email": engineer.email}],
    )
    csv_data = (
        "Job Id,Customer Email,Customer Name,Status,Engineer\n"
        "J-1,a@x.com,A,booked,Sam Spark\n"
        "J-2,b@x.com,B,Cancelled,SAMMY\n"
        "J-3,c@x.com,C,On Hold,sam@installops.test\n"
        "J-4,d@x.com,D,Mystery,Nobody\n"
    )

    result = _run(profile, csv_data)

    orders = {order.partner_external_id: order for order in Order.query.all()}
    assert orders["J-1"].status == "install_booked"
    assert orders["J-2"].status == "cancelled"
    assert orders["J-2"].scheduling_suppressed is True
    assert orders["J-2"].scheduling_suppression_reason == "Partner cancelled"
    assert orders["J-3"].status == "awaiting_install_booking"
    assert orders["J-3"].scheduling_suppressed is True
    assert orders["J-4"].status == "awaiting_install_booking"
    assert orders["J-4"].partner_status == "Mystery"
    assert {orders[key].engineer_id for key in ("J-1", "J-2", "J-3")} == {engineer.id}
    assert orders["J-4"].engineer_id is None
    messages = [warning["message"] for warning in result.warnings]
    assert "Unmapped partner status 'Mystery'; defaulted to awaiting_install_booking" in messages
    assert "Engineer 'Nobody' not found; left unassigned" in messages


def test_failed_batch_becomes_row_errors_and_other_batches_commit(app, profile, monkeypatch):
    app.config["IMPORTER_BATCH_SIZE"] = 1
    real_upsert = reconcile.bulk_upsert_orders

    def flaky_upsert(orders, *, client_ids):
        if any(order.partner_external_id == "J-2" for order in orders):
            raise BulkUpsertError("disk full")
        return real_upsert(orders, client_ids=client_ids)

    monkeypatch.setattr(reconcile, "bulk_upsert_orders", flaky_upsert)
    csv_data = "Job Id,Customer Email,Customer Name\nJ-1,a@x.com,A\nJ-2,b@x.com,B\nJ-3,c@x.com,C\n"

    result = _run(profile, csv_data)

    assert result.counts["inserted"] == 2
    assert result.errors == [{"row": 3, "message": "Batch 2 failed: disk full", "external_id": "J-2", "batch": 2}]
    assert sorted(order.partner_external_id for order in Order.query.all()) == ["J-1", "J-3"]
    assert Client.query.filter_by(email="b@x.com").one_or_none() is None
    _assert_accounted(result)
    log = ImportRunLog.query.one()
    assert log.error_count == 1


def test_row_that_fails_to_prepare_becomes_an_error(profile, monkeypatch):
    real_prepare = reconcile.prepare_row

    def fragile_prepare(row, context):
        if row.partner_external_id == "J-2":
            raise ValueError("unexpected cell")
        return real_prepare(row, context)

    monkeypatch.setattr(reconcile, "prepare_row", fragile_prepare)
    csv_data = "Job Id,Customer Email,Customer Name\nJ-1,a@x.com,A\nJ-2,b@x.com,B\nJ-3,c@x.com,C\n"

    result = _run(profile, csv_data)

    assert result.errors == [{"row": 3, "message": "Row mapping failed: unexpected cell"}]
    assert result.counts["inserted"] == 2
    assert sorted(order.partner_external_id for order in Order.query.all()) == ["J-1", "J-3"]
    assert Client.query.filter_by(email="b@x.com").one_or_none() is None
    _assert_accounted(result)
    assert ImportRunLog.query.one().error_count == 1


def test_run_log_failure_still_returns_committed_result(profile, worked_example_csv, monkeypatch):
    def failing_log(summary):
        raise AuditLogWriteError("Failed to write import run log: database is locked")

    monkeypatch.setattr(reconcile, "write_import_log", failing_log)

    result = _run(profile, worked_example_csv)

    assert result.counts["inserted"] == 1
    assert result.inserted[0]["order_id"] == Order.query.one().id
    assert result.warnings == [
        {"row": None, "message": "Run log was not saved: Failed to write import run log: database is locked"}
    ]
    assert ImportRunLog.query.count() == 0
    _assert_accounted(result)


def test_row_numbers_follow_sheet_lines_past_blank_lines(profile):
    csv_data = (
        "Job Id,Customer Email,Customer Name\n"
        "J-1,a@x.com,A\n"
        "\n"
        ",b@x.com,B\n"
        "J-3,not-an-email,C\n"
    )

    result = _run(profile, csv_data)

    assert [entry["row"] for entry in result.inserted] == [2, 5]
    assert [entry["row"] for entry in result.skipped] == [4]
    assert {warning["row"] for warning in result.warnings} == {5}


def test_original_sheet_headers_map_without_profile_mappings(profile_factory, engineer):
    profile = profile_factory(name="Original layout", column_mappings={})
    csv_data = (
        "job_id,customer_name,customer_email,customer_address_line_1,customer_address_post_code,"
        "assigned_engineers,quote_amount,partner_account,installation_type,scheduled_duration_hours\n"
        "J-9,Ann Lee,ann@x.com,1 High St,LS1 1AA,Sam Spark,£1200.50,Volt Dealers,Home Charger,2.5\n"
    )

    result = _run(profile, csv_data)

    assert result.counts["inserted"] == 1
    assert result.warnings == []
    order = Order.query.filter_by(partner_external_id="J-9").one()
    assert order.job_address == "1 High St"
    assert order.postcode == "LS1 1AA"
    assert order.engineer_id == engineer.id
    assert order.total_amount == Decimal("1200.50")
    assert order.sub_partner == "Volt Dealers"
    assert order.job_type == "Home Charger"
    assert order.estimated_duration_hours == Decimal("2.50")
    client = Client.query.filter_by(email="ann@x.com").one()
    assert client.full_name == "Ann Lee"


def test_job_ids_filter_limits_processing(profile):
    csv_data = "Job Id,Customer Email,Customer Name\nJ-1,a@x.com,A\nJ-2,b@x.com,B\nJ-3,c@x.com,C\n"

    result = _run(profile, csv_data, job_ids_filter=["J-2"])

    assert result.processed == 1
    assert result.chunk_info["filtered_out"] == 2
    assert [order.partner_external_id for order in Order.query.all()] == ["J-2"]


def test_chunk_window_reports_next_start_row(profile):
    csv_data = "Job Id,Customer Email,Customer Name\nJ-1,a@x.com,A\nJ-2,b@x.com,B\nJ-3,c@x.com,C\n"

    first = _run(profile, csv_data, start_row=0, max_rows=2)
    assert first.chunk_info["has_more"] is True
    assert first.chunk_info["next_start_row"] == 2
    assert first.chunk_info["total_rows"] == 3

    second = _run(profile, csv_data, start_row=2, max_rows=2)
    assert second.chunk_info["has_more"] is False
    assert second.chunk_info["next_start_row"] is None
    assert second.inserted[0]["row"] == 4
    assert Order.query.count() == 3


def test_header_only_sheet_returns_empty_result(profile):
    result = _run(profile, "Job Id,Customer Email,Customer Name\n")

    assert result.processed == 0
    assert result.chunk_info["total_rows"] == 0
    assert ImportRunLog.query.count() == 0


def test_google_sheet_profile_uses_sheets_client(profile_factory):
    profile = profile_factory(name="Sheet", source_type="gsheet", gsheet_id="sheet-123", gsheet_sheet_name="Jobs")
    sheets_client = MagicMock()
    sheets_client.fetch_rows.return_value = SheetFetchResult.from_values(
        [["Job Id", "Customer Email", "Customer Name"], ["J-1", "a@x.com", "A"]]
    )
    request = PartnerImportRequest.from_payload({"profile_id": profile.id})

    result = run_partner_import(request, sheets_client=sheets_client)

    assert result.counts["inserted"] == 1
    args, kwargs = sheets_client.fetch_rows.call_args
    assert args == ("sheet-123", "Jobs")
    assert kwargs["start_row"] == 0


def test_performance_metrics_follow_config(app, profile, worked_example_csv):
    with_metrics = _run(profile, worked_example_csv, dry_run=True)
    assert "total_ms" in with_metrics.as_dict()["performance_metrics"]

    app.config["IMPORTER_INCLUDE_PERFORMANCE_METRICS"] = False
    without_metrics = _run(profile, worked_example_csv, dry_run=True)
    assert "performance_metrics" not in without_metrics.as_dict()


def test_unknown_and_inactive_profiles_abort(profile_factory, partner, worked_example_csv):
    with pytest.raises(ProfileNotFound):
        run_partner_import(PartnerImportRequest(profile_id=999, csv_data=worked_example_csv))

    inactive = profile_factory(name="Old", is_active=False)
    with pytest.raises(ProfileInactive):
        run_partner_import(PartnerImportRequest(profile_id=inactive.id, csv_data=worked_example_csv))

    active = profile_factory(name="Paused partner")
    partner.is_active = False
    db.session.commit()
    with pytest.raises(ProfileInactive, match="Partner 'Acme Chargers' is inactive"):
        run_partner_import(PartnerImportRequest(profile_id=active.id, csv_data=worked_example_csv))


def test_csv_profile_without_csv_data_has_no_source(profile):
    with pytest.raises(InvalidImportRequest) as excinfo:
        run_partner_import(PartnerImportRequest(profile_id=profile.id))
    assert excinfo.value.message == NO_DATA_SOURCE_MESSAGE


@pytest.mark.parametrize(
    "payload, message",
    [
        (None, "Request body must be a JSON object."),
        ({}, "Missing required parameter: profile_id"),
        ({"profile_id": "abc"}, "profile_id must be an integer."),
        ({"profile_id": 1, "max_rows": 0}, "max_rows must be between 1 and 5000."),
        ({"profile_id": 1, "max_rows": 5001}, "max_rows must be between 1 and 5000."),
        ({"profile_id": 1, "start_row": -1}, "start_row must be >= 0."),
        ({"profile_id": 1, "job_ids_filter": "J-1"}, "job_ids_filter must be a list of job ids."),
        ({"profile_id": 1, "dry_run": "maybe"}, "dry_run must be a boolean."),
    ],
)
def test_request_validation(app, payload, message):
    with pytest.raises(InvalidImportRequest) as excinfo:
        PartnerImportRequest.from_payload(payload)
    assert excinfo.value.message == message


def test_request_defaults(app):
    request = PartnerImportRequest.from_payload({"profile_id": "3", "dry_run": "true", "job_ids_filter": []})

    assert request.profile_id == 3
    assert request.dry_run is True
    assert request.max_rows == 1000
    assert request.job_ids_filter is None
    assert request.csv_data is None


def test_generate_run_id_format():
    run_id = generate_run_id(now_ms=1700000000000)

    prefix, stamp, suffix = run_id.split("_")
    assert prefix == "import"
    assert stamp == "1700000000000"
    assert len(suffix) == 9
    assert suffix.isalnum() and suffix == suffix.lower()
