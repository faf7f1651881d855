from installops.importer.pipeline import audit_partner_import, run_partner_import
from installops.importer.pipeline.reconcile import PartnerImportRequest
from installops.models import Order


def test_audit_reports_sheet_and_database_state(profile):
    run_partner_import(
        PartnerImportRequest(profile_id=profile.id, csv_data="Job Id,Customer Email,Customer Name\nJ-1,a@x.com,A\n")
    )
    csv_data = (
        "Job Id,Customer Email,Customer Name\n"
        "J-1,a@x.com,A\n"
        "J-2,a@x.com,\n"
        "J-2,b@x.com,B\n"
        ",,\n"
        ",c@x.com,C\n"
        "J-3,,Dee\n"
    )

    result = audit_partner_import(profile.id, csv_data=csv_data).as_dict()

    sheet = result["sheet_analysis"]
    assert sheet["total_rows"] == 5
    assert sheet["total_job_ids"] == 4
    assert sheet["unique_job_ids"] == 3
    assert sheet["duplicate_job_ids"] == ["J-2"]
    assert sheet["blank_job_ids"] == 1
    assert sheet["duplicate_emails"] == ["a@x.com"]
    assert sheet["blank_emails"] == 1
    assert sheet["blank_names"] == 1

    database = result["database_analysis"]
    assert database["existing_job_ids"] == ["J-1"]
    assert database["missing_job_ids"] == ["J-2", "J-3"]
    assert database["total_orders_for_partner"] == 1
    assert database["total_clients_for_partner"] == 1

    recommendations = " ".join(result["recommendations"])
    assert "1 duplicate Job IDs" in recommendations
    assert "2 Job IDs from sheet are missing from database" in recommendations
    assert "placeholder emails" in recommendations


def test_audit_does_not_write(profile, worked_example_csv):
    audit_partner_import(profile.id, csv_data=worked_example_csv)

    assert Order.query.count() == 0


def test_audit_treats_invalid_emails_like_the_importer(profile):
    csv_data = "Job Id,Customer Email,Customer Name\nJ-1,not-an-email,A\nJ-2,NOT-AN-EMAIL,B\nJ-3,b@x.com,C\n"

    sheet = audit_partner_import(profile.id, csv_data=csv_data).as_dict()["sheet_analysis"]

    assert sheet["invalid_emails"] == 2
    assert sheet["blank_emails"] == 2
    assert sheet["duplicate_emails"] == []
    assert sheet["total_emails"] == 1
