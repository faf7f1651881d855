from __future__ import annotations

from unittest.mock import patch

from installops.importer.adapters import SheetFetchResult
from installops.models import ImportRunLog, Order


def test_partner_import_requires_authentication(client, profile, worked_example_csv):
    response = client.post("/importer/partner-import", json={"profile_id": profile.id, "csv_data": worked_example_csv})

    assert response.status_code == 401
    assert response.get_json() == {"success": False, "error": "Authentication required."}


def test_partner_import_rejects_bad_tokens(client, profile):
    response = client.post(
        "/importer/partner-import",
        json={"profile_id": profile.id},
        headers={"Authorization": "Bearer 1.not-the-secret"},
    )

    assert response.status_code == 401


def test_partner_import_requires_admin(client, profile, user_headers):
    response = client.post("/importer/partner-import", json={"profile_id": profile.id}, headers=user_headers)

    assert response.status_code == 403
    assert response.get_json()["error"] == "Admin access required."


def test_partner_import_disabled_returns_404(app, client, admin_headers):
    app.config["IMPORTER_ENABLED"] = False

    response = client.post("/importer/partner-import", json={"profile_id": 1}, headers=admin_headers)

    assert response.status_code == 404
    assert response.get_json()["error"] == "Importer is disabled."


def test_partner_import_missing_profile_id(client, admin_headers):
    response = client.post("/importer/partner-import", json={"dry_run": True}, headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json() == {"success": False, "error": "Missing required parameter: profile_id"}


def test_partner_import_unknown_profile(client, admin_headers):
    response = client.post("/importer/partner-import", json={"profile_id": 404}, headers=admin_headers)

    assert response.status_code == 404
    assert response.get_json()["error"] == "Import profile 404 not found"


def test_partner_import_without_source_is_bad_request(client, profile, admin_headers):
    response = client.post("/importer/partner-import", json={"profile_id": profile.id}, headers=admin_headers)

    assert response.status_code == 400
    assert "No data source available" in response.get_json()["error"]


def test_partner_import_success_payload(client, profile, partner, admin_headers, admin_user, worked_example_csv):
    response = client.post(
        "/importer/partner-import",
        json={"profile_id": profile.id, "csv_data": worked_example_csv},
        headers=admin_headers,
    )

    assert response.status_code == 200, response.get_json()
    payload = response.get_json()
    assert payload["success"] is True
    assert payload["run_id"].startswith("import_")
    assert payload["partner"] == {"id": partner.id, "name": partner.name}
    assert payload["results"]["inserted"] == 1
    assert payload["details"]["inserted"][0]["external_id"] == "J-100"
    assert payload["chunk_info"]["has_more"] is False
    assert "performance_metrics" in payload
    assert Order.query.count() == 1
    log = ImportRunLog.query.filter_by(run_id=payload["run_id"]).one()
    assert log.created_by_user_id == admin_user.id


def test_audit_endpoint(client, profile, admin_headers, worked_example_csv):
    response = client.post(
        "/importer/partner-import/audit",
        json={"profile_id": profile.id, "csv_data": worked_example_csv},
        headers=admin_headers,
    )

    assert response.status_code == 200
    audit = response.get_json()["audit_results"]
    assert audit["database_analysis"]["missing_job_ids"] == ["J-100"]


def test_sheets_preview_requires_sheet_id(client, admin_headers):
    response = client.post("/importer/sheets/preview", json={}, headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == "Missing required parameter: gsheet_id"


def test_sheets_preview_without_credentials_is_server_error(client, admin_headers):
    response = client.post("/importer/sheets/preview", json={"gsheet_id": "sheet-123"}, headers=admin_headers)

    assert response.status_code == 500
    assert "GOOGLE_SERVICE_ACCOUNT_KEY" in response.get_json()["error"]


def test_sheets_preview_returns_rows(client, admin_headers):
    preview = SheetFetchResult.from_values([["Job Id"], ["J-1"], ["J-2"]]).window(0, 10)
    with patch("installops.importer.views.GoogleSheetsClient") as client_cls:
        client_cls.from_app_config.return_value.fetch_rows.return_value = preview
        response = client.post(
            "/importer/sheets/preview",
            json={"gsheet_id": "sheet-123", "sheet_name": "Jobs"},
            headers=admin_headers,
        )

    assert response.status_code == 200
    assert response.get_json() == {"success": True, "headers": ["Job Id"], "rows": [["J-1"], ["J-2"]], "total_rows": 2}
    args, kwargs = client_cls.from_app_config.return_value.fetch_rows.call_args
    assert args == ("sheet-123", "Jobs")
    assert kwargs["max_rows"] == 10


def test_runs_list_and_detail(client, profile, admin_headers, worked_example_csv):
    imported = client.post(
        "/importer/partner-import",
        json={"profile_id": profile.id, "csv_data": worked_example_csv},
        headers=admin_headers,
    ).get_json()

    listing = client.get("/importer/runs", headers=admin_headers)
    assert listing.status_code == 200
    payload = listing.get_json()
    assert payload["total"] == 1
    assert payload["runs"][0]["run_id"] == imported["run_id"]
    assert payload["filters"]["sort"] == "-created_at"

    detail = client.get(f"/importer/runs/{imported['run_id']}", headers=admin_headers)
    assert detail.status_code == 200
    assert detail.get_json()["inserted"] == 1

    missing = client.get("/importer/runs/import_0_missing", headers=admin_headers)
    assert missing.status_code == 404


def test_runs_list_rejects_bad_filters(client, admin_headers):
    response = client.get("/importer/runs?sort=name", headers=admin_headers)

    assert response.status_code == 400
    assert "Unsupported sort field" in response.get_json()["error"]


def test_health_is_public(client):
    response = client.get("/importer/health")

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["status"] == "ok"
    assert payload["enabled"] is True
    assert payload["google_sheets"]["status"] == "not-configured"


def test_worker_health_reports_disabled_worker(client, admin_headers):
    response = client.get("/importer/worker_health", headers=admin_headers)

    assert response.status_code == 200
    assert response.get_json()["status"] == "disabled"


def test_worker_health_rejects_malformed_timeout(client, admin_headers):
    response = client.get("/importer/worker_health?timeout=soon", headers=admin_headers)

    assert response.status_code == 400
    assert response.get_json() == {"success": False, "error": "timeout must be a number of seconds."}

    response = client.get("/importer/worker_health?timeout=-1", headers=admin_headers)
    assert response.status_code == 400


def test_delete_partner_jobs_dry_run_then_delete(client, profile, partner, admin_headers, worked_example_csv):
    imported = client.post(
        "/importer/partner-import", json={"profile_id": profile.id, "csv_data": worked_example_csv}, headers=admin_headers
    ).get_json()

    counted = client.post(
        "/importer/partner-jobs/delete",
        json={"partner_id": partner.id, "import_run_id": imported["run_id"], "dry_run": True},
        headers=admin_headers,
    )

    assert counted.status_code == 200
    payload = counted.get_json()
    assert payload["stats"] == {"orders": 1}
    assert payload["order_ids_sample"] == [imported["details"]["inserted"][0]["order_id"]]
    assert Order.query.count() == 1

    deleted = client.post(
        "/importer/partner-jobs/delete",
        json={"partner_id": partner.id, "import_run_id": imported["run_id"]},
        headers=admin_headers,
    )

    assert deleted.status_code == 200
    assert deleted.get_json()["message"] == "Jobs deleted successfully"
    assert Order.query.count() == 0


def test_delete_partner_jobs_validation(client, admin_headers):
    missing = client.post("/importer/partner-jobs/delete", json={"dry_run": True}, headers=admin_headers)
    unknown = client.post("/importer/partner-jobs/delete", json={"partner_id": 999}, headers=admin_headers)

    assert missing.status_code == 400
    assert missing.get_json() == {"success": False, "error": "partner_id is required"}
    assert unknown.status_code == 404
    assert unknown.get_json()["error"] == "Partner 999 not found"


def test_delete_partner_jobs_requires_admin(client, partner, user_headers):
    response = client.post("/importer/partner-jobs/delete", json={"partner_id": partner.id}, headers=user_headers)

    assert response.status_code == 403


def test_unknown_route_is_json_404(client):
    response = client.get("/nowhere")

    assert response.status_code == 404
    assert response.get_json() == {"success": False, "error": "Not found."}
