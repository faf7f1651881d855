import json

from config.validation import validate_environment


def test_non_production_skips_validation(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)

    assert validate_environment("development") == (True, [])


def test_production_requires_secret_and_database(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("GOOGLE_SERVICE_ACCOUNT_KEY", raising=False)

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert any("SECRET_KEY" in error for error in errors)
    assert any("DATABASE_URL" in error for error in errors)


def test_production_checks_service_account_fields(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/installops")
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_KEY", json.dumps({"client_email": "x@y.z"}))
    monkeypatch.delenv("IMPORTER_WORKER_ENABLED", raising=False)

    is_valid, errors = validate_environment("production")

    assert is_valid is False
    assert errors == ["GOOGLE_SERVICE_ACCOUNT_KEY is missing required fields: private_key, token_uri, project_id."]
