# conftest.py

import os
from unittest.mock import patch

import pytest

# Set testing environment BEFORE importing app so app.py loads TestingConfig
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app
from installops.models import Engineer, ImportProfile, Partner, User, db

WORKED_EXAMPLE_CSV = "Customer Email,Customer Name,Job Id\njohn@x.com,John Doe,J-100\n"


@pytest.fixture(scope="function")
def app():
    """Flask application with a freshly created in-memory database."""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "MONITORING_ENABLED": False,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": True,
            "LOG_LEVEL": "DEBUG",
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": False,
            "IMPORTER_BATCH_SIZE": 500,
            "IMPORTER_CHUNK_SIZE": 1000,
            "IMPORTER_MAX_ROWS_LIMIT": 5000,
            "IMPORTER_INCLUDE_PERFORMANCE_METRICS": True,
            "GOOGLE_SERVICE_ACCOUNT_KEY": None,
        }
    )

    with flask_app.app_context():
        # Drop any existing tables to ensure clean state
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def partner(app):
    """An active partner."""
    record = Partner(name="Acme Chargers", slug="acme", is_active=True)
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def profile_factory(partner):
    """Build import profiles for ``partner``; keyword arguments override columns."""

    def _factory(**overrides):
        values = {
            "name": "Default",
            "partner_id": partner.id,
            "source_type": "csv",
            "column_mappings": {
                "partner_external_id": "Job Id",
                "client_email": "Customer Email",
                "client_name": "Customer Name",
            },
            "is_active": True,
        }
        values.update(overrides)
        profile = ImportProfile(**values)
        db.session.add(profile)
        db.session.commit()
        return profile

    return _factory


@pytest.fixture
def profile(profile_factory):
    """Default CSV import profile."""
    return profile_factory()


@pytest.fixture
def engineer(app):
    record = Engineer(name="Sam Spark", email="sam@installops.test", is_active=True)
    db.session.add(record)
    db.session.commit()
    return record


@pytest.fixture
def admin_user(app):
    user = User(email="admin@installops.test", full_name="Admin User", is_admin=True, is_active=True)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_headers(admin_user):
    """Bearer token headers for the admin user."""
    token = admin_user.issue_api_token()
    db.session.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers(app):
    """Bearer token headers for an authenticated non-admin user."""
    user = User(email="viewer@installops.test", full_name="Viewer", is_admin=False, is_active=True)
    db.session.add(user)
    db.session.flush()
    token = user.issue_api_token()
    db.session.commit()
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def worked_example_csv():
    return WORKED_EXAMPLE_CSV


@pytest.fixture
def mock_logger():
    """Mock the installops logger for log assertions"""
    with patch("installops.importer.pipeline.reconcile.logger") as mock_log:
        yield mock_log


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers and ensure testing environment"""
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers"""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.slow)
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
