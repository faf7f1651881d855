# config/validation.py

"""
Environment variable validation for the installations back-office.
Validates required environment variables at startup.
"""

import json
import os
import sys
from typing import List, Tuple

REQUIRED_SERVICE_ACCOUNT_FIELDS = ("client_email", "private_key", "token_uri", "project_id")


def _validate_service_account_key(raw_key: str) -> List[str]:
    try:
        credentials = json.loads(raw_key)
    except json.JSONDecodeError as exc:
        return [f"GOOGLE_SERVICE_ACCOUNT_KEY is not valid JSON: {exc.msg}."]

    if not isinstance(credentials, dict):
        return ["GOOGLE_SERVICE_ACCOUNT_KEY must be a JSON object."]

    missing = [field for field in REQUIRED_SERVICE_ACCOUNT_FIELDS if not credentials.get(field)]
    if missing:
        return [f"GOOGLE_SERVICE_ACCOUNT_KEY is missing required fields: {', '.join(missing)}."]
    return []


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key == "your-secret-key" or secret_key == "your_secret_key":
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append(
            "DATABASE_URL is required in production. "
            "Set it to your PostgreSQL connection string."
        )

    service_account_key = os.environ.get("GOOGLE_SERVICE_ACCOUNT_KEY")
    if service_account_key:
        errors.extend(_validate_service_account_key(service_account_key))

    if os.environ.get("IMPORTER_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when IMPORTER_WORKER_ENABLED=true")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.

    Args:
        flask_env: Flask environment (development, production, testing)
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
