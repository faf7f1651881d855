# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """
    Parse an integer setting, falling back to ``default`` when unset or invalid.

    Values outside the optional bounds are clamped.
    """
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        number = minimum
    if maximum is not None and number > maximum:
        number = maximum
    return number


def _sqlite_uri(filename):
    """Absolute ``sqlite:///`` URI for ``filename`` inside the project's instance folder."""
    project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    instance_path = os.path.join(project_root, "instance")
    os.makedirs(instance_path, exist_ok=True)
    # SQLite URIs need forward slashes, including on Windows
    return "sqlite:///" + os.path.join(instance_path, filename).replace("\\", "/")


_SQLITE_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 5}}


class Config:
    _flask_env = os.environ.get("FLASK_ENV", "development")

    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY and _flask_env == "production":
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )
    if not SECRET_KEY:
        SECRET_KEY = "dev-secret-key-change-in-production"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Partner importer
    IMPORTER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_ENABLED"), default=True)
    IMPORTER_BATCH_SIZE = _coerce_int(os.environ.get("IMPORTER_BATCH_SIZE"), 500, minimum=1, maximum=5000)
    IMPORTER_MAX_ROWS_LIMIT = _coerce_int(os.environ.get("IMPORTER_MAX_ROWS_LIMIT"), 5000, minimum=1)
    IMPORTER_CHUNK_SIZE = _coerce_int(
        os.environ.get("IMPORTER_CHUNK_SIZE"), 1000, minimum=1, maximum=IMPORTER_MAX_ROWS_LIMIT
    )
    IMPORTER_INCLUDE_PERFORMANCE_METRICS = _coerce_bool(
        os.environ.get("IMPORTER_INCLUDE_PERFORMANCE_METRICS"),
        default=True,
    )

    # Google Sheets source
    GOOGLE_SERVICE_ACCOUNT_KEY = os.environ.get("GOOGLE_SERVICE_ACCOUNT_KEY")
    IMPORTER_SHEETS_TIMEOUT_SECONDS = _coerce_int(os.environ.get("IMPORTER_SHEETS_TIMEOUT_SECONDS"), 30, minimum=1)
    IMPORTER_SHEETS_MAX_ROWS = _coerce_int(os.environ.get("IMPORTER_SHEETS_MAX_ROWS"), 20000, minimum=1)

    # Background worker
    IMPORTER_WORKER_ENABLED = _coerce_bool(os.environ.get("IMPORTER_WORKER_ENABLED"), default=False)
    IMPORTER_TASK_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_TIME_LIMIT"), 30 * 60, minimum=60)
    IMPORTER_TASK_SOFT_TIME_LIMIT = _coerce_int(os.environ.get("IMPORTER_TASK_SOFT_TIME_LIMIT"), 25 * 60, minimum=30)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _sqlite_uri("installops_dev.db")
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    SQLALCHEMY_ENGINE_OPTIONS = _SQLITE_ENGINE_OPTIONS if SQLALCHEMY_DATABASE_URI.startswith("sqlite") else {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = _SQLITE_ENGINE_OPTIONS
    IMPORTER_ENABLED = True
    IMPORTER_WORKER_ENABLED = False
    GOOGLE_SERVICE_ACCOUNT_KEY = None


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
