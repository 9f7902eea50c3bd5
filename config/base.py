# config/base.py
import os
from datetime import timedelta


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


def _coerce_float(value, default, *, minimum=0.0, maximum=1.0):
    """Parse a bounded float, falling back to ``default`` on bad input."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number < minimum or number > maximum:
        return default
    return number


def _coerce_int(value, default, *, minimum=1):
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


class Config:
    # SECRET_KEY must be set via environment variable for security
    # Generate with: python -c "import secrets; print(secrets.token_hex(32))"
    _flask_env = os.environ.get("FLASK_ENV", "development")
    _is_testing = _flask_env == "testing"
    _is_production = _flask_env == "production"

    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Only require SECRET_KEY in production mode
    if not SECRET_KEY and _is_production:
        raise ValueError(
            "SECRET_KEY environment variable is required in production. "
            'Generate with: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not SECRET_KEY and not _is_testing:
        import warnings

        warnings.warn(
            "SECRET_KEY not set. Using default for development only. "
            "Set SECRET_KEY environment variable before deploying.",
            UserWarning,
        )
        SECRET_KEY = "dev-secret-key-change-in-production"

    if not SECRET_KEY:
        SECRET_KEY = "test-secret-key-placeholder"

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Vista reconciliation
    RECONCILIATION_ENABLED = _coerce_bool(os.environ.get("RECONCILIATION_ENABLED"), default=True)
    # Auto-match links a record only when the best name score clears the
    # threshold and beats the runner-up by more than the margin.
    RECONCILE_AUTO_MATCH_THRESHOLD = _coerce_float(os.environ.get("RECONCILE_AUTO_MATCH_THRESHOLD"), 0.92)
    RECONCILE_AUTO_MATCH_MARGIN = _coerce_float(os.environ.get("RECONCILE_AUTO_MATCH_MARGIN"), 0.03)
    RECONCILE_DUPLICATE_FLOOR = _coerce_float(os.environ.get("RECONCILE_DUPLICATE_FLOOR"), 0.5)
    RECONCILE_DUPLICATE_TOP_N = _coerce_int(os.environ.get("RECONCILE_DUPLICATE_TOP_N"), 5)
    RECONCILE_BAND_HIGH = _coerce_float(os.environ.get("RECONCILE_BAND_HIGH"), 0.8)
    RECONCILE_BAND_MEDIUM = _coerce_float(os.environ.get("RECONCILE_BAND_MEDIUM"), 0.6)
    RECONCILE_CHUNK_SIZE = _coerce_int(os.environ.get("RECONCILE_CHUNK_SIZE"), 500)
    RECONCILE_MAX_UPLOAD_MB = _coerce_int(os.environ.get("RECONCILE_MAX_UPLOAD_MB"), 100)
    RECONCILE_HISTORY_LIMIT = _coerce_int(os.environ.get("RECONCILE_HISTORY_LIMIT"), 20)
    RECONCILE_POST_IMPORT_AUTO_LINK = _coerce_bool(os.environ.get("RECONCILE_POST_IMPORT_AUTO_LINK"), default=False)
    RECONCILE_POST_IMPORT_PROMOTE = _coerce_bool(os.environ.get("RECONCILE_POST_IMPORT_PROMOTE"), default=False)
    RECONCILE_UPLOAD_DIR = os.environ.get("RECONCILE_UPLOAD_DIR")

    # Background worker
    RECONCILE_WORKER_ENABLED = _coerce_bool(os.environ.get("RECONCILE_WORKER_ENABLED"), default=False)
    RECONCILE_TASK_TIME_LIMIT = _coerce_int(os.environ.get("RECONCILE_TASK_TIME_LIMIT"), 30 * 60)
    RECONCILE_TASK_SOFT_TIME_LIMIT = _coerce_int(os.environ.get("RECONCILE_TASK_SOFT_TIME_LIMIT"), 25 * 60)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")

    # Session configuration
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    MAX_CONTENT_LENGTH = RECONCILE_MAX_UPLOAD_MB * 1024 * 1024


class DevelopmentConfig(Config):
    DEBUG = True
    # Use the instance folder for the database to avoid conflicts
    _config_dir = os.path.dirname(os.path.abspath(__file__))
    _project_root = os.path.dirname(_config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI format: sqlite:///absolute/path; Windows needs forward slashes
    db_path = os.path.join(instance_path, "vista_reconcile_dev.db")
    db_path_normalized = db_path.replace("\\", "/")
    db_uri = f"sqlite:///{db_path_normalized}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = os.environ.get("SECRET_KEY", "test-secret-key-for-testing-only")
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ECHO = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }
    RECONCILE_POST_IMPORT_AUTO_LINK = False
    RECONCILE_POST_IMPORT_PROMOTE = False


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
    SESSION_COOKIE_SECURE = True
