# config/validation.py

"""
Startup validation of the environment for production deployments.
"""

import os
import sys
from typing import List, Tuple

_FRACTION_KEYS = (
    "RECONCILE_AUTO_MATCH_THRESHOLD",
    "RECONCILE_AUTO_MATCH_MARGIN",
    "RECONCILE_DUPLICATE_FLOOR",
    "RECONCILE_BAND_HIGH",
    "RECONCILE_BAND_MEDIUM",
)


def _enabled(name: str) -> bool:
    return os.environ.get(name, "false").strip().lower() in {"1", "true", "yes", "on"}


def _fraction_errors() -> List[str]:
    errors = []
    for key in _FRACTION_KEYS:
        raw = os.environ.get(key)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = float(raw)
        except ValueError:
            errors.append(f"{key} must be a number between 0 and 1 (got {raw!r}).")
            continue
        if not 0.0 <= value <= 1.0:
            errors.append(f"{key} must be between 0 and 1 (got {value}).")
    return errors


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing).
                   If None, reads from FLASK_ENV.

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    if flask_env != "production":
        return True, []

    errors = []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key in ("your-secret-key", "your_secret_key"):
        errors.append(
            "SECRET_KEY is required in production and must not be the default value. "
            'Generate a secure key: python -c "import secrets; print(secrets.token_hex(32))"'
        )

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    errors.extend(_fraction_errors())

    if _enabled("RECONCILE_WORKER_ENABLED") and not os.environ.get("CELERY_BROKER_URL"):
        errors.append("CELERY_BROKER_URL is required when RECONCILE_WORKER_ENABLED=true in production.")

    if _enabled("ENABLE_EMAIL_ALERTS"):
        for key in ("MAIL_SERVER", "MAIL_USERNAME", "MAIL_PASSWORD", "ADMIN_EMAILS"):
            if not os.environ.get(key):
                errors.append(f"{key} is required when ENABLE_EMAIL_ALERTS=true")

    if _enabled("ENABLE_SLACK_ALERTS") and not os.environ.get("SLACK_WEBHOOK_URL"):
        errors.append("SLACK_WEBHOOK_URL is required when ENABLE_SLACK_ALERTS=true")

    if _enabled("ENABLE_WEBHOOK_ALERTS") and not os.environ.get("WEBHOOK_URL"):
        errors.append("WEBHOOK_URL is required when ENABLE_WEBHOOK_ALERTS=true")

    return not errors, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)
    if is_valid:
        return

    print("=" * 80, file=sys.stderr)
    print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
    print("=" * 80, file=sys.stderr)
    for i, error in enumerate(errors, 1):
        print(f"{i}. {error}", file=sys.stderr)
    print("=" * 80, file=sys.stderr)
    sys.exit(1)
