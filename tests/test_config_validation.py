import pytest

from config.validation import validate_and_exit, validate_environment


@pytest.fixture
def production_env(monkeypatch):
    """A valid production environment; tests break one setting at a time"""
    monkeypatch.setenv("SECRET_KEY", "a" * 64)
    monkeypatch.setenv("DATABASE_URL", "postgresql://vista@db/vista")
    for key in (
        "RECONCILE_AUTO_MATCH_THRESHOLD",
        "RECONCILE_AUTO_MATCH_MARGIN",
        "RECONCILE_DUPLICATE_FLOOR",
        "RECONCILE_BAND_HIGH",
        "RECONCILE_BAND_MEDIUM",
        "RECONCILE_WORKER_ENABLED",
        "CELERY_BROKER_URL",
        "ENABLE_EMAIL_ALERTS",
        "ENABLE_SLACK_ALERTS",
        "ENABLE_WEBHOOK_ALERTS",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_non_production_is_not_validated(monkeypatch):
    monkeypatch.delenv("SECRET_KEY", raising=False)
    assert validate_environment("development") == (True, [])
    assert validate_environment("testing") == (True, [])


def test_valid_production_environment(production_env):
    assert validate_environment("production") == (True, [])


def test_default_secret_key_rejected(production_env):
    production_env.setenv("SECRET_KEY", "your-secret-key")

    is_valid, errors = validate_environment("production")

    assert not is_valid
    assert errors[0].startswith("SECRET_KEY is required")


def test_missing_database_url(production_env):
    production_env.delenv("DATABASE_URL")
    _, errors = validate_environment("production")
    assert any("DATABASE_URL" in error for error in errors)


@pytest.mark.parametrize("value", ["high", "1.5", "-0.2"])
def test_thresholds_must_be_fractions(production_env, value):
    production_env.setenv("RECONCILE_AUTO_MATCH_THRESHOLD", value)

    is_valid, errors = validate_environment("production")

    assert not is_valid
    assert errors == [error for error in errors if error.startswith("RECONCILE_AUTO_MATCH_THRESHOLD")]


def test_worker_requires_broker(production_env):
    production_env.setenv("RECONCILE_WORKER_ENABLED", "true")
    _, errors = validate_environment("production")
    assert errors == ["CELERY_BROKER_URL is required when RECONCILE_WORKER_ENABLED=true in production."]

    production_env.setenv("CELERY_BROKER_URL", "redis://cache:6379/0")
    assert validate_environment("production") == (True, [])


def test_alert_channels_require_settings(production_env):
    production_env.setenv("ENABLE_SLACK_ALERTS", "true")
    production_env.setenv("ENABLE_WEBHOOK_ALERTS", "yes")

    _, errors = validate_environment("production")

    assert "SLACK_WEBHOOK_URL is required when ENABLE_SLACK_ALERTS=true" in errors
    assert "WEBHOOK_URL is required when ENABLE_WEBHOOK_ALERTS=true" in errors


def test_validate_and_exit(production_env, capsys):
    production_env.delenv("DATABASE_URL")

    with pytest.raises(SystemExit) as excinfo:
        validate_and_exit("production")

    assert excinfo.value.code == 1
    assert "ENVIRONMENT VALIDATION FAILED" in capsys.readouterr().err
