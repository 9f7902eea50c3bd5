# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and alerting configuration"""

    # Monitoring Configuration
    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")
    HEALTH_CHECK_ENDPOINT = os.environ.get("HEALTH_CHECK_ENDPOINT", "/health")

    # Error Alerting Configuration
    ERROR_ALERTING_ENABLED = os.environ.get("ERROR_ALERTING_ENABLED", "false").lower() == "true"
    ERROR_EMAIL_RECIPIENTS = (
        os.environ.get("ERROR_EMAIL_RECIPIENTS", "").split(",")
        if os.environ.get("ERROR_EMAIL_RECIPIENTS")
        else []
    )

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    # Email Alerting
    ENABLE_EMAIL_ALERTS = os.environ.get("ENABLE_EMAIL_ALERTS", "false").lower() == "true"
    MAIL_SERVER = os.environ.get("MAIL_SERVER")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", 587))
    MAIL_USE_TLS = os.environ.get("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM = os.environ.get("MAIL_FROM", "noreply@example.com")
    ADMIN_EMAILS = (
        os.environ.get("ADMIN_EMAILS", "").split(",") if os.environ.get("ADMIN_EMAILS") else []
    )

    # Rate Limiting for Alerts
    EMAIL_ALERT_RATE_LIMIT = int(os.environ.get("EMAIL_ALERT_RATE_LIMIT", 5))
    SLACK_ALERT_RATE_LIMIT = int(os.environ.get("SLACK_ALERT_RATE_LIMIT", 10))
    WEBHOOK_ALERT_RATE_LIMIT = int(os.environ.get("WEBHOOK_ALERT_RATE_LIMIT", 20))

    # Slack Integration
    ENABLE_SLACK_ALERTS = os.environ.get("ENABLE_SLACK_ALERTS", "false").lower() == "true"
    SLACK_WEBHOOK_URL = os.environ.get("SLACK_WEBHOOK_URL")

    # Webhook Integration
    ENABLE_WEBHOOK_ALERTS = os.environ.get("ENABLE_WEBHOOK_ALERTS", "false").lower() == "true"
    WEBHOOK_URL = os.environ.get("WEBHOOK_URL")
    WEBHOOK_HEADERS = {}

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "Vista Reconcile")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True
    ENABLE_EMAIL_ALERTS = False  # Don't spam emails in development
    ENABLE_SLACK_ALERTS = False
    ENABLE_WEBHOOK_ALERTS = False


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration
    ENABLE_EMAIL_ALERTS = True
    ENABLE_SLACK_ALERTS = True
    ENABLE_WEBHOOK_ALERTS = True

    # More aggressive rate limiting in production
    EMAIL_ALERT_RATE_LIMIT = 3
    SLACK_ALERT_RATE_LIMIT = 5
    WEBHOOK_ALERT_RATE_LIMIT = 10


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    ERROR_ALERTING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False
    ENABLE_EMAIL_ALERTS = False
    ENABLE_SLACK_ALERTS = False
    ENABLE_WEBHOOK_ALERTS = False



_REQUEST_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10)


class ReconciliationMonitoring:
    """Prometheus metric helpers for the Vista reconciliation engine."""

    ROWS_UPSERTED = Counter(
        "vista_rows_upserted_total",
        "Vista rows processed by the upsert engine.",
        labelnames=("entity_type", "outcome"),
    )
    AUTO_MATCH_OUTCOMES = Counter(
        "vista_auto_match_outcomes_total",
        "Auto-match decisions per Vista record.",
        labelnames=("entity_type", "outcome"),
    )
    PROMOTIONS = Counter(
        "vista_promotions_total",
        "Internal entities created from unmatched Vista records.",
        labelnames=("entity_type", "outcome"),
    )
    INGEST_LATENCY = Histogram(
        "vista_ingest_seconds",
        "Wall-clock duration of a workbook ingest.",
        labelnames=("status",),
        buckets=(0.5, 1, 5, 15, 30, 60, 120, 300, 600),
    )
    REQUEST_LATENCY = Histogram(
        "vista_api_request_seconds",
        "Latency histogram for Vista reconciliation API endpoints.",
        labelnames=("endpoint", "status"),
        buckets=_REQUEST_BUCKETS,
    )

    @classmethod
    def record_upsert(cls, *, entity_type: str, new: int, updated: int, skipped: int, failed: int):
        for outcome, count in (("new", new), ("updated", updated), ("skipped", skipped), ("failed", failed)):
            if count:
                cls.ROWS_UPSERTED.labels(entity_type=entity_type, outcome=outcome).inc(count)

    @classmethod
    def record_auto_match(cls, *, entity_type: str, outcome: str):
        cls.AUTO_MATCH_OUTCOMES.labels(entity_type=entity_type, outcome=outcome).inc()

    @classmethod
    def record_promotion(cls, *, entity_type: str, outcome: str, count: int = 1):
        if count:
            cls.PROMOTIONS.labels(entity_type=entity_type, outcome=outcome).inc(count)

    @classmethod
    def record_ingest(cls, *, duration_seconds: float, status: str):
        cls.INGEST_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))

    @classmethod
    def record_request(cls, *, endpoint: str, duration_seconds: float, status: str):
        cls.REQUEST_LATENCY.labels(endpoint=endpoint, status=status).observe(max(duration_seconds, 0.0))
