# flask_app/utils/error_handler.py

"""
Error alerting for unhandled request failures.

Alerts go out by email (smtplib), Slack or a generic webhook (requests), each
rate limited per error key over a rolling hour. Delivery failures are logged
and never mask the original error.
"""

import smtplib
import traceback
from datetime import datetime, timedelta, timezone
from email.mime.text import MIMEText

import requests
from flask import current_app, has_request_context, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from flask_app.models import db
from flask_app.utils.permissions import get_current_organization

ALERT_WINDOW = timedelta(hours=1)
DEFAULT_RATE_LIMIT = 5


def send_email(app, subject, body, recipients):
    """Send a plain-text email using the MAIL_* settings."""
    message = MIMEText(body)
    message["Subject"] = subject
    message["From"] = app.config.get("MAIL_FROM", "noreply@example.com")
    message["To"] = ", ".join(recipients)

    server = smtplib.SMTP(app.config["MAIL_SERVER"], app.config.get("MAIL_PORT", 587), timeout=10)
    try:
        if app.config.get("MAIL_USE_TLS", True):
            server.starttls()
        if app.config.get("MAIL_USERNAME"):
            server.login(app.config["MAIL_USERNAME"], app.config.get("MAIL_PASSWORD"))
        server.sendmail(message["From"], recipients, message.as_string())
    finally:
        server.quit()


class ErrorAlertingSystem:
    """Fan an error out to the configured alert channels."""

    def __init__(self, app=None):
        self.app = app
        self.error_counts = {}
        self.alert_methods = []
        self.rate_limits = {}
        if app is not None:
            self.configure(app)

    def configure(self, app):
        self.app = app
        self.alert_methods = []
        if app.config.get("ENABLE_EMAIL_ALERTS"):
            self.alert_methods.append("email")
        if app.config.get("ENABLE_SLACK_ALERTS"):
            self.alert_methods.append("slack")
        if app.config.get("ENABLE_WEBHOOK_ALERTS"):
            self.alert_methods.append("webhook")
        self.rate_limits = {
            "email": app.config.get("EMAIL_ALERT_RATE_LIMIT", DEFAULT_RATE_LIMIT),
            "slack": app.config.get("SLACK_ALERT_RATE_LIMIT", DEFAULT_RATE_LIMIT),
            "webhook": app.config.get("WEBHOOK_ALERT_RATE_LIMIT", DEFAULT_RATE_LIMIT),
        }

    def should_send_alert(self, alert_type, error_key):
        """Record an attempt and report whether it is within the hourly limit."""
        now = datetime.now(timezone.utc)
        recent = [stamp for stamp in self.error_counts.get(error_key, []) if now - stamp < ALERT_WINDOW]
        limit = self.rate_limits.get(alert_type, DEFAULT_RATE_LIMIT)
        if len(recent) >= limit:
            self.error_counts[error_key] = recent
            return False
        recent.append(now)
        self.error_counts[error_key] = recent
        return True

    def _summary(self, error, context):
        context = context or {}
        endpoint = context.get("endpoint") or "unknown"
        lines = [
            f"Application: {self.app.config.get('APP_NAME', 'Vista Reconcile')}",
            f"Error: {type(error).__name__}: {error}",
            f"Endpoint: {endpoint}",
        ]
        for key in ("method", "user_id", "organization_id"):
            if context.get(key) is not None:
                lines.append(f"{key}: {context[key]}")
        lines.append("")
        lines.append("".join(traceback.format_exception(type(error), error, error.__traceback__)))
        return endpoint, "\n".join(lines)

    def send_error_alert(self, error, context=None):
        if not self.alert_methods:
            return
        endpoint, body = self._summary(error, context)
        error_key = f"{type(error).__name__}_{endpoint}"
        subject = f"[{self.app.config.get('APP_NAME', 'Vista Reconcile')}] {type(error).__name__} at {endpoint}"

        for method in self.alert_methods:
            if not self.should_send_alert(method, error_key):
                self.app.logger.info("Alert suppressed by rate limit", extra={"alert_method": method})
                continue
            if method == "email":
                self._send_email_alert(subject, body)
            elif method == "slack":
                self._send_slack_alert(subject, body)
            elif method == "webhook":
                self._send_webhook_alert(subject, body, error, endpoint)

    def _send_email_alert(self, subject, body):
        recipients = [r for r in (self.app.config.get("ADMIN_EMAILS") or []) if r]
        if not self.app.config.get("MAIL_SERVER") or not recipients:
            self.app.logger.warning("Email alerting enabled but MAIL_SERVER or ADMIN_EMAILS is not configured")
            return
        try:
            send_email(self.app, subject, body, recipients)
        except (smtplib.SMTPException, OSError) as exc:
            self.app.logger.error(f"Failed to send error alert email: {exc}")

    def _send_slack_alert(self, subject, body):
        url = self.app.config.get("SLACK_WEBHOOK_URL")
        if not url:
            self.app.logger.warning("Slack alerting enabled but SLACK_WEBHOOK_URL is not configured")
            return
        try:
            response = requests.post(url, json={"text": f"*{subject}*\n```{body[:2500]}```"}, timeout=10)
            response.raise_for_status()
        except requests.RequestException as exc:
            self.app.logger.error(f"Failed to send Slack alert: {exc}")

    def _send_webhook_alert(self, subject, body, error, endpoint):
        url = self.app.config.get("WEBHOOK_URL")
        if not url:
            self.app.logger.warning("Webhook alerting enabled but WEBHOOK_URL is not configured")
            return
        payload = {
            "subject": subject,
            "error_type": type(error).__name__,
            "message": str(error),
            "endpoint": endpoint,
            "details": body,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            response = requests.post(
                url,
                json=payload,
                headers=self.app.config.get("WEBHOOK_HEADERS") or {},
                timeout=10,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            self.app.logger.error(f"Failed to send webhook alert: {exc}")


error_alerter = ErrorAlertingSystem()


def _request_context():
    if not has_request_context():
        return {}
    organization = get_current_organization()
    return {
        "endpoint": request.path,
        "method": request.method,
        "user_id": current_user.get_id() if current_user.is_authenticated else None,
        "organization_id": organization.id if organization else None,
    }


def init_error_alerting(app):
    """
    Register JSON error handlers and, when enabled, alerting for 500s.
    """
    error_alerter.configure(app)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc):
        return jsonify({"error": exc.description or exc.name}), exc.code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc):
        db.session.rollback()
        current_app.logger.exception("Database error while handling request")
        if current_app.config.get("ERROR_ALERTING_ENABLED"):
            error_alerter.send_error_alert(exc, _request_context())
        return jsonify({"error": "A database error occurred."}), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc):
        db.session.rollback()
        current_app.logger.exception("Unhandled error while handling request")
        if current_app.config.get("ERROR_ALERTING_ENABLED"):
            error_alerter.send_error_alert(exc, _request_context())
        return jsonify({"error": "An internal error occurred."}), 500

    return error_alerter
