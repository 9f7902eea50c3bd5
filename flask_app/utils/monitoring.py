# flask_app/utils/monitoring.py

"""
Health probes, in-process request statistics and the Prometheus endpoint.
"""

import os
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone

from flask import Response, g, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from flask_app.models import db


def _utc_timestamp():
    return datetime.now(timezone.utc).isoformat()


class HealthChecker:
    """Liveness, readiness and dependency checks."""

    def __init__(self, app=None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        health_endpoint = app.config.get("HEALTH_CHECK_ENDPOINT", "/health")
        app.add_url_rule(health_endpoint, "health_check", self.basic_health_check)
        app.add_url_rule(f"{health_endpoint}/detailed", "health_detailed", self.detailed_health_check)
        app.add_url_rule(f"{health_endpoint}/ready", "health_ready", self.readiness_check)
        app.add_url_rule(f"{health_endpoint}/live", "health_live", self.liveness_check)

    def _ping_database(self):
        db.session.execute(text("SELECT 1"))

    def basic_health_check(self):
        try:
            self._ping_database()
        except SQLAlchemyError as exc:
            self.app.logger.error(f"Health check failed: {exc}")
            return jsonify({"status": "unhealthy", "error": str(exc), "timestamp": _utc_timestamp()}), 503
        return jsonify({"status": "healthy", "timestamp": _utc_timestamp()}), 200

    def _check_database(self):
        started = time.perf_counter()
        try:
            self._ping_database()
        except SQLAlchemyError as exc:
            return {"status": "unhealthy", "error": str(exc)}
        return {"status": "healthy", "response_time_ms": round((time.perf_counter() - started) * 1000, 2)}

    def _check_application(self):
        instance_path = self.app.instance_path
        if not os.path.exists(instance_path):
            return {"status": "unhealthy", "error": f"Instance folder missing: {instance_path}"}
        return {"status": "healthy", "instance_path": instance_path}

    def _check_reconciliation(self):
        state = self.app.extensions.get("reconciliation", {})
        return {
            "status": "healthy",
            "enabled": bool(state.get("enabled")),
            "worker_enabled": bool(state.get("worker_enabled")),
        }

    def detailed_health_check(self):
        checks = {
            "database": self._check_database(),
            "application": self._check_application(),
            "reconciliation": self._check_reconciliation(),
        }
        healthy = all(check["status"] == "healthy" for check in checks.values())
        payload = {
            "status": "healthy" if healthy else "degraded",
            "timestamp": _utc_timestamp(),
            "version": self.app.config.get("APP_VERSION"),
            "checks": checks,
        }
        return jsonify(payload), 200 if healthy else 503

    def readiness_check(self):
        try:
            self._ping_database()
        except SQLAlchemyError as exc:
            return jsonify({"status": "not_ready", "error": str(exc)}), 503
        return jsonify({"status": "ready", "timestamp": _utc_timestamp()}), 200

    def liveness_check(self):
        return jsonify({"status": "alive", "timestamp": _utc_timestamp()}), 200


class PerformanceMonitor:
    """Request counts, error counts and latency per endpoint since start-up."""

    def __init__(self, app=None):
        self.app = app
        self._lock = threading.Lock()
        self.request_count = 0
        self.error_count = 0
        self.total_duration = 0.0
        self.endpoint_stats = defaultdict(lambda: {"count": 0, "total_duration": 0.0, "errors": 0})
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app

        @app.before_request
        def _start_timer():
            g.request_started_at = time.perf_counter()

        @app.after_request
        def _record(response):
            started = g.pop("request_started_at", None)
            if started is not None:
                self.record_request(time.perf_counter() - started, response.status_code, request.endpoint)
            return response

        @app.teardown_request
        def _record_failure(exc):
            if exc is not None:
                self.record_error(exc, request.endpoint)

    def record_request(self, duration, status_code, endpoint):
        duration = max(float(duration or 0.0), 0.0)
        endpoint = endpoint or "unknown"
        with self._lock:
            self.request_count += 1
            self.total_duration += duration
            stats = self.endpoint_stats[endpoint]
            stats["count"] += 1
            stats["total_duration"] += duration
            if status_code is not None and int(status_code) >= 500:
                self.error_count += 1
                stats["errors"] += 1

    def record_error(self, exception, endpoint):
        endpoint = endpoint or "unknown"
        with self._lock:
            self.error_count += 1
            self.endpoint_stats[endpoint]["errors"] += 1
        if self.app is not None and exception is not None:
            self.app.logger.debug(
                "Request error recorded",
                extra={"error_type": type(exception).__name__, "endpoint": endpoint},
            )

    def get_metrics(self):
        with self._lock:
            average = self.total_duration / self.request_count if self.request_count else 0.0
            return {
                "total_requests": self.request_count,
                "total_errors": self.error_count,
                "average_response_time": round(average, 4),
                "endpoints": {
                    name: {
                        "count": stats["count"],
                        "errors": stats["errors"],
                        "average_response_time": round(stats["total_duration"] / stats["count"], 4)
                        if stats["count"]
                        else 0.0,
                    }
                    for name, stats in self.endpoint_stats.items()
                },
            }


health_checker = HealthChecker()
performance_monitor = PerformanceMonitor()


def metrics_endpoint():
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)


def init_monitoring(app):
    """Register health probes and /metrics; per-request statistics only when MONITORING_ENABLED."""
    health_checker.init_app(app)
    app.add_url_rule(app.config.get("METRICS_ENDPOINT", "/metrics"), "metrics", metrics_endpoint)
    if app.config.get("MONITORING_ENABLED"):
        performance_monitor.init_app(app)
    return health_checker, performance_monitor
