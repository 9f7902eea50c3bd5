"""Tests for health probes, request statistics and the Prometheus endpoint"""

from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from config.monitoring import ReconciliationMonitoring
from flask_app.utils.monitoring import HealthChecker, PerformanceMonitor


class TestHealthEndpoints:
    def test_basic_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_liveness_and_readiness(self, client):
        assert client.get("/health/live").get_json()["status"] == "alive"
        assert client.get("/health/ready").get_json()["status"] == "ready"

    def test_detailed_health_reports_reconciliation_state(self, app, client, tmp_path):
        with patch.object(app, "instance_path", str(tmp_path)):
            response = client.get("/health/detailed")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["reconciliation"]["enabled"] is True
        assert data["version"]


class TestHealthCheckRobustness:
    """Database failures turn into 503s"""

    def test_basic_health_check_database_error(self, app):
        health_checker = HealthChecker()
        health_checker.app = app

        with patch("flask_app.utils.monitoring.db.session.execute") as mock_execute:
            mock_execute.side_effect = SQLAlchemyError("Database connection lost")
            response, status_code = health_checker.basic_health_check()

        assert status_code == 503
        data = response.get_json()
        assert data["status"] == "unhealthy"
        assert "Database connection lost" in data["error"]

    def test_detailed_health_check_database_error(self, app):
        health_checker = HealthChecker()
        health_checker.app = app

        with patch("flask_app.utils.monitoring.db.session.execute") as mock_execute:
            mock_execute.side_effect = SQLAlchemyError("Database error")
            response, status_code = health_checker.detailed_health_check()

        assert status_code == 503
        data = response.get_json()
        assert data["status"] == "degraded"
        assert data["checks"]["database"]["status"] == "unhealthy"
        assert data["checks"]["reconciliation"]["status"] == "healthy"

    def test_detailed_health_check_missing_instance_folder(self, app, tmp_path):
        health_checker = HealthChecker()
        health_checker.app = app

        with patch.object(app, "instance_path", str(tmp_path / "missing")):
            response, status_code = health_checker.detailed_health_check()

        assert status_code == 503
        assert response.get_json()["checks"]["application"]["status"] == "unhealthy"

    def test_readiness_check_database_error(self, app):
        health_checker = HealthChecker()
        health_checker.app = app

        with patch("flask_app.utils.monitoring.db.session.execute") as mock_execute:
            mock_execute.side_effect = SQLAlchemyError("Database error")
            response, status_code = health_checker.readiness_check()

        assert status_code == 503
        assert response.get_json()["status"] == "not_ready"


class TestPerformanceMonitor:
    def test_records_requests_per_endpoint(self):
        monitor = PerformanceMonitor()

        monitor.record_request(0.2, 200, "vista.vista_stats")
        monitor.record_request(0.4, 200, "vista.vista_stats")
        monitor.record_request(0.1, 503, "health_check")

        metrics = monitor.get_metrics()
        assert metrics["total_requests"] == 3
        assert metrics["total_errors"] == 1
        assert metrics["endpoints"]["vista.vista_stats"] == {"count": 2, "errors": 0, "average_response_time": 0.3}
        assert metrics["endpoints"]["health_check"]["errors"] == 1

    def test_handles_missing_values(self):
        monitor = PerformanceMonitor()

        monitor.record_request(None, None, None)
        monitor.record_request(-1, 200, "unknown")

        metrics = monitor.get_metrics()
        assert metrics["total_requests"] == 2
        assert metrics["average_response_time"] == 0.0
        assert metrics["endpoints"]["unknown"]["count"] == 2

    def test_record_error(self, app):
        monitor = PerformanceMonitor()
        monitor.app = app

        monitor.record_error(RuntimeError("boom"), None)

        metrics = monitor.get_metrics()
        assert metrics["total_errors"] == 1
        assert metrics["endpoints"]["unknown"]["errors"] == 1
        assert metrics["endpoints"]["unknown"]["average_response_time"] == 0.0

    def test_empty_metrics(self):
        assert PerformanceMonitor().get_metrics() == {
            "total_requests": 0,
            "total_errors": 0,
            "average_response_time": 0.0,
            "endpoints": {},
        }


class TestPrometheusMetrics:
    def test_metrics_endpoint_exports_reconciliation_series(self, logged_in_manager, tenant_headers):
        client, _ = logged_in_manager
        client.get("/api/vista/stats", headers=tenant_headers)
        ReconciliationMonitoring.record_auto_match(entity_type="customers", outcome="exact_key")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        body = response.get_data(as_text=True)
        assert 'vista_api_request_seconds_count{endpoint="vista.vista_stats",status="200"}' in body
        assert 'vista_auto_match_outcomes_total{entity_type="customers",outcome="exact_key"}' in body
