from .base import Config, DevelopmentConfig, ProductionConfig, TestingConfig
from .monitoring import (
    DevelopmentMonitoringConfig,
    MonitoringConfig,
    ProductionMonitoringConfig,
    ReconciliationMonitoring,
    TestingMonitoringConfig,
)

__all__ = [
    "Config",
    "DevelopmentConfig",
    "TestingConfig",
    "ProductionConfig",
    "MonitoringConfig",
    "DevelopmentMonitoringConfig",
    "ProductionMonitoringConfig",
    "TestingMonitoringConfig",
    "ReconciliationMonitoring",
]
