"""Health checks across infrastructure, containers, services and routes."""

from .aggregator import (
    CheckKind,
    CheckResult,
    HealthAggregator,
    HealthCheck,
    HealthCheckFailed,
    HealthReport,
    Layer,
    platform_checks,
    run_health_check,
)

__all__ = [
    "CheckKind",
    "CheckResult",
    "HealthAggregator",
    "HealthCheck",
    "HealthCheckFailed",
    "HealthReport",
    "Layer",
    "platform_checks",
    "run_health_check",
]
