"""Readiness probing."""

from .readiness import (
    DependencyUnreachable,
    HttpTarget,
    ReadinessProber,
    ReadinessTarget,
    TcpTarget,
    container_status,
)

__all__ = [
    "DependencyUnreachable",
    "HttpTarget",
    "ReadinessProber",
    "ReadinessTarget",
    "TcpTarget",
    "container_status",
]
