"""Layered health checks reduced to a single issue count."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import requests

from .. import catalog
from ..config import DeploySettings
from ..errors import DeployError
from ..local.session import ActionRunner
from ..probe.readiness import HttpTarget, TcpTarget, container_status
from ..utils.logging import banner, get_logger

logger = get_logger(__name__)

MAX_EXIT_CODE = 255


class HealthCheckFailed(DeployError):
    """A check could not confirm its target; counted as an issue, never fatal."""


class CheckKind(Enum):
    TCP = "tcp"
    HTTP = "http"
    CONTAINER = "container-status"


class Layer(Enum):
    """Display order of the check layers."""

    INFRASTRUCTURE = "Infrastructure Services"
    CONTAINERS = "Docker Containers"
    INTERNAL = "Backend Services (Internal)"
    PROXY = "Nginx Gateway (External)"
    ROUTES = "API Routes (via Nginx)"
    FRONTEND = "Frontend"


LAYER_ORDER = list(Layer)


@dataclass(frozen=True)
class HealthCheck:
    name: str
    kind: CheckKind
    target: str
    timeout: float = 5.0


@dataclass
class CheckResult:
    check: HealthCheck
    passed: bool
    detail: str = ""


@dataclass
class HealthReport:
    results: Dict[Layer, List[CheckResult]] = field(default_factory=dict)

    def issues(self, layer: Layer) -> int:
        return sum(1 for result in self.results.get(layer, []) if not result.passed)

    @property
    def issue_count(self) -> int:
        return sum(self.issues(layer) for layer in self.results)

    @property
    def checks_run(self) -> int:
        return sum(len(results) for results in self.results.values())

    @property
    def healthy(self) -> bool:
        return self.issue_count == 0

    @property
    def exit_code(self) -> int:
        return min(self.issue_count, MAX_EXIT_CODE)


Checker = Callable[[HealthCheck], bool]


class HealthAggregator:
    """Runs every check (no fail-fast) and sums failures per layer."""

    def __init__(
        self,
        runner: Optional[ActionRunner] = None,
        *,
        http_session: Optional[requests.Session] = None,
        checkers: Optional[Dict[CheckKind, Checker]] = None,
    ) -> None:
        self.runner = runner
        self.http_session = http_session or requests.Session()
        self.checkers: Dict[CheckKind, Checker] = {
            CheckKind.TCP: self._check_tcp,
            CheckKind.HTTP: self._check_http,
            CheckKind.CONTAINER: self._check_container,
        }
        if checkers:
            self.checkers.update(checkers)

    def run_all(self, checks: Dict[Layer, Sequence[HealthCheck]]) -> HealthReport:
        report = HealthReport()
        for layer in LAYER_ORDER:
            if layer not in checks:
                continue
            logger.info("")
            logger.info("%s:", layer.value)
            report.results[layer] = [self.run_one(check) for check in checks[layer]]

        logger.info("")
        logger.info("=" * 42)
        if report.healthy:
            logger.info("  All Services Healthy!")
        else:
            logger.error("  %d issue(s) detected", report.issue_count)
            logger.info("Troubleshooting commands:")
            logger.info("  View logs:    docker compose -f docker/docker-compose.prod.yml logs -f")
            logger.info("  Restart:      docker compose -f docker/docker-compose.prod.yml restart")
            logger.info("  Check nginx:  nginx -t && systemctl status nginx")
        logger.info("=" * 42)
        return report

    def run_one(self, check: HealthCheck) -> CheckResult:
        try:
            passed = self.checkers[check.kind](check)
            detail = ""
        except HealthCheckFailed as exc:
            passed, detail = False, str(exc)

        label = f"{check.name}:"
        if passed:
            logger.info("  %-20s ✓ UP (%s)", label, check.target)
        else:
            logger.warning("  %-20s ✗ DOWN (%s)", label, detail or check.target)
        return CheckResult(check=check, passed=passed, detail=detail)

    def _check_tcp(self, check: HealthCheck) -> bool:
        host, _, port = check.target.rpartition(":")
        if not host or not port.isdigit():
            raise HealthCheckFailed(f"invalid tcp target {check.target!r}")
        return TcpTarget(host, int(port), timeout=check.timeout).probe()

    def _check_http(self, check: HealthCheck) -> bool:
        return HttpTarget(check.target, timeout=check.timeout, session=self.http_session).probe()

    def _check_container(self, check: HealthCheck) -> bool:
        if self.runner is None:
            raise HealthCheckFailed("no runner available for container checks")
        status = container_status(self.runner, check.target)
        if status != "running":
            raise HealthCheckFailed(f"{check.target} {status}")
        return True


def platform_checks(settings: DeploySettings) -> Dict[Layer, List[HealthCheck]]:
    """The MoveX check battery for the resolved settings."""
    ports = settings.service_ports.as_dict()
    edge = settings.server_ip
    api_base = f"http://{edge}:{settings.nginx_api_port}"

    return {
        Layer.INFRASTRUCTURE: [
            HealthCheck("PostgreSQL", CheckKind.TCP, f"{settings.db_host}:{settings.db_port}"),
            HealthCheck("Redis", CheckKind.TCP, f"{settings.redis_host}:{settings.redis_port}"),
        ],
        Layer.CONTAINERS: [
            HealthCheck(name, CheckKind.CONTAINER, container) for name, container in catalog.CONTAINERS
        ],
        Layer.INTERNAL: [
            HealthCheck(label, CheckKind.HTTP, f"http://localhost:{ports[key]}{catalog.HEALTH_PATH}")
            for label, key, _ in catalog.API_ROUTES
        ],
        Layer.PROXY: [
            HealthCheck("API Gateway", CheckKind.TCP, f"{edge}:{settings.nginx_api_port}"),
            HealthCheck("Frontend", CheckKind.TCP, f"{edge}:{settings.nginx_frontend_port}"),
        ],
        Layer.ROUTES: [
            HealthCheck(f"GET {prefix}", CheckKind.HTTP, f"{api_base}{prefix}{catalog.HEALTH_PATH}")
            for _, _, prefix in catalog.API_ROUTES
        ],
        Layer.FRONTEND: [
            HealthCheck("Frontend App", CheckKind.HTTP, f"http://{edge}:{settings.nginx_frontend_port}/"),
        ],
    }


def run_health_check(settings: DeploySettings, runner: ActionRunner) -> HealthReport:
    banner(logger, "MoveX Health Check")
    return HealthAggregator(runner).run_all(platform_checks(settings))
