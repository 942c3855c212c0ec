"""Bounded readiness polling for TCP ports, HTTP endpoints and containers."""

from __future__ import annotations

import socket
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

import requests

from ..errors import DeployError
from ..local.session import ActionRunner
from ..utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 30
DEFAULT_INTERVAL = 2.0


class DependencyUnreachable(DeployError):
    """Raised when a required dependency never became ready."""

    def __init__(self, target: str, attempts: int, hint: Optional[str] = None) -> None:
        self.target = target
        self.attempts = attempts
        message = f"{target} is not responding after {attempts} attempts"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)


class ReadinessTarget(Protocol):
    name: str

    def probe(self) -> bool:
        """Single reachability test; never raises."""


@dataclass
class TcpTarget:
    host: str
    port: int
    name: str = ""
    timeout: float = 2.0

    def __post_init__(self) -> None:
        if not self.name:
            self.name = f"{self.host}:{self.port}"

    def probe(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                return True
        except OSError:
            return False


@dataclass
class HttpTarget:
    url: str
    name: str = ""
    timeout: float = 5.0
    session: requests.Session = field(default_factory=requests.Session, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = self.url

    def probe(self) -> bool:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException:
            return False
        return 200 <= response.status_code < 300


def container_status(runner: ActionRunner, container: str) -> str:
    """``running``, ``exited`` ... or ``not found`` when docker knows no such container."""
    result = runner.check(f"docker inspect --format='{{{{.State.Status}}}}' {container}")
    if not result.ok or not result.stdout:
        return "not found"
    return result.stdout.strip()


class ReadinessProber:
    """Polls a target with a fixed sleep between attempts."""

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        interval: float = DEFAULT_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.interval = interval
        self._sleep = sleep

    def wait_until_ready(
        self,
        target: ReadinessTarget,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
    ) -> bool:
        """Return True on the first successful probe, False once the budget is spent."""
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        pause = interval if interval is not None else self.interval
        logger.info("Waiting for %s to be ready...", target.name)
        for attempt in range(1, attempts + 1):
            if target.probe():
                logger.info("%s is ready (attempt %d/%d)", target.name, attempt, attempts)
                return True
            logger.debug("%s not ready (attempt %d/%d)", target.name, attempt, attempts)
            if attempt < attempts:
                self._sleep(pause)
        logger.error("%s is not responding after %d attempts", target.name, attempts)
        return False

    def require(
        self,
        target: ReadinessTarget,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        hint: Optional[str] = None,
    ) -> None:
        """Blocking wait that raises DependencyUnreachable when the budget is exhausted."""
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        if not self.wait_until_ready(target, attempts, interval):
            raise DependencyUnreachable(target.name, attempts, hint)
