"""Environment resolution and deployment settings for MoveX."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from dotenv import find_dotenv

from .errors import DeployError
from . import paths
from .paths import DEFAULT_DEPLOY_DIR, DEFAULT_FRONTEND_ROOT, DEFAULT_LOG_DIR, PROJECT_ROOT
from .utils.logging import get_logger

logger = get_logger(__name__)

ENV_FILE_VARIABLE = "MOVEX_ENV_FILE"

# Keys required by operations that touch the source repositories
REPOSITORY_KEYS = ("GITHUB_TOKEN", "GITHUB_ORG", "GITHUB_BRANCH")

_ASSIGNMENT = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*=(.*)$")


class ConfigurationNotFound(DeployError, FileNotFoundError):
    """Raised when none of the candidate configuration sources exist."""

    def __init__(self, searched: Sequence[Path]) -> None:
        self.searched = list(searched)
        locations = ", ".join(str(p) for p in self.searched) or "<no candidates>"
        super().__init__(
            f"Could not find configuration file. Looked in: {locations}. "
            "Copy .env.example to .env and configure it."
        )


class ConfigurationIncomplete(DeployError):
    """Raised when required keys are missing or empty."""

    def __init__(self, missing: Sequence[str], source: Optional[Path] = None) -> None:
        self.missing = list(missing)
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(
            f"Missing required environment variables{where}: {', '.join(self.missing)}"
        )


class ConfigurationInvalid(DeployError):
    """Raised when a value cannot be converted to the expected type."""


class ConfigurationSet(Mapping[str, str]):
    """Read-only mapping of configuration keys resolved for one invocation."""

    def __init__(self, values: Optional[Mapping[str, str]] = None, source: Optional[Path] = None) -> None:
        self._values: Dict[str, str] = dict(values or {})
        self.source = source

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ConfigurationSet(source={self.source!s}, keys={sorted(self._values)})"

    def validate(self, required: Iterable[str]) -> None:
        """Ensure every key in ``required`` resolves to a non-empty value.

        All missing keys are reported together.
        """
        missing = [key for key in required if not self._values.get(key, "").strip()]
        if missing:
            for key in missing:
                logger.error("  - %s", key)
            raise ConfigurationIncomplete(missing, self.source)
        logger.debug("All required environment variables are set")


def parse_env_text(text: str) -> Dict[str, str]:
    """Parse newline-delimited ``KEY=VALUE`` text.

    Blank lines, ``#`` comments and lines that are not assignments are skipped.
    Values are kept verbatim apart from trailing whitespace; later duplicates win.
    """
    values: Dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _ASSIGNMENT.match(line)
        if not match:
            continue
        key, value = match.group(1), match.group(2)
        values[key] = value.rstrip()
    return values


def default_candidates(explicit: Optional[str] = None, project_root: Optional[Path] = None) -> List[Path]:
    """Candidate env files in priority order, without duplicates."""
    root = project_root or PROJECT_ROOT
    candidates: List[Path] = []
    if explicit:
        candidates.append(Path(explicit))
    from_env = os.getenv(ENV_FILE_VARIABLE)
    if from_env:
        candidates.append(Path(from_env))
    candidates.append(root / ".env")
    discovered = find_dotenv(usecwd=True)
    if discovered:
        candidates.append(Path(discovered))

    unique: List[Path] = []
    seen = set()
    for candidate in candidates:
        key = str(candidate.expanduser().absolute())
        if key not in seen:
            seen.add(key)
            unique.append(candidate)
    return unique


def resolve(candidates: Sequence[Path], required: Iterable[str] = ()) -> ConfigurationSet:
    """Load the first existing candidate and validate ``required`` keys.

    Later candidates are never merged in.
    """
    for candidate in candidates:
        if candidate.is_file():
            logger.info("Loading environment from: %s", candidate)
            values = parse_env_text(candidate.read_text(encoding="utf-8"))
            config_set = ConfigurationSet(values, source=candidate)
            config_set.validate(required)
            logger.info("Environment loaded successfully (%d keys)", len(config_set))
            return config_set

    raise ConfigurationNotFound(candidates)


def _int_value(values: Mapping[str, str], key: str, default: int) -> int:
    raw = values.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationInvalid(f"{key} must be an integer, got {raw!r}") from exc


def _str_value(values: Mapping[str, str], key: str, default: str) -> str:
    raw = values.get(key, "").strip()
    return raw or default


@dataclass
class ServicePorts:
    """Internal (container-published) ports of the backend services."""

    system: int = 8180
    masterdata: int = 8181
    oms: int = 8182
    tms: int = 8183
    auth: int = 8185

    def as_dict(self) -> Dict[str, int]:
        return {
            "system": self.system,
            "masterdata": self.masterdata,
            "oms": self.oms,
            "tms": self.tms,
            "auth": self.auth,
        }


@dataclass
class DeploySettings:
    """Typed view over a resolved ConfigurationSet, passed explicitly to each stage."""

    github_token: str = ""
    github_org: str = ""
    github_branch: str = ""
    deploy_dir: Path = DEFAULT_DEPLOY_DIR
    log_dir: Path = DEFAULT_LOG_DIR
    frontend_root: Path = DEFAULT_FRONTEND_ROOT
    project_root: Path = field(default_factory=lambda: PROJECT_ROOT)
    db_host: str = "localhost"
    db_port: int = 5435
    db_user: str = "root"
    db_pass: str = "root"
    redis_host: str = "localhost"
    redis_port: int = 6389
    redis_password: str = "changeme"
    server_ip: str = "localhost"
    nginx_api_port: int = 8080
    nginx_frontend_port: int = 8084
    ssh_port: int = 2226
    service_ports: ServicePorts = field(default_factory=ServicePorts)
    values: ConfigurationSet = field(default_factory=ConfigurationSet)

    @classmethod
    def from_config(cls, config_set: ConfigurationSet, project_root: Optional[Path] = None) -> "DeploySettings":
        values = config_set
        defaults = cls()
        ports_default = ServicePorts()
        return cls(
            github_token=values.get("GITHUB_TOKEN", "").strip(),
            github_org=values.get("GITHUB_ORG", "").strip(),
            github_branch=values.get("GITHUB_BRANCH", "").strip(),
            deploy_dir=Path(_str_value(values, "DEPLOY_DIR", str(defaults.deploy_dir))),
            log_dir=Path(_str_value(values, "LOG_DIR", str(defaults.log_dir))),
            frontend_root=Path(_str_value(values, "FRONTEND_ROOT", str(defaults.frontend_root))),
            project_root=project_root or defaults.project_root,
            db_host=_str_value(values, "DB_HOST", defaults.db_host),
            db_port=_int_value(values, "DB_PORT", defaults.db_port),
            db_user=_str_value(values, "DB_USER", defaults.db_user),
            db_pass=_str_value(values, "DB_PASS", defaults.db_pass),
            redis_host=_str_value(values, "REDIS_HOST", defaults.redis_host),
            redis_port=_int_value(values, "REDIS_PORT", defaults.redis_port),
            redis_password=_str_value(values, "REDIS_PASSWORD", defaults.redis_password),
            server_ip=_str_value(values, "SERVER_IP", defaults.server_ip),
            nginx_api_port=_int_value(values, "NGINX_API_PORT", defaults.nginx_api_port),
            nginx_frontend_port=_int_value(values, "NGINX_FRONTEND_PORT", defaults.nginx_frontend_port),
            ssh_port=_int_value(values, "SSH_PORT", defaults.ssh_port),
            service_ports=ServicePorts(
                system=_int_value(values, "PORT_SYSTEM", ports_default.system),
                masterdata=_int_value(values, "PORT_MASTERDATA", ports_default.masterdata),
                oms=_int_value(values, "PORT_OMS", ports_default.oms),
                tms=_int_value(values, "PORT_TMS", ports_default.tms),
                auth=_int_value(values, "PORT_AUTH", ports_default.auth),
            ),
            values=config_set,
        )

    @property
    def source_dir(self) -> Path:
        return paths.source_dir(self.deploy_dir)

    def placeholders(self) -> Dict[str, str]:
        """Values substituted into configuration templates."""
        resolved = {
            "SERVER_IP": self.server_ip,
            "NGINX_API_PORT": str(self.nginx_api_port),
            "NGINX_FRONTEND_PORT": str(self.nginx_frontend_port),
            "DB_HOST": self.db_host,
            "DB_PORT": str(self.db_port),
            "DB_USER": self.db_user,
            "DB_PASS": self.db_pass,
            "REDIS_HOST": self.redis_host,
            "REDIS_PORT": str(self.redis_port),
            "REDIS_PASSWORD": self.redis_password,
            "SSH_PORT": str(self.ssh_port),
        }
        for name, port in self.service_ports.as_dict().items():
            resolved[f"PORT_{name.upper()}"] = str(port)
        return resolved

    def child_env(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment for external actions: process env overlaid with resolved values."""
        env = os.environ.copy()
        env.update(self.values)
        if extra:
            env.update(extra)
        return env


def load_settings(
    env_file: Optional[str] = None,
    required: Iterable[str] = (),
    *,
    project_root: Optional[Path] = None,
    optional: bool = False,
) -> DeploySettings:
    """Resolve configuration and build settings.

    With ``optional`` a missing source yields defaults instead of an error.
    """
    candidates = default_candidates(env_file, project_root)
    try:
        config_set = resolve(candidates, required)
    except ConfigurationNotFound:
        if not optional:
            raise
        logger.warning("No environment file found, using defaults")
        config_set = ConfigurationSet()
    return DeploySettings.from_config(config_set, project_root=project_root)
