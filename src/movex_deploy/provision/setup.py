"""Host preparation: packages, directories and kernel tuning."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from ..config import DeploySettings
from ..errors import DeployError
from ..local.probe import LocalHostFacts, LocalProbe
from ..local.session import ActionRunner
from ..paths import ensure_dir
from ..utils.logging import banner, get_logger

logger = get_logger(__name__)

LIMITS_FILE = Path("/etc/security/limits.d/movex.conf")
SYSCTL_FILE = Path("/etc/sysctl.d/99-movex.conf")

LIMITS_CONTENT = """\
# MoveX file descriptor limits
* soft nofile 65536
* hard nofile 65536
root soft nofile 65536
root hard nofile 65536
"""

SYSCTL_CONTENT = """\
# MoveX networking
net.core.somaxconn = 65535
net.ipv4.tcp_max_syn_backlog = 65535
net.ipv4.ip_local_port_range = 1024 65535
net.ipv4.tcp_tw_reuse = 1
net.ipv4.tcp_fin_timeout = 15
vm.max_map_count = 262144
"""

ESSENTIALS = "apt-get update && apt-get install -y curl wget git unzip netcat-openbsd ufw ca-certificates gnupg lsb-release"

# Tool -> install command, in install order
INSTALLERS = [
    ("docker", "curl -fsSL https://get.docker.com | sh && systemctl enable --now docker"),
    ("nginx", "apt-get install -y nginx && systemctl enable --now nginx"),
    ("java", "apt-get install -y openjdk-21-jdk-headless"),
    ("node", "curl -fsSL https://deb.nodesource.com/setup_20.x | bash - && apt-get install -y nodejs"),
    ("yarn", "npm install -g yarn"),
]


class RootRequired(DeployError):
    """Raised when a host-changing operation runs without root privileges."""


class SetupRequiresRoot(RootRequired):
    """Raised when setup runs without root privileges."""


def require_root(probe: LocalProbe, operation: str) -> None:
    if not probe.is_root():
        raise RootRequired(f"{operation} must run as root (use sudo)")


@dataclass
class SetupReport:
    installed: List[str] = field(default_factory=list)
    already_present: List[str] = field(default_factory=list)
    directories: List[Path] = field(default_factory=list)
    tuning_files: List[Path] = field(default_factory=list)


class HostProvisioner:
    """Installs what the host probe reports missing and lays out directories."""

    def __init__(
        self,
        settings: DeploySettings,
        runner: ActionRunner,
        probe: Optional[LocalProbe] = None,
        *,
        limits_file: Path = LIMITS_FILE,
        sysctl_file: Path = SYSCTL_FILE,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.probe = probe or LocalProbe(runner.session)
        self.limits_file = limits_file
        self.sysctl_file = sysctl_file

    def run(self, allow_non_root: bool = False) -> SetupReport:
        banner(logger, "MoveX Server Setup")
        facts = self.probe.collect()
        logger.info("Host: %s (%s, %s)", facts.hostname, facts.os_release, facts.architecture)
        if not facts.is_root and not allow_non_root:
            raise SetupRequiresRoot("Setup must run as root (use sudo) or pass --allow-non-root")

        missing = facts.missing_tools()
        logger.info("Missing tools: %s", ", ".join(missing) if missing else "none")
        if not facts.has_systemd:
            logger.warning("systemd not detected; docker and nginx must be started manually")

        report = SetupReport()
        self.install_essentials(facts)
        for tool, command in INSTALLERS:
            if facts.has(tool):
                logger.info("%s already installed", tool)
                report.already_present.append(tool)
                continue
            logger.info("Installing %s...", tool)
            result = self.runner.run(f"install {tool}", command, self.runner.log_path("setup", tool))
            result.raise_for_status()
            report.installed.append(tool)

        report.directories = self.create_directories()
        report.tuning_files = self.write_tuning(facts)
        logger.info("Server setup completed")
        return report

    def install_essentials(self, facts: LocalHostFacts) -> None:
        missing = [tool for tool in ("git", "nc", "ufw") if not facts.has(tool)]
        if not missing:
            return
        logger.info("Installing essential tools (missing: %s)...", ", ".join(missing))
        self.runner.run("install essentials", ESSENTIALS, self.runner.log_path("setup", "essentials")).raise_for_status()

    def create_directories(self) -> List[Path]:
        directories = [
            self.settings.deploy_dir,
            self.settings.source_dir,
            self.settings.log_dir,
            self.settings.frontend_root,
        ]
        for directory in directories:
            ensure_dir(directory)
            logger.info("Directory ready: %s", directory)
        return directories

    def write_tuning(self, facts: LocalHostFacts) -> List[Path]:
        written = []
        for path, content in ((self.limits_file, LIMITS_CONTENT), (self.sysctl_file, SYSCTL_CONTENT)):
            ensure_dir(path.parent)
            path.write_text(content, encoding="utf-8")
            logger.info("Wrote %s", path)
            written.append(path)
        if facts.is_root:
            self.runner.run("sysctl", f"sysctl -p {self.sysctl_file}", self.runner.log_path("setup", "sysctl"))
        return written
