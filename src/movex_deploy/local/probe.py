"""Local system probe for collecting host information."""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field
from typing import Dict, Optional

from .session import LocalSession

# Tools the platform needs on the host; value is the version command
REQUIRED_TOOLS = {
    "git": "git --version",
    "docker": "docker --version",
    "nginx": "nginx -v",
    "java": "java -version",
    "node": "node --version",
    "yarn": "yarn --version",
    "nc": "nc -h",
    "ufw": "ufw version",
}


@dataclass
class LocalHostFacts:
    """Facts about the local host system."""

    hostname: str
    os_name: str
    os_release: str
    kernel: str
    architecture: str
    is_root: bool = False
    has_systemd: bool = False
    tools: Dict[str, bool] = field(default_factory=dict)

    def has(self, tool: str) -> bool:
        return self.tools.get(tool, False)

    def missing_tools(self) -> list[str]:
        return [name for name, present in self.tools.items() if not present]


class LocalProbe:
    """Collects information about the local system."""

    def __init__(self, session: Optional[LocalSession] = None) -> None:
        self.session = session or LocalSession()

    def collect(self) -> LocalHostFacts:
        return LocalHostFacts(
            hostname=platform.node(),
            os_name=platform.system(),
            os_release=self._get_os_release(),
            kernel=platform.release(),
            architecture=platform.machine(),
            is_root=self.is_root(),
            has_systemd=self._detect_systemd(),
            tools={name: self.command_exists(name) for name in REQUIRED_TOOLS},
        )

    def command_exists(self, name: str) -> bool:
        result = self.session.run(f"command -v {name}")
        return result.ok

    def is_root(self) -> bool:
        geteuid = getattr(os, "geteuid", None)
        return bool(geteuid and geteuid() == 0)

    def _get_os_release(self) -> str:
        try:
            with open("/etc/os-release", encoding="utf-8") as handle:
                info = {}
                for line in handle:
                    if "=" in line:
                        key, value = line.strip().split("=", 1)
                        info[key] = value.strip('"')
            return info.get("PRETTY_NAME", f"Linux {platform.release()}")
        except OSError:
            return platform.platform()

    def _detect_systemd(self) -> bool:
        try:
            with open("/proc/1/comm", encoding="utf-8") as handle:
                return handle.read().strip() == "systemd"
        except OSError:
            return False
