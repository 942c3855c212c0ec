"""SSH control-channel verification."""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Optional

import paramiko


@dataclass
class ControlChannelTarget:
    """Readiness target that succeeds when an SSH server completes the protocol handshake."""

    host: str
    port: int = 22
    timeout: float = 10.0
    name: str = ""
    remote_version: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            self.name = f"SSH {self.host}:{self.port}"

    def probe(self) -> bool:
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError:
            return False
        transport: Optional[paramiko.Transport] = None
        try:
            transport = paramiko.Transport(sock)
            transport.start_client(timeout=self.timeout)
            self.remote_version = transport.remote_version
            return True
        except (paramiko.SSHException, OSError, EOFError):
            return False
        finally:
            if transport is not None:
                transport.close()
            else:
                sock.close()
