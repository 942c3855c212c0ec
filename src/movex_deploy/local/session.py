"""Local command execution and per-action log artifacts."""

from __future__ import annotations

import os
import re
import subprocess
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from ..errors import DeployError
from ..utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TAIL_LINES = 50


class ActionFailed(DeployError):
    """Raised when an external action exits non-zero."""

    def __init__(self, name: str, exit_status: int, log_file: Optional[Path] = None) -> None:
        self.name = name
        self.exit_status = exit_status
        self.log_file = log_file
        where = f". Check log: {log_file}" if log_file else ""
        super().__init__(f"{name} failed with exit code {exit_status}{where}")


@dataclass
class LocalCommandResult:
    """Result of executing a local command."""

    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class LocalSession:
    """Runs shell commands on this host through bash."""

    def __init__(self, working_dir: Optional[str] = None, shell: str = "/bin/bash") -> None:
        self.working_dir = working_dir
        self.shell = shell

    def run(
        self,
        command: str,
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
        log_file: Optional[Path] = None,
    ) -> LocalCommandResult:
        """
        Execute ``command`` and wait for it.

        When ``log_file`` is given, stdout and stderr are combined into that
        file (overwritten) instead of being captured in memory.
        """
        workdir = str(cwd) if cwd else self.working_dir
        child_env: Optional[Dict[str, str]] = dict(env) if env is not None else None
        try:
            if log_file is not None:
                log_file.parent.mkdir(parents=True, exist_ok=True)
                with log_file.open("w", encoding="utf-8") as handle:
                    process = subprocess.run(
                        command,
                        shell=True,
                        stdout=handle,
                        stderr=subprocess.STDOUT,
                        text=True,
                        timeout=timeout,
                        cwd=workdir,
                        env=child_env,
                        executable=self.shell,
                    )
                return LocalCommandResult(command=command, stdout="", stderr="", exit_status=process.returncode)

            process = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
                cwd=workdir,
                env=child_env,
                executable=self.shell,
            )
            return LocalCommandResult(
                command=command,
                stdout=process.stdout.strip(),
                stderr=process.stderr.strip(),
                exit_status=process.returncode,
            )
        except subprocess.TimeoutExpired:
            message = f"Command timed out after {timeout} seconds"
            if log_file is not None:
                with log_file.open("a", encoding="utf-8") as handle:
                    handle.write(f"\n{message}\n")
            return LocalCommandResult(command=command, stdout="", stderr=message, exit_status=-1)
        except OSError as exc:
            return LocalCommandResult(command=command, stdout="", stderr=str(exc), exit_status=-1)


@dataclass(frozen=True)
class Alternative:
    """One way of performing an action.

    ``fallback_on`` is a regex matched against the captured log of a failed
    attempt; the next alternative only runs when it matches. ``None`` means
    any failure moves on to the next alternative.
    """

    command: str
    fallback_on: Optional[str] = None
    label: str = ""


@dataclass
class ActionResult:
    """Outcome of an action, possibly after several alternatives."""

    name: str
    command: str
    exit_status: int
    log_file: Optional[Path] = None
    attempts: List[str] = field(default_factory=list)
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    def tail(self, lines: int = DEFAULT_TAIL_LINES) -> List[str]:
        if self.log_file is not None and self.log_file.is_file():
            return read_tail(self.log_file, lines)
        return self.output.splitlines()[-lines:]

    def raise_for_status(self) -> None:
        if not self.ok:
            raise ActionFailed(self.name, self.exit_status, self.log_file)


def read_tail(path: Path, lines: int = DEFAULT_TAIL_LINES) -> List[str]:
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        return [line.rstrip("\n") for line in deque(handle, maxlen=lines)]


class ActionRunner:
    """Runs external actions, keeping one log artifact per action identity.

    Only exit codes are interpreted; output is stored, never parsed, except
    for matching an alternative's ``fallback_on`` pattern.
    """

    def __init__(
        self,
        log_dir: Path,
        session: Optional[LocalSession] = None,
        *,
        env: Optional[Mapping[str, str]] = None,
        tail_lines: int = DEFAULT_TAIL_LINES,
        timeout: Optional[int] = None,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.session = session or LocalSession()
        self.env = dict(env) if env is not None else None
        self.tail_lines = tail_lines
        self.timeout = timeout

    def log_path(self, project: str, kind: str) -> Path:
        """``<log_dir>/<project>-<kind>.log``"""
        return self.log_dir / f"{project}-{kind}.log"

    def run(
        self,
        name: str,
        command: str,
        log_file: Optional[Path] = None,
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ActionResult:
        return self.run_alternatives(name, [command], log_file, cwd=cwd, env=env)

    def run_alternatives(
        self,
        name: str,
        alternatives: Sequence[Union[str, Alternative]],
        log_file: Optional[Path] = None,
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> ActionResult:
        """Try ``alternatives`` in order until one succeeds or the list is exhausted."""
        if not alternatives:
            raise ValueError(f"Action {name} has no commands")
        options = [a if isinstance(a, Alternative) else Alternative(a) for a in alternatives]
        child_env = self._merge_env(env)
        attempts: List[str] = []

        for index, option in enumerate(options):
            if index:
                logger.warning("  Retrying %s: %s", name, option.label or option.command)
            logger.debug("  $ %s", option.command)
            outcome = self.session.run(
                option.command,
                cwd=cwd,
                env=child_env,
                timeout=self.timeout,
                log_file=log_file,
            )
            attempts.append(option.command)
            result = ActionResult(
                name=name,
                command=option.command,
                exit_status=outcome.exit_status,
                log_file=log_file,
                attempts=list(attempts),
                output="\n".join(part for part in (outcome.stdout, outcome.stderr) if part),
            )
            if result.ok:
                return result
            if option.fallback_on and not self._matches(result, option.fallback_on):
                break

        self._report_failure(result)
        return result

    def check(self, command: str, *, cwd: Optional[Path] = None) -> LocalCommandResult:
        """Run a quiet command whose exit status is the answer (no log artifact)."""
        return self.session.run(command, cwd=cwd, env=self._merge_env(None), timeout=self.timeout)

    def _merge_env(self, env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
        if self.env is None and env is None:
            return None
        merged: Dict[str, str] = dict(self.env) if self.env is not None else os.environ.copy()
        if env:
            merged.update(env)
        return merged

    def _matches(self, result: ActionResult, pattern: str) -> bool:
        text = "\n".join(result.tail(500))
        return re.search(pattern, text, re.IGNORECASE | re.MULTILINE) is not None

    def _report_failure(self, result: ActionResult) -> None:
        if result.log_file is not None:
            logger.error("%s failed (exit %d). Check log: %s", result.name, result.exit_status, result.log_file)
        else:
            logger.error("%s failed (exit %d)", result.name, result.exit_status)
        tail = result.tail(self.tail_lines)
        if tail:
            logger.error("Last %d lines of output:", len(tail))
            for line in tail:
                logger.error("  | %s", line)
