"""Git-based repository synchronization."""

from __future__ import annotations

import re
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from ..errors import DeployError
from ..utils.logging import get_logger

logger = get_logger(__name__)

_CREDENTIALS = re.compile(r"(https?://)[^/@\s]+@")


def redact(text: str) -> str:
    """Hide credentials embedded in remote URLs."""
    return _CREDENTIALS.sub(r"\1***@", text)


class SynchronizationFailed(DeployError):
    """Raised when a single repository cannot be brought to its target state."""


class GitCommandError(SynchronizationFailed):
    """Raised when a git command fails."""

    def __init__(self, command: list[str], exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(
            redact(f"Git command {' '.join(command)} failed with code {exit_code}: {stderr}")
        )


class SyncStatus(Enum):
    CLONED = "cloned"
    UPDATED = "updated"
    FAILED = "failed"


class PushStatus(Enum):
    PUSHED = "pushed"
    NO_CHANGES = "no_changes"
    FAILED = "failed"


@dataclass(frozen=True)
class RepositoryDescriptor:
    """A source repository and the branch it should be on."""

    name: str
    remote_url: str
    branch: str


@dataclass
class SyncOutcome:
    name: str
    status: SyncStatus
    branch: Optional[str] = None
    branch_fallback: bool = False
    commit_sha: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not SyncStatus.FAILED


@dataclass
class SyncReport:
    outcomes: List[SyncOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)

    @property
    def fallbacks(self) -> List[str]:
        return [outcome.name for outcome in self.outcomes if outcome.branch_fallback]


class GitRepositoryManager:
    """Brings working copies under ``src_dir`` to their target branch with the `git` CLI."""

    def __init__(
        self,
        src_dir: Path,
        git_binary: str = "git",
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.src_dir = Path(src_dir)
        self.git_binary = git_binary
        self.env = dict(env) if env is not None else None

    def working_copy(self, name: str) -> Path:
        return self.src_dir / name

    def sync_all(self, descriptors: Iterable[RepositoryDescriptor]) -> SyncReport:
        """Synchronize every repository; one failure never blocks the others."""
        self.src_dir.mkdir(parents=True, exist_ok=True)
        report = SyncReport()
        for descriptor in descriptors:
            logger.info("-" * 40)
            outcome = self.sync_one(descriptor)
            if not outcome.ok:
                logger.error("Failed to clone/update: %s", descriptor.name)
            report.outcomes.append(outcome)
        return report

    def sync_one(self, descriptor: RepositoryDescriptor) -> SyncOutcome:
        target_dir = self.working_copy(descriptor.name)
        try:
            if (target_dir / ".git").exists():
                return self._update(descriptor, target_dir)
            return self._clone(descriptor, target_dir)
        except SynchronizationFailed as exc:
            logger.error("%s", exc)
            return SyncOutcome(name=descriptor.name, status=SyncStatus.FAILED, error=str(exc))

    def current_branch(self, target_dir: Path) -> str:
        return self._run(["branch", "--show-current"], cwd=target_dir).strip()

    def push_env_changes(self, name: str, message: str = "chore: Update environment configuration for deployment") -> PushStatus:
        """Commit and push modified ``.env`` / ``.env.*`` files of one working copy."""
        target_dir = self.working_copy(name)
        if not (target_dir / ".git").exists():
            logger.warning("Not a git repo: %s", target_dir)
            return PushStatus.FAILED

        try:
            changed = self._env_paths(self._run(["status", "--porcelain"], cwd=target_dir))
            if not changed:
                logger.info("No .env changes for %s", name)
                return PushStatus.NO_CHANGES

            logger.info("Committing .env changes for %s...", name)
            self._run(["add", "--", *changed], cwd=target_dir)
            if self._git(["diff", "--cached", "--quiet"], cwd=target_dir).returncode == 0:
                logger.info("No .env changes to commit for %s", name)
                return PushStatus.NO_CHANGES

            self._run(["commit", "-m", message], cwd=target_dir)
            branch = self.current_branch(target_dir)
            self._run(["push", "origin", branch], cwd=target_dir)
        except GitCommandError as exc:
            logger.error("Failed to push %s: %s", name, exc)
            return PushStatus.FAILED

        logger.info("Pushed .env changes for %s", name)
        return PushStatus.PUSHED

    def _clone(self, descriptor: RepositoryDescriptor, target_dir: Path) -> SyncOutcome:
        logger.info("Cloning repository: %s", descriptor.name)
        if target_dir.exists():
            shutil.rmtree(target_dir, ignore_errors=True)
        target_dir.parent.mkdir(parents=True, exist_ok=True)

        branch_clone = self._git(
            ["clone", "--branch", descriptor.branch, "--single-branch", descriptor.remote_url, str(target_dir)]
        )
        if branch_clone.returncode == 0:
            logger.info("Cloned %s (branch: %s)", descriptor.name, descriptor.branch)
            return self._outcome(descriptor, target_dir, SyncStatus.CLONED)

        logger.warning("Branch %s not found, cloning default branch...", descriptor.branch)
        shutil.rmtree(target_dir, ignore_errors=True)
        self._run(["clone", descriptor.remote_url, str(target_dir)])
        self._fetch(target_dir)
        if self._remote_branch_exists(target_dir, descriptor.branch):
            self._checkout(target_dir, descriptor.branch)
            logger.info("Cloned %s and switched to %s", descriptor.name, descriptor.branch)
            return self._outcome(descriptor, target_dir, SyncStatus.CLONED)

        logger.warning("BRANCH_FALLBACK: using default branch for %s", descriptor.name)
        return self._outcome(descriptor, target_dir, SyncStatus.CLONED, fallback=True)

    def _update(self, descriptor: RepositoryDescriptor, target_dir: Path) -> SyncOutcome:
        logger.info("Updating existing repository: %s", descriptor.name)
        self._fetch(target_dir)

        if self._remote_branch_exists(target_dir, descriptor.branch):
            self._checkout(target_dir, descriptor.branch)
            self._run(["pull", "--ff-only", "origin", descriptor.branch], cwd=target_dir)
            logger.info("Updated %s to branch %s", descriptor.name, descriptor.branch)
            return self._outcome(descriptor, target_dir, SyncStatus.UPDATED)

        logger.warning(
            "BRANCH_FALLBACK: branch %s not found in %s, using default branch",
            descriptor.branch,
            descriptor.name,
        )
        default = self._default_branch(target_dir)
        self._checkout(target_dir, default)
        self._run(["pull", "--ff-only", "origin", default], cwd=target_dir)
        return self._outcome(descriptor, target_dir, SyncStatus.UPDATED, fallback=True)

    def _outcome(
        self,
        descriptor: RepositoryDescriptor,
        target_dir: Path,
        status: SyncStatus,
        *,
        fallback: bool = False,
    ) -> SyncOutcome:
        return SyncOutcome(
            name=descriptor.name,
            status=status,
            branch=self.current_branch(target_dir),
            branch_fallback=fallback,
            commit_sha=self._run(["rev-parse", "HEAD"], cwd=target_dir).strip(),
        )

    def _fetch(self, target_dir: Path) -> None:
        # Explicit refspec so single-branch clones still see every remote branch
        self._run(
            ["fetch", "--prune", "origin", "+refs/heads/*:refs/remotes/origin/*"],
            cwd=target_dir,
        )

    def _remote_branch_exists(self, target_dir: Path, branch: str) -> bool:
        result = self._git(
            ["show-ref", "--verify", "--quiet", f"refs/remotes/origin/{branch}"],
            cwd=target_dir,
        )
        return result.returncode == 0

    def _checkout(self, target_dir: Path, branch: str) -> None:
        if self._git(["checkout", branch], cwd=target_dir).returncode != 0:
            self._run(["checkout", "-b", branch, f"origin/{branch}"], cwd=target_dir)

    def _default_branch(self, target_dir: Path) -> str:
        output = self._run(["ls-remote", "--symref", "origin", "HEAD"], cwd=target_dir)
        for line in output.splitlines():
            if line.startswith("ref: refs/heads/"):
                return line.split("\t", 1)[0][len("ref: refs/heads/"):]
        for candidate in ("main", "master"):
            if self._remote_branch_exists(target_dir, candidate):
                return candidate
        raise SynchronizationFailed(f"Cannot determine default branch of {target_dir}")

    @staticmethod
    def _env_paths(porcelain: str) -> List[str]:
        paths = []
        for line in porcelain.splitlines():
            path = line[3:].strip().strip('"')
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            filename = Path(path).name
            if filename == ".env" or filename.startswith(".env."):
                paths.append(path)
        return paths

    def _git(self, args: list[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
        command = [self.git_binary] + args
        logger.debug("$ %s", redact(" ".join(command)))
        try:
            return subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                check=False,
                env=self.env,
            )
        except OSError as exc:
            # git missing or not executable
            raise GitCommandError(command, 127, str(exc)) from exc

    def _run(self, args: list[str], cwd: Optional[Path] = None) -> str:
        process = self._git(args, cwd=cwd)
        if process.returncode != 0:
            raise GitCommandError([self.git_binary] + args, process.returncode, process.stderr.strip())
        return process.stdout
