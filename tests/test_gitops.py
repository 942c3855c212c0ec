import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path

from movex_deploy.gitops import (
    GitRepositoryManager,
    PushStatus,
    RepositoryDescriptor,
    SyncStatus,
)
from movex_deploy.gitops.manager import redact


def _git_available() -> bool:
    return shutil.which("git") is not None


def _run_git(args: list[str], cwd: Path) -> str:
    process = subprocess.run(
        ["git", *args],
        cwd=str(cwd),
        check=True,
        capture_output=True,
        text=True,
    )
    return process.stdout.strip()


IDENTITY = {
    "GIT_AUTHOR_NAME": "MoveX Deployer",
    "GIT_AUTHOR_EMAIL": "deploy@example.com",
    "GIT_COMMITTER_NAME": "MoveX Deployer",
    "GIT_COMMITTER_EMAIL": "deploy@example.com",
}


class GitRepositoryManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        if not _git_available():
            self.skipTest("git binary not found")
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.origin = self._make_origin()
        env = os.environ.copy()
        env.update(IDENTITY)
        self.manager = GitRepositoryManager(self.root / "src", env=env)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _make_origin(self) -> Path:
        origin = self.root / "origin.git"
        origin.mkdir()
        _run_git(["init", "--bare", "--initial-branch=main"], origin)

        seed = self.root / "seed"
        seed.mkdir()
        _run_git(["init", "--initial-branch=main"], seed)
        _run_git(["config", "user.email", "bot@example.com"], seed)
        _run_git(["config", "user.name", "MoveX Deployer"], seed)
        (seed / "README.md").write_text("v1", encoding="utf-8")
        _run_git(["add", "README.md"], seed)
        _run_git(["commit", "-m", "initial"], seed)
        _run_git(["remote", "add", "origin", str(origin)], seed)
        _run_git(["push", "origin", "main"], seed)
        _run_git(["checkout", "-b", "develop"], seed)
        (seed / "README.md").write_text("develop v1", encoding="utf-8")
        _run_git(["commit", "-am", "develop"], seed)
        _run_git(["push", "origin", "develop"], seed)
        self.seed = seed
        return origin

    def _descriptor(self, branch: str, name: str = "movex-be-core") -> RepositoryDescriptor:
        return RepositoryDescriptor(name=name, remote_url=str(self.origin), branch=branch)

    def test_clone_then_repeated_sync_reports_updated(self) -> None:
        descriptor = self._descriptor("develop")

        first = self.manager.sync_one(descriptor)
        self.assertEqual(first.status, SyncStatus.CLONED)
        self.assertEqual(first.branch, "develop")
        self.assertEqual(len(first.commit_sha), 40)

        (self.seed / "README.md").write_text("develop v2", encoding="utf-8")
        _run_git(["commit", "-am", "update"], self.seed)
        _run_git(["push", "origin", "develop"], self.seed)

        second = self.manager.sync_one(descriptor)
        third = self.manager.sync_one(descriptor)

        self.assertEqual(second.status, SyncStatus.UPDATED)
        self.assertEqual(third.status, SyncStatus.UPDATED)
        self.assertEqual(third.branch, "develop")
        self.assertFalse(third.branch_fallback)
        working_copy = self.manager.working_copy(descriptor.name)
        self.assertEqual((working_copy / "README.md").read_text(encoding="utf-8"), "develop v2")

    def test_missing_branch_falls_back_to_default(self) -> None:
        descriptor = self._descriptor("release/9.9")

        cloned = self.manager.sync_one(descriptor)
        self.assertEqual(cloned.status, SyncStatus.CLONED)
        self.assertTrue(cloned.branch_fallback)
        self.assertEqual(cloned.branch, "main")

        updated = self.manager.sync_one(descriptor)
        self.assertEqual(updated.status, SyncStatus.UPDATED)
        self.assertTrue(updated.branch_fallback)
        self.assertEqual(updated.branch, "main")

    def test_one_failing_repository_does_not_block_the_rest(self) -> None:
        broken = RepositoryDescriptor("movex-be-oms", str(self.root / "does-not-exist.git"), "develop")
        report = self.manager.sync_all([broken, self._descriptor("develop")])

        self.assertEqual(report.failed, 1)
        self.assertEqual(report.succeeded, 1)
        self.assertEqual(report.outcomes[0].status, SyncStatus.FAILED)
        self.assertIsNotNone(report.outcomes[0].error)
        self.assertEqual(report.outcomes[1].status, SyncStatus.CLONED)

    def test_push_env_changes(self) -> None:
        descriptor = self._descriptor("develop")
        self.manager.sync_one(descriptor)

        self.assertEqual(self.manager.push_env_changes(descriptor.name), PushStatus.NO_CHANGES)

        working_copy = self.manager.working_copy(descriptor.name)
        (working_copy / ".env").write_text("API_URL=http://example\n", encoding="utf-8")
        (working_copy / "notes.txt").write_text("ignored", encoding="utf-8")

        self.assertEqual(self.manager.push_env_changes(descriptor.name, "Update env"), PushStatus.PUSHED)
        self.assertEqual(_run_git(["log", "-1", "--format=%s", "develop"], self.origin), "Update env")
        pushed_files = _run_git(["show", "--name-only", "--format=", "develop"], self.origin)
        self.assertEqual(pushed_files, ".env")

    def test_push_env_on_missing_working_copy(self) -> None:
        self.assertEqual(self.manager.push_env_changes("movex-fe-system"), PushStatus.FAILED)


class MissingGitBinaryTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.manager = GitRepositoryManager(self.root / "src", git_binary=str(self.root / "no-such-git"))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_every_repository_fails_without_aborting_the_run(self) -> None:
        report = self.manager.sync_all([
            RepositoryDescriptor("movex-be-core", "https://github.com/movex/movex-be-core.git", "develop"),
            RepositoryDescriptor("movex-be-oms", "https://github.com/movex/movex-be-oms.git", "develop"),
        ])

        self.assertEqual(report.failed, 2)
        self.assertEqual(report.succeeded, 0)
        for outcome in report.outcomes:
            self.assertEqual(outcome.status, SyncStatus.FAILED)
            self.assertIn("127", outcome.error)

    def test_push_reports_failure(self) -> None:
        (self.root / "src" / "movex-fe-system" / ".git").mkdir(parents=True)
        self.assertEqual(self.manager.push_env_changes("movex-fe-system"), PushStatus.FAILED)


class RedactTests(unittest.TestCase):
    def test_token_is_masked(self) -> None:
        self.assertEqual(
            redact("git clone https://ghp_secret@github.com/movex/movex-be-core.git"),
            "git clone https://***@github.com/movex/movex-be-core.git",
        )


if __name__ == "__main__":
    unittest.main()
