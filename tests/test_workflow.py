import tempfile
import unittest
from pathlib import Path
from typing import List

from movex_deploy.config import ConfigurationIncomplete, ConfigurationSet, DeploySettings
from movex_deploy.gitops import PushStatus, SyncOutcome, SyncReport, SyncStatus
from movex_deploy.local import ActionRunner, LocalCommandResult
from movex_deploy.orchestrator import StepPipeline, StepStatus
from movex_deploy.provision import RootRequired
from movex_deploy.workflow import DeploymentWorkflow


class RecordingSession:
    def __init__(self) -> None:
        self.commands: List[str] = []

    def run(self, command, *, cwd=None, env=None, timeout=None, log_file=None) -> LocalCommandResult:
        self.commands.append(command)
        return LocalCommandResult(command, "", "", 0)


class FakeGitManager:
    def __init__(self, failing: tuple = ()) -> None:
        self.failing = failing
        self.synced: List[str] = []
        self.pushed: List[str] = []

    def sync_all(self, descriptors) -> SyncReport:
        report = SyncReport()
        for descriptor in descriptors:
            self.synced.append(descriptor.name)
            status = SyncStatus.FAILED if descriptor.name in self.failing else SyncStatus.CLONED
            report.outcomes.append(SyncOutcome(descriptor.name, status, branch=descriptor.branch))
        return report

    def push_env_changes(self, name: str) -> PushStatus:
        self.pushed.append(name)
        return PushStatus.NO_CHANGES


class StubHost:
    def __init__(self, root: bool) -> None:
        self.root = root

    def is_root(self) -> bool:
        return self.root


class DeploymentWorkflowTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        env_file = self.root / ".env"
        self.settings = DeploySettings.from_config(
            ConfigurationSet(
                {
                    "GITHUB_TOKEN": "token",
                    "GITHUB_ORG": "movex",
                    "GITHUB_BRANCH": "develop",
                    "LOG_DIR": str(self.root / "logs"),
                    "DEPLOY_DIR": str(self.root / "opt"),
                },
                source=env_file,
            ),
            project_root=self.root,
        )
        self.session = RecordingSession()
        self.runner = ActionRunner(self.settings.log_dir, self.session)  # type: ignore[arg-type]

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def workflow(self, git_manager=None, root: bool = True) -> DeploymentWorkflow:
        return DeploymentWorkflow(
            self.settings,
            self.runner,
            git_manager=git_manager or FakeGitManager(),  # type: ignore[arg-type]
            probe=StubHost(root),  # type: ignore[arg-type]
            nginx_root=self.root / "nginx-etc",
        )

    def test_full_deploy_step_order(self) -> None:
        names = [step.name for step in self.workflow().full_deploy_steps()]
        self.assertEqual(names, [
            "sync-repos",
            "start-infrastructure",
            "wait:database",
            "wait:redis",
            "build-services",
            "build-frontend",
            "start-services",
            "configure-nginx",
            "configure-firewall",
            "health-check",
        ])

    def test_sync_repos_covers_every_repository_and_pushes_env(self) -> None:
        git = FakeGitManager(failing=("movex-be-oms",))
        report = self.workflow(git).sync_repos(push_env=True)

        self.assertEqual(len(git.synced), 10)
        self.assertEqual(report.failed, 1)
        self.assertEqual(report.succeeded, 9)
        self.assertEqual(len(git.pushed), 10)

    def test_sync_requires_repository_keys(self) -> None:
        self.settings.values = ConfigurationSet({"GITHUB_ORG": "movex"})
        with self.assertRaises(ConfigurationIncomplete) as ctx:
            self.workflow().sync_repos()
        self.assertEqual(ctx.exception.missing, ["GITHUB_TOKEN", "GITHUB_BRANCH"])

    def test_sync_step_fails_when_a_repository_fails(self) -> None:
        workflow = self.workflow(FakeGitManager(failing=("movex-fe-system",)))
        outcome = workflow._sync_step()
        self.assertEqual(outcome.status, StepStatus.FAILED)
        self.assertIn("movex-fe-system", outcome.error)

    def test_infrastructure_uses_compose_file_and_env_file(self) -> None:
        outcome = self.workflow()._infrastructure_step()
        self.assertEqual(outcome.status, StepStatus.SUCCESS)
        self.assertEqual(
            self.session.commands[-1],
            f"docker compose -f {self.root / 'docker' / 'docker-compose.prod.yml'} "
            f"--env-file {self.root / '.env'} up -d db redis",
        )

    def test_nginx_sites_are_installed_and_default_removed(self) -> None:
        (self.root / "nginx").mkdir()
        for site in ("movex-api-gateway.conf", "movex-frontend.conf"):
            (self.root / "nginx" / site).write_text("server {}\n", encoding="utf-8")
        enabled = self.root / "nginx-etc" / "sites-enabled"
        enabled.mkdir(parents=True)
        (enabled / "default").write_text("", encoding="utf-8")

        outcome = self.workflow()._nginx_step()

        self.assertEqual(outcome.status, StepStatus.SUCCESS)
        self.assertTrue((enabled / "movex-frontend.conf").is_symlink())
        self.assertFalse((enabled / "default").exists())
        self.assertTrue(self.session.commands[-1].startswith("nginx -t"))

    def test_missing_nginx_site_fails(self) -> None:
        outcome = self.workflow()._nginx_step()
        self.assertEqual(outcome.status, StepStatus.FAILED)

    def test_failed_build_stops_full_deploy(self) -> None:
        workflow = self.workflow()
        steps = [step for step in workflow.full_deploy_steps() if step.name in ("sync-repos", "build-services", "start-services")]

        result = StepPipeline("full-deploy").run(steps)

        self.assertEqual(result.failed_step, "build-services")
        self.assertIn("preflight", result.outcomes["build-services"].error)
        self.assertIsNone(result.outcome_of("start-services"))

    def test_full_deploy_refuses_to_start_without_root(self) -> None:
        git = FakeGitManager()
        with self.assertRaises(RootRequired):
            self.workflow(git, root=False).full_deploy()
        self.assertEqual(git.synced, [])
        self.assertEqual(self.session.commands, [])
        self.assertEqual(list(self.settings.log_dir.glob("deploy_full-deploy_*.json")), [])

    def test_configure_firewall_refuses_to_start_without_root(self) -> None:
        with self.assertRaises(RootRequired):
            self.workflow(root=False).configure_firewall()
        self.assertEqual(self.session.commands, [])

    def test_configure_firewall_runs_as_root(self) -> None:
        policy = self.workflow().configure_firewall()
        self.assertTrue(policy.allows_port(self.settings.ssh_port))
        self.assertEqual(self.session.commands[0], "ufw --force reset")


if __name__ == "__main__":
    unittest.main()
