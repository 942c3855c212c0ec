import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

from movex_deploy.cli import build_parser, run_cli
from movex_deploy.config import ENV_FILE_VARIABLE
from movex_deploy.health import HealthReport


class FakeHealthReport(HealthReport):
    def __init__(self, issues: int) -> None:
        super().__init__()
        self._issues = issues

    @property
    def issue_count(self) -> int:
        return self._issues


class CLITests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self._cwd = os.getcwd()
        os.chdir(self.root)
        self._env_var = os.environ.pop(ENV_FILE_VARIABLE, None)

    def tearDown(self) -> None:
        os.chdir(self._cwd)
        if self._env_var is not None:
            os.environ[ENV_FILE_VARIABLE] = self._env_var
        self._tmp.cleanup()

    def write_env(self, text: str) -> Path:
        env_file = self.root / ".env"
        env_file.write_text(f"LOG_DIR={self.root / 'logs'}\nDEPLOY_DIR={self.root / 'opt'}\n{text}", encoding="utf-8")
        return env_file

    def test_parser_knows_every_operation(self) -> None:
        parser = build_parser()
        for command in ("setup", "sync-repos", "build-services", "build-frontend", "full-deploy",
                        "health-check", "configure-firewall", "process-configs", "logs"):
            args = parser.parse_args([command])
            self.assertEqual(args.command, command)

    def test_missing_configuration_exits_non_zero(self) -> None:
        missing = str(self.root / "nope.env")
        with mock.patch("movex_deploy.cli.DeploymentWorkflow") as workflow:
            code = run_cli(["--env-file", missing, "--project-root", str(self.root), "build-services"])
        self.assertEqual(code, 1)
        workflow.assert_not_called()

    def test_sync_repos_reports_all_missing_keys(self) -> None:
        self.write_env("GITHUB_ORG=movex\n")
        with self.assertLogs("movex_deploy.cli", level="ERROR") as logs:
            code = run_cli(["--project-root", str(self.root), "sync-repos"])
        self.assertEqual(code, 1)
        self.assertTrue(any("GITHUB_TOKEN, GITHUB_BRANCH" in line for line in logs.output))

    def test_health_check_exit_code_is_issue_count(self) -> None:
        with mock.patch("movex_deploy.cli.DeploymentWorkflow") as workflow:
            workflow.return_value.health_check.return_value = FakeHealthReport(4)
            code = run_cli(["--project-root", str(self.root), "health-check"])
        self.assertEqual(code, 4)

    def test_list_steps(self) -> None:
        self.write_env("")
        out = io.StringIO()
        with redirect_stdout(out):
            code = run_cli(["--project-root", str(self.root), "build-services", "--list-steps"])
        self.assertEqual(code, 0)
        lines = out.getvalue().splitlines()
        self.assertEqual(lines[0], "1. preflight [fatal] - Java and source checkout present")
        self.assertTrue(any("migrate:tenant:oms [skip-with-warning]" in line for line in lines))

    def test_unknown_resume_step(self) -> None:
        self.write_env("")
        with mock.patch("movex_deploy.workflow.BackendSteps.steps", return_value=[]):
            code = run_cli(["--project-root", str(self.root), "build-services", "--from", "build:nothing"])
        self.assertEqual(code, 2)

    def test_programming_errors_are_not_reported_as_usage_errors(self) -> None:
        self.write_env("")
        with mock.patch("movex_deploy.cli.DeploymentWorkflow.process_configs", side_effect=ValueError("bad template")):
            with self.assertRaises(ValueError):
                run_cli(["--project-root", str(self.root), "process-configs"])

    def test_logs_lists_and_shows_run_records(self) -> None:
        self.write_env("")
        log_dir = self.root / "logs"
        log_dir.mkdir()
        record = {
            "pipeline": "build-services",
            "status": "failed",
            "start_time": "2026-01-01T10:00:00",
            "end_time": "2026-01-01T10:05:00",
            "failed_step": "build:movex-be-oms",
            "steps": [{"step_name": "build:movex-be-oms", "status": "failed", "error": "exit 1", "log_file": None}],
        }
        (log_dir / "deploy_build-services_20260101_100000.json").write_text(json.dumps(record), encoding="utf-8")
        (log_dir / "movex-be-oms-build.log").write_text("one\ntwo\nthree\n", encoding="utf-8")

        out = io.StringIO()
        with redirect_stdout(out):
            self.assertEqual(run_cli(["--project-root", str(self.root), "logs", "--list"]), 0)
            self.assertEqual(run_cli(["--project-root", str(self.root), "logs", "--latest"]), 0)
            self.assertEqual(run_cli(["--project-root", str(self.root), "logs", "-a", "movex-be-oms-build", "-n", "2"]), 0)
        text = out.getvalue()
        self.assertIn("deploy_build-services_20260101_100000.json", text)
        self.assertIn("Failed at: build:movex-be-oms", text)
        self.assertTrue(text.rstrip().endswith("two\nthree"))


if __name__ == "__main__":
    unittest.main()
