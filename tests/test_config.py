import os
import tempfile
import unittest
from pathlib import Path

from movex_deploy.config import (
    ENV_FILE_VARIABLE,
    REPOSITORY_KEYS,
    ConfigurationIncomplete,
    ConfigurationInvalid,
    ConfigurationNotFound,
    ConfigurationSet,
    DeploySettings,
    default_candidates,
    load_settings,
    parse_env_text,
    resolve,
)


class ParseEnvTextTests(unittest.TestCase):
    def test_skips_comments_blank_lines_and_non_assignments(self) -> None:
        values = parse_env_text(
            "# comment\n"
            "\n"
            "GITHUB_ORG=movex\n"
            "   # indented comment\n"
            "not an assignment\n"
            "1BAD=value\n"
            "_PRIVATE=yes\n"
        )
        self.assertEqual(values, {"GITHUB_ORG": "movex", "_PRIVATE": "yes"})

    def test_values_are_verbatim_and_right_trimmed(self) -> None:
        values = parse_env_text('DB_PASS="$ecret # not a comment"   \nURL=a=b=c\n')
        self.assertEqual(values["DB_PASS"], '"$ecret # not a comment"')
        self.assertEqual(values["URL"], "a=b=c")

    def test_later_duplicates_win(self) -> None:
        self.assertEqual(parse_env_text("A=1\nA=2\n")["A"], "2")


class ResolveTests(unittest.TestCase):
    def test_not_found_lists_every_searched_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            candidates = [Path(tmp) / "one.env", Path(tmp) / "two.env", Path(tmp) / "three.env"]
            with self.assertRaises(ConfigurationNotFound) as ctx:
                resolve(candidates)
            self.assertEqual(ctx.exception.searched, candidates)
            for candidate in candidates:
                self.assertIn(str(candidate), str(ctx.exception))

    def test_first_existing_candidate_wins_without_merging(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            first = Path(tmp) / "first.env"
            second = Path(tmp) / "second.env"
            first.write_text("GITHUB_ORG=first\n", encoding="utf-8")
            second.write_text("GITHUB_ORG=second\nGITHUB_BRANCH=develop\n", encoding="utf-8")

            config_set = resolve([Path(tmp) / "missing.env", first, second])

            self.assertEqual(config_set.source, first)
            self.assertEqual(config_set["GITHUB_ORG"], "first")
            self.assertNotIn("GITHUB_BRANCH", config_set)

    def test_reports_all_missing_keys_at_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            env_file = Path(tmp) / ".env"
            env_file.write_text("GITHUB_ORG=movex\nGITHUB_TOKEN=\n", encoding="utf-8")
            with self.assertRaises(ConfigurationIncomplete) as ctx:
                resolve([env_file], REPOSITORY_KEYS)
            self.assertEqual(ctx.exception.missing, ["GITHUB_TOKEN", "GITHUB_BRANCH"])
            self.assertIn("GITHUB_TOKEN", str(ctx.exception))
            self.assertIn("GITHUB_BRANCH", str(ctx.exception))

    def test_validate_passes_when_all_present(self) -> None:
        config_set = ConfigurationSet({"GITHUB_TOKEN": "t", "GITHUB_ORG": "o", "GITHUB_BRANCH": "b"})
        config_set.validate(REPOSITORY_KEYS)


class CandidateTests(unittest.TestCase):
    def setUp(self) -> None:
        self._original = os.environ.pop(ENV_FILE_VARIABLE, None)

    def tearDown(self) -> None:
        os.environ.pop(ENV_FILE_VARIABLE, None)
        if self._original is not None:
            os.environ[ENV_FILE_VARIABLE] = self._original

    def test_explicit_then_variable_then_project_root(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            os.environ[ENV_FILE_VARIABLE] = str(root / "from-var.env")
            candidates = default_candidates(str(root / "explicit.env"), root)
            self.assertEqual(candidates[:3], [root / "explicit.env", root / "from-var.env", root / ".env"])

    def test_duplicates_are_removed(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            candidates = default_candidates(str(root / ".env"), root)
            self.assertEqual(candidates.count(root / ".env"), 1)


class DeploySettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = DeploySettings.from_config(ConfigurationSet())
        self.assertEqual(settings.db_host, "localhost")
        self.assertEqual(settings.db_port, 5435)
        self.assertEqual(settings.db_user, "root")
        self.assertEqual(settings.redis_port, 6389)
        self.assertEqual(settings.nginx_api_port, 8080)
        self.assertEqual(settings.nginx_frontend_port, 8084)
        self.assertEqual(settings.ssh_port, 2226)
        self.assertEqual(settings.service_ports.auth, 8185)
        self.assertEqual(settings.source_dir, Path("/opt/movex/src"))

    def test_overrides_and_placeholders(self) -> None:
        settings = DeploySettings.from_config(
            ConfigurationSet({"SERVER_IP": "10.1.2.3", "DB_PORT": "6000", "PORT_OMS": "9182"})
        )
        placeholders = settings.placeholders()
        self.assertEqual(placeholders["SERVER_IP"], "10.1.2.3")
        self.assertEqual(placeholders["DB_PORT"], "6000")
        self.assertEqual(placeholders["PORT_OMS"], "9182")

    def test_invalid_integer(self) -> None:
        with self.assertRaises(ConfigurationInvalid):
            DeploySettings.from_config(ConfigurationSet({"SSH_PORT": "twenty-two"}))

    def test_child_env_does_not_touch_process_environment(self) -> None:
        settings = DeploySettings.from_config(ConfigurationSet({"MOVEX_TEST_ONLY_KEY": "1"}))
        env = settings.child_env({"EXTRA": "2"})
        self.assertEqual(env["MOVEX_TEST_ONLY_KEY"], "1")
        self.assertEqual(env["EXTRA"], "2")
        self.assertNotIn("MOVEX_TEST_ONLY_KEY", os.environ)

    def test_optional_load_falls_back_to_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = load_settings(str(Path(tmp) / "absent.env"), project_root=Path(tmp), optional=True)
            self.assertEqual(settings.nginx_api_port, 8080)

    def test_required_load_raises_when_nothing_found(self) -> None:
        original = os.environ.pop(ENV_FILE_VARIABLE, None)
        cwd = os.getcwd()
        with tempfile.TemporaryDirectory() as tmp:
            os.chdir(tmp)
            try:
                with self.assertRaises(ConfigurationNotFound):
                    load_settings(str(Path(tmp) / "absent.env"), project_root=Path(tmp))
            finally:
                os.chdir(cwd)
                if original is not None:
                    os.environ[ENV_FILE_VARIABLE] = original


if __name__ == "__main__":
    unittest.main()
