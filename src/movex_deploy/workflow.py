"""High-level workflow orchestration."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict, List, Optional

from . import catalog
from .config import REPOSITORY_KEYS, DeploySettings
from .firewall import EffectivePolicy, configure_firewall
from .gitops import GitRepositoryManager, PushStatus, SyncReport
from .health import HealthReport, run_health_check
from .local import ActionRunner, LocalProbe, LocalSession
from .orchestrator import (
    BackendSteps,
    FailurePolicy,
    FrontendSteps,
    PipelineResult,
    PipelineStep,
    StepAction,
    StepPipeline,
    StepResult,
)
from .paths import COMPOSE_FILE, NGINX_DIRNAME, ensure_dir
from .probe import ReadinessProber, TcpTarget
from .provision import HostProvisioner, SetupReport, require_root
from .ssh import ControlChannelTarget
from .templates import process_configs
from .utils.logging import banner, get_logger

logger = get_logger(__name__)

NGINX_ROOT = Path("/etc/nginx")
INFRA_DATABASE_ATTEMPTS = 60
INFRA_CACHE_ATTEMPTS = 30


class DeploymentWorkflow:
    """Composes the deployment stages; one method per CLI operation."""

    def __init__(
        self,
        settings: DeploySettings,
        runner: Optional[ActionRunner] = None,
        prober: Optional[ReadinessProber] = None,
        *,
        git_manager: Optional[GitRepositoryManager] = None,
        probe: Optional[LocalProbe] = None,
        nginx_root: Path = NGINX_ROOT,
    ) -> None:
        self.settings = settings
        self.runner = runner or ActionRunner(
            settings.log_dir,
            LocalSession(working_dir=str(settings.project_root)),
            env=settings.child_env(),
        )
        self.prober = prober or ReadinessProber()
        self.git_manager = git_manager or GitRepositoryManager(
            settings.source_dir,
            env=settings.child_env({"GIT_TERMINAL_PROMPT": "0"}),
        )
        self.probe = probe or LocalProbe(self.runner.session)
        self.nginx_root = nginx_root

    # ----- individual operations -------------------------------------------------

    def setup(self, allow_non_root: bool = False) -> SetupReport:
        return HostProvisioner(self.settings, self.runner, self.probe).run(allow_non_root=allow_non_root)

    def sync_repos(self, push_env: bool = False) -> SyncReport:
        self._require_repository_settings()
        banner(logger, "MoveX Repository Sync")
        logger.info("Organization: %s", self.settings.github_org)
        logger.info("Branch:       %s", self.settings.github_branch)
        logger.info("Target:       %s", self.settings.source_dir)

        report = self.git_manager.sync_all(catalog.repositories(self.settings))
        logger.info("")
        logger.info("Repository sync: %d succeeded, %d failed", report.succeeded, report.failed)
        for name in report.fallbacks:
            logger.warning("  %s is on its default branch, not %s", name, self.settings.github_branch)

        if push_env:
            self.push_env()
        return report

    def push_env(self) -> Dict[str, PushStatus]:
        logger.info("Pushing .env changes to remote repositories...")
        results = {name: self.git_manager.push_env_changes(name) for name in catalog.ALL_REPOS}
        pushed = sum(1 for status in results.values() if status is PushStatus.PUSHED)
        logger.info("Pushed .env changes for %d repositories", pushed)
        return results

    def backend_steps(self) -> List[PipelineStep]:
        return BackendSteps(self.settings, self.runner, self.prober).steps()

    def build_services(self, resume_from: Optional[str] = None) -> PipelineResult:
        banner(logger, "MoveX Backend Build")
        backend = BackendSteps(self.settings, self.runner, self.prober)
        result = StepPipeline("build-services", self.settings.log_dir).run(backend.steps(), resume_from=resume_from)
        if result.ok:
            logger.info("Built artifacts:")
            for project, jar in backend.built_artifacts().items():
                logger.info("  %-22s %s", project, jar or "(no jar found)")
        return result

    def build_frontend(self) -> PipelineResult:
        banner(logger, "MoveX Frontend Build")
        steps = FrontendSteps(self.settings, self.runner).steps()
        return StepPipeline("build-frontend", self.settings.log_dir).run(steps)

    def health_check(self) -> HealthReport:
        return run_health_check(self.settings, self.runner)

    def configure_firewall(self, verify_ssh: bool = False) -> EffectivePolicy:
        require_root(self.probe, "configure-firewall")
        control_check = None
        if verify_ssh:
            control_check = ControlChannelTarget(self.settings.server_ip, self.settings.ssh_port)
        return configure_firewall(self.settings, self.runner, control_check)

    def process_configs(self) -> List[Path]:
        banner(logger, "MoveX Config Processing")
        return process_configs(self.settings)

    # ----- full deployment -------------------------------------------------------

    def full_deploy_steps(self) -> List[PipelineStep]:
        return [
            PipelineStep("sync-repos", self._sync_step, description="clone or update every repository"),
            PipelineStep("start-infrastructure", self._infrastructure_step, description="db and redis containers"),
            PipelineStep("wait:database", self._wait_step("PostgreSQL", self.settings.db_host,
                                                          self.settings.db_port, INFRA_DATABASE_ATTEMPTS)),
            PipelineStep("wait:redis", self._wait_step("Redis", self.settings.redis_host,
                                                       self.settings.redis_port, INFRA_CACHE_ATTEMPTS)),
            PipelineStep("build-services", lambda: self._nested(self.build_services())),
            PipelineStep("build-frontend", lambda: self._nested(self.build_frontend())),
            PipelineStep("start-services", self._services_step, description="all containers"),
            PipelineStep("configure-nginx", self._nginx_step),
            PipelineStep("configure-firewall", self._firewall_step),
            PipelineStep("health-check", self._health_step, policy=FailurePolicy.SKIP_WITH_WARNING),
        ]

    def full_deploy(self, resume_from: Optional[str] = None) -> PipelineResult:
        self._require_repository_settings()
        require_root(self.probe, "full-deploy")
        banner(logger, "MoveX Full Deployment")
        result = StepPipeline("full-deploy", self.settings.log_dir).run(self.full_deploy_steps(), resume_from)
        if result.ok:
            self.access_summary()
        return result

    def access_summary(self) -> None:
        edge = self.settings.server_ip
        banner(logger, "Deployment Complete")
        logger.info("Frontend:     http://%s:%d", edge, self.settings.nginx_frontend_port)
        logger.info("API Gateway:  http://%s:%d", edge, self.settings.nginx_api_port)
        for label, _, prefix in catalog.API_ROUTES:
            logger.info("  %-12s http://%s:%d%s", label, edge, self.settings.nginx_api_port, prefix)
        logger.info("Logs:         %s", self.settings.log_dir)

    def compose(self, arguments: str) -> str:
        compose_file = self.settings.project_root / COMPOSE_FILE
        command = f"docker compose -f {compose_file}"
        if self.settings.values.source is not None:
            command += f" --env-file {self.settings.values.source}"
        return f"{command} {arguments}"

    def _sync_step(self) -> StepResult:
        report = self.sync_repos()
        outputs = {"succeeded": report.succeeded, "failed": report.failed, "fallbacks": report.fallbacks}
        if report.failed:
            failed = ", ".join(o.name for o in report.outcomes if not o.ok)
            return StepResult.failed(f"{report.failed} repositories failed to sync: {failed}")
        return StepResult.succeeded(outputs=outputs)

    def _infrastructure_step(self) -> StepResult:
        result = self.runner.run(
            "start infrastructure",
            self.compose("up -d db redis"),
            self.runner.log_path("docker", "infrastructure"),
        )
        if not result.ok:
            return StepResult.failed("Could not start db and redis containers", log_file=result.log_file)
        return StepResult.succeeded(log_file=result.log_file)

    def _wait_step(self, name: str, host: str, port: int, attempts: int) -> StepAction:
        def action() -> StepResult:
            self.prober.require(TcpTarget(host, port, name=name), attempts)
            return StepResult.succeeded()

        return action

    def _services_step(self) -> StepResult:
        result = self.runner.run(
            "start services",
            self.compose("up -d --build"),
            self.runner.log_path("docker", "services"),
        )
        if not result.ok:
            return StepResult.failed("docker compose up failed", log_file=result.log_file)
        return StepResult.succeeded(log_file=result.log_file)

    def _nginx_step(self) -> StepResult:
        source = self.settings.project_root / NGINX_DIRNAME
        available = ensure_dir(self.nginx_root / "sites-available")
        enabled = ensure_dir(self.nginx_root / "sites-enabled")
        for site in catalog.NGINX_SITES:
            conf = source / site
            if not conf.is_file():
                return StepResult.failed(f"Nginx config not found: {conf}")
            shutil.copy2(conf, available / site)
            link = enabled / site
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(available / site)
            logger.info("Enabled nginx site %s", site)

        default_site = enabled / "default"
        if default_site.is_symlink() or default_site.exists():
            default_site.unlink()

        result = self.runner.run(
            "nginx reload",
            "nginx -t && (systemctl reload nginx || nginx -s reload)",
            self.runner.log_path("nginx", "reload"),
        )
        if not result.ok:
            return StepResult.failed("nginx configuration test failed", log_file=result.log_file)
        return StepResult.succeeded(log_file=result.log_file)

    def _firewall_step(self) -> StepResult:
        policy = self.configure_firewall()
        return StepResult.succeeded(outputs={"rules": len(policy.rules)})

    def _health_step(self) -> StepResult:
        report = self.health_check()
        if not report.healthy:
            return StepResult.failed(f"{report.issue_count} health issue(s) detected")
        return StepResult.succeeded(outputs={"checks": report.checks_run})

    @staticmethod
    def _nested(result: PipelineResult) -> StepResult:
        if result.ok:
            return StepResult.succeeded(outputs={"record": str(result.record_file) if result.record_file else None})
        return StepResult.failed(f"{result.name} failed at step {result.failed_step}")

    def _require_repository_settings(self) -> None:
        self.settings.values.validate(REPOSITORY_KEYS)


