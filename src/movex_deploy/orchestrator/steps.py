"""Build, publish and migration steps for the MoveX services."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict, List, Optional

from .. import catalog
from ..config import DeploySettings
from ..paths import config_dir
from ..local.session import ActionResult, ActionRunner, Alternative
from ..probe.readiness import ReadinessProber, TcpTarget
from ..utils.logging import get_logger
from .models import FailurePolicy, PipelineStep, StepResult

logger = get_logger(__name__)

QUALITY_TASKS = [
    "pmdMain",
    "pmdTest",
    "spotbugsMain",
    "spotbugsTest",
    "checkstyleMain",
    "checkstyleTest",
]

# Gradle output when an excluded task does not exist in the project
TASK_NOT_FOUND = r"Task '[^']*' not found|Cannot locate tasks? that match|not found in (root )?project"

OVERRIDE_SEPARATOR = "# Service-specific overrides"

DATABASE_WAIT_ATTEMPTS = 30


def materialize_env(common: Path, override: Optional[Path], target: Path) -> bool:
    """Write ``target`` as the common fragment followed by the optional override fragment.

    Returns False (and writes nothing) when the common fragment is missing.
    """
    if not common.is_file():
        logger.warning("No config found at: %s", common)
        return False
    content = common.read_text(encoding="utf-8")
    if override is not None and override.is_file():
        logger.info("  Appending service-specific config: %s", override.name)
        content += f"\n{OVERRIDE_SEPARATOR}\n" + override.read_text(encoding="utf-8")
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return True


def _step_result(action: ActionResult) -> StepResult:
    if action.ok:
        return StepResult.succeeded(log_file=action.log_file)
    return StepResult.failed(
        f"{action.name} failed with exit code {action.exit_status}",
        log_file=action.log_file,
    )


class BackendSteps:
    """Builds the ordered build-services pipeline."""

    def __init__(
        self,
        settings: DeploySettings,
        runner: ActionRunner,
        prober: Optional[ReadinessProber] = None,
        *,
        database_attempts: int = DATABASE_WAIT_ATTEMPTS,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.prober = prober or ReadinessProber()
        self.database_attempts = database_attempts

    def project_dir(self, project: str) -> Path:
        return self.settings.source_dir / project

    def steps(self) -> List[PipelineStep]:
        steps = [
            self.preflight(),
            self.publish(catalog.CORE_LIBRARY),
            self.publish(catalog.MIGRATION_TOOL),
            self.wait_for_database(),
            self.migration("system"),
        ]
        steps.extend(self.tenant_migration(tenant) for tenant in catalog.MIGRATION_TENANTS)
        steps.extend(self.build(project) for project in catalog.BACKEND_SERVICES)
        return steps

    def preflight(self) -> PipelineStep:
        def action() -> StepResult:
            java = self.runner.check("command -v java >/dev/null && java -version 2>&1 | head -1")
            if not java.ok or not java.stdout:
                return StepResult.failed("Java is not installed. Run `movex-deploy setup` first.")
            logger.info("Java: %s", java.stdout)
            if not self.settings.source_dir.is_dir():
                return StepResult.failed(
                    f"Source directory not found: {self.settings.source_dir}. Run `movex-deploy sync-repos` first."
                )
            self.settings.log_dir.mkdir(parents=True, exist_ok=True)
            return StepResult.succeeded()

        return PipelineStep("preflight", action, description="Java and source checkout present")

    def publish(self, project: str) -> PipelineStep:
        def action() -> StepResult:
            project_dir = self._gradle_project(project)
            if project_dir is None:
                return StepResult.failed(f"gradlew not found in {self.project_dir(project)}")
            logger.info("Publishing %s to Maven local...", project)
            result = self.runner.run(
                f"publish {project}",
                "./gradlew publishToMavenLocal",
                self.runner.log_path(project, "publish"),
                cwd=project_dir,
            )
            if result.ok:
                logger.info("Published %s to Maven local", project)
            return _step_result(result)

        return PipelineStep(f"publish:{project}", action, description="publishToMavenLocal")

    def wait_for_database(self) -> PipelineStep:
        def action() -> StepResult:
            target = TcpTarget(self.settings.db_host, self.settings.db_port, name="PostgreSQL")
            self.prober.require(
                target,
                self.database_attempts,
                hint="Make sure the database is running: docker compose -f docker/docker-compose.prod.yml up -d db",
            )
            return StepResult.succeeded()

        return PipelineStep("wait:database", action, description="datastore reachable")

    def migration(self, target: str) -> PipelineStep:
        def action() -> StepResult:
            project_dir = self._gradle_project(catalog.MIGRATION_TOOL)
            if project_dir is None:
                return StepResult.failed(f"gradlew not found in {self.project_dir(catalog.MIGRATION_TOOL)}")
            logger.info("Running migration for: %s", target)
            result = self.runner.run(
                f"migration {target}",
                f"./gradlew runMigration -Ptarget={target}",
                self.runner.log_path("migration", target),
                cwd=project_dir,
                env=catalog.migration_env(self.settings),
            )
            return _step_result(result)

        return PipelineStep(f"migrate:{target}", action)

    def tenant_migration(self, tenant: str) -> PipelineStep:
        def action() -> StepResult:
            project_dir = self._gradle_project(catalog.MIGRATION_TOOL)
            if project_dir is None:
                return StepResult.failed(f"gradlew not found in {self.project_dir(catalog.MIGRATION_TOOL)}")
            logger.info("Running tenant migration for: %s", tenant)
            result = self.runner.run_alternatives(
                f"migration {tenant}",
                [
                    Alternative(f"./gradlew runMigration -Ptarget=tenant -Pservice={tenant}", label="tenant target"),
                    Alternative(f"./gradlew runMigration -Ptarget={tenant}", label=f"{tenant} target"),
                ],
                self.runner.log_path("migration-tenant", tenant),
                cwd=project_dir,
                env=catalog.migration_env(self.settings),
            )
            return _step_result(result)

        return PipelineStep(
            f"migrate:tenant:{tenant}",
            action,
            policy=FailurePolicy.SKIP_WITH_WARNING,
        )

    def build(self, project: str) -> PipelineStep:
        def action() -> StepResult:
            logger.info("Building %s...", project)
            project_dir = self._gradle_project(project)
            if project_dir is None:
                return StepResult.failed(f"gradlew not found in {self.project_dir(project)}")
            self.configure_env(project)
            exclusions = " ".join(f"-x {task}" for task in QUALITY_TASKS)
            result = self.runner.run_alternatives(
                f"build {project}",
                [
                    Alternative(f"./gradlew clean build -x test {exclusions}", fallback_on=TASK_NOT_FOUND),
                    Alternative("./gradlew clean build -x test", label="without quality check exclusions"),
                ],
                self.runner.log_path(project, "build"),
                cwd=project_dir,
            )
            if result.ok:
                logger.info("Built %s successfully", project)
            return _step_result(result)

        return PipelineStep(f"build:{project}", action, description="gradle build, tests skipped")

    def configure_env(self, project: str) -> bool:
        fragments = config_dir(self.settings.project_root)
        suffix = catalog.service_suffix(project)
        logger.info("Setting up environment for %s...", project)
        return materialize_env(
            fragments / "backend-common.env",
            fragments / f"backend-{suffix}.env",
            self.project_dir(project) / ".env",
        )

    def built_artifacts(self) -> Dict[str, Optional[str]]:
        """Service -> executable jar name (None when the build produced none)."""
        artifacts: Dict[str, Optional[str]] = {}
        for project in catalog.BACKEND_SERVICES:
            libs = self.project_dir(project) / "build" / "libs"
            jars = sorted(p.name for p in libs.glob("*.jar") if not p.name.endswith("-plain.jar")) if libs.is_dir() else []
            artifacts[project] = jars[0] if jars else None
        return artifacts

    def _gradle_project(self, project: str) -> Optional[Path]:
        project_dir = self.project_dir(project)
        gradlew = project_dir / "gradlew"
        if not gradlew.is_file():
            return None
        gradlew.chmod(gradlew.stat().st_mode | 0o111)
        return project_dir


class FrontendSteps:
    """Builds the build-frontend pipeline: install, build and publish each frontend."""

    BUNDLE_DIRS = ("dist", "build")

    def __init__(self, settings: DeploySettings, runner: ActionRunner) -> None:
        self.settings = settings
        self.runner = runner

    def steps(self) -> List[PipelineStep]:
        return [self.frontend(name) for name in catalog.FRONTEND_REPOS]

    def frontend(self, project: str) -> PipelineStep:
        def action() -> StepResult:
            project_dir = self.settings.source_dir / project
            if not (project_dir / "package.json").is_file():
                return StepResult.failed(f"package.json not found in {project_dir}")

            fragments = config_dir(self.settings.project_root)
            materialize_env(
                fragments / "frontend-common.env",
                fragments / f"frontend-{catalog.service_suffix(project)}.env",
                project_dir / ".env",
            )

            install = self.runner.run_alternatives(
                f"install {project}",
                [
                    Alternative("yarn install --frozen-lockfile"),
                    Alternative("yarn install", label="without frozen lockfile"),
                ],
                self.runner.log_path(project, "install"),
                cwd=project_dir,
            )
            if not install.ok:
                return _step_result(install)

            build = self.runner.run(
                f"build {project}",
                "yarn build",
                self.runner.log_path(project, "build"),
                cwd=project_dir,
            )
            if not build.ok:
                return _step_result(build)

            published = self.publish(project, project_dir)
            if published is None:
                return StepResult.failed(
                    f"No build output ({', '.join(self.BUNDLE_DIRS)}) in {project_dir}",
                    log_file=build.log_file,
                )
            return StepResult.succeeded(log_file=build.log_file, outputs={"published_to": str(published)})

        return PipelineStep(f"frontend:{project}", action, description="yarn install, build and publish")

    def publish(self, project: str, project_dir: Path) -> Optional[Path]:
        for name in self.BUNDLE_DIRS:
            bundle = project_dir / name
            if bundle.is_dir():
                destination = self.settings.frontend_root / project
                if destination.exists():
                    shutil.rmtree(destination)
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copytree(bundle, destination)
                logger.info("Published %s to %s", project, destination)
                return destination
        return None
