"""Filesystem layout for a MoveX deployment.

Defaults mirror the server layout the deployment scripts create:
- /opt/movex/src/          # repository working copies
- /var/log/movex/          # per-action log artifacts and run records
- /var/www/movex-fe/       # published frontend bundles
- <project>/config/        # env fragments, templates and generated output
"""

from __future__ import annotations

from pathlib import Path

# Root of the deployment project (holds .env, config/, docker/, nginx/)
PROJECT_ROOT = Path.cwd()

DEFAULT_DEPLOY_DIR = Path("/opt/movex")
DEFAULT_LOG_DIR = Path("/var/log/movex")
DEFAULT_FRONTEND_ROOT = Path("/var/www/movex-fe")

CONFIG_DIRNAME = "config"
TEMPLATES_DIRNAME = "templates"
GENERATED_DIRNAME = "generated"
COMPOSE_FILE = Path("docker") / "docker-compose.prod.yml"
NGINX_DIRNAME = "nginx"


def source_dir(deploy_dir: Path) -> Path:
    return deploy_dir / "src"


def config_dir(project_root: Path) -> Path:
    return project_root / CONFIG_DIRNAME


def templates_dir(project_root: Path) -> Path:
    return config_dir(project_root) / TEMPLATES_DIRNAME


def generated_dir(project_root: Path) -> Path:
    return config_dir(project_root) / GENERATED_DIRNAME


def ensure_dir(path: Path) -> Path:
    """Create ``path`` (and parents) if needed and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path
