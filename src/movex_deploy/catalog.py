"""Static deployment data for the MoveX platform.

Repository names, build order, migration tenants, internal ports and the
containers the health check expects. Values that depend on the resolved
configuration are built by the factory functions below.
"""

from __future__ import annotations

from typing import List

from .config import DeploySettings
from .gitops.manager import RepositoryDescriptor

BACKEND_REPOS: List[str] = [
    "movex-be-core",
    "movex-be-migration",
    "movex-be-system",
    "movex-be-masterdata",
    "movex-be-oms",
    "movex-be-tms",
    "movex-be-auth",
]

FRONTEND_REPOS: List[str] = [
    "movex-fe-masterdata",
    "movex-fe-system",
    "movex-fe-boilerplate",
]

ALL_REPOS: List[str] = BACKEND_REPOS + FRONTEND_REPOS

CORE_LIBRARY = "movex-be-core"
MIGRATION_TOOL = "movex-be-migration"

# Built after the core library and migrations, in this order
BACKEND_SERVICES: List[str] = [
    "movex-be-system",
    "movex-be-auth",
    "movex-be-masterdata",
    "movex-be-oms",
    "movex-be-tms",
]

MIGRATION_TENANTS: List[str] = ["auth", "oms", "tms", "master-data"]

# Databases the migration tool receives JDBC URLs for
TENANT_DATABASES = {
    "AUTH": "auth",
    "TMS": "tms",
    "OMS": "oms",
    "FMS": "fms",
    "ACCOUNTING": "accounting",
    "MASTER_DATA": "master-data",
}

CONTAINERS = [
    ("DB Container", "movex_postgres"),
    ("Redis Container", "movex_redis"),
    ("System Service", "movex_system"),
    ("MasterData Service", "movex_masterdata"),
    ("OMS Service", "movex_oms"),
    ("TMS Service", "movex_tms"),
    ("Auth Service", "movex_auth"),
]

# Public API route prefix -> service key in ServicePorts
API_ROUTES = [
    ("System", "system", "/api/system"),
    ("Auth", "auth", "/api/auth"),
    ("MasterData", "masterdata", "/api/master-data"),
    ("OMS", "oms", "/api/oms"),
    ("TMS", "tms", "/api/tms"),
]

HEALTH_PATH = "/actuator/health"

NGINX_SITES = ["movex-api-gateway.conf", "movex-frontend.conf"]

# Docker bridge / overlay ranges allowed through the internal-port deny rules
CONTAINER_NETWORKS = [
    ("172.16.0.0/12", "Docker bridge networks"),
    ("10.0.0.0/8", "Docker overlay networks"),
]
CONTAINER_INTERFACE = "docker0"


def service_suffix(project_name: str) -> str:
    """``movex-be-system`` -> ``system``; ``movex-fe-boilerplate`` -> ``boilerplate``."""
    for prefix in ("movex-be-", "movex-fe-"):
        if project_name.startswith(prefix):
            return project_name[len(prefix):]
    return project_name


def repository_url(settings: DeploySettings, name: str) -> str:
    return f"https://{settings.github_token}@github.com/{settings.github_org}/{name}.git"


def repositories(settings: DeploySettings, names: List[str] = ALL_REPOS) -> List[RepositoryDescriptor]:
    return [
        RepositoryDescriptor(
            name=name,
            remote_url=repository_url(settings, name),
            branch=settings.github_branch,
        )
        for name in names
    ]


def internal_ports(settings: DeploySettings) -> List[int]:
    ports = list(settings.service_ports.as_dict().values())
    ports.extend([settings.db_port, settings.redis_port])
    return ports


def migration_env(settings: DeploySettings) -> dict:
    """JDBC locations handed to the migration tool."""
    base = f"jdbc:postgresql://{settings.db_host}:{settings.db_port}"
    env = {
        "DB_URL_SYSTEM": f"{base}/system",
        "DB_USER_SYSTEM": settings.db_user,
        "DB_PASS_SYSTEM": settings.db_pass,
    }
    for key, database in TENANT_DATABASES.items():
        env[f"DB_URL_TENANT_{key}"] = f"{base}/{database}"
    return env
