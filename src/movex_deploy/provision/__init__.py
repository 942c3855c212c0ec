"""Host provisioning."""

from .setup import HostProvisioner, RootRequired, SetupReport, SetupRequiresRoot, require_root

__all__ = ["HostProvisioner", "RootRequired", "SetupReport", "SetupRequiresRoot", "require_root"]
