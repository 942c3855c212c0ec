"""Local execution: shell sessions, action runner and host probe."""

from .session import (
    ActionFailed,
    ActionResult,
    ActionRunner,
    Alternative,
    LocalCommandResult,
    LocalSession,
    read_tail,
)
from .probe import LocalHostFacts, LocalProbe

__all__ = [
    "ActionFailed",
    "ActionResult",
    "ActionRunner",
    "Alternative",
    "LocalCommandResult",
    "LocalSession",
    "read_tail",
    "LocalHostFacts",
    "LocalProbe",
]
