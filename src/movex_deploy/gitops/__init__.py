"""Git operations helpers."""

from .manager import (
    GitCommandError,
    GitRepositoryManager,
    PushStatus,
    RepositoryDescriptor,
    SynchronizationFailed,
    SyncOutcome,
    SyncReport,
    SyncStatus,
)

__all__ = [
    "GitCommandError",
    "GitRepositoryManager",
    "PushStatus",
    "RepositoryDescriptor",
    "SynchronizationFailed",
    "SyncOutcome",
    "SyncReport",
    "SyncStatus",
]
