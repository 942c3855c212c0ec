"""Common base for deployment errors."""

from __future__ import annotations


class DeployError(RuntimeError):
    """Base class for failures the CLI reports without a traceback."""
