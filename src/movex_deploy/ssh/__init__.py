"""SSH utilities for MoveX deployments."""

from .probe import ControlChannelTarget

__all__ = ["ControlChannelTarget"]
