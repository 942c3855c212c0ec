"""Ordered-step pipeline for builds, publishing and migrations.

- StepPipeline: runs PipelineStep objects in declared order
- BackendSteps / FrontendSteps: the MoveX build-services and build-frontend steps
"""

from .models import FailurePolicy, PipelineResult, PipelineStep, StepAction, StepResult, StepStatus
from .pipeline import StepPipeline, UnknownStep
from .steps import BackendSteps, FrontendSteps, materialize_env

__all__ = [
    "FailurePolicy",
    "PipelineResult",
    "PipelineStep",
    "StepAction",
    "StepResult",
    "StepStatus",
    "StepPipeline",
    "UnknownStep",
    "BackendSteps",
    "FrontendSteps",
    "materialize_env",
]
