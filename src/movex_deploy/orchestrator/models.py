"""Data models for the step pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class FailurePolicy(Enum):
    """What a failed step means for the rest of the pipeline."""

    FATAL = "fatal"
    SKIP_WITH_WARNING = "skip-with-warning"


@dataclass
class StepResult:
    success: bool
    status: StepStatus
    error: Optional[str] = None
    log_file: Optional[Path] = None
    outputs: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def succeeded(cls, log_file: Optional[Path] = None, outputs: Optional[Dict[str, Any]] = None) -> "StepResult":
        return cls(success=True, status=StepStatus.SUCCESS, log_file=log_file, outputs=outputs or {})

    @classmethod
    def failed(cls, error: str, log_file: Optional[Path] = None) -> "StepResult":
        return cls(success=False, status=StepStatus.FAILED, error=error, log_file=log_file)

    @classmethod
    def skipped(cls, reason: str, log_file: Optional[Path] = None) -> "StepResult":
        return cls(success=True, status=StepStatus.SKIPPED, error=reason, log_file=log_file)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "error": self.error,
            "log_file": str(self.log_file) if self.log_file else None,
            "outputs": self.outputs,
        }


# An action performs the step and reports how it went. Raising DeployError
# is equivalent to returning StepResult.failed(str(exc)).
StepAction = Callable[[], StepResult]


@dataclass
class PipelineStep:
    """One ordered unit of a pipeline; its position is its index in the step list."""

    name: str
    action: StepAction = field(repr=False)
    policy: FailurePolicy = FailurePolicy.FATAL
    description: str = ""

    @property
    def skippable(self) -> bool:
        return self.policy is FailurePolicy.SKIP_WITH_WARNING


@dataclass
class PipelineResult:
    name: str
    outcomes: Dict[str, StepResult] = field(default_factory=dict)
    failed_step: Optional[str] = None
    record_file: Optional[Path] = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    @property
    def status(self) -> str:
        return "success" if self.ok else "failed"

    def outcome_of(self, step_name: str) -> Optional[StepStatus]:
        result = self.outcomes.get(step_name)
        return result.status if result else None

    @property
    def skipped_steps(self) -> List[str]:
        return [name for name, result in self.outcomes.items() if result.status is StepStatus.SKIPPED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": self.name,
            "status": self.status,
            "start_time": self.started_at,
            "end_time": self.finished_at,
            "failed_step": self.failed_step,
            "steps": [
                {"step_name": name, **result.to_dict()}
                for name, result in self.outcomes.items()
            ],
        }
