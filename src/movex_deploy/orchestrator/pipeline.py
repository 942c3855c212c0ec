"""Ordered-step pipeline: runs steps strictly in sequence with per-step failure policy."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from ..errors import DeployError
from ..utils.logging import get_logger
from .models import PipelineResult, PipelineStep, StepResult, StepStatus

logger = get_logger(__name__)


class UnknownStep(DeployError):
    """Raised when a resume point names no step of the pipeline."""


class StepPipeline:
    """
    Runs a list of PipelineStep objects in declared order.

    A failed FATAL step stops the pipeline; a failed SKIP_WITH_WARNING step
    is downgraded to SKIPPED and the next step runs. When ``log_dir`` is set,
    a JSON run record ``deploy_<name>_<timestamp>.json`` is kept up to date.
    """

    def __init__(self, name: str, log_dir: Optional[Path] = None) -> None:
        self.name = name
        self.log_dir = Path(log_dir) if log_dir else None

    @staticmethod
    def describe(steps: Sequence[PipelineStep]) -> list[str]:
        return [
            f"{position}. {step.name} [{step.policy.value}]" + (f" - {step.description}" if step.description else "")
            for position, step in enumerate(steps, 1)
        ]

    def run(self, steps: Sequence[PipelineStep], resume_from: Optional[str] = None) -> PipelineResult:
        names = [step.name for step in steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Pipeline {self.name} has duplicate step names")
        if resume_from is not None and resume_from not in names:
            raise UnknownStep(f"Unknown step {resume_from!r}; expected one of: {', '.join(names)}")

        result = PipelineResult(name=self.name)
        result.record_file = self._record_path()
        resuming = resume_from is not None

        logger.info("Pipeline %s: %d steps", self.name, len(steps))
        current: Optional[str] = None
        try:
            for position, step in enumerate(steps, 1):
                if resuming and step.name != resume_from:
                    result.outcomes[step.name] = StepResult.skipped(f"resumed from {resume_from}")
                    continue
                resuming = False

                current = step.name
                logger.info("📍 Step %d/%d: %s", position, len(steps), step.name)
                outcome = self._execute(step)

                if outcome.status is StepStatus.FAILED and step.skippable:
                    logger.warning("   ⚠️ Skipping %s: %s", step.name, outcome.error)
                    outcome = StepResult.skipped(outcome.error or "failed", log_file=outcome.log_file)

                result.outcomes[step.name] = outcome
                self._save(result)

                if outcome.status is StepStatus.FAILED:
                    result.failed_step = step.name
                    logger.error("   ❌ Step %s failed: %s", step.name, outcome.error)
                    if outcome.log_file:
                        logger.error("   Log file: %s", outcome.log_file)
                    break
        except BaseException as exc:
            # A crashed run must never be recorded as a success
            if current is not None and result.failed_step is None:
                result.failed_step = current
                result.outcomes[current] = StepResult.failed(f"{type(exc).__name__}: {exc}")
            raise
        finally:
            result.finished_at = datetime.now().isoformat()
            self._save(result)

        if result.ok:
            logger.info("Pipeline %s completed", self.name)
        if result.record_file:
            logger.info("📄 Run record: %s", result.record_file)
        return result

    def _execute(self, step: PipelineStep) -> StepResult:
        try:
            return step.action()
        except DeployError as exc:
            return StepResult.failed(str(exc), log_file=getattr(exc, "log_file", None))
        except OSError as exc:
            logger.debug("Step %s raised %r", step.name, exc)
            return StepResult.failed(f"{type(exc).__name__}: {exc}")

    def _record_path(self) -> Optional[Path]:
        if self.log_dir is None:
            return None
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return self.log_dir / f"deploy_{self.name}_{timestamp}.json"

    def _save(self, result: PipelineResult) -> None:
        if result.record_file is None:
            return
        result.record_file.parent.mkdir(parents=True, exist_ok=True)
        with open(result.record_file, "w", encoding="utf-8") as handle:
            json.dump(result.to_dict(), handle, indent=2, ensure_ascii=False)
