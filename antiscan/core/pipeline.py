"""
antiscan Installation Pipeline

Ordered table of fallible steps, each marked fatal or recoverable.

A fatal step failure stops the run and raises FatalStepError; a recoverable
failure is logged as a warning and the next step runs. Library code raises,
only this table decides which failures abort the installation.

Author: antiscan Project
License: GNU GPL v3
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from ..exceptions import AntiscanError, FatalStepError


@dataclass
class Step:
    """One pipeline step."""
    name: str
    action: Callable[[], Any]
    fatal: bool = True


@dataclass
class StepResult:
    name: str
    ok: bool
    value: Any = None
    error: Optional[Exception] = None


class Pipeline:
    """Runs steps in order, fail-fast on fatal steps."""

    def __init__(self, steps: Optional[List[Step]] = None):
        self.logger = logging.getLogger(__name__)
        self.steps: List[Step] = list(steps or [])
        self.results: List[StepResult] = []

    def add(self, name: str, action: Callable[[], Any], fatal: bool = True) -> "Pipeline":
        self.steps.append(Step(name, action, fatal))
        return self

    def run(self) -> List[StepResult]:
        """
        Execute every step in order.

        Returns:
            Per-step results (also kept on self.results)

        Raises:
            FatalStepError: When a fatal step fails; later steps do not run
        """
        self.results = []
        total = len(self.steps)

        for index, step in enumerate(self.steps, 1):
            self.logger.info(f"[{index}/{total}] {step.name}")
            try:
                value = step.action()
            except (AntiscanError, OSError) as e:
                self.results.append(StepResult(step.name, False, error=e))
                if step.fatal:
                    self.logger.error(f"Step '{step.name}' failed: {e}")
                    raise FatalStepError(step.name, e) from e
                self.logger.warning(f"Step '{step.name}' failed, continuing: {e}")
                continue

            self.results.append(StepResult(step.name, True, value=value))

        return self.results

    @property
    def failed(self) -> List[StepResult]:
        return [result for result in self.results if not result.ok]
