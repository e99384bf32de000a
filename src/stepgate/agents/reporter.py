"""Reporter Agent - progress stream and final run reports."""

import json
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO

from ..core.errors import ExitCode
from ..core.models import Manifest, RunReport, StepBase, StepStatus
from .scorer import ScoringAgent

logger = logging.getLogger(__name__)

# Characters of the failing step's log kept in a halt report.
ERROR_LOG_LIMIT = 4000


@dataclass
class TransitionEvent:
    """One step leaving PENDING."""

    index: int
    total: int
    step_id: str
    kind: str
    previous: StepStatus
    status: StepStatus
    score: int | None = None

    def format(self) -> str:
        line = f"[{self.index}/{self.total}] {self.step_id} ({self.kind}) {self.previous.value} -> {self.status.value}"
        if self.score is not None:
            line += f" (score {self.score:+d})"
        return line


class ReporterAgent:
    """Prints one line per status transition and builds the final report."""

    def __init__(
        self,
        stream: TextIO | None = None,
        on_transition: Callable[[TransitionEvent], None] | None = None,
    ):
        self.stream = stream
        self.on_transition = on_transition

    def transition(self, index: int, total: int, step: StepBase, previous: StepStatus) -> TransitionEvent:
        event = TransitionEvent(
            index=index,
            total=total,
            step_id=step.id,
            kind=getattr(step, "kind", "?"),
            previous=previous,
            status=step.status,
            score=step.score,
        )
        self._print(event.format())
        if self.on_transition is not None:
            self.on_transition(event)
        return event

    def success(self, manifest: Manifest, commit_hashes: list[str]) -> RunReport:
        scores = [step.score for step in manifest.scored_steps() if step.score is not None]
        return RunReport(
            status="SUCCESS",
            exit_code=ExitCode.SUCCESS,
            commit_hashes=list(commit_hashes),
            final_score=ScoringAgent.batch_score(scores),
        )

    def halted(
        self, manifest: Manifest, step: StepBase, exit_code: int, commit_hashes: list[str]
    ) -> RunReport:
        error_log = step.execution_log
        if len(error_log) > ERROR_LOG_LIMIT:
            error_log = "...\n" + error_log[-ERROR_LOG_LIMIT:]
        return RunReport(
            status="FAILED",
            exit_code=exit_code,
            commit_hashes=list(commit_hashes),
            failed_step_id=step.id,
            error_log=error_log,
            scores_so_far=self._scores(manifest),
        )

    def cancelled(
        self, manifest: Manifest, next_step: StepBase | None, commit_hashes: list[str]
    ) -> RunReport:
        return RunReport(
            status="CANCELLED",
            exit_code=ExitCode.CANCELLED,
            commit_hashes=list(commit_hashes),
            failed_step_id=next_step.id if next_step else None,
            error_log="Run cancelled before this step started",
            scores_so_far=self._scores(manifest),
        )

    def parse_failure(self, message: str) -> RunReport:
        return RunReport(status="FAILED", exit_code=ExitCode.PARSE_FAILURE, error_log=message)

    def emit(self, report: RunReport) -> None:
        """Print the report as a single JSON object."""
        self._print(json.dumps(report.to_dict(), indent=2))

    @staticmethod
    def _scores(manifest: Manifest) -> dict[str, int]:
        return {step.id: step.score for step in manifest.scored_steps() if step.score is not None}

    def _print(self, text: str) -> None:
        stream = self.stream or sys.stdout
        print(text, file=stream, flush=True)
