"""Step Executor - walks a manifest and drives every step to a terminal status."""

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from ..agents.patcher import PatchAgent
from ..agents.quality_gate import QualityGateAgent
from ..agents.reporter import ReporterAgent, TransitionEvent
from ..agents.scorer import ScoreHistory, ScoringAgent, ScoringRules
from ..agents.vcs import VcsAgent
from ..config.settings import ExecutionConfig
from .commands import Runner
from .errors import ParseError, StepgateError, exit_code_for
from .graph import StepGraph
from .manifest import ManifestStore
from .models import Manifest, RunReport, RunState, ScoreRecord, StepBase, StepStatus

logger = logging.getLogger(__name__)


def resolve_workspace(manifest_path: Path, manifest: Manifest) -> Path:
    """Working directory of ``manifest``; relative paths resolve against its file."""
    return (Path(manifest_path).parent / manifest.metadata.working_dir).resolve()


def history_path_for(workspace: Path, config: ExecutionConfig) -> Path:
    """Score history file a run in ``workspace`` appends to."""
    return workspace / config.score_history_path


class StepExecutor:
    """Executes a manifest step by step, persisting it after every step.

    States move INIT -> RUNNING -> DONE | HALTED | CANCELLED. The first step
    that fails halts the run; nothing after it is touched.
    """

    def __init__(
        self,
        manifest_path: Path | str,
        config: ExecutionConfig | None = None,
        store: ManifestStore | None = None,
        score_history: ScoreHistory | None = None,
        scoring_rules: ScoringRules | None = None,
        reporter: ReporterAgent | None = None,
        check_runner: Runner | None = None,
        git_runner: Runner | None = None,
        hosting_runner: Runner | None = None,
        confirm: Callable[[str], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        on_transition: Callable[[TransitionEvent], None] | None = None,
    ):
        """Initialize the executor.

        Args:
            manifest_path: Manifest to execute; rewritten in place after every step
            config: Execution configuration, defaults from the environment
            store: Manifest store
            score_history: Score history handle; defaults to the configured
                path relative to the working directory
            scoring_rules: Documentation and boundary rules for the classifier
            reporter: Progress and report printer
            check_runner: Runner for quality checks and validation commands
            git_runner: Runner for git commands
            hosting_runner: Runner for the hosting CLI
            confirm: Dirty-tree confirmation callback for interactive mode
            sleep: Backoff sleep, injectable for tests
            on_transition: Called once per step status transition
        """
        self.manifest_path = Path(manifest_path)
        self.config = config or ExecutionConfig()
        self.store = store or ManifestStore()
        self.score_history = score_history
        self.scoring_rules = scoring_rules or ScoringRules()
        self.reporter = reporter or ReporterAgent(on_transition=on_transition)
        if reporter is not None and on_transition is not None:
            self.reporter.on_transition = on_transition
        self.check_runner = check_runner
        self.git_runner = git_runner
        self.hosting_runner = hosting_runner
        self.confirm = confirm
        self.sleep = sleep

        self.state = RunState.INIT
        self.commit_hashes: list[str] = []
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; honoured before the next step starts."""
        logger.warning("Cancellation requested")
        self._cancelled.set()

    def workspace_for(self, manifest: Manifest) -> Path:
        return resolve_workspace(self.manifest_path, manifest)

    def build_graph(self, workspace: Path, history: ScoreHistory) -> StepGraph:
        # Files the run itself rewrites must survive dirty-tree stashing.
        protected = []
        for path in (self.manifest_path, history.path):
            absolute = Path(path).resolve()
            if absolute.is_relative_to(workspace):
                protected.append(absolute.relative_to(workspace).as_posix())

        patcher = PatchAgent(workspace, layer_rules=self.scoring_rules.layer_rules)
        gate = QualityGateAgent(workspace, self.config, runner=self.check_runner)
        vcs = VcsAgent(
            workspace,
            self.config,
            runner=self.git_runner,
            hosting_runner=self.hosting_runner,
            confirm=self.confirm,
            sleep=self.sleep,
            protected_paths=protected,
        )
        return StepGraph(self.config, patcher, gate, vcs, ScoringAgent(self.scoring_rules))

    def run(self) -> RunReport:
        """Execute every pending step in order and return the final report."""
        self.state = RunState.INIT
        self.commit_hashes = []
        try:
            manifest = self.store.load(self.manifest_path)
        except ParseError as e:
            logger.error(str(e))
            self.state = RunState.HALTED
            return self.reporter.parse_failure(str(e))

        workspace = self.workspace_for(manifest)
        if not workspace.is_dir():
            message = f"Working directory does not exist: {workspace}"
            logger.error(message)
            self.state = RunState.HALTED
            return self.reporter.parse_failure(message)

        history = self.score_history or ScoreHistory(history_path_for(workspace, self.config))
        graph = self.build_graph(workspace, history)

        self.state = RunState.RUNNING
        total = len(manifest.steps)
        logger.info(f"Executing {total} steps in {workspace}")

        for index, step in enumerate(manifest.steps, 1):
            if self._cancelled.is_set():
                self.state = RunState.CANCELLED
                logger.warning(f"Run cancelled before step '{step.id}'")
                return self.reporter.cancelled(manifest, step, self.commit_hashes)

            if step.status in (StepStatus.SUCCESS, StepStatus.SKIPPED):
                logger.debug(f"Skipping step '{step.id}' ({step.status.value})")
                continue

            if step.status == StepStatus.FAILED:
                if index == total:
                    self.state = RunState.HALTED
                    logger.error(f"Last step '{step.id}' is FAILED; append a correcting step")
                    return self.reporter.halted(
                        manifest, step, exit_code_for(step.error_type), self.commit_hashes
                    )
                if not any(s.corrects == step.id for s in manifest.steps[index:]):
                    logger.warning(f"Step '{step.id}' FAILED and no later step corrects it")
                continue

            error = self._execute_step(graph, manifest, step, history)
            self.store.save(manifest, self.manifest_path)
            self.reporter.transition(index, total, step, StepStatus.PENDING)

            if step.status == StepStatus.FAILED:
                self.state = RunState.HALTED
                exit_code = error.exit_code if isinstance(error, StepgateError) else exit_code_for(None)
                return self.reporter.halted(manifest, step, exit_code, self.commit_hashes)

        self.state = RunState.DONE
        logger.info("All steps completed")
        return self.reporter.success(manifest, self.commit_hashes)

    def _execute_step(
        self, graph: StepGraph, manifest: Manifest, step: StepBase, history: ScoreHistory
    ) -> BaseException | None:
        logger.info(f"Executing step '{step.id}' ({getattr(step, 'kind', '?')})")
        final_state = graph.execute(step, manifest.metadata)

        result = final_state["result"]
        error = final_state.get("error")
        score = final_state.get("score")

        for line in final_state["log"]:
            step.append_log(line)
        if result.stdout.strip():
            step.append_log(result.stdout.strip())
        if error is not None and result.stderr.strip():
            step.append_log(result.stderr.strip())
        if error is not None:
            step.error_type = type(error).__name__
        if result.commit_hash:
            self.commit_hashes.append(result.commit_hash)

        step.score = score
        step.mark(StepStatus.SUCCESS if error is None else StepStatus.FAILED)

        if score is not None:
            record = ScoreRecord(
                step_id=step.id, score=score, label=ScoringAgent.label(score).value
            )
            history.append(record)
        return error
