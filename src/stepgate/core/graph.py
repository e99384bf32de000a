"""LangGraph pipeline executing a single manifest step."""

import logging
import operator
from typing import Annotated, Any, NotRequired, TypedDict

from langgraph.graph import END, StateGraph

from ..agents.patcher import PatchAgent
from ..agents.quality_gate import QualityGateAgent
from ..agents.scorer import ScoringAgent
from ..agents.vcs import VcsAgent
from ..config.settings import ExecutionConfig
from .errors import QualityGateError
from .models import (
    BranchStep,
    CreateFileStep,
    CreateMultipleFilesStep,
    DeleteFileStep,
    ExecutionResult,
    FolderStep,
    ManifestMetadata,
    PullRequestStep,
    RefactorFileStep,
    StepBase,
    ValidationStep,
)

logger = logging.getLogger(__name__)


class StepState(TypedDict):
    """State for the per-step workflow."""

    step: StepBase
    metadata: ManifestMetadata
    result: ExecutionResult
    error: NotRequired[BaseException | None]
    log: Annotated[list[str], operator.add]
    score: NotRequired[int | None]


class StepGraph:
    """Runs apply -> quality gate -> commit (or rollback) -> score for one step."""

    def __init__(
        self,
        config: ExecutionConfig,
        patcher: PatchAgent,
        gate: QualityGateAgent,
        vcs: VcsAgent,
        scorer: ScoringAgent,
    ):
        """Initialize the step graph.

        Args:
            config: Execution configuration
            patcher: Agent applying file-level steps
            gate: Agent running checks and validation commands
            vcs: Agent owning branches, commits and merge requests
            scorer: Pure step classifier
        """
        self.config = config
        self.patcher = patcher
        self.gate = gate
        self.vcs = vcs
        self.scorer = scorer
        self.graph = self._build_graph()

    def _build_graph(self) -> Any:
        workflow = StateGraph(StepState)

        workflow.add_node("apply", self._apply_node)
        workflow.add_node("quality_gate", self._quality_gate_node)
        workflow.add_node("commit", self._commit_node)
        workflow.add_node("rollback", self._rollback_node)
        workflow.add_node("score", self._score_node)

        workflow.set_entry_point("apply")
        workflow.add_conditional_edges(
            "apply",
            self._after_apply,
            {"quality_gate": "quality_gate", "commit": "commit", "rollback": "rollback", "score": "score"},
        )
        workflow.add_conditional_edges(
            "quality_gate", self._after_check, {"commit": "commit", "rollback": "rollback"}
        )
        workflow.add_conditional_edges(
            "commit", self._after_commit, {"score": "score", "rollback": "rollback"}
        )
        workflow.add_edge("rollback", "score")
        workflow.add_edge("score", END)

        return workflow.compile()

    # -- routing -----------------------------------------------------------

    def _after_apply(self, state: StepState) -> str:
        mutating = state["step"].is_file_mutating
        if state.get("error") is not None:
            return "rollback" if mutating else "score"
        if not mutating:
            return "score"
        return "quality_gate" if self.config.quality_gate_enabled else "commit"

    def _after_check(self, state: StepState) -> str:
        return "rollback" if state.get("error") is not None else "commit"

    def _after_commit(self, state: StepState) -> str:
        return "rollback" if state.get("error") is not None else "score"

    # -- nodes -------------------------------------------------------------

    def _apply_node(self, state: StepState) -> dict[str, Any]:
        """Dispatch the step to the agent owning its kind."""
        step = state["step"]
        result = state["result"]
        try:
            self._dispatch(step, state["metadata"], result)
            return {"log": [f"Applied {step.kind} step"]}  # type: ignore[attr-defined]
        except Exception as e:
            logger.error(f"Step '{step.id}' failed to apply: {e}")
            return {"error": e, "log": [f"{type(e).__name__}: {e}"]}

    def _dispatch(self, step: StepBase, metadata: ManifestMetadata, result: ExecutionResult) -> None:
        if isinstance(step, (CreateFileStep, CreateMultipleFilesStep)):
            self.patcher.create_files(step, result)
        elif isinstance(step, RefactorFileStep):
            self.patcher.refactor_file(step, result)
        elif isinstance(step, DeleteFileStep):
            self.patcher.delete_file(step, result)
        elif isinstance(step, FolderStep):
            self.patcher.ensure_folders(step, result)
        elif isinstance(step, BranchStep):
            name = step.name or metadata.branch_template.format(
                feature=metadata.feature or "batch", step_id=step.id
            )
            self.vcs.ensure_branch(name)
            result.stdout = f"On branch {name}"
        elif isinstance(step, ValidationStep):
            command_result = self.gate.validate(step)
            result.stdout = command_result.stdout
            result.stderr = command_result.stderr
        elif isinstance(step, PullRequestStep):
            source = step.source_branch or self.vcs.current_branch()
            target = step.target_branch or metadata.target_branch
            title = step.title or step.description or step.id
            outcome = self.vcs.open_merge_request(source, target, title, step.body)
            result.stdout = outcome.url or outcome.instructions
        else:
            raise TypeError(f"Unhandled step kind: {type(step).__name__}")

    def _quality_gate_node(self, state: StepState) -> dict[str, Any]:
        try:
            outcome = self.gate.execute()
        except Exception as e:
            logger.error(f"Quality gate crashed: {e}")
            return {"error": e, "log": [f"{type(e).__name__}: {e}"]}

        if outcome.passed:
            return {"log": [f"Quality gate passed ({outcome.summary()})" if outcome.checks else "Quality gate passed"]}

        diagnostics = outcome.diagnostics()
        state["result"].diagnostics.extend(diagnostics)
        error = QualityGateError(f"Quality gate failed ({outcome.summary()})", diagnostics)
        return {"error": error, "log": [str(error), *diagnostics]}

    def _commit_node(self, state: StepState) -> dict[str, Any]:
        step = state["step"]
        result = state["result"]
        metadata = state["metadata"]
        try:
            commit_hash = self.vcs.commit(
                step, result.files_touched, layer=metadata.layer, feature=metadata.feature
            )
        except Exception as e:
            logger.error(f"Commit for step '{step.id}' failed: {e}")
            return {"error": e, "log": [f"{type(e).__name__}: {e}"]}

        if commit_hash is None:
            return {"log": ["No commit created"]}
        result.commit_hash = commit_hash
        return {"log": [f"Committed {commit_hash}"]}

    def _rollback_node(self, state: StepState) -> dict[str, Any]:
        result = state["result"]
        log = []
        try:
            self.patcher.rollback(result)
            if self.config.commits_enabled:
                self.vcs.unstage(result.files_touched)
        except Exception as e:
            logger.error(f"Rollback of step '{state['step'].id}' failed: {e}")
            log.append(f"Rollback incomplete: {e}")
        else:
            if result.files_touched or result.dirs_created:
                log.append(f"Rolled back: {', '.join(result.files_touched) or 'directories'}")
        return {"log": log}

    def _score_node(self, state: StepState) -> dict[str, Any]:
        result = state["result"]
        error = state.get("error")
        result.success = error is None
        return {"score": self.scorer.classify(state["step"], result, error)}

    def execute(self, step: StepBase, metadata: ManifestMetadata) -> StepState:
        """Run one step through the pipeline.

        Args:
            step: Step to execute; it is not mutated here
            metadata: Manifest metadata (branch template, target, layer)

        Returns:
            Final graph state with the result, any error, log lines and score
        """
        initial_state = StepState(
            step=step,
            metadata=metadata,
            result=ExecutionResult(step_id=step.id),
            error=None,
            log=[],
            score=None,
        )
        final_state = self.graph.invoke(initial_state)
        return final_state  # type: ignore
