"""Data models for the stepgate engine."""

import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import InvalidTransitionError


class StepStatus(str, Enum):
    """Status of a manifest step."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class RunState(str, Enum):
    """State of an executor run."""

    INIT = "INIT"
    RUNNING = "RUNNING"
    DONE = "DONE"
    HALTED = "HALTED"
    CANCELLED = "CANCELLED"


class ScoreLabel(str, Enum):
    """Severity labels of the scoring scale."""

    CATASTROPHIC = "CATASTROPHIC"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    LOW_CONFIDENCE = "LOW_CONFIDENCE"
    GOOD = "GOOD"
    PERFECT = "PERFECT"

    @classmethod
    def for_score(cls, score: int) -> "ScoreLabel":
        return {
            -2: cls.CATASTROPHIC,
            -1: cls.RUNTIME_ERROR,
            0: cls.LOW_CONFIDENCE,
            1: cls.GOOD,
            2: cls.PERFECT,
        }[score]


class StepBase(BaseModel):
    """Attributes shared by every step kind."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    status: StepStatus = StepStatus.PENDING
    description: str | None = None
    execution_log: str = ""
    score: int | None = Field(default=None, ge=-2, le=2)
    error_type: str | None = None
    corrects: str | None = None

    def mark(self, status: StepStatus) -> None:
        """Move the step out of PENDING. Terminal states are final."""
        if self.status != StepStatus.PENDING:
            raise InvalidTransitionError(
                f"Step '{self.id}' is already {self.status.value}; cannot become {status.value}"
            )
        if status == StepStatus.PENDING:
            raise InvalidTransitionError(f"Step '{self.id}' cannot transition to PENDING")
        self.status = status

    def append_log(self, text: str) -> None:
        """Append diagnostic text; earlier entries are never rewritten."""
        if not text:
            return
        self.execution_log = f"{self.execution_log}\n{text}" if self.execution_log else text

    @property
    def is_file_mutating(self) -> bool:
        return False

    def target_paths(self) -> list[str]:
        """Paths this step writes or removes, relative to the working directory."""
        return []


class BranchStep(StepBase):
    kind: Literal["branch"] = "branch"
    name: str | None = None


class FolderStep(StepBase):
    kind: Literal["folder"] = "folder"
    base_path: str
    folders: list[str] = Field(default_factory=list)


class FileSpec(BaseModel):
    """One (path, full-content) pair."""

    model_config = ConfigDict(extra="forbid")

    path: str = Field(min_length=1)
    content: str = ""


class CreateFileStep(StepBase):
    kind: Literal["create_file"] = "create_file"
    path: str = Field(min_length=1)
    content: str = ""

    @property
    def is_file_mutating(self) -> bool:
        return True

    @property
    def files(self) -> list[FileSpec]:
        return [FileSpec(path=self.path, content=self.content)]

    def target_paths(self) -> list[str]:
        return [self.path]


class CreateMultipleFilesStep(StepBase):
    kind: Literal["create_multiple_files"] = "create_multiple_files"
    files: list[FileSpec] = Field(min_length=1)

    @property
    def is_file_mutating(self) -> bool:
        return True

    def target_paths(self) -> list[str]:
        return [spec.path for spec in self.files]


class RefactorFileStep(StepBase):
    kind: Literal["refactor_file"] = "refactor_file"
    path: str = Field(min_length=1)
    find: str
    replace: str

    @property
    def is_file_mutating(self) -> bool:
        return True

    def target_paths(self) -> list[str]:
        return [self.path]


class DeleteFileStep(StepBase):
    kind: Literal["delete_file"] = "delete_file"
    path: str = Field(min_length=1)

    @property
    def is_file_mutating(self) -> bool:
        return True

    def target_paths(self) -> list[str]:
        return [self.path]


class ValidationStep(StepBase):
    kind: Literal["validation"] = "validation"
    command: list[str] = Field(min_length=1)
    expect_exit_code: int = 0
    expect_output: str | None = None
    timeout: float | None = Field(default=None, gt=0)

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value: Any) -> Any:
        # Strings are tokenized, never handed to a shell.
        if isinstance(value, str):
            return shlex.split(value)
        return value


class PullRequestStep(StepBase):
    kind: Literal["pull_request"] = "pull_request"
    source_branch: str | None = None
    target_branch: str | None = None
    title: str | None = None
    body: str = ""


Step = Annotated[
    Union[
        BranchStep,
        FolderStep,
        CreateFileStep,
        CreateMultipleFilesStep,
        RefactorFileStep,
        DeleteFileStep,
        ValidationStep,
        PullRequestStep,
    ],
    Field(discriminator="kind"),
]


class ManifestMetadata(BaseModel):
    """Batch-level settings of a manifest."""

    model_config = ConfigDict(extra="allow")

    working_dir: str = "."
    branch_template: str = "stepgate/{feature}/{step_id}"
    target_branch: str = "main"
    feature: str | None = None
    layer: str | None = None


class Manifest(BaseModel):
    """Ordered steps plus batch metadata."""

    model_config = ConfigDict(extra="allow")

    metadata: ManifestMetadata = Field(default_factory=ManifestMetadata)
    steps: list[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> "Manifest":
        seen: set[str] = set()
        duplicates: list[str] = []
        for step in self.steps:
            if step.id in seen:
                duplicates.append(step.id)
            seen.add(step.id)
        if duplicates:
            raise ValueError(f"Duplicate step ids: {', '.join(sorted(set(duplicates)))}")
        return self

    def get(self, step_id: str) -> StepBase | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def scored_steps(self) -> list[StepBase]:
        return [step for step in self.steps if step.score is not None]


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@dataclass
class FileSnapshot:
    """A modified path and its content before the step touched it."""

    path: str
    previous_content: bytes | None


@dataclass
class ExecutionResult:
    """What one step did to the working tree."""

    step_id: str
    success: bool = False
    stdout: str = ""
    stderr: str = ""
    files_created: list[str] = field(default_factory=list)
    files_modified: list[FileSnapshot] = field(default_factory=list)
    dirs_created: list[str] = field(default_factory=list)
    commit_hash: str | None = None
    diagnostics: list[str] = field(default_factory=list)

    @property
    def files_touched(self) -> list[str]:
        return self.files_created + [snapshot.path for snapshot in self.files_modified]


@dataclass
class CheckResult:
    """Outcome of one quality check."""

    name: str
    passed: bool
    exit_code: int
    output: str = ""
    diagnostics: list[str] = field(default_factory=list)


@dataclass
class ScoreRecord:
    """A scored step as appended to the score history."""

    step_id: str
    score: int
    label: str
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )


@dataclass
class RunReport:
    """Final structured report of a run."""

    status: str
    exit_code: int
    commit_hashes: list[str] = field(default_factory=list)
    final_score: float | None = None
    failed_step_id: str | None = None
    error_log: str | None = None
    scores_so_far: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if self.status == "SUCCESS":
            return {
                "status": self.status,
                "commit_hashes": self.commit_hashes,
                "final_score": self.final_score,
            }
        return {
            "status": self.status,
            "failed_step_id": self.failed_step_id,
            "error_log": self.error_log,
            "scores_so_far": self.scores_so_far,
            "commit_hashes": self.commit_hashes,
        }
