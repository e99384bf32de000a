"""Error taxonomy for the stepgate execution engine.

Every error carries the process exit code a halted run reports and the
score the classifier falls back to when the error fails a step.
"""


class ExitCode:
    """Process exit codes, one per failure category."""

    SUCCESS = 0
    STEP_FAILURE = 1
    PARSE_FAILURE = 2
    QUALITY_GATE_FAILURE = 3
    VCS_FAILURE = 4
    CANCELLED = 130


class StepgateError(Exception):
    """Base class for all engine errors."""

    exit_code = ExitCode.STEP_FAILURE
    score = -1


class ParseError(StepgateError):
    """Raised when a manifest is malformed. Fatal before any step runs."""

    exit_code = ExitCode.PARSE_FAILURE


class ConflictError(StepgateError):
    """Raised when a file to create already exists."""


class PatchMismatchError(StepgateError):
    """Raised when a find block is not present exactly once in its target."""

    score = -2


class MalformedPatchError(PatchMismatchError):
    """Raised when a refactor step carries an unusable find block."""


class NotFoundError(StepgateError):
    """Raised when a file to delete or refactor does not exist."""


class LayerViolationError(StepgateError):
    """Raised when produced content or a target path crosses a boundary."""

    score = -2


class QualityGateError(StepgateError):
    """Raised when a configured check fails after a step applied."""

    exit_code = ExitCode.QUALITY_GATE_FAILURE

    def __init__(self, message: str, diagnostics: list[str] | None = None):
        super().__init__(message)
        self.diagnostics = diagnostics or []


class ValidationFailedError(QualityGateError):
    """Raised when a validation step's command does not meet its condition."""


class VcsError(StepgateError):
    """Raised when a branch, commit, push or merge-request operation fails."""

    exit_code = ExitCode.VCS_FAILURE


class CommandTimeoutError(StepgateError, TimeoutError):
    """Raised when an external command exceeds its time bound."""

    def __init__(self, args: list[str], timeout: float):
        super().__init__(f"Command {' '.join(args)!r} timed out after {timeout:g}s")
        self.command = args
        self.timeout = timeout


class InvalidTransitionError(StepgateError):
    """Raised when a step status would leave a terminal state."""


# Persisted on steps as ``error_type`` so a resumed run maps an old failure
# back to its exit code.
ERROR_TYPES: dict[str, type[StepgateError]] = {
    cls.__name__: cls
    for cls in (
        StepgateError,
        ParseError,
        ConflictError,
        PatchMismatchError,
        MalformedPatchError,
        NotFoundError,
        LayerViolationError,
        QualityGateError,
        ValidationFailedError,
        VcsError,
        CommandTimeoutError,
    )
}


def exit_code_for(error_type: str | None) -> int:
    """Return the exit code for a persisted error type name."""
    if not error_type:
        return ExitCode.STEP_FAILURE
    error_cls = ERROR_TYPES.get(error_type)
    return error_cls.exit_code if error_cls else ExitCode.STEP_FAILURE
