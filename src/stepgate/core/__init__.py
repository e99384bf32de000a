"""stepgate core functionality."""

from .errors import ExitCode, StepgateError
from .manifest import ManifestStore
from .models import ExecutionResult, Manifest, RunReport, RunState, StepStatus

__all__ = [
    "ExecutionResult",
    "ExitCode",
    "Manifest",
    "ManifestStore",
    "RunReport",
    "RunState",
    "StepStatus",
    "StepgateError",
]
