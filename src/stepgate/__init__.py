"""stepgate - deterministic, quality-gated execution of change manifests."""

from .config import ExecutionConfig
from .core.executor import StepExecutor
from .core.manifest import ManifestStore
from .core.models import Manifest, RunReport, RunState, StepStatus

__all__ = [
    "ExecutionConfig",
    "Manifest",
    "ManifestStore",
    "RunReport",
    "RunState",
    "StepExecutor",
    "StepStatus",
]
