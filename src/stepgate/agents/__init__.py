"""stepgate agents."""

from .patcher import PatchAgent
from .quality_gate import QualityGateAgent
from .reporter import ReporterAgent
from .scorer import ScoreHistory, ScoringAgent, ScoringRules
from .vcs import VcsAgent

__all__ = [
    "PatchAgent",
    "QualityGateAgent",
    "ReporterAgent",
    "ScoreHistory",
    "ScoringAgent",
    "ScoringRules",
    "VcsAgent",
]
