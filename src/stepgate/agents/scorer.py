"""Scoring Agent - deterministic severity scores for executed steps.

Scale:
    -2 CATASTROPHIC    layer/boundary violation, malformed or unmatched patch block
    -1 RUNTIME_ERROR   the step ran but a required check or operation failed
     0 LOW_CONFIDENCE  succeeded without the required documentation
    +1 GOOD            succeeded, valid and conventional
    +2 PERFECT         succeeded and meets the enriched documentation criteria

``classify`` depends only on its arguments, so replaying the same manifest
against the same tree always yields the same scores.
"""

import json
import logging
import re
from collections import Counter
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from ..core.errors import StepgateError
from ..core.layers import LayerRules
from ..core.models import ExecutionResult, ScoreLabel, ScoreRecord, StepBase

logger = logging.getLogger(__name__)

ContentPredicate = Callable[[str, str], bool]

_CODE_SUFFIXES = {".py", ".pyi", ".ts", ".tsx", ".js", ".jsx", ".go", ".rs", ".java", ".kt"}

_COMMENT_MARKERS = ('"""', "'''", "#", "//", "/*")

ENRICHED_PATTERNS = [
    r"ubiquitous\s+language",
    r"domain[\s-]+driven\s+design",
    r"clean\s+architecture",
    r"aggregate\s+root",
    r"value\s+object",
    r"repository\s+pattern",
    r"@see\b",
    r"\bsee also\b",
]


def has_documentation(path: str, content: str) -> bool:
    """Source files must carry a docstring or comment; other files need content."""
    if PurePosixPath(path).suffix not in _CODE_SUFFIXES:
        return bool(content.strip())
    return any(marker in content for marker in _COMMENT_MARKERS)


def has_enriched_documentation(path: str, content: str) -> bool:
    """Documentation that names the patterns or references it follows."""
    return any(re.search(pattern, content, re.IGNORECASE) for pattern in ENRICHED_PATTERNS)


@dataclass
class ScoringRules:
    """Pluggable predicates behind the 0 / +1 / +2 boundary."""

    layer_rules: LayerRules = field(default_factory=LayerRules)
    documentation: ContentPredicate = has_documentation
    enriched: ContentPredicate = has_enriched_documentation


def produced_content(step: StepBase) -> list[tuple[str, str]]:
    """(path, text) pairs a step writes, read from its declaration."""
    kind = getattr(step, "kind", "")
    if kind in ("create_file", "create_multiple_files"):
        return [(spec.path, spec.content) for spec in step.files]  # type: ignore[attr-defined]
    if kind == "refactor_file":
        return [(step.path, step.replace)]  # type: ignore[attr-defined]
    return []


class ScoringAgent:
    """Classifies steps and aggregates batch scores."""

    def __init__(self, rules: ScoringRules | None = None):
        self.rules = rules or ScoringRules()

    def classify(
        self,
        step: StepBase,
        result: ExecutionResult | None,
        error: BaseException | None = None,
    ) -> int:
        """Score one step from its kind, result, error and produced content."""
        if error is not None or (result is not None and not result.success):
            if isinstance(error, StepgateError):
                return error.score
            return -1

        contents = produced_content(step)
        for path, text in contents:
            if self.rules.layer_rules.violations(path, text):
                return -2

        if not contents:
            return 1
        if not all(self.rules.documentation(path, text) for path, text in contents):
            return 0
        if all(self.rules.enriched(path, text) for path, text in contents):
            return 2
        return 1

    @staticmethod
    def batch_score(scores: list[int]) -> float:
        """Arithmetic mean of the scored steps; 0.0 when none were scored."""
        if not scores:
            return 0.0
        return round(sum(scores) / len(scores), 4)

    @staticmethod
    def label(score: int) -> ScoreLabel:
        return ScoreLabel.for_score(score)


class ScoreHistory:
    """Append-only JSON-lines log of score records."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def append(self, record: ScoreRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(record)) + "\n")

    def records(self) -> list[ScoreRecord]:
        if not self.path.exists():
            return []
        records = []
        with open(self.path, encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    records.append(ScoreRecord(**json.loads(line)))
                except (json.JSONDecodeError, TypeError) as e:
                    logger.warning(f"Skipping malformed score record at line {line_number}: {e}")
        return records

    def summary(self) -> dict[str, Any]:
        records = self.records()
        labels = Counter(record.label for record in records)
        return {
            "records": len(records),
            "mean_score": ScoringAgent.batch_score([r.score for r in records]),
            "labels": {label.value: labels.get(label.value, 0) for label in ScoreLabel},
        }
