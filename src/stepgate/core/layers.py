"""Architectural layer detection and boundary rules.

Layers follow the clean-architecture split used by generated features:
``domain`` (pure business rules), ``data`` (use-case implementations),
``infra`` (adapters to external services), ``presentation`` (controllers and
views) and ``main`` (composition root). Anything else is ``core``.
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath

LAYERS = ("domain", "data", "infra", "presentation", "main")

_LAYER_DIR = re.compile(r"(?:^|/)(domain|data|infra|infrastructure|presentation|main)/", re.I)

_FALLBACK_DIRS = (
    (("/models/", "/entities/", "/value-objects/", "/value_objects/"), "domain"),
    (("/usecases/", "/use-cases/", "/use_cases/"), "data"),
    (("/repositories/", "/adapters/"), "infra"),
    (("/controllers/", "/components/", "/views/"), "presentation"),
    (("/factories/", "/composition/"), "main"),
)

# Imports a layer must never contain. Patterns match a whole import line.
DEFAULT_FORBIDDEN_IMPORTS: dict[str, list[str]] = {
    "domain": [
        r"^\s*(?:import|from)\s+(?:requests|httpx|aiohttp|sqlalchemy|redis|psycopg2?|pymongo|boto3)\b",
        r"^\s*import\s+.*\bfrom\s+['\"](?:axios|prisma|redis|mongodb|pg|mysql2?)['\"]",
        r"^\s*(?:import|from)\s+[\w.]*\b(?:infra|infrastructure|presentation|main)\b",
    ],
    "data": [
        r"^\s*(?:import|from)\s+[\w.]*\bpresentation\b",
    ],
    "presentation": [
        r"^\s*(?:import|from)\s+(?:sqlalchemy|psycopg2?|pymongo|redis)\b",
        r"^\s*(?:import|from)\s+[\w.]*\binfra(?:structure)?\b",
    ],
}


def extract_scope(path: str | None) -> str:
    """Return the architectural layer a path belongs to, or ``core``."""
    if not path:
        return "core"
    normalized = "/" + path.replace("\\", "/").lstrip("/")
    match = _LAYER_DIR.search(normalized)
    if match:
        layer = match.group(1).lower()
        return "infra" if layer == "infrastructure" else layer
    for markers, layer in _FALLBACK_DIRS:
        if any(marker in normalized for marker in markers):
            return layer
    return "core"


def stays_inside(path: str) -> bool:
    """True if the relative ``path`` stays inside its base directory after normalization."""
    parts = PurePosixPath(path.replace("\\", "/")).parts
    if parts and parts[0] == "/":
        return False
    depth = 0
    for part in parts:
        if part == "..":
            depth -= 1
            if depth < 0:
                return False
        elif part not in ("", "."):
            depth += 1
    return True


@dataclass
class LayerRules:
    """Forbidden-import rules keyed by layer."""

    forbidden_imports: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_FORBIDDEN_IMPORTS.items()}
    )
    default_layer: str | None = None

    def layer_for(self, path: str) -> str:
        scope = extract_scope(path)
        if scope == "core" and self.default_layer:
            return self.default_layer
        return scope

    def violations(self, path: str, content: str) -> list[str]:
        """Describe each forbidden import found in ``content``."""
        layer = self.layer_for(path)
        found = []
        for pattern in self.forbidden_imports.get(layer, []):
            for match in re.finditer(pattern, content, re.MULTILINE):
                line = match.group(0).strip()
                found.append(f"{path}: {layer} layer must not contain '{line}'")
        return found
