"""Conventional commit messages for manifest steps."""

import re
from pathlib import PurePosixPath

from .layers import extract_scope
from .models import StepBase

MAX_SUBJECT_LENGTH = 72

COMMIT_TYPES: dict[str, str | None] = {
    "create_file": "feat",
    "create_multiple_files": "feat",
    "refactor_file": "refactor",
    "delete_file": "chore",
    "folder": "chore",
    "branch": None,
    "pull_request": None,
    "validation": None,
}

_FILE_KINDS = (
    (("/models/", "/entities/"), "entity"),
    (("/value-objects/", "/value_objects/"), "value object"),
    (("/usecases/", "/use-cases/", "/use_cases/"), "use case"),
    (("/repositories/",), "repository"),
    (("/controllers/",), "controller"),
    (("/components/",), "component"),
    (("/factories/",), "factory"),
    (("/adapters/",), "adapter"),
    (("/protocols/", "/interfaces/"), "protocol"),
)


def commit_type_for(kind: str) -> str | None:
    """Conventional type for a step kind, or None when the kind never commits."""
    return COMMIT_TYPES.get(kind)


def entity_name(path: str) -> str | None:
    """Title-cased entity name from a file path: ``user-profile.py`` -> ``User Profile``."""
    normalized = path.replace("\\", "/")
    if ".." in normalized.split("/") or normalized.startswith("/"):
        return None
    stem = PurePosixPath(normalized).stem
    words = [w for w in re.split(r"[-_.]", stem) if w]
    if not words:
        return None
    return " ".join(word.capitalize() for word in words)


def enhance_description(description: str, path: str | None) -> str:
    """Mention the entity and its kind when the description does not already."""
    if not path:
        return description
    entity = entity_name(path)
    if not entity:
        return description

    normalized = "/" + path.replace("\\", "/").lstrip("/")
    file_kind = next(
        (name for markers, name in _FILE_KINDS if any(m in normalized for m in markers)),
        "",
    )
    if not file_kind:
        return description

    lowered = description.lower()
    has_entity = entity.lower() in lowered
    has_kind = file_kind in lowered
    if not has_entity and not has_kind:
        return f"{description} - {entity} {file_kind}"
    if not has_entity:
        return f"{description} for {entity}"
    if not has_kind:
        return f"{description} ({file_kind})"
    return description


def generate_commit_message(
    step: StepBase, files: list[str], layer: str | None = None, feature: str | None = None
) -> str | None:
    """Build ``type(scope): description`` plus a body naming the step.

    The scope is the architectural layer of the first touched file, falling
    back to the manifest layer and then to ``core``.
    """
    kind = getattr(step, "kind", "")
    commit_type = commit_type_for(kind)
    if commit_type is None:
        return None

    path = files[0] if files else None
    scope = extract_scope(path)
    if scope == "core" and layer:
        scope = layer

    description = (step.description or step.id.replace("-", " ").replace("_", " ")).strip()
    description = enhance_description(description, path)
    description = description[:1].lower() + description[1:]

    prefix = f"{commit_type}({scope}): "
    subject = prefix + description
    if len(subject) > MAX_SUBJECT_LENGTH:
        available = MAX_SUBJECT_LENGTH - len(prefix) - 3
        if available <= 0:
            raise ValueError(f"Commit subject prefix too long: {prefix!r}")
        subject = prefix + description[:available] + "..."

    body = [f"Step: {step.id}"]
    if feature:
        body.append(f"Feature: {feature}")
    if len(files) > 1:
        body.append("Files:")
        body.extend(f"  - {f}" for f in files)
    return subject + "\n\n" + "\n".join(body)
