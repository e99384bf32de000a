"""Patch Agent - applies file-level steps to the working tree."""

import logging
from pathlib import Path

from ..core.errors import (
    ConflictError,
    LayerViolationError,
    MalformedPatchError,
    NotFoundError,
    PatchMismatchError,
)
from ..core.layers import LayerRules, stays_inside
from ..core.models import (
    CreateFileStep,
    CreateMultipleFilesStep,
    DeleteFileStep,
    ExecutionResult,
    FileSnapshot,
    FileSpec,
    FolderStep,
    RefactorFileStep,
)

logger = logging.getLogger(__name__)


class PatchAgent:
    """Agent that creates, patches and deletes files under the workspace.

    Every change is recorded on the ExecutionResult as it happens, so a
    caller can undo a partially applied step with :meth:`rollback`.
    """

    def __init__(self, workspace_path: str | Path, layer_rules: LayerRules | None = None):
        """Initialize the patch agent.

        Args:
            workspace_path: Root of the working tree all step paths are relative to
            layer_rules: Boundary rules checked against content before it is written
        """
        self.workspace_path = Path(workspace_path)
        self.layer_rules = layer_rules or LayerRules()

    def resolve(self, relative: str) -> Path:
        if not stays_inside(relative):
            raise LayerViolationError(f"Path escapes the working directory: {relative}")
        return self.workspace_path / relative

    def create_files(
        self, step: CreateFileStep | CreateMultipleFilesStep, result: ExecutionResult
    ) -> None:
        """Create every file of the step; refuse if any target already exists."""
        files: list[FileSpec] = step.files
        targets = [(spec, self.resolve(spec.path)) for spec in files]

        seen: set[Path] = set()
        for spec, target in targets:
            if target.exists() or target in seen:
                raise ConflictError(f"Refusing to overwrite existing file: {spec.path}")
            seen.add(target)
        for spec, _ in targets:
            self._check_boundaries(spec.path, spec.content)

        for spec, target in targets:
            self._ensure_parent(target, result)
            logger.info(f"Creating file: {spec.path}")
            target.write_bytes(spec.content.encode("utf-8"))
            result.files_created.append(spec.path)

    def refactor_file(self, step: RefactorFileStep, result: ExecutionResult) -> None:
        """Replace the single exact occurrence of the find block."""
        if not step.find:
            raise MalformedPatchError(f"Refactor step '{step.id}' has an empty find block")

        target = self.resolve(step.path)
        if not target.is_file():
            raise NotFoundError(f"File to refactor does not exist: {step.path}")

        original = target.read_bytes()
        try:
            content = original.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PatchMismatchError(f"Cannot refactor {step.path}: not UTF-8 text") from e
        find, replace = step.find, step.replace
        if "\r\n" in content and "\r\n" not in find:
            # keep the file's CRLF endings
            find = find.replace("\n", "\r\n")
            replace = replace.replace("\n", "\r\n")
        occurrences = content.count(find)
        if occurrences == 0:
            raise PatchMismatchError(
                f"Find block not found in {step.path}; the patch is stale or does not match"
            )
        if occurrences > 1:
            raise PatchMismatchError(
                f"Find block occurs {occurrences} times in {step.path}; the patch is ambiguous"
            )

        new_content = content.replace(find, replace, 1)
        self._check_boundaries(step.path, step.replace)

        logger.info(f"Refactoring file: {step.path}")
        result.files_modified.append(FileSnapshot(path=step.path, previous_content=original))
        target.write_bytes(new_content.encode("utf-8"))

    def delete_file(self, step: DeleteFileStep, result: ExecutionResult) -> None:
        target = self.resolve(step.path)
        if not target.is_file():
            raise NotFoundError(f"File to delete does not exist: {step.path}")

        logger.info(f"Deleting file: {step.path}")
        previous = target.read_bytes()
        result.files_modified.append(FileSnapshot(path=step.path, previous_content=previous))
        target.unlink()

    def ensure_folders(self, step: FolderStep, result: ExecutionResult) -> None:
        """Create each listed subfolder under the base path. Idempotent."""
        for folder in [""] + step.folders:
            relative = f"{step.base_path}/{folder}" if folder else step.base_path
            directory = self.resolve(relative)
            if not directory.is_dir():
                logger.info(f"Creating directory: {relative}")
                directory.mkdir(parents=True, exist_ok=True)
                result.dirs_created.append(relative)

    def rollback(self, result: ExecutionResult) -> None:
        """Undo everything recorded on ``result``.

        Modified files get their previous content back (a ``None`` previous
        content means the file did not exist), created files are deleted and
        directories created for them are removed again when empty.
        """
        for snapshot in reversed(result.files_modified):
            target = self.workspace_path / snapshot.path
            if snapshot.previous_content is None:
                target.unlink(missing_ok=True)
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(snapshot.previous_content)
            logger.info(f"Restored {snapshot.path}")

        for path in reversed(result.files_created):
            (self.workspace_path / path).unlink(missing_ok=True)
            logger.info(f"Removed {path}")

        for relative in sorted(result.dirs_created, key=lambda p: p.count("/"), reverse=True):
            directory = self.workspace_path / relative
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()

    def _ensure_parent(self, target: Path, result: ExecutionResult) -> None:
        missing = []
        parent = target.parent
        while not parent.exists() and parent != self.workspace_path:
            missing.append(parent)
            parent = parent.parent
        for directory in reversed(missing):
            directory.mkdir()
            result.dirs_created.append(directory.relative_to(self.workspace_path).as_posix())

    def _check_boundaries(self, path: str, content: str) -> None:
        violations = self.layer_rules.violations(path, content)
        if violations:
            raise LayerViolationError(
                "Layer boundary violation:\n" + "\n".join(f"  {v}" for v in violations)
            )
