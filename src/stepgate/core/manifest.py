"""Manifest Store - loads and persists the step manifest."""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .errors import ParseError
from .models import Manifest, StepStatus

logger = logging.getLogger(__name__)


class _BlockStyleDumper(yaml.SafeDumper):
    """Emits multi-line strings as literal blocks so file contents diff cleanly."""


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if "\n" in data:
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style="|")
    return dumper.represent_scalar("tag:yaml.org,2002:str", data)


_BlockStyleDumper.add_representer(str, _represent_str)


class ManifestStore:
    """Reads, writes and inspects manifests on disk."""

    def load(self, path: Path | str) -> Manifest:
        """Parse the manifest at ``path``.

        Raises:
            ParseError: If the file is unreadable, is not valid YAML, does not
                match the manifest schema or repeats a step id.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ParseError(f"Cannot read manifest {path}: {e}") from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ParseError(f"Manifest {path} is not valid YAML: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ParseError(f"Manifest {path} must be a mapping, got {type(data).__name__}")

        return self.parse(data, source=str(path))

    def parse(self, data: dict[str, Any], source: str = "<manifest>") -> Manifest:
        try:
            manifest = Manifest.model_validate(data)
        except ValidationError as e:
            raise ParseError(f"Manifest {source} is malformed:\n{e}") from e
        logger.info(f"Loaded manifest {source} with {len(manifest.steps)} steps")
        return manifest

    def dump(self, manifest: Manifest) -> str:
        data = manifest.model_dump(mode="json", exclude_none=True)
        return yaml.dump(
            data,
            Dumper=_BlockStyleDumper,
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )

    def save(self, manifest: Manifest, path: Path | str) -> None:
        """Write the manifest atomically: temp file in the same directory, then rename."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        text = self.dump(manifest)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved manifest {path}")

    def is_resumable(self, manifest: Manifest) -> bool:
        """True if a step is PENDING and every FAILED step has a later correction."""
        if not any(step.status == StepStatus.PENDING for step in manifest.steps):
            return False
        return not self.uncorrected_failures(manifest)

    def uncorrected_failures(self, manifest: Manifest) -> list[str]:
        """Ids of FAILED steps that no later step declares it corrects."""
        failures = []
        for index, step in enumerate(manifest.steps):
            if step.status != StepStatus.FAILED:
                continue
            later = manifest.steps[index + 1 :]
            if not any(candidate.corrects == step.id for candidate in later):
                failures.append(step.id)
        return failures
