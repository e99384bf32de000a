"""Shared test doubles and fixtures."""

import shutil
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
from git import Repo

from stepgate.core.models import CommandResult

Responder = Callable[[list[str]], CommandResult | BaseException]


def ok(args: Sequence[str], stdout: str = "") -> CommandResult:
    return CommandResult(args=list(args), exit_code=0, stdout=stdout)


class FakeRunner:
    """Runner double returning scripted results and recording every call."""

    def __init__(self, responder: Responder | None = None):
        self.calls: list[list[str]] = []
        self.timeouts: list[float] = []
        self.responder = responder or (lambda args: ok(args))

    def run(self, args: Sequence[str], timeout: float, cwd: Path | None = None) -> CommandResult:
        argv = [str(arg) for arg in args]
        self.calls.append(argv)
        self.timeouts.append(timeout)
        outcome = self.responder(argv)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def fake_runner() -> type[FakeRunner]:
    return FakeRunner


def init_repo(path: Path) -> Repo:
    """Create a git repository with one commit on ``main``."""
    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)
    with repo.config_writer() as config:
        config.set_value("user", "name", "Test User")
        config.set_value("user", "email", "test@example.com")
        config.set_value("commit", "gpgsign", "false")
    (path / "README.md").write_text("# Sample\n")
    repo.git.add(A=True)
    repo.git.commit(m="Initial commit")
    repo.git.branch("-M", "main")
    return repo


@pytest.fixture
def git_repo():
    """A throwaway git repository; yields (repo, path)."""
    temp_dir = Path(tempfile.mkdtemp())
    repo = init_repo(temp_dir / "workspace")
    yield repo, temp_dir / "workspace"
    repo.close()
    shutil.rmtree(temp_dir, ignore_errors=True)
