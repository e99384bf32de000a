"""Configuration settings for stepgate."""

import os
import shlex
from pathlib import Path

from pydantic import BaseModel, Field


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes")


# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Server configuration
SERVER_HOST = os.getenv("STEPGATE_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("STEPGATE_PORT", "8000"))

# Feature toggles
COMMITS_ENABLED = _flag("STEPGATE_COMMITS", True)
QUALITY_GATE_ENABLED = _flag("STEPGATE_QUALITY_GATE", True)
BRANCH_SAFETY_ENABLED = _flag("STEPGATE_BRANCH_SAFETY", True)
INTERACTIVE = _flag("STEPGATE_INTERACTIVE", False)

# Quality checks, comma separated names from DEFAULT_CHECK_COMMANDS
ENABLED_CHECKS = [
    name.strip()
    for name in os.getenv("STEPGATE_CHECKS", "lint,test").split(",")
    if name.strip()
]
LINT_COMMAND = os.getenv("STEPGATE_LINT_COMMAND", "ruff check .")
TYPECHECK_COMMAND = os.getenv("STEPGATE_TYPECHECK_COMMAND", "mypy .")
TEST_COMMAND = os.getenv("STEPGATE_TEST_COMMAND", "pytest -q")
CHECK_TIMEOUT = float(os.getenv("STEPGATE_CHECK_TIMEOUT", "300"))
MAX_DIAGNOSTIC_LINES = int(os.getenv("STEPGATE_MAX_DIAGNOSTIC_LINES", "10"))

# Docker sandbox for checks; empty runs checks on the host
SANDBOX_IMAGE = os.getenv("STEPGATE_SANDBOX_IMAGE", "")
SANDBOX_NETWORK_MODE = os.getenv("STEPGATE_SANDBOX_NETWORK", "none")

# Git configuration
GIT_TIMEOUT = float(os.getenv("STEPGATE_GIT_TIMEOUT", "60"))
GIT_REMOTE = os.getenv("STEPGATE_GIT_REMOTE", "origin")
RETRY_ATTEMPTS = int(os.getenv("STEPGATE_RETRY_ATTEMPTS", "3"))
BACKOFF_BASE = float(os.getenv("STEPGATE_BACKOFF_BASE", "1.0"))
BACKOFF_MAX = float(os.getenv("STEPGATE_BACKOFF_MAX", "8.0"))

# Hosting configuration
HOSTING_CLI = os.getenv("STEPGATE_HOSTING_CLI", "gh")
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")

# Score history
SCORE_HISTORY_PATH = Path(
    os.getenv("STEPGATE_SCORE_HISTORY", ".stepgate/score-history.jsonl")
)

DEFAULT_CHECK_COMMANDS = {
    "lint": LINT_COMMAND,
    "typecheck": TYPECHECK_COMMAND,
    "test": TEST_COMMAND,
}

# pytest exits 5 when it collects nothing, which is not a failure for a tree
# that has no tests yet.
DEFAULT_SUCCESS_CODES = {"test": [0, 5]}


class CheckSpec(BaseModel):
    """A static check run by the quality gate."""

    name: str
    command: list[str]
    timeout: float = CHECK_TIMEOUT
    success_codes: list[int] = Field(default_factory=lambda: [0])


class ExecutionConfig(BaseModel):
    """Knobs controlling one engine run. Every field has a safe default."""

    commits_enabled: bool = COMMITS_ENABLED
    quality_gate_enabled: bool = QUALITY_GATE_ENABLED
    branch_safety_enabled: bool = BRANCH_SAFETY_ENABLED
    interactive: bool = INTERACTIVE
    checks: list[CheckSpec] = Field(default_factory=lambda: default_checks())
    max_diagnostic_lines: int = MAX_DIAGNOSTIC_LINES
    sandbox_image: str = SANDBOX_IMAGE
    sandbox_network_mode: str = SANDBOX_NETWORK_MODE
    git_timeout: float = GIT_TIMEOUT
    git_remote: str = GIT_REMOTE
    retry_attempts: int = Field(default=RETRY_ATTEMPTS, ge=1)
    backoff_base: float = Field(default=BACKOFF_BASE, ge=0)
    backoff_max: float = Field(default=BACKOFF_MAX, ge=0)
    hosting_cli: str = HOSTING_CLI
    github_token: str | None = GITHUB_TOKEN
    github_api_url: str = GITHUB_API_URL
    score_history_path: Path = SCORE_HISTORY_PATH


def default_checks(names: list[str] | None = None) -> list[CheckSpec]:
    """Build the check list for the given (or environment-enabled) names."""
    checks = []
    for name in names if names is not None else ENABLED_CHECKS:
        command = DEFAULT_CHECK_COMMANDS.get(name)
        if command is None:
            raise ValueError(f"Unknown check: {name}")
        checks.append(
            CheckSpec(
                name=name,
                command=shlex.split(command),
                success_codes=DEFAULT_SUCCESS_CODES.get(name, [0]),
            )
        )
    return checks
