"""Quality Gate Agent - runs static checks against the working tree."""

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import docker
import requests

from ..config.settings import CHECK_TIMEOUT, CheckSpec, ExecutionConfig
from ..core.commands import CommandRunner, Runner
from ..core.errors import CommandTimeoutError, ValidationFailedError
from ..core.models import CheckResult, CommandResult, ValidationStep

logger = logging.getLogger(__name__)


@dataclass
class GateOutcome:
    """Joined result of every configured check for one step."""

    checks: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def failed(self) -> list[CheckResult]:
        return [check for check in self.checks if not check.passed]

    def summary(self) -> str:
        return ", ".join(
            f"{check.name}: {'PASSED' if check.passed else 'FAILED'}" for check in self.checks
        )

    def diagnostics(self) -> list[str]:
        lines = []
        for check in self.failed:
            lines.append(f"--- {check.name.upper()} FAILED (exit {check.exit_code}) ---")
            lines.extend(check.diagnostics)
        return lines


class DockerRunner:
    """Runs check commands inside a throwaway sandbox container.

    The workspace is mounted read-only and networking is disabled, so checks
    cannot change the snapshot they are judging.
    """

    def __init__(self, workspace_path: Path | str, image: str, network_mode: str = "none"):
        self.workspace_path = Path(workspace_path)
        self.image = image
        self.network_mode = network_mode
        self.docker_client = docker.from_env()

    def run(
        self, args: Sequence[str], timeout: float, cwd: Path | None = None
    ) -> CommandResult:
        argv = [str(arg) for arg in args]
        abs_workspace_path = str((cwd or self.workspace_path).resolve())
        self._ensure_image()

        container = self.docker_client.containers.run(
            self.image,
            command=argv,
            volumes={abs_workspace_path: {"bind": "/workspace", "mode": "ro"}},
            working_dir="/workspace",
            network_mode=self.network_mode,
            detach=True,
        )
        try:
            try:
                status = container.wait(timeout=timeout)
            except (requests.exceptions.ReadTimeout, requests.exceptions.ConnectionError) as e:
                container.kill()
                raise CommandTimeoutError(argv, timeout) from e

            stdout = container.logs(stdout=True, stderr=False).decode("utf-8", "replace")
            stderr = container.logs(stdout=False, stderr=True).decode("utf-8", "replace")
            return CommandResult(
                args=argv,
                exit_code=int(status.get("StatusCode", 1)),
                stdout=stdout,
                stderr=stderr,
            )
        finally:
            container.remove(force=True)

    def _ensure_image(self) -> None:
        try:
            self.docker_client.images.get(self.image)
        except docker.errors.ImageNotFound:
            logger.info(f"Pulling sandbox image {self.image}")
            self.docker_client.images.pull(self.image)


class QualityGateAgent:
    """Agent that runs every configured check concurrently and joins the results."""

    def __init__(
        self,
        workspace_path: Path | str,
        config: ExecutionConfig,
        runner: Runner | None = None,
    ):
        """Initialize the quality gate agent.

        Args:
            workspace_path: Working tree the checks run in
            config: Execution configuration holding the check list
            runner: Command runner; defaults to a Docker sandbox when an image
                is configured, otherwise to host subprocesses
        """
        self.workspace_path = Path(workspace_path)
        self.config = config
        if runner is None:
            if config.sandbox_image:
                runner = DockerRunner(
                    self.workspace_path, config.sandbox_image, config.sandbox_network_mode
                )
            else:
                runner = CommandRunner(self.workspace_path)
        self.runner = runner

    def execute(self) -> GateOutcome:
        """Run all checks; never short-circuits on the first failure."""
        checks = self.config.checks
        if not checks:
            return GateOutcome()

        logger.info(f"Running quality checks: {', '.join(c.name for c in checks)}")
        with ThreadPoolExecutor(max_workers=len(checks)) as pool:
            results = list(pool.map(self._run_check, checks))

        outcome = GateOutcome(checks=results)
        if outcome.passed:
            logger.info("Quality checks passed")
        else:
            logger.warning(f"Quality checks failed ({outcome.summary()})")
        return outcome

    def validate(self, step: ValidationStep) -> CommandResult:
        """Run a validation step's command and enforce its success condition.

        Raises:
            ValidationFailedError: If the command times out, exits with an
                unexpected code or lacks the expected output.
        """
        timeout = step.timeout or CHECK_TIMEOUT
        logger.info(f"Running validation '{step.id}': {' '.join(step.command)}")
        try:
            result = self.runner.run(step.command, timeout=timeout, cwd=self.workspace_path)
        except CommandTimeoutError as e:
            raise ValidationFailedError(str(e), diagnostics=[str(e)]) from e

        problems = []
        if result.exit_code != step.expect_exit_code:
            problems.append(f"exit code {result.exit_code}, expected {step.expect_exit_code}")
        if step.expect_output is not None and step.expect_output not in result.output:
            problems.append(f"output does not contain {step.expect_output!r}")
        if problems:
            raise ValidationFailedError(
                f"Validation '{step.id}' failed: {'; '.join(problems)}",
                diagnostics=self._first_lines(result.output),
            )
        return result

    def _run_check(self, check: CheckSpec) -> CheckResult:
        try:
            result = self.runner.run(check.command, timeout=check.timeout, cwd=self.workspace_path)
        except CommandTimeoutError as e:
            return CheckResult(
                name=check.name,
                passed=False,
                exit_code=-1,
                output=str(e),
                diagnostics=[str(e)],
            )

        passed = result.exit_code in check.success_codes
        return CheckResult(
            name=check.name,
            passed=passed,
            exit_code=result.exit_code,
            output=result.output,
            diagnostics=[] if passed else self._first_lines(result.output),
        )

    def _first_lines(self, output: str) -> list[str]:
        lines = [line.rstrip() for line in output.splitlines() if line.strip()]
        return lines[: self.config.max_diagnostic_lines]
