"""VCS Agent - branches, commits, pushes and merge requests.

Every git call goes through a GitRunner (argv lists, bounded timeouts);
transient failures are retried with capped exponential backoff.
"""

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote, urlparse

import requests
from git import InvalidGitRepositoryError, NoSuchPathError, Repo

from ..config.settings import ExecutionConfig
from ..core.commands import COMMAND_NOT_FOUND, CommandRunner, GitRunner, Runner, retry_with_backoff
from ..core.commit_message import generate_commit_message
from ..core.errors import CommandTimeoutError, VcsError
from ..core.models import CommandResult, StepBase

logger = logging.getLogger(__name__)

# Failures that retrying cannot fix.
PERMANENT_FAILURES = (
    "not a git repository",
    "no changes added to commit",
    "nothing to commit",
    "did not match any file",
    "bad object",
    "permission denied",
    "already exists",
    "not a valid",
    "invalid reference",
)


@dataclass
class MergeRequestResult:
    """Outcome of opening a merge request."""

    pushed: bool
    method: str
    url: str | None = None
    instructions: str = ""


def _ask(question: str) -> bool:
    answer = input(f"{question} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


class VcsAgent:
    """Agent owning every version-control side effect of a run."""

    def __init__(
        self,
        workspace_path: Path | str,
        config: ExecutionConfig,
        runner: Runner | None = None,
        hosting_runner: Runner | None = None,
        confirm: Callable[[str], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        protected_paths: Sequence[str] = (),
    ):
        """Initialize the VCS agent.

        Args:
            workspace_path: Root of the git working tree
            config: Execution configuration (timeouts, retry bounds, remote)
            runner: Runner for git commands
            hosting_runner: Runner for the hosting CLI
            confirm: Asked before branching off a dirty tree in interactive mode
            sleep: Backoff sleep, injectable for tests
            protected_paths: Workspace-relative paths ignored by dirty-tree
                handling, such as the manifest being rewritten during the run
        """
        self.workspace_path = Path(workspace_path)
        self.config = config
        self.runner = runner or GitRunner(self.workspace_path)
        self.hosting_runner = hosting_runner or CommandRunner(self.workspace_path)
        self.confirm = confirm or _ask
        self.sleep = sleep
        self.protected_paths = list(protected_paths)

    def open_repo(self) -> Repo:
        try:
            return Repo(self.workspace_path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise VcsError(f"Not a git repository: {self.workspace_path}") from e

    # -- low level ---------------------------------------------------------

    def git(self, *args: str, retry: bool = True, check: bool = True) -> CommandResult:
        """Run one git command, retrying transient failures."""

        def attempt() -> CommandResult:
            result = self.runner.run(list(args), timeout=self.config.git_timeout)
            if check and not result.ok:
                raise VcsError(
                    f"git {' '.join(args)} failed (exit {result.exit_code}): "
                    f"{(result.stderr or result.stdout).strip()}"
                )
            return result

        try:
            if not retry:
                return attempt()
            return retry_with_backoff(
                attempt,
                attempts=self.config.retry_attempts,
                base=self.config.backoff_base,
                cap=self.config.backoff_max,
                should_retry=self._is_transient,
                sleep=self.sleep,
                description=f"git {args[0]}",
            )
        except CommandTimeoutError as e:
            raise VcsError(str(e)) from e

    @staticmethod
    def _is_transient(error: Exception) -> bool:
        if isinstance(error, CommandTimeoutError):
            return True
        if not isinstance(error, VcsError):
            return False
        message = str(error).lower()
        return not any(pattern in message for pattern in PERMANENT_FAILURES)

    def current_branch(self) -> str:
        return self.git("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def head(self) -> str:
        return self.git("rev-parse", "HEAD").stdout.strip()

    def dirty_paths(self) -> list[str]:
        """Changed or untracked paths, excluding the protected ones."""
        output = self.git("status", "--porcelain", "--untracked-files=all").stdout
        paths = []
        for line in output.splitlines():
            if not line.strip():
                continue
            path = line[3:].strip().strip('"')
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            if path not in self.protected_paths:
                paths.append(path)
        return paths

    # -- branches ----------------------------------------------------------

    def ensure_branch(self, name: str) -> None:
        """Check out ``name``, creating it from the current HEAD when missing."""
        if self.config.branch_safety_enabled:
            self._guard_dirty_tree(name)

        repo = self.open_repo()
        existing = {head.name for head in repo.heads}
        if name in existing:
            logger.info(f"Checking out existing branch '{name}'")
            self.git("checkout", name)
        else:
            logger.info(f"Creating branch '{name}'")
            self.git("checkout", "-b", name)

    def _guard_dirty_tree(self, branch: str) -> None:
        dirty = self.dirty_paths()
        if not dirty:
            return

        logger.warning(f"Working tree has uncommitted changes: {', '.join(dirty[:5])}")
        if self.config.interactive:
            if not self.confirm(
                f"Uncommitted changes found. Switch to branch '{branch}' anyway?"
            ):
                raise VcsError("Aborted: working tree has uncommitted changes")
            return

        args = [
            "stash",
            "push",
            "--include-untracked",
            "-m",
            f"stepgate: auto-stash before {branch}",
            "--",
            ".",
        ]
        args.extend(f":(exclude){path}" for path in self.protected_paths)
        self.git(*args)
        logger.info("Uncommitted changes stashed")

    # -- commits -----------------------------------------------------------

    def commit(
        self,
        step: StepBase,
        files: Sequence[str],
        layer: str | None = None,
        feature: str | None = None,
    ) -> str | None:
        """Stage exactly ``files`` and commit them.

        Returns:
            The new commit hash, or None when the step kind does not commit or
            nothing changed
        """
        if not self.config.commits_enabled or not files:
            return None

        message = generate_commit_message(step, list(files), layer=layer, feature=feature)
        if message is None:
            logger.info(f"Step kind '{getattr(step, 'kind', '?')}' does not commit")
            return None

        staged_before = set(self.git("diff", "--cached", "--name-only").stdout.split()) - set(files)
        if staged_before:
            unrelated = ", ".join(sorted(staged_before))
            logger.warning(f"Leaving unrelated staged changes out of the commit: {unrelated}")

        self.git("add", "--all", "--", *files)
        if not self.git("diff", "--cached", "--name-only", "--", *files).stdout.strip():
            logger.info("Nothing to commit for this step")
            return None

        # pathspec commits only these paths; the rest of the index stays staged
        self.git("commit", "-m", message, "--", *files)
        commit_hash = self.head()
        logger.info(f"Commit: {commit_hash[:8]}")
        return commit_hash

    def unstage(self, files: Sequence[str]) -> None:
        """Drop ``files`` from the index after a failed commit."""
        if not files:
            return
        result = self.git("reset", "-q", "HEAD", "--", *files, retry=False, check=False)
        if not result.ok:
            logger.warning(f"Could not unstage {', '.join(files)}: {result.stderr.strip()}")

    # -- remote ------------------------------------------------------------

    def push(self, branch: str) -> None:
        logger.info(f"Pushing '{branch}' to {self.config.git_remote}")
        self.git("push", "--set-upstream", self.config.git_remote, branch)

    def open_merge_request(
        self, source: str, target: str, title: str, body: str = ""
    ) -> MergeRequestResult:
        """Push ``source`` and open a merge request into ``target``.

        Tries the hosting CLI, then the GitHub REST API when a token is
        configured, and finally returns manual-creation instructions. The
        push must succeed; merge-request creation falls back instead of failing.
        """
        self.push(source)
        remote_url = self._remote_url()

        cli = self.config.hosting_cli
        if cli:
            try:
                result = self.hosting_runner.run(
                    [cli, "pr", "create", "--base", target, "--head", source,
                     "--title", title, "--body", body],
                    timeout=self.config.git_timeout,
                )
            except CommandTimeoutError as e:
                logger.warning(f"{cli} timed out: {e}")
            else:
                if result.ok:
                    url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else None
                    logger.info(f"Merge request opened with {cli}: {url}")
                    return MergeRequestResult(pushed=True, method="cli", url=url)
                if result.exit_code == COMMAND_NOT_FOUND:
                    logger.info(f"{cli} is not installed")
                else:
                    logger.warning(f"{cli} pr create failed: {result.stderr.strip()}")

        owner_repo = self._owner_repo(remote_url)
        host = self._host(remote_url)
        if self.config.github_token and owner_repo and host == "github.com":
            url = self._github_api_create(owner_repo, source, target, title, body)
            if url:
                return MergeRequestResult(pushed=True, method="api", url=url)

        url = self._manual_url(remote_url, source, target)
        instructions = (
            f"Open a merge request from '{source}' into '{target}'"
            + (f": {url}" if url else " in your hosting provider's web interface")
        )
        logger.info(instructions)
        return MergeRequestResult(pushed=True, method="manual", url=url, instructions=instructions)

    def _remote_url(self) -> str | None:
        result = self.git("remote", "get-url", self.config.git_remote, retry=False, check=False)
        return result.stdout.strip() if result.ok else None

    @staticmethod
    def _as_url(remote_url: str) -> str:
        # git@host:owner/repo.git -> ssh://git@host/owner/repo.git
        if "://" not in remote_url and ":" in remote_url:
            user_host, path = remote_url.split(":", 1)
            return f"ssh://{user_host}/{path}"
        return remote_url

    def _host(self, remote_url: str | None) -> str:
        if not remote_url:
            return ""
        return urlparse(self._as_url(remote_url)).netloc.split("@")[-1].lower()

    def _owner_repo(self, remote_url: str | None) -> str | None:
        if not remote_url:
            return None
        path = urlparse(self._as_url(remote_url)).path.strip("/")
        if path.endswith(".git"):
            path = path[:-4]
        return path if path.count("/") >= 1 else None

    def _manual_url(self, remote_url: str | None, source: str, target: str) -> str | None:
        owner_repo = self._owner_repo(remote_url)
        host = self._host(remote_url)
        if not owner_repo or not host:
            return None
        if "gitlab" in host:
            return (
                f"https://{host}/{owner_repo}/-/merge_requests/new"
                f"?merge_request[source_branch]={quote(source)}"
                f"&merge_request[target_branch]={quote(target)}"
            )
        if "bitbucket" in host:
            return f"https://{host}/{owner_repo}/pull-requests/new?source={quote(source)}&dest={quote(target)}"
        return f"https://{host}/{owner_repo}/compare/{quote(target)}...{quote(source)}?expand=1"

    def _github_api_create(
        self, owner_repo: str, source: str, target: str, title: str, body: str
    ) -> str | None:
        api_url = f"{self.config.github_api_url}/repos/{owner_repo}/pulls"
        try:
            response = requests.post(
                api_url,
                json={"title": title, "head": source, "base": target, "body": body},
                headers={
                    "Authorization": f"Bearer {self.config.github_token}",
                    "Accept": "application/vnd.github+json",
                },
                timeout=self.config.git_timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"GitHub API call failed: {e}")
            return None

        if response.status_code == 201:
            return response.json().get("html_url")
        logger.warning(f"GitHub API error: {response.status_code} {response.text[:200]}")
        return None
