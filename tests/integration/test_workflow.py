"""Integration tests for complete manifest runs against real git repositories."""

import io
import shutil
import sys
import tempfile
from pathlib import Path

import pytest
import yaml

from conftest import FakeRunner, init_repo
from stepgate.agents.reporter import ReporterAgent
from stepgate.agents.scorer import ScoreHistory
from stepgate.config.settings import CheckSpec, ExecutionConfig
from stepgate.core.errors import ExitCode
from stepgate.core.executor import StepExecutor
from stepgate.core.manifest import ManifestStore
from stepgate.core.models import CommandResult, StepStatus

pytestmark = pytest.mark.integration

BROKEN_MARKER = "# lint: broken"


def snapshot_tree(root: Path) -> dict[str, bytes]:
    """Every file under ``root`` except git metadata, keyed by relative path."""
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file() and ".git" not in path.relative_to(root).parts
    }


class TestManifestWorkflow:
    """End-to-end runs: apply, gate, commit or roll back, score, persist."""

    def setup_method(self):
        """Set up a git repository plus a manifest stored outside it."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.workspace = self.temp_dir / "workspace"
        self.repo = init_repo(self.workspace)
        self.manifest_path = self.temp_dir / "manifest.yaml"
        self.history = ScoreHistory(self.temp_dir / "scores.jsonl")

    def teardown_method(self):
        """Clean up after each test."""
        self.repo.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _lint(self, workspace: Path) -> FakeRunner:
        """A lint check that fails while any file carries the broken marker."""

        def responder(args):
            broken = [
                p.name
                for p in workspace.rglob("*")
                if p.is_file() and ".git" not in p.parts and BROKEN_MARKER in p.read_text(errors="ignore")
            ]
            if broken:
                return CommandResult(args=args, exit_code=1, stdout="\n".join(f"{n}: E999" for n in broken))
            return CommandResult(args=args, exit_code=0)

        return FakeRunner(responder)

    def _write_manifest(self, steps, path=None, workspace=None):
        path = path or self.manifest_path
        workspace = workspace or self.workspace
        data = {
            "metadata": {"working_dir": str(workspace), "feature": "greeting"},
            "steps": steps,
        }
        path.write_text(yaml.safe_dump(data, sort_keys=False))

    def _executor(self, path=None, workspace=None, history=None, **kwargs):
        workspace = workspace or self.workspace
        return StepExecutor(
            path or self.manifest_path,
            config=ExecutionConfig(checks=[CheckSpec(name="lint", command=["lint"])], retry_attempts=1),
            score_history=history or self.history,
            reporter=ReporterAgent(stream=io.StringIO()),
            check_runner=self._lint(workspace),
            sleep=lambda seconds: None,
            **kwargs,
        )

    def _run(self, **kwargs):
        executor = self._executor(**kwargs)
        return executor, executor.run()

    def _commit_count(self, repo=None) -> int:
        return int((repo or self.repo).git.rev_list("--count", "HEAD"))

    def test_scenario_a_single_file(self):
        """Scenario A: one create_file step on an empty tree."""
        self._write_manifest([{"id": "create-foo", "kind": "create_file", "path": "foo.txt", "content": "hello"}])

        _, report = self._run()

        assert report.exit_code == ExitCode.SUCCESS
        assert (self.workspace / "foo.txt").read_text() == "hello"
        assert self._commit_count() == 2
        assert report.commit_hashes == [self.repo.head.commit.hexsha]
        assert self.repo.head.commit.message.startswith("feat(core): create foo")
        step = ManifestStore().load(self.manifest_path).steps[0]
        assert step.status == StepStatus.SUCCESS
        assert step.score in (1, 2)

    def test_scenario_b_stale_patch(self):
        """Scenario B: a refactor whose find block is absent halts without committing."""
        self._write_manifest(
            [
                {
                    "id": "patch-readme",
                    "kind": "refactor_file",
                    "path": "README.md",
                    "find": "# Missing heading",
                    "replace": "# New heading",
                }
            ]
        )

        _, report = self._run()

        assert report.exit_code != ExitCode.SUCCESS
        assert report.failed_step_id == "patch-readme"
        step = ManifestStore().load(self.manifest_path).steps[0]
        assert step.status == StepStatus.FAILED
        assert "not found" in step.execution_log
        assert "PatchMismatchError" in step.execution_log
        assert self._commit_count() == 1
        assert (self.workspace / "README.md").read_text() == "# Sample\n"

    def test_scenario_c_second_step_fails_gate(self):
        """Scenario C: first commit stays, second file is rolled back, exit is non-zero."""
        self._write_manifest(
            [
                {"id": "first", "kind": "create_file", "path": "first.py", "content": '"""First."""\n'},
                {"id": "second", "kind": "create_file", "path": "second.py", "content": f"{BROKEN_MARKER}\n"},
            ]
        )

        _, report = self._run()

        assert report.exit_code == ExitCode.QUALITY_GATE_FAILURE
        assert report.failed_step_id == "second"
        assert "second.py: E999" in report.error_log
        assert self._commit_count() == 2
        assert "first.py" in self.repo.git.show("--name-only", "--format=", "HEAD")
        assert (self.workspace / "first.py").exists()
        assert not (self.workspace / "second.py").exists()
        assert self.repo.git.status("--porcelain") == ""

    def test_rollback_is_byte_identical(self):
        """Test that a gate failure restores the exact pre-step tree."""
        (self.workspace / "src").mkdir()
        (self.workspace / "src/app.py").write_text('"""App."""\nVALUE = 1\n')
        self.repo.git.add(A=True)
        self.repo.git.commit(m="Add app")
        before = snapshot_tree(self.workspace)

        self._write_manifest(
            [
                {
                    "id": "multi",
                    "kind": "create_multiple_files",
                    "files": [
                        {"path": "src/new/deep/mod.py", "content": '"""Mod."""\n'},
                        {"path": "src/other.py", "content": f"{BROKEN_MARKER}\n"},
                    ],
                },
            ]
        )
        _, first = self._run()
        assert first.exit_code == ExitCode.QUALITY_GATE_FAILURE
        assert snapshot_tree(self.workspace) == before

        self._write_manifest(
            [
                {
                    "id": "edit",
                    "kind": "refactor_file",
                    "path": "src/app.py",
                    "find": "VALUE = 1",
                    "replace": f"VALUE = 2  {BROKEN_MARKER}",
                }
            ]
        )
        _, second = self._run()
        assert second.exit_code == ExitCode.QUALITY_GATE_FAILURE
        assert snapshot_tree(self.workspace) == before
        assert self.repo.git.diff("--cached") == ""

    def test_delete_rollback_keeps_crlf_and_binary_bytes(self):
        """Test that rolled-back deletions restore line endings and binary content exactly."""
        (self.workspace / "assets").mkdir()
        (self.workspace / "notes.txt").write_bytes(b"line1\r\nline2\r\n")
        (self.workspace / "assets/logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\xff\xfe")
        (self.workspace / "legacy.py").write_text(f"{BROKEN_MARKER}\n")
        self.repo.git.add(A=True)
        self.repo.git.commit(m="Add assets")
        before = snapshot_tree(self.workspace)

        for step_id, path in [("drop-notes", "notes.txt"), ("drop-logo", "assets/logo.png")]:
            self._write_manifest([{"id": step_id, "kind": "delete_file", "path": path}])
            _, report = self._run()

            assert report.exit_code == ExitCode.QUALITY_GATE_FAILURE
            assert snapshot_tree(self.workspace) == before
            assert self.repo.git.status("--porcelain") == ""

    def test_binary_delete_is_committed(self):
        """Test that a non-text file can be deleted and the removal committed."""
        (self.workspace / "assets").mkdir()
        (self.workspace / "assets/logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\xff\xfe")
        self.repo.git.add(A=True)
        self.repo.git.commit(m="Add logo")

        self._write_manifest([{"id": "drop-logo", "kind": "delete_file", "path": "assets/logo.png"}])
        _, report = self._run()

        assert report.exit_code == ExitCode.SUCCESS
        assert not (self.workspace / "assets/logo.png").exists()
        assert "assets/logo.png" not in [b.path for b in self.repo.head.commit.tree.traverse()]
        assert self._commit_count() == 3

    def test_fail_fast(self):
        """Test that steps after a failure have no side effects."""
        self._write_manifest(
            [
                {"id": "one", "kind": "create_file", "path": "one.txt", "content": "1"},
                {"id": "clash", "kind": "create_file", "path": "README.md", "content": "dup"},
                {"id": "three", "kind": "create_file", "path": "three.txt", "content": "3"},
                {"id": "branch", "kind": "branch", "name": "never"},
            ]
        )

        _, report = self._run()

        assert report.exit_code == ExitCode.STEP_FAILURE
        assert report.failed_step_id == "clash"
        assert not (self.workspace / "three.txt").exists()
        assert "never" not in [head.name for head in self.repo.heads]
        assert self._commit_count() == 2
        statuses = [s.status for s in ManifestStore().load(self.manifest_path).steps]
        assert statuses == [StepStatus.SUCCESS, StepStatus.FAILED, StepStatus.PENDING, StepStatus.PENDING]

    def test_patch_exactness(self):
        """Test that a find block present twice fails and leaves the file unmodified."""
        original = '"""Config."""\nDEBUG = False\nDEBUG = False\n'
        (self.workspace / "config.py").write_text(original)
        self._write_manifest(
            [{"id": "flip", "kind": "refactor_file", "path": "config.py", "find": "DEBUG = False", "replace": "DEBUG = True"}]
        )

        _, report = self._run()

        assert report.exit_code == ExitCode.STEP_FAILURE
        assert (self.workspace / "config.py").read_text() == original
        step = ManifestStore().load(self.manifest_path).steps[0]
        assert step.score == -2
        assert step.error_type == "PatchMismatchError"

    def test_determinism(self):
        """Test that identical manifests on identical trees give identical outcomes."""
        steps = [
            {"id": "entity", "kind": "create_file", "path": "src/domain/order.py",
             "content": '"""Order aggregate root (domain-driven design)."""\n'},
            {"id": "plain", "kind": "create_file", "path": "src/util.py", "content": "X = 1\n"},
            {"id": "edit", "kind": "refactor_file", "path": "src/util.py", "find": "X = 1", "replace": "# tuned\nX = 2"},
            {"id": "bad", "kind": "create_file", "path": "src/bad.py", "content": f"{BROKEN_MARKER}\n"},
        ]
        outcomes = []
        for name in ("left", "right"):
            workspace = self.temp_dir / name
            repo = init_repo(workspace)
            manifest_path = self.temp_dir / f"{name}.yaml"
            self._write_manifest(steps, path=manifest_path, workspace=workspace)

            _, report = self._run(
                path=manifest_path, workspace=workspace, history=ScoreHistory(self.temp_dir / f"{name}.jsonl")
            )

            manifest = ManifestStore().load(manifest_path)
            outcomes.append(
                (
                    report.exit_code,
                    [(s.id, s.status, s.score) for s in manifest.steps],
                    repo.git.diff("HEAD~3", "HEAD"),
                    snapshot_tree(workspace),
                )
            )
            repo.close()

        assert outcomes[0] == outcomes[1]
        assert [score for _, _, score in outcomes[0][1]] == [2, 0, 1, -1]

    def test_resume_idempotence(self):
        """Test that resuming after a cancel matches a fresh full run."""
        steps = [
            {"id": f"file-{i}", "kind": "create_file", "path": f"f{i}.txt", "content": str(i)}
            for i in range(3)
        ]

        fresh_ws = self.temp_dir / "fresh"
        fresh_repo = init_repo(fresh_ws)
        fresh_manifest = self.temp_dir / "fresh.yaml"
        self._write_manifest(steps, path=fresh_manifest, workspace=fresh_ws)
        self._run(path=fresh_manifest, workspace=fresh_ws)

        self._write_manifest(steps)
        executor = self._executor(on_transition=lambda event: executor.cancel())
        assert executor.run().exit_code == ExitCode.CANCELLED
        resumed = ManifestStore().load(self.manifest_path)
        assert [s.status for s in resumed.steps] == [StepStatus.SUCCESS, StepStatus.PENDING, StepStatus.PENDING]
        assert ManifestStore().is_resumable(resumed)

        _, report = self._run()

        assert report.exit_code == ExitCode.SUCCESS
        assert len(report.commit_hashes) == 2
        fresh = ManifestStore().load(fresh_manifest)
        final = ManifestStore().load(self.manifest_path)
        assert [(s.status, s.score) for s in final.steps] == [(s.status, s.score) for s in fresh.steps]
        assert snapshot_tree(self.workspace) == snapshot_tree(fresh_ws)
        assert self._commit_count() == self._commit_count(fresh_repo) == 4
        fresh_repo.close()

    def test_branch_validation_and_pull_request(self):
        """Test the non-file step kinds, with the manifest inside the working tree."""
        origin = self.temp_dir / "origin.git"
        self.repo.git.init("--bare", str(origin))
        self.repo.git.remote("add", "origin", str(origin))

        manifest_path = self.workspace / "stepgate.yaml"
        self._write_manifest(
            [
                {"id": "start", "kind": "branch"},
                {"id": "add", "kind": "create_file", "path": "docs/guide.md", "content": "# Guide\n"},
                {"id": "check", "kind": "validation", "command": "lint --strict", "expect_output": ""},
                {"id": "open-pr", "kind": "pull_request", "title": "Add guide"},
            ],
            path=manifest_path,
        )
        hosting = FakeRunner(lambda args: CommandResult(args=args, exit_code=127))

        _, report = self._run(path=manifest_path, hosting_runner=hosting)

        assert report.exit_code == ExitCode.SUCCESS, report.error_log
        assert self.repo.active_branch.name == "stepgate/greeting/start"
        assert hosting.calls[0][:3] == ["gh", "pr", "create"]
        assert "stepgate/greeting/start" in self.repo.git.ls_remote("--heads", str(origin))
        assert manifest_path.exists()
        assert self.repo.git.stash("list") == ""
        tracked = self.repo.git.ls_files()
        assert "docs/guide.md" in tracked
        assert "stepgate.yaml" not in tracked


class TestSampleManifest:
    """The bundled example manifest, gated by the sample service's own test suite."""

    EXAMPLES = Path(__file__).resolve().parents[2] / "examples"

    def setup_method(self):
        """Copy the sample service into a fresh repository."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.workspace = self.temp_dir / "sample_service"
        self.repo = init_repo(self.workspace)
        shutil.copytree(
            self.EXAMPLES / "sample_service",
            self.workspace,
            dirs_exist_ok=True,
            ignore=shutil.ignore_patterns("__pycache__", ".pytest_cache"),
        )
        self.repo.git.add(A=True)
        self.repo.git.commit(m="Add sample service")

    def teardown_method(self):
        """Clean up after each test."""
        self.repo.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_every_step_passes_the_test_check(self):
        """Test that each gated step leaves the sample's suite green."""
        pytest_command = [sys.executable, "-m", "pytest", "-q", "-p", "no:cacheprovider"]
        data = yaml.safe_load((self.EXAMPLES / "sample_manifest.yaml").read_text())
        data["steps"] = [step for step in data["steps"] if step["kind"] != "pull_request"]
        for step in data["steps"]:
            if step["kind"] == "validation":
                step["command"] = pytest_command
        manifest_path = self.temp_dir / "sample_manifest.yaml"
        manifest_path.write_text(yaml.safe_dump(data, sort_keys=False))

        executor = StepExecutor(
            manifest_path,
            config=ExecutionConfig(
                checks=[CheckSpec(name="test", command=pytest_command, success_codes=[0, 5])],
                retry_attempts=1,
            ),
            score_history=ScoreHistory(self.temp_dir / "scores.jsonl"),
            reporter=ReporterAgent(stream=io.StringIO()),
        )
        report = executor.run()

        assert report.exit_code == ExitCode.SUCCESS, report.error_log
        assert self.repo.active_branch.name == "stepgate/health/start-branch"
        assert '@app.get("/health")' in (self.workspace / "app/main.py").read_text()
        assert (self.workspace / "tests/test_health.py").exists()
        assert len(report.commit_hashes) == 4
