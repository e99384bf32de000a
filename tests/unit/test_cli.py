"""Unit tests for the command-line interface."""

import json
import shutil
import tempfile
from pathlib import Path

import pytest
import yaml

from stepgate import cli
from stepgate.agents.scorer import ScoreHistory
from stepgate.core.errors import ExitCode
from stepgate.core.models import ScoreRecord


class TestCli:
    """Test cases for stepgate run, validate and history."""

    def setup_method(self):
        """Set up a workspace with a manifest."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.workspace = self.temp_dir / "workspace"
        self.workspace.mkdir()
        self.manifest_path = self.temp_dir / "manifest.yaml"
        self.manifest_path.write_text(
            yaml.safe_dump(
                {
                    "metadata": {"working_dir": str(self.workspace)},
                    "steps": [
                        {"id": "hello", "kind": "create_file", "path": "hello.txt", "content": "hi"}
                    ],
                }
            )
        )

    def teardown_method(self):
        """Clean up after each test."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_run_prints_progress_and_report(self, capsys):
        """Test a run without commits or checks."""
        exit_code = cli.main(["run", str(self.manifest_path), "--no-commit", "--no-quality-gate"])

        out = capsys.readouterr().out
        first_line, report_text = out.split("\n", 1)
        assert exit_code == ExitCode.SUCCESS
        assert first_line == "[1/1] hello (create_file) PENDING -> SUCCESS (score +1)"
        assert json.loads(report_text) == {"status": "SUCCESS", "commit_hashes": [], "final_score": 1.0}
        assert (self.workspace / "hello.txt").read_text() == "hi"

    def test_run_rejects_unknown_check(self, capsys):
        """Test that a bad check name is a configuration error."""
        exit_code = cli.main(["run", str(self.manifest_path), "--checks", "coverage"])
        assert exit_code == ExitCode.PARSE_FAILURE
        assert "Unknown check" in capsys.readouterr().err

    def test_validate(self, capsys):
        """Test validation of a fresh manifest."""
        assert cli.main(["validate", str(self.manifest_path)]) == ExitCode.SUCCESS
        data = json.loads(capsys.readouterr().out)
        assert data["valid"] is True
        assert data["resumable"] is True
        assert data["statuses"] == {"PENDING": 1}

    def test_validate_malformed(self, capsys):
        """Test validation of a broken manifest."""
        self.manifest_path.write_text("steps: 5")
        assert cli.main(["validate", str(self.manifest_path)]) == ExitCode.PARSE_FAILURE
        assert json.loads(capsys.readouterr().out)["valid"] is False

    def test_history(self, capsys):
        """Test the score history summary."""
        path = self.temp_dir / "scores.jsonl"
        ScoreHistory(path).append(ScoreRecord(step_id="a", score=2, label="PERFECT"))

        assert cli.main(["history", "--path", str(path)]) == ExitCode.SUCCESS
        summary = json.loads(capsys.readouterr().out)
        assert summary["records"] == 1
        assert summary["labels"]["PERFECT"] == 1

    def test_history_follows_the_manifest_workspace(self, capsys, monkeypatch):
        """Test that history for a manifest reads the file its runs append to."""
        monkeypatch.chdir(self.temp_dir)
        cli.main(["run", str(self.manifest_path), "--no-commit", "--no-quality-gate"])
        capsys.readouterr()

        assert cli.main(["history", str(self.manifest_path)]) == ExitCode.SUCCESS
        summary = json.loads(capsys.readouterr().out)
        assert summary["records"] == 1
        assert summary["labels"]["GOOD"] == 1

    def test_history_of_malformed_manifest(self, capsys):
        """Test that an unreadable manifest is a parse failure."""
        self.manifest_path.write_text("steps: [")
        assert cli.main(["history", str(self.manifest_path)]) == ExitCode.PARSE_FAILURE
        assert "Cannot read manifest" in capsys.readouterr().err

    def test_command_is_required(self):
        """Test that a subcommand must be given."""
        with pytest.raises(SystemExit):
            cli.main([])
