"""
stepgate Development Workflow Tasks.

Task automation for developing, testing and running the stepgate manifest
execution engine.
"""

from typing import Any

from invoke import task


@task
def install(c: Any) -> None:
    """Install the stepgate package and its runtime dependencies."""
    c.run("uv pip install -e .")


@task
def install_dev(c: Any, name="install-dev") -> None:
    """
    Install development dependencies.

    Installs stepgate with the test and lint toolchains.
    """
    c.run("uv pip install -e '.[dev]'")


@task
def test(c: Any) -> None:
    """Execute the full test suite."""
    c.run("pytest")


@task
def test_unit(c: Any, name="test-unit") -> None:
    """
    Execute unit test suite.

    Runs only unit tests, excluding the git-backed integration scenarios
    for faster feedback.
    """
    c.run("pytest tests/unit -m 'not integration'")


@task
def test_integration(c: Any, name="test-integration") -> None:
    """
    Execute integration test suite.

    Runs the end-to-end scenarios against temporary git repositories.
    """
    c.run("pytest tests/integration -m integration")


@task
def test_coverage(c: Any, name="test-coverage") -> None:
    """Execute the test suite with coverage analysis."""
    c.run("pytest --cov=src/stepgate --cov-report=html --cov-report=term-missing")


@task
def lint(c: Any) -> None:
    """
    Execute code quality and style checks.

    Ruff for linting and MyPy for static type checking.
    """
    c.run("ruff check src/ tests/")
    c.run("mypy src/")


@task
def format_code(c: Any) -> None:
    """Format the codebase with Black, isort and Ruff."""
    c.run("black src/ tests/")
    c.run("isort src/ tests/")
    c.run("ruff check --fix src/ tests/")


@task
def clean(c: Any) -> None:
    """
    Clean up generated files and build artifacts.

    Removes caches, build output and coverage reports.
    """
    c.run("find . -type f -name '*.pyc' -delete")
    c.run("find . -type d -name '__pycache__' -delete")
    c.run("find . -type d -name '*.egg-info' -exec rm -rf {} + || true")
    c.run("rm -rf build/ dist/ .coverage htmlcov/ .pytest_cache/ .mypy_cache/")


@task
def execute(c: Any, manifest: str, no_commit: bool = False) -> None:
    """
    Execute a manifest with the stepgate CLI.

    Args:
        manifest: Path to the manifest YAML file
        no_commit: Apply the steps without committing them
    """
    flags = " --no-commit" if no_commit else ""
    c.run(f"stepgate run {manifest}{flags}", pty=True)


@task
def sample(c: Any) -> None:
    """
    Validate the bundled sample manifest.

    Parses examples/sample_manifest.yaml and prints its resumability.
    """
    c.run("stepgate validate examples/sample_manifest.yaml")


@task
def history(c: Any) -> None:
    """Summarize the recorded step scores."""
    c.run("stepgate history")


@task
def run(c: Any) -> None:
    """Start the stepgate HTTP server."""
    c.run("python main.py")


@task
def dev(c: Any) -> None:
    """
    Start development server with auto-reload.

    Launches the FastAPI app with automatic reloading.
    """
    c.run("uvicorn stepgate.server:app --reload --host 0.0.0.0 --port 8000")
