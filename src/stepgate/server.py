"""
stepgate API Server - runs manifests over HTTP.

Runs are executed one at a time in a worker thread, since a run owns its
working tree and current branch for its whole duration.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel

from .config.settings import LOG_FORMAT, LOG_LEVEL, SERVER_HOST, SERVER_PORT, ExecutionConfig
from .core.errors import ParseError
from .core.executor import StepExecutor
from .core.manifest import ManifestStore

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="stepgate",
    description="Deterministic, quality-gated execution of change manifests",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

_run_lock = threading.Lock()


class RunRequest(BaseModel):
    """Request body for a manifest run."""

    manifest_path: str
    config: ExecutionConfig | None = None


def _execute(manifest_path: Path, config: ExecutionConfig | None) -> dict[str, Any]:
    with _run_lock:
        executor = StepExecutor(manifest_path, config=config)
        report = executor.run()
    return {"exit_code": report.exit_code, **report.to_dict()}


@app.post("/runs", status_code=status.HTTP_201_CREATED)
async def create_run(request: RunRequest) -> dict[str, Any]:
    """
    Execute a manifest and return its final report.

    Args:
        request: Path to the manifest plus an optional configuration override

    Returns:
        The run report and its exit code

    Raises:
        HTTPException: 404 if the manifest does not exist, 500 if the run crashes
    """
    manifest_path = Path(request.manifest_path)
    if not manifest_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Manifest not found: {request.manifest_path}",
        )

    loop = asyncio.get_event_loop()
    try:
        logger.info(f"Starting run for {manifest_path}")
        return await loop.run_in_executor(None, _execute, manifest_path, request.config)
    except Exception as e:
        logger.error(f"Run for {manifest_path} crashed: {e}")
        raise HTTPException(status_code=500, detail=f"Run failed: {e}") from e


@app.get("/manifests/status")
async def manifest_status(manifest_path: str) -> dict[str, Any]:
    """Step statuses and resumability of a manifest, without executing it."""
    store = ManifestStore()
    try:
        manifest = store.load(manifest_path)
    except ParseError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return {
        "resumable": store.is_resumable(manifest),
        "steps": [{"id": s.id, "kind": s.kind, "status": s.status.value} for s in manifest.steps],
    }


@app.get("/health")
async def health_check() -> dict[str, str]:
    """
    System health check endpoint.

    Returns:
        Health status information
    """
    return {"status": "healthy", "service": "stepgate"}


def main() -> None:
    """Run the FastAPI server."""
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)


if __name__ == "__main__":
    main()
