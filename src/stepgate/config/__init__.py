"""stepgate configuration."""

from .settings import CheckSpec, ExecutionConfig, default_checks

__all__ = ["CheckSpec", "ExecutionConfig", "default_checks"]
