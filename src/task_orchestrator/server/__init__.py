"""HTTP layer for the task orchestrator."""

from .api import create_app

__all__ = ["create_app"]
