"""Task engine for the orchestrator.

This package provides the task and project model, the lock-guarded
in-memory store with its priority queue, the decomposition parser, and
the engine that wraps them with event announcements.
"""
