"""Service exports."""

from . import aggregation, artifacts, identity, jobs, normalizer, orchestrator, storage, templates

__all__ = [
    "aggregation",
    "artifacts",
    "identity",
    "jobs",
    "normalizer",
    "orchestrator",
    "storage",
    "templates",
]
