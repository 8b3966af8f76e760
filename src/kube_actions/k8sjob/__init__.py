"""Kubernetes Job manifests and the task that runs them."""

from .manifest import get_generic_job, load_from_path, apply_overrides
from .compose import (
    base_job_manifest,
    overridden_job_manifest,
    with_default_values,
    compose_job_manifest,
)
from .task import JobTask, JobContext

__all__ = [
    # Manifests
    'get_generic_job',
    'load_from_path',
    'apply_overrides',
    # Composition
    'base_job_manifest',
    'overridden_job_manifest',
    'with_default_values',
    'compose_job_manifest',
    # Tasks
    'JobTask',
    'JobContext',
]
