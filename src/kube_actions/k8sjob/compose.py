"""
Job manifest composition.

A task's Job is built in three steps, each a function returning a new
manifest:

    base_job_manifest        builtin generic Job, or the manifest at a path
    overridden_job_manifest  user overrides merged on top
    with_default_values      run-scoped defaults, always applied last

Run-scoped defaults win over anything in the template or the overrides: the
run-id label is overwritten, pods never restart and the Job never retries,
so retry and timeout accounting stays with the action executor.
"""

import copy

from ..errors import OverrideContractError
from ..labeller import RUN_ID_LABEL
from .manifest import JobManifest, apply_overrides, get_generic_job, is_job, load_from_path, shape_error


def base_job_manifest(job_manifest_path: str) -> JobManifest:
    if not job_manifest_path:
        return get_generic_job()
    return load_from_path(job_manifest_path)


def overridden_job_manifest(job: JobManifest, overrides: str) -> JobManifest:
    if not overrides:
        return job

    obj = apply_overrides(job, overrides)
    if not is_job(obj):
        kind = obj.get('kind') if isinstance(obj, dict) else type(obj).__name__
        raise OverrideContractError(f"applying overrides produced {kind}, expected Job")
    problem = shape_error(obj)
    if problem:
        raise OverrideContractError(f"applying overrides produced a malformed Job: {problem}")
    return obj


def with_default_values(job: JobManifest, namespace: str, run_id: str) -> JobManifest:
    """
    Return a copy of ``job`` with the mandatory run-scoped defaults applied.

    Args:
        job: Job manifest (not modified)
        namespace: Namespace used when the manifest does not set one
        run_id: Identifier of the current run

    Returns:
        New manifest with labels, namespace, restart policy and backoff limit set
    """
    job = copy.deepcopy(job)

    metadata = job.get('metadata') or {}
    job['metadata'] = metadata
    spec = job.get('spec') or {}
    job['spec'] = spec
    template = spec.get('template') or {}
    spec['template'] = template
    pod_metadata = template.get('metadata') or {}
    template['metadata'] = pod_metadata
    pod_spec = template.get('spec') or {}
    template['spec'] = pod_spec

    if metadata.get('labels') is None:
        metadata['labels'] = {}
    if pod_metadata.get('labels') is None:
        pod_metadata['labels'] = {}

    if not metadata.get('namespace'):
        metadata['namespace'] = namespace

    metadata['labels'][RUN_ID_LABEL] = run_id
    pod_metadata['labels'][RUN_ID_LABEL] = run_id
    pod_spec['restartPolicy'] = 'Never'
    spec['backoffLimit'] = 0

    return job


def compose_job_manifest(job_manifest_path: str, overrides: str, namespace: str, run_id: str) -> JobManifest:
    """Compose the Job shared by every task of one action."""
    job = base_job_manifest(job_manifest_path)
    job = overridden_job_manifest(job, overrides)
    return with_default_values(job, namespace, run_id)
