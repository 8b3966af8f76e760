"""
Job manifest loading and overrides.

Manifests are plain dicts shaped like ``batch/v1`` Job objects.
"""

import copy
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..errors import ManifestError

JobManifest = Dict[str, Any]

_DELETE = None  # an override value of null removes the key

# mapping sections nested under each mapping section of a Job
_NESTED_SECTIONS = {
    'metadata': ('labels',),
    'spec': ('template',),
    'spec.template': ('metadata', 'spec'),
    'spec.template.metadata': ('labels',),
}


def get_generic_job() -> JobManifest:
    """Return a single-container Job skeleton to be specialized per task."""
    return {
        'apiVersion': 'batch/v1',
        'kind': 'Job',
        'metadata': {
            'name': '',
        },
        'spec': {
            'template': {
                'metadata': {},
                'spec': {
                    'containers': [
                        {'name': '', 'image': ''},
                    ],
                },
            },
        },
    }


def is_job(obj: Any) -> bool:
    return isinstance(obj, dict) and obj.get('kind') == 'Job'


def shape_error(job: JobManifest) -> Optional[str]:
    """
    Find the first Job section that is present but not of the expected type.

    Composition and task specialization write into metadata, spec, the pod
    template and its containers, so each of them has to be a mapping (or a
    list of mappings for containers and env) when it is set at all.

    Returns:
        A description of the offending section, or None if the Job is usable
    """
    sections = [('metadata', job, 'metadata'), ('spec', job, 'spec')]
    while sections:
        path, parent, key = sections.pop(0)
        value = parent.get(key)
        if value is None:
            continue
        if not isinstance(value, dict):
            return f"{path} must be a mapping, found {type(value).__name__}"
        for child in _NESTED_SECTIONS.get(path, ()):
            sections.append((f"{path}.{child}", value, child))

    pod_spec = ((job.get('spec') or {}).get('template') or {}).get('spec') or {}
    containers = pod_spec.get('containers')
    if containers is None:
        return None
    if not isinstance(containers, list) or not all(isinstance(c, dict) for c in containers):
        return "spec.template.spec.containers must be a list of mappings"
    for c in containers:
        env = c.get('env')
        if env is not None and (not isinstance(env, list) or not all(isinstance(e, dict) for e in env)):
            return f"env of container {c.get('name')!r} must be a list of mappings"
    return None


def load_from_path(path: Union[str, Path]) -> JobManifest:
    """
    Load a Job manifest from a YAML or JSON file.

    Args:
        path: Path to the manifest

    Returns:
        The parsed Job

    Raises:
        ManifestError: If the file is missing, unreadable, malformed, or not a
            single well-formed Job
    """
    path = Path(path)
    if not path.exists():
        raise ManifestError(str(path), "file not found")

    try:
        with open(path, 'r') as f:
            docs = [d for d in yaml.safe_load_all(f) if d is not None]
    except yaml.YAMLError as e:
        raise ManifestError(str(path), f"invalid YAML: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ManifestError(str(path), f"unable to read file: {e}") from e

    if len(docs) != 1:
        raise ManifestError(str(path), f"expected exactly one document, found {len(docs)}")

    job = docs[0]
    if not is_job(job):
        kind = job.get('kind') if isinstance(job, dict) else type(job).__name__
        raise ManifestError(str(path), f"expected kind Job, found {kind}")

    problem = shape_error(job)
    if problem:
        raise ManifestError(str(path), problem)

    return job


def _merge_named_lists(base: List[Any], patch: List[Any]) -> List[Any]:
    """Merge two lists of named mappings by name; unnamed patch entries are appended."""
    merged = [copy.deepcopy(item) for item in base]
    positions = {item['name']: i for i, item in enumerate(merged)}
    for item in patch:
        name = item.get('name')
        if name in positions:
            merged[positions[name]] = _merge(merged[positions[name]], item)
        else:
            merged.append(copy.deepcopy(item))
    return merged


def _is_named_list(value: Any) -> bool:
    return (
        isinstance(value, list)
        and len(value) > 0
        and all(isinstance(v, dict) and 'name' in v for v in value)
    )


def _merge(base: Any, patch: Any) -> Any:
    if isinstance(base, dict) and isinstance(patch, dict):
        merged = copy.deepcopy(base)
        for key, value in patch.items():
            if value is _DELETE:
                merged.pop(key, None)
            elif key in merged:
                merged[key] = _merge(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    if _is_named_list(base) and _is_named_list(patch):
        return _merge_named_lists(base, patch)

    return copy.deepcopy(patch)


def apply_overrides(job: JobManifest, overrides: str) -> Any:
    """
    Apply a structured override to a Job.

    The override is a JSON (or YAML) document merged into the Job:
    mappings merge recursively, lists of named entries (containers, env,
    volumes) merge by name, any other value replaces the original and
    ``null`` removes the key.

    Args:
        job: Base Job manifest (not modified)
        overrides: Override document

    Returns:
        The patched object. Callers check that it is still a Job.

    Raises:
        ManifestError: If the override document cannot be parsed
    """
    try:
        patch = yaml.safe_load(overrides)
    except yaml.YAMLError as e:
        raise ManifestError('<overrides>', f"invalid override document: {e}") from e

    if patch is None:
        return copy.deepcopy(job)
    if not isinstance(patch, dict):
        raise ManifestError('<overrides>', "override document must be a mapping")

    return _merge(job, patch)
