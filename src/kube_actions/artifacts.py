"""
Built, resolved and tracked artifacts.

A BuiltArtifact is an image produced by the build step of the current run.
Containers are bound to those builds by image name; containers whose image
was not built this run deploy the declared image name unchanged.
"""

import json
from pathlib import Path
from typing import Dict, Iterable, List, Union
from dataclasses import dataclass

from .config import ContainerConfig
from .errors import ConfigError


@dataclass(frozen=True)
class BuiltArtifact:
    """An image built in the current run."""
    image_name: str
    tag: str


@dataclass(frozen=True)
class ResolvedArtifact:
    """The image reference a task will actually deploy."""
    image_name: str
    tag: str


@dataclass(frozen=True)
class TrackedArtifact:
    """Attributes log output of a task to the image it declared."""
    image_name: str
    task_name: str


def index_builds(builds: Iterable[BuiltArtifact]) -> Dict[str, BuiltArtifact]:
    """
    Index builds by image name.

    If the same image name appears more than once, the last entry wins.
    """
    return {b.image_name: b for b in builds}


def bind_artifact(built: Dict[str, BuiltArtifact], container: ContainerConfig) -> ResolvedArtifact:
    """
    Resolve the artifact a container should deploy.

    Args:
        built: Builds of the current run, keyed by image name
        container: Container declaration

    Returns:
        ResolvedArtifact using the build's tag when the image was built,
        otherwise the declared image name as the tag.
    """
    artifact = built.get(container.image)
    tag = artifact.tag if artifact is not None else container.image
    return ResolvedArtifact(image_name=container.image, tag=tag)


def load_build_artifacts(path: Union[str, Path]) -> List[BuiltArtifact]:
    """
    Read a build output file.

    Format:
        {"builds": [{"imageName": "app", "tag": "app:v1@sha256:..."}]}

    Args:
        path: Path to the JSON file

    Returns:
        List of BuiltArtifact in file order
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Build artifacts file not found: {path}")

    with open(path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid build artifacts file {path}: {e}") from e

    builds = []
    for entry in (data or {}).get('builds') or []:
        if not entry.get('imageName') or not entry.get('tag'):
            raise ConfigError(f"Build entry in {path} needs 'imageName' and 'tag': {entry}")
        builds.append(BuiltArtifact(image_name=entry['imageName'], tag=entry['tag']))
    return builds
