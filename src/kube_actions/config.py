"""
Action configuration.

The ActionsConfig loads a YAML file declaring the named actions, the
containers each action runs, and the per-action execution policy.

Example file:

    namespace: default
    kubeContext: my-cluster
    env:
      LOG_LEVEL: debug
    actions:
      - name: verify
        config:
          timeout: 600
          isFailFast: true
        containers:
          - name: integration
            image: app
            command: ["./run-tests.sh"]
        executionMode:
          kubernetesCluster:
            jobManifestPath: job.yaml
            overrides: '{"spec": {"activeDeadlineSeconds": 300}}'
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field

import yaml

from .errors import ConfigError

DEFAULT_TIMEOUT = 3600
DEFAULT_FAIL_FAST = True

_CONTAINER_KEYS = ('name', 'image', 'command', 'args', 'env')


@dataclass
class ContainerConfig:
    """A single container declared by an action."""
    name: str
    image: str
    command: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)  # ignored by orchestration

    @classmethod
    def from_dict(cls, data: Dict[str, Any], action_name: str) -> 'ContainerConfig':
        if not isinstance(data, dict):
            raise ConfigError(f"Action {action_name}: container entries must be mappings")
        for key in ('name', 'image'):
            if not data.get(key):
                raise ConfigError(f"Action {action_name}: container is missing '{key}'")

        env = data.get('env') or {}
        if not isinstance(env, dict):
            raise ConfigError(
                f"Action {action_name}: env of container {data['name']} must be a mapping"
            )

        for key in ('command', 'args'):
            value = data.get(key)
            if value is not None and not isinstance(value, list):
                raise ConfigError(
                    f"Action {action_name}: {key} of container {data['name']} must be a list"
                )

        return cls(
            name=str(data['name']),
            image=str(data['image']),
            command=[str(c) for c in data.get('command') or []],
            args=[str(a) for a in data.get('args') or []],
            env={str(k): str(v) for k, v in env.items()},
            extra={k: v for k, v in data.items() if k not in _CONTAINER_KEYS},
        )


@dataclass
class ActionConfig:
    """A named action: ordered containers plus execution policy."""
    name: str
    containers: List[ContainerConfig]
    timeout: int = DEFAULT_TIMEOUT        # seconds, shared by all tasks
    fail_fast: bool = DEFAULT_FAIL_FAST
    job_manifest_path: str = ''
    overrides: str = ''

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> 'ActionConfig':
        """
        Build an ActionConfig from one entry of the ``actions`` list.

        Args:
            data: Raw YAML mapping for the action
            base_dir: Directory that relative manifest paths are resolved against

        Returns:
            Validated ActionConfig
        """
        if not isinstance(data, dict):
            raise ConfigError("Action entries must be mappings")

        name = data.get('name')
        if not name:
            raise ConfigError("Action is missing 'name'")

        containers = data.get('containers') or []
        if not containers:
            raise ConfigError(f"Action {name}: at least one container is required")

        policy = data.get('config') or {}
        timeout = policy.get('timeout', DEFAULT_TIMEOUT)
        if not isinstance(timeout, int) or isinstance(timeout, bool) or timeout <= 0:
            raise ConfigError(f"Action {name}: timeout must be a positive number of seconds")
        fail_fast = policy.get('isFailFast', DEFAULT_FAIL_FAST)
        if not isinstance(fail_fast, bool):
            raise ConfigError(f"Action {name}: isFailFast must be true or false")

        k8s_mode = (data.get('executionMode') or {}).get('kubernetesCluster') or {}
        manifest_path = k8s_mode.get('jobManifestPath') or ''
        if manifest_path and base_dir is not None and not Path(manifest_path).is_absolute():
            manifest_path = str(base_dir / manifest_path)

        overrides = k8s_mode.get('overrides') or ''
        if not isinstance(overrides, str):
            # Allow overrides written inline as YAML instead of a JSON string
            overrides = yaml.safe_dump(overrides)

        return cls(
            name=str(name),
            containers=[ContainerConfig.from_dict(c, name) for c in containers],
            timeout=timeout,
            fail_fast=fail_fast,
            job_manifest_path=manifest_path,
            overrides=overrides,
        )


class ActionsConfig:
    """
    Loads and validates an actions YAML file.

    Example:
        config = ActionsConfig.from_yaml('actions.yaml')
        print(config.action_names)
    """

    def __init__(self, data: Dict[str, Any], base_dir: Optional[Path] = None):
        self._data = data or {}
        self._base_dir = base_dir
        self._actions = self._validate()

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> 'ActionsConfig':
        """Load actions config from YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Actions config not found: {path}")

        with open(path, 'r') as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Actions config must be a mapping: {path}")

        return cls(data, base_dir=path.parent)

    def _validate(self) -> List[ActionConfig]:
        """Validate the actions section and parse every entry."""
        raw_actions = self._data.get('actions')
        if not raw_actions or not isinstance(raw_actions, list):
            raise ConfigError("Missing required config section: 'actions'")

        actions = [ActionConfig.from_dict(a, self._base_dir) for a in raw_actions]

        seen = set()
        for action in actions:
            if action.name in seen:
                raise ConfigError(f"Duplicate action name: {action.name}")
            seen.add(action.name)

        env = self._data.get('env') or {}
        if not isinstance(env, dict):
            raise ConfigError("'env' must be a mapping")

        return actions

    # --- Properties ---

    @property
    def actions(self) -> List[ActionConfig]:
        return list(self._actions)

    @property
    def action_names(self) -> List[str]:
        return [a.name for a in self._actions]

    @property
    def namespace(self) -> str:
        return self._data.get('namespace') or ''

    @property
    def kube_context(self) -> Optional[str]:
        return self._data.get('kubeContext')

    @property
    def kubeconfig(self) -> Optional[str]:
        return self._data.get('kubeconfig')

    @property
    def env(self) -> Dict[str, str]:
        """Environment variables injected into every task container."""
        return {str(k): str(v) for k, v in (self._data.get('env') or {}).items()}
