"""
Kubernetes execution environment for actions.

ExecEnv turns requested action names into ready-to-run Actions:

    prepare_actions
      -> cluster reachability check
      -> start log streaming
      -> create_actions
           for each name: compose Job manifest, create one task per container
           register tracked artifacts once, after every action is built

Running the returned actions is up to the caller (see ``actions.run_actions``).
"""

import logging
import threading
from types import MappingProxyType
from typing import Dict, IO, List, Mapping, Optional, Tuple

from .actions import Action
from .artifacts import BuiltArtifact, TrackedArtifact, bind_artifact, index_builds
from .config import ActionConfig
from .errors import ActionNotFoundError, ClusterUnreachableError, ConnectivityError
from .k8sjob.compose import compose_job_manifest
from .k8sjob.manifest import JobManifest
from .k8sjob.task import JobContext, JobTask
from .kubectl import KubectlCLI, KubectlConfig, fail_if_cluster_is_not_reachable
from .labeller import RunLabeller
from .logger import JobLogger, JobTracker

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "default"


class ExecEnv:
    """
    Builds Actions whose tasks run as Kubernetes Jobs.

    Example:
        env = ExecEnv(KubectlConfig(), RunLabeller(), 'default', {}, config.actions)
        actions = env.prepare_actions(sys.stdout, builds, ['verify'])
        results = run_actions(actions, sys.stdout, cancel=env.stop_event)
    """

    def __init__(
        self,
        kubectl_config: KubectlConfig,
        labeller: RunLabeller,
        namespace: str,
        env_map: Optional[Dict[str, str]],
        actions: List[ActionConfig],
    ):
        """
        Initialize the environment.

        Args:
            kubectl_config: Context and kubeconfig for every kubectl call
            labeller: Provides the run id stamped on every Job
            namespace: Namespace for all Jobs ("default" when empty)
            env_map: Environment variables injected into every container
            actions: All action configurations, looked up by name
        """
        self.namespace = namespace or DEFAULT_NAMESPACE
        self.labeller = labeller
        self.kubectl_config = kubectl_config

        self.kubectl = KubectlCLI(kubectl_config, self.namespace)
        self.tracker = JobTracker()
        self.logger = JobLogger(self.tracker, labeller, self.kubectl)

        self._actions_by_name: Mapping[str, ActionConfig] = MappingProxyType(
            {a.name: a for a in actions}
        )
        self._env_vars = [{'name': k, 'value': v} for k, v in sorted((env_map or {}).items())]
        self._stop_event = threading.Event()

    @property
    def stop_event(self) -> threading.Event:
        """Set by ``stop``; pass it to the action executor as its cancel signal."""
        return self._stop_event

    @property
    def action_names(self) -> List[str]:
        return list(self._actions_by_name)

    def prepare_actions(
        self,
        out: IO[str],
        builds: List[BuiltArtifact],
        action_names: List[str],
    ) -> List[Action]:
        """
        Check the cluster, start log streaming and build the requested actions.

        Raises:
            ConnectivityError: If the cluster is not reachable
            ActionNotFoundError: If a requested action is not configured
            ManifestError: If a Job manifest cannot be loaded
            OverrideContractError: If overrides turn the manifest into a non-Job
        """
        try:
            fail_if_cluster_is_not_reachable(self.kubectl_config)
        except ClusterUnreachableError as e:
            raise ConnectivityError(f"unable to connect to Kubernetes: {e}") from e

        self.logger.start(out)

        return self.create_actions(out, builds, action_names)

    def cleanup(self, out: IO[str]) -> None:
        """Release cluster resources created during execution; tasks delete their own Jobs."""
        return None

    def stop(self) -> None:
        """Ask running actions to cancel. Safe to call repeatedly from any thread."""
        self._stop_event.set()

    def create_actions(
        self,
        out: IO[str],
        builds: List[BuiltArtifact],
        action_names: List[str],
    ) -> List[Action]:
        """
        Build one Action per requested name, in request order.

        Tracked artifacts of the whole batch are registered with the logger
        only after every action has been built; any error leaves nothing
        registered.
        """
        actions = []
        to_track: List[TrackedArtifact] = []
        built = index_builds(builds)

        for name in action_names:
            action_cfg = self._actions_by_name.get(name)
            if action_cfg is None:
                raise ActionNotFoundError(name)

            job_manifest = compose_job_manifest(
                action_cfg.job_manifest_path,
                action_cfg.overrides,
                self.namespace,
                self.labeller.get_run_id(),
            )

            tasks, tracked = self.create_tasks(action_cfg, job_manifest, built)

            actions.append(Action(action_cfg.name, tasks, action_cfg.timeout, action_cfg.fail_fast))
            to_track.extend(tracked)
            logger.debug("Built action %s with %d tasks", name, len(tasks))

        self.logger.register_artifacts(to_track)

        return actions

    def create_tasks(
        self,
        action_cfg: ActionConfig,
        job_manifest: JobManifest,
        built: Dict[str, BuiltArtifact],
    ) -> Tuple[List[JobTask], List[TrackedArtifact]]:
        """Create one task per container, in declaration order."""
        tasks = []
        to_track = []
        context = self._job_context()

        for container in action_cfg.containers:
            artifact = bind_artifact(built, container)
            tasks.append(JobTask(container, self.kubectl, self.namespace, artifact, job_manifest, context))
            to_track.append(TrackedArtifact(image_name=container.image, task_name=container.name))

        return tasks, to_track

    def _job_context(self) -> JobContext:
        return JobContext(
            namespace=self.namespace,
            run_id=self.labeller.get_run_id(),
            labels=self.labeller.labels(),
            env_vars=[dict(e) for e in self._env_vars],
            logger=self.logger,
            tracker=self.tracker,
        )
