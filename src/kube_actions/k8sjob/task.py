"""
Kubernetes Job task.

A JobTask runs one action container as its own Job: it specializes the
action's composed manifest for its container, applies it, follows its logs
and polls its status until the Job finishes or the task is cancelled.
"""

import copy
import logging
import threading
import uuid
from typing import Any, Dict, IO, List, Optional
from dataclasses import dataclass, field

from ..artifacts import ResolvedArtifact
from ..config import ContainerConfig
from ..errors import KubectlError, TaskCancelledError, TaskFailedError
from ..kubectl import KubectlCLI
from ..logger import JobLogger, JobTracker
from .manifest import JobManifest

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0


@dataclass(frozen=True)
class JobContext:
    """What a task needs from the environment that created it."""
    namespace: str
    run_id: str
    labels: Dict[str, str] = field(default_factory=dict)
    env_vars: List[Dict[str, str]] = field(default_factory=list)
    logger: Optional[JobLogger] = None
    tracker: Optional[JobTracker] = None


def _merge_env(global_env: List[Dict[str, str]], container_env: Dict[str, str],
               existing: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Template env, then global env, then container env; later names win.

    Template entries without a name are kept as they are.
    """
    merged: Dict[Any, Dict[str, Any]] = {}
    for i, entry in enumerate(existing):
        merged[entry.get('name') or (None, i)] = entry
    for entry in global_env:
        merged[entry['name']] = dict(entry)
    for name, value in container_env.items():
        merged[name] = {'name': name, 'value': value}
    return list(merged.values())


class JobTask:
    """
    One container of an action, executed as a Kubernetes Job.

    Example:
        task = JobTask(container, kubectl, 'default', artifact, job_manifest, context)
        task.exec(sys.stdout, threading.Event())
    """

    def __init__(
        self,
        container: ContainerConfig,
        kubectl: KubectlCLI,
        namespace: str,
        artifact: ResolvedArtifact,
        job_manifest: JobManifest,
        context: JobContext,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.container = container
        self.kubectl = kubectl
        self.namespace = namespace
        self.artifact = artifact
        self.context = context
        self.poll_interval = poll_interval

        self._job_manifest = copy.deepcopy(job_manifest)
        self._job_name = f"{container.name}-{uuid.uuid4().hex[:8]}"
        self._created = False

    @property
    def name(self) -> str:
        return self.container.name

    @property
    def job_name(self) -> str:
        return self._job_name

    def job_spec(self) -> JobManifest:
        """The manifest this task applies, specialized for its container."""
        job = copy.deepcopy(self._job_manifest)
        job['metadata']['name'] = self._job_name

        pod_spec = job['spec']['template']['spec']
        containers = pod_spec.get('containers') or [{}]
        pod_spec['containers'] = containers

        index = 0
        for i, c in enumerate(containers):
            if c.get('name') == self.container.name:
                index = i
                break

        c = containers[index]
        c['name'] = self.container.name
        c['image'] = self.artifact.tag
        if self.container.command:
            c['command'] = list(self.container.command)
        if self.container.args:
            c['args'] = list(self.container.args)

        env = _merge_env(self.context.env_vars, self.container.env, c.get('env') or [])
        if env:
            c['env'] = env

        return job

    def exec(self, out: IO[str], cancel: threading.Event) -> None:
        """
        Create the Job and wait for it to finish.

        Raises:
            TaskFailedError: If the Job fails or cannot be created
            TaskCancelledError: If ``cancel`` is set before the Job finishes
        """
        if cancel.is_set():
            raise TaskCancelledError(self.name)

        out.write(f"Starting task {self.name} ({self.artifact.tag}) as job {self._job_name}\n")
        try:
            self.kubectl.apply(self.job_spec())
        except KubectlError as e:
            raise TaskFailedError(self.name, str(e)) from e

        self._created = True
        if self.context.tracker is not None:
            self.context.tracker.add(self._job_name, self.name)
        if self.context.logger is not None:
            self.context.logger.stream(self._job_name)

        while True:
            state = self._job_state()
            if state == 'succeeded':
                return
            if state == 'failed':
                raise TaskFailedError(self.name, f"job {self._job_name} failed")

            if cancel.wait(self.poll_interval):
                logger.info("Cancelling task %s", self.name)
                self._delete_job()
                raise TaskCancelledError(self.name)

    def _job_state(self) -> str:
        """Return 'succeeded', 'failed' or 'running' from the Job's status."""
        try:
            job = self.kubectl.get_job(self._job_name)
        except KubectlError as e:
            raise TaskFailedError(self.name, str(e)) from e

        status = job.get('status') or {}
        for condition in status.get('conditions') or []:
            if condition.get('status') != 'True':
                continue
            if condition.get('type') == 'Complete':
                return 'succeeded'
            if condition.get('type') == 'Failed':
                return 'failed'

        if status.get('succeeded', 0) > 0:
            return 'succeeded'
        if status.get('failed', 0) > 0:
            return 'failed'
        return 'running'

    def _delete_job(self) -> None:
        if not self._created:
            return
        try:
            self.kubectl.delete_job(self._job_name)
        except KubectlError as e:
            logger.warning("Could not delete job %s: %s", self._job_name, e)
            return
        self._created = False
        if self.context.tracker is not None:
            self.context.tracker.remove(self._job_name)

    def cleanup(self) -> None:
        """Delete the Job if this task created one."""
        self._delete_job()
