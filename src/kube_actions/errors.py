"""
Error classes for kube_actions.

Composition-time errors (configuration, connectivity, manifests, overrides)
abort a whole batch build. Execution-time errors (task failure, cancellation)
are collected per action by the execution layer.
"""

from typing import List, Optional


class KubeActionsError(Exception):
    """Base exception for kube_actions."""
    pass


class ConfigError(KubeActionsError):
    """Action configuration validation error."""
    pass


class ConnectivityError(KubeActionsError):
    """The Kubernetes cluster could not be reached."""
    pass


class ClusterUnreachableError(KubeActionsError):
    """Raised by the reachability check when kubectl cannot talk to the cluster."""
    pass


class ActionNotFoundError(KubeActionsError):
    """A requested action name is not defined in the configuration."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"action {name} not found for k8s execution mode")


class ManifestError(KubeActionsError):
    """A Job manifest could not be loaded or parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"unable to load job manifest {path}: {reason}")


class OverrideContractError(KubeActionsError):
    """
    Applying overrides produced something other than a Job.

    This is an internal invariant failure of the override applier, not a
    user-facing validation error.
    """
    pass


class KubectlError(KubeActionsError):
    """A kubectl invocation exited with a non-zero status."""

    def __init__(self, args: List[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = f"kubectl {' '.join(args)} failed with exit code {returncode}"
        if stderr:
            message += f": {stderr.strip()}"
        super().__init__(message)


class TaskFailedError(KubeActionsError):
    """A task's Job finished unsuccessfully."""

    def __init__(self, task_name: str, reason: str = ""):
        self.task_name = task_name
        message = f"task {task_name} failed"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class TaskCancelledError(KubeActionsError):
    """A task was stopped before its Job finished."""

    def __init__(self, task_name: str):
        self.task_name = task_name
        super().__init__(f"task {task_name} cancelled")


class ActionFailedError(KubeActionsError):
    """One or more tasks of an action did not succeed."""

    def __init__(self, action_name: str, failures: Optional[List[str]] = None):
        self.action_name = action_name
        self.failures = list(failures or [])
        message = f"action {action_name} failed"
        if self.failures:
            message += f" ({', '.join(self.failures)})"
        super().__init__(message)
