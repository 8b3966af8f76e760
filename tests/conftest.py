"""Shared fixtures and fakes for kube_actions tests."""

import pytest

from kube_actions.config import ActionConfig, ContainerConfig
from kube_actions.errors import TaskCancelledError, TaskFailedError


class FakeJobLogger:
    """Records calls made by ExecEnv to the log streamer."""

    def __init__(self):
        self.started_with = None
        self.registered = []  # one entry per register_artifacts call

    def start(self, out):
        self.started_with = out

    def register_artifacts(self, artifacts):
        self.registered.append(list(artifacts))

    def stream(self, job_name):
        return None

    def stop(self):
        pass


class FakeKubectl:
    """kubectl stand-in returning a scripted sequence of Job statuses."""

    def __init__(self, statuses=None, apply_error=None, delete_error=None):
        self.statuses = list(statuses or [{'succeeded': 1}])
        self.apply_error = apply_error
        self.delete_error = delete_error
        self.applied = []
        self.deleted = []
        self.polled = 0

    def apply(self, manifest):
        if self.apply_error is not None:
            raise self.apply_error
        self.applied.append(manifest)
        return ''

    def get_job(self, name):
        self.polled += 1
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return {'metadata': {'name': name}, 'status': status}

    def delete_job(self, name):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(name)


class FakeTask:
    """Task that sleeps, then succeeds or fails; honours cancellation."""

    def __init__(self, name, duration=0.0, fail=False):
        self._name = name
        self.duration = duration
        self.fail = fail
        self.cleaned_up = False

    @property
    def name(self):
        return self._name

    def exec(self, out, cancel):
        if cancel.wait(self.duration):
            raise TaskCancelledError(self._name)
        if self.fail:
            raise TaskFailedError(self._name, 'boom')

    def cleanup(self):
        self.cleaned_up = True


@pytest.fixture
def fake_logger():
    return FakeJobLogger()


@pytest.fixture
def verify_action():
    return ActionConfig(
        name='verify',
        containers=[ContainerConfig(name='t1', image='app')],
    )


@pytest.fixture
def reachable_cluster(monkeypatch):
    """Make the reachability check succeed without kubectl."""
    calls = []
    monkeypatch.setattr(
        'kube_actions.exec_env.fail_if_cluster_is_not_reachable',
        lambda config: calls.append(config),
    )
    return calls
