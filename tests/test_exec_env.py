"""Tests for the execution environment: action and task assembly."""

import io

import pytest

from kube_actions.artifacts import BuiltArtifact, TrackedArtifact
from kube_actions.config import ActionConfig, ContainerConfig
from kube_actions.errors import (
    ActionNotFoundError,
    ClusterUnreachableError,
    ConnectivityError,
    ManifestError,
)
from kube_actions.exec_env import ExecEnv
from kube_actions.k8sjob.task import JobTask
from kube_actions.kubectl import KubectlConfig
from kube_actions.labeller import RUN_ID_LABEL, RunLabeller


def make_env(actions, fake_logger, namespace='', env_map=None, run_id='run-123'):
    env = ExecEnv(KubectlConfig(), RunLabeller(run_id), namespace, env_map, actions)
    env.logger = fake_logger
    return env


class TestScenarios:
    """End-to-end assembly scenarios."""

    def test_built_image_uses_build_tag(self, verify_action, fake_logger, reachable_cluster):
        """A: one action, one container, image built in this run."""
        env = make_env([verify_action], fake_logger)

        actions = env.prepare_actions(io.StringIO(), [BuiltArtifact('app', 'v1')], ['verify'])

        assert len(actions) == 1
        action = actions[0]
        assert action.name == 'verify'
        assert len(action.tasks) == 1

        task = action.tasks[0]
        assert task.artifact.image_name == 'app'
        assert task.artifact.tag == 'v1'

        job = task.job_spec()
        assert job['metadata']['labels'] == {RUN_ID_LABEL: 'run-123'}
        assert job['spec']['template']['metadata']['labels'] == {RUN_ID_LABEL: 'run-123'}
        assert job['spec']['template']['spec']['restartPolicy'] == 'Never'
        assert job['spec']['backoffLimit'] == 0

    def test_unbuilt_image_falls_back_to_image_name(self, verify_action, fake_logger, reachable_cluster):
        """B: no builds, tag falls back to the declared image name."""
        env = make_env([verify_action], fake_logger)

        actions = env.prepare_actions(io.StringIO(), [], ['verify'])

        artifact = actions[0].tasks[0].artifact
        assert (artifact.image_name, artifact.tag) == ('app', 'app')

    def test_unknown_action(self, verify_action, fake_logger, reachable_cluster):
        """C: unknown name fails the batch and registers nothing."""
        env = make_env([verify_action], fake_logger)

        with pytest.raises(ActionNotFoundError) as exc_info:
            env.prepare_actions(io.StringIO(), [], ['missing'])

        assert exc_info.value.name == 'missing'
        assert 'missing' in str(exc_info.value)
        assert fake_logger.registered == []

    def test_bad_manifest_in_second_action(self, verify_action, fake_logger, reachable_cluster, tmp_path):
        """D: second action has a bad manifest path, nothing is registered."""
        broken = ActionConfig(
            name='broken',
            containers=[ContainerConfig(name='t2', image='other')],
            job_manifest_path=str(tmp_path / 'does-not-exist.yaml'),
        )
        env = make_env([verify_action, broken], fake_logger)

        with pytest.raises(ManifestError):
            env.prepare_actions(io.StringIO(), [], ['verify', 'broken'])

        assert len(fake_logger.registered) == 0


class TestPrepareActions:
    """Tests for ExecEnv.prepare_actions side effects."""

    def test_unreachable_cluster_fails_before_anything_else(self, verify_action, fake_logger, monkeypatch):
        def unreachable(config):
            raise ClusterUnreachableError("connection refused")

        monkeypatch.setattr('kube_actions.exec_env.fail_if_cluster_is_not_reachable', unreachable)
        env = make_env([verify_action], fake_logger)

        with pytest.raises(ConnectivityError) as exc_info:
            env.prepare_actions(io.StringIO(), [], ['verify'])

        assert 'unable to connect to Kubernetes' in str(exc_info.value)
        assert fake_logger.started_with is None
        assert fake_logger.registered == []

    def test_logger_started_with_output_sink(self, verify_action, fake_logger, reachable_cluster):
        env = make_env([verify_action], fake_logger)
        out = io.StringIO()

        env.prepare_actions(out, [], ['verify'])

        assert fake_logger.started_with is out
        assert len(reachable_cluster) == 1

    def test_actions_follow_request_order(self, fake_logger, reachable_cluster):
        configs = [
            ActionConfig(name=n, containers=[ContainerConfig(name=f'{n}-c', image=n)])
            for n in ('a', 'b', 'c')
        ]
        env = make_env(configs, fake_logger)

        actions = env.prepare_actions(io.StringIO(), [], ['c', 'a'])

        assert [a.name for a in actions] == ['c', 'a']

    def test_policy_values_are_carried(self, fake_logger, reachable_cluster):
        config = ActionConfig(
            name='slow',
            containers=[ContainerConfig(name='c', image='img')],
            timeout=42,
            fail_fast=False,
        )
        env = make_env([config], fake_logger)

        action = env.prepare_actions(io.StringIO(), [], ['slow'])[0]

        assert action.timeout == 42
        assert action.fail_fast is False

    def test_empty_request_returns_no_actions(self, verify_action, fake_logger, reachable_cluster):
        env = make_env([verify_action], fake_logger)

        assert env.prepare_actions(io.StringIO(), [], []) == []
        assert fake_logger.registered == [[]]


class TestCreateActions:
    """Tests for batch assembly and tracking registration."""

    def test_tracking_registered_once_for_whole_batch(self, fake_logger):
        configs = [
            ActionConfig(name='one', containers=[
                ContainerConfig(name='t1', image='app'),
                ContainerConfig(name='t2', image='db'),
            ]),
            ActionConfig(name='two', containers=[ContainerConfig(name='t3', image='app')]),
        ]
        env = make_env(configs, fake_logger)

        env.create_actions(io.StringIO(), [BuiltArtifact('app', 'app:v2')], ['one', 'two'])

        assert fake_logger.registered == [[
            TrackedArtifact('app', 't1'),
            TrackedArtifact('db', 't2'),
            TrackedArtifact('app', 't3'),
        ]]

    def test_tracking_uses_declared_image_not_tag(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger)

        env.create_actions(io.StringIO(), [BuiltArtifact('app', 'registry/app:sha')], ['verify'])

        assert fake_logger.registered[0] == [TrackedArtifact('app', 't1')]

    def test_unknown_name_after_valid_ones_registers_nothing(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger)

        with pytest.raises(ActionNotFoundError):
            env.create_actions(io.StringIO(), [], ['verify', 'nope', 'verify'])

        assert fake_logger.registered == []

    def test_last_duplicate_build_wins(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger)
        builds = [BuiltArtifact('app', 'v1'), BuiltArtifact('app', 'v2')]

        actions = env.create_actions(io.StringIO(), builds, ['verify'])

        assert actions[0].tasks[0].artifact.tag == 'v2'


class TestCreateTasks:
    """Tests for per-container task creation."""

    def test_tasks_follow_container_order(self, fake_logger):
        config = ActionConfig(name='multi', containers=[
            ContainerConfig(name='first', image='a'),
            ContainerConfig(name='second', image='b'),
            ContainerConfig(name='third', image='c'),
        ])
        env = make_env([config], fake_logger)

        tasks, tracked = env.create_tasks(config, {'kind': 'Job', 'metadata': {}, 'spec': {}}, {})

        assert [t.name for t in tasks] == ['first', 'second', 'third']
        assert [t.task_name for t in tracked] == ['first', 'second', 'third']
        assert all(isinstance(t, JobTask) for t in tasks)

    def test_each_task_gets_independent_manifest(self, fake_logger):
        config = ActionConfig(name='multi', containers=[
            ContainerConfig(name='first', image='a'),
            ContainerConfig(name='second', image='b'),
        ])
        env = make_env([config], fake_logger)

        actions = env.create_actions(io.StringIO(), [], ['multi'])
        first, second = actions[0].tasks

        first_spec = first.job_spec()
        second_spec = second.job_spec()
        first_container = first_spec['spec']['template']['spec']['containers'][0]
        second_container = second_spec['spec']['template']['spec']['containers'][0]

        assert first_container['image'] == 'a'
        assert second_container['image'] == 'b'
        assert first_spec['metadata']['name'] != second_spec['metadata']['name']

    def test_tasks_share_kubectl_and_namespace(self, fake_logger):
        config = ActionConfig(name='multi', containers=[
            ContainerConfig(name='first', image='a'),
            ContainerConfig(name='second', image='b'),
        ])
        env = make_env([config], fake_logger, namespace='ci')

        tasks = env.create_actions(io.StringIO(), [], ['multi'])[0].tasks

        assert all(t.kubectl is env.kubectl for t in tasks)
        assert all(t.namespace == 'ci' for t in tasks)
        assert tasks[0].context.run_id == 'run-123'

    def test_global_env_vars_reach_containers(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger, env_map={'B': '2', 'A': '1'})

        job = env.create_actions(io.StringIO(), [], ['verify'])[0].tasks[0].job_spec()

        container = job['spec']['template']['spec']['containers'][0]
        assert container['env'] == [{'name': 'A', 'value': '1'}, {'name': 'B', 'value': '2'}]


class TestLifecycle:
    """Tests for namespace defaulting, cleanup and stop."""

    def test_empty_namespace_defaults(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger, namespace='')

        assert env.namespace == 'default'
        job = env.create_actions(io.StringIO(), [], ['verify'])[0].tasks[0].job_spec()
        assert job['metadata']['namespace'] == 'default'

    def test_cleanup_without_prepare(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger)

        assert env.cleanup(io.StringIO()) is None

    def test_stop_is_idempotent(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger)

        assert not env.stop_event.is_set()
        env.stop()
        env.stop()
        assert env.stop_event.is_set()

    def test_registry_is_read_only(self, verify_action, fake_logger):
        env = make_env([verify_action], fake_logger)

        with pytest.raises(TypeError):
            env._actions_by_name['other'] = verify_action
        assert env.action_names == ['verify']
