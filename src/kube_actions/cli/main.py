"""
Command-line interface for kube_actions.

Typical flow:
    1. kube-actions list   --config actions.yaml
    2. kube-actions render --config actions.yaml --action verify --build-artifacts builds.json
    3. kube-actions exec   --config actions.yaml --action verify --build-artifacts builds.json

The build artifacts file is the JSON written by the build step:
    {"builds": [{"imageName": "app", "tag": "app:v1"}]}
"""

import logging
import sys
import threading

import click
import yaml


def _load(config_path, namespace=None, kube_context=None, build_artifacts=None):
    """Load config and builds, and create the execution environment."""
    from ..artifacts import load_build_artifacts
    from ..config import ActionsConfig
    from ..exec_env import ExecEnv
    from ..kubectl import KubectlConfig
    from ..labeller import RunLabeller

    config = ActionsConfig.from_yaml(config_path)
    builds = load_build_artifacts(build_artifacts) if build_artifacts else []

    kubectl_config = KubectlConfig(
        kube_context=kube_context or config.kube_context,
        kubeconfig=config.kubeconfig,
    )
    env = ExecEnv(
        kubectl_config,
        RunLabeller(),
        namespace or config.namespace,
        config.env,
        config.actions,
    )
    return config, builds, env


@click.group()
@click.version_option(package_name='kube_actions')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def cli(verbose):
    """Kube Actions - run named container actions as Kubernetes Jobs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


@cli.command('list')
@click.option('--config', '-c', 'config_path', required=True, type=click.Path(exists=True),
              help='Actions YAML file')
def list_actions(config_path):
    """List configured actions."""
    from ..config import ActionsConfig

    config = ActionsConfig.from_yaml(config_path)
    for action in config.actions:
        mode = 'fail-fast' if action.fail_fast else 'run-all'
        click.echo(f"{action.name}  (timeout {action.timeout}s, {mode})")
        for container in action.containers:
            click.echo(f"  - {container.name}: {container.image}")


@cli.command('render')
@click.option('--config', '-c', 'config_path', required=True, type=click.Path(exists=True),
              help='Actions YAML file')
@click.option('--action', '-a', 'action_names', required=True, multiple=True,
              help='Action to render (repeatable)')
@click.option('--build-artifacts', '-b', type=click.Path(exists=True),
              help='JSON file with the images built in this run')
@click.option('--namespace', '-n', help='Namespace for the Jobs')
def render(config_path, action_names, build_artifacts, namespace):
    """Print the Job each task would create, without contacting the cluster."""
    from ..errors import KubeActionsError

    try:
        _, builds, env = _load(config_path, namespace=namespace, build_artifacts=build_artifacts)
        actions = env.create_actions(sys.stdout, builds, list(action_names))
    except KubeActionsError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    docs = [task.job_spec() for action in actions for task in action.tasks]
    click.echo(yaml.safe_dump_all(docs, sort_keys=False), nl=False)


@cli.command('exec')
@click.option('--config', '-c', 'config_path', required=True, type=click.Path(exists=True),
              help='Actions YAML file')
@click.option('--action', '-a', 'action_names', required=True, multiple=True,
              help='Action to execute (repeatable)')
@click.option('--build-artifacts', '-b', type=click.Path(exists=True),
              help='JSON file with the images built in this run')
@click.option('--namespace', '-n', help='Namespace for the Jobs')
@click.option('--kube-context', help='kubeconfig context to use')
def exec_actions(config_path, action_names, build_artifacts, namespace, kube_context):
    """Execute actions on the cluster and report per-task results."""
    from ..actions import run_actions
    from ..errors import KubeActionsError
    from ..kubectl import check_kubectl_available

    if not check_kubectl_available():
        click.echo("Error: kubectl not available on this system", err=True)
        raise SystemExit(1)

    try:
        _, builds, env = _load(config_path, namespace=namespace, kube_context=kube_context,
                               build_artifacts=build_artifacts)
        actions = env.prepare_actions(sys.stdout, builds, list(action_names))
    except KubeActionsError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    results = []
    runner = threading.Thread(
        target=lambda: results.extend(run_actions(actions, sys.stdout, cancel=env.stop_event)),
        daemon=True,
    )
    runner.start()
    try:
        while runner.is_alive():
            runner.join(0.5)
    except KeyboardInterrupt:
        click.echo("\nInterrupted, cancelling actions...", err=True)
        env.stop()
        runner.join()
    finally:
        env.logger.stop()
        env.cleanup(sys.stdout)

    click.echo("\n=== Summary ===")
    failed = False
    for result in results:
        status = 'ok' if result.succeeded else 'FAILED'
        if result.timed_out:
            status += ' (timed out)'
        click.echo(f"{result.name}: {status}")
        for task in result.tasks:
            line = f"  {task.name}: {task.status.value}"
            if task.error is not None and not task.succeeded:
                line += f" - {task.error}"
            click.echo(line)
        failed = failed or not result.succeeded

    leftover = env.tracker.jobs()
    if leftover:
        click.echo(f"\nJobs that could not be deleted: {', '.join(leftover)}", err=True)
        click.echo(f"Remove them with: kubectl delete job -n {env.namespace} -l {env.labeller.selector()}",
                   err=True)

    if failed:
        sys.exit(1)


if __name__ == '__main__':
    cli()
