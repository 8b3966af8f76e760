"""
kubectl client.

Thin wrapper around the kubectl binary. Every call is pinned to the
configured context, kubeconfig and namespace.
"""

import json
import logging
import shutil
import subprocess
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

import yaml

from .errors import ClusterUnreachableError, KubectlError

logger = logging.getLogger(__name__)

REACHABILITY_TIMEOUT = "10s"


@dataclass(frozen=True)
class KubectlConfig:
    """Base configuration shared by every kubectl invocation."""
    kube_context: Optional[str] = None
    kubeconfig: Optional[str] = None
    kubectl_binary: str = "kubectl"

    def global_flags(self) -> List[str]:
        flags = []
        if self.kube_context:
            flags.extend(['--context', self.kube_context])
        if self.kubeconfig:
            flags.extend(['--kubeconfig', self.kubeconfig])
        return flags


class KubectlCLI:
    """
    kubectl bound to one namespace.

    Example:
        cli = KubectlCLI(KubectlConfig(kube_context='kind-dev'), 'default')
        cli.apply(job_manifest)
        status = cli.get_job('integration-1a2b3c4d')
    """

    def __init__(self, config: KubectlConfig, namespace: str):
        self.config = config
        self.namespace = namespace

    @property
    def kube_context(self) -> Optional[str]:
        return self.config.kube_context

    def command(self, args: List[str], namespaced: bool = True) -> List[str]:
        """Full argv for a kubectl call."""
        cmd = [self.config.kubectl_binary] + self.config.global_flags()
        if namespaced:
            cmd.extend(['--namespace', self.namespace])
        return cmd + list(args)

    def run(self, args: List[str], input: Optional[str] = None, namespaced: bool = True) -> str:
        """
        Run kubectl and return its stdout.

        Raises:
            KubectlError: If kubectl exits non-zero or cannot be started
        """
        cmd = self.command(args, namespaced=namespaced)
        logger.debug("Running %s", ' '.join(cmd))
        try:
            result = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as e:
            raise KubectlError(args, 127, str(e)) from e

        if result.returncode != 0:
            raise KubectlError(args, result.returncode, result.stderr)
        return result.stdout

    def apply(self, manifest: Dict[str, Any]) -> str:
        """Create or update a resource from its manifest."""
        return self.run(['apply', '-f', '-'], input=yaml.safe_dump(manifest, sort_keys=False))

    def get_job(self, name: str) -> Dict[str, Any]:
        """Return the Job object as a dict."""
        return json.loads(self.run(['get', 'job', name, '-o', 'json']))

    def delete_job(self, name: str) -> None:
        """Delete a Job and its pods; a missing Job is not an error."""
        self.run([
            'delete', 'job', name,
            '--ignore-not-found=true',
            '--wait=false',
            '--cascade=background',
        ])

    def stream_logs(self, job_name: str) -> subprocess.Popen:
        """Start following the logs of a Job's pod."""
        cmd = self.command(['logs', '-f', f'job/{job_name}', '--pod-running-timeout=5m'])
        logger.debug("Streaming %s", ' '.join(cmd))
        return subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )


def fail_if_cluster_is_not_reachable(config: KubectlConfig) -> None:
    """
    Check that the cluster's API server answers.

    Raises:
        ClusterUnreachableError: If kubectl is missing or the server does not answer
    """
    cli = KubectlCLI(config, namespace='')
    try:
        cli.run(['version', '-o', 'json', f'--request-timeout={REACHABILITY_TIMEOUT}'],
                namespaced=False)
    except KubectlError as e:
        context = config.kube_context or 'current context'
        raise ClusterUnreachableError(f"cluster {context} is not reachable: {e}") from e


def check_kubectl_available(binary: str = "kubectl") -> bool:
    """Check if kubectl is available on this system."""
    return shutil.which(binary) is not None
