"""
Job tracking and log streaming.

The JobTracker remembers which Jobs the run created and the task of each.
The JobLogger follows the logs of those Jobs and writes them to the output
sink, each line prefixed with the task it belongs to. Only tasks registered
through ``register_artifacts`` are streamed.
"""

import logging
import subprocess
import threading
from typing import Dict, IO, List, Optional, Tuple

from .artifacts import TrackedArtifact
from .kubectl import KubectlCLI
from .labeller import RunLabeller

logger = logging.getLogger(__name__)


class JobTracker:
    """Thread-safe record of the Jobs this run created and the task each belongs to."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: Dict[str, str] = {}

    def add(self, job_name: str, task_name: str) -> None:
        with self._lock:
            self._tasks[job_name] = task_name

    def remove(self, job_name: str) -> None:
        with self._lock:
            self._tasks.pop(job_name, None)

    def task_for(self, job_name: str) -> Optional[str]:
        with self._lock:
            return self._tasks.get(job_name)

    def jobs(self) -> List[str]:
        """Names of the Jobs created and not yet deleted."""
        with self._lock:
            return sorted(self._tasks)


class JobLogger:
    """
    Streams Job logs for tracked tasks to an output sink.

    Example:
        job_logger = JobLogger(tracker, labeller, kubectl)
        job_logger.start(sys.stdout)
        job_logger.register_artifacts(tracked)
        tracker.add('integration-1a2b3c4d', 'integration')
        job_logger.stream('integration-1a2b3c4d')
    """

    def __init__(self, tracker: JobTracker, labeller: RunLabeller, kubectl: KubectlCLI):
        self.tracker = tracker
        self.labeller = labeller
        self.kubectl = kubectl

        self._out: Optional[IO[str]] = None
        self._lock = threading.Lock()
        self._tracked: List[TrackedArtifact] = []
        self._images_by_task: Dict[str, str] = {}
        self._streams: List[Tuple[subprocess.Popen, threading.Thread]] = []

    @property
    def started(self) -> bool:
        return self._out is not None

    @property
    def tracked_artifacts(self) -> List[TrackedArtifact]:
        with self._lock:
            return list(self._tracked)

    def start(self, out: IO[str]) -> None:
        """Bind the output sink. Streams opened afterwards write to it."""
        self._out = out
        logger.debug("Log streaming started for run %s", self.labeller.get_run_id())

    def register_artifacts(self, artifacts: List[TrackedArtifact]) -> None:
        """Register the (image, task) pairs whose logs should be streamed."""
        with self._lock:
            for artifact in artifacts:
                self._tracked.append(artifact)
                self._images_by_task[artifact.task_name] = artifact.image_name
        logger.debug("Tracking %d artifacts", len(artifacts))

    def is_tracked(self, task_name: str) -> bool:
        with self._lock:
            return task_name in self._images_by_task

    def write(self, task_name: str, line: str) -> None:
        """Write one line attributed to a task."""
        if self._out is None:
            return
        with self._lock:
            self._out.write(f"[{task_name}] {line.rstrip()}\n")
            self._out.flush()

    def stream(self, job_name: str) -> Optional[threading.Thread]:
        """
        Follow a Job's logs in a background thread.

        Lines are attributed to the task the JobTracker recorded for the Job.

        Args:
            job_name: Name of the Job

        Returns:
            The reader thread, or None if logging is not started, the Job is
            unknown to the tracker, or its task is not tracked
        """
        task_name = self.tracker.task_for(job_name)
        if not self.started or task_name is None or not self.is_tracked(task_name):
            logger.debug("Not streaming logs for job %s", job_name)
            return None

        proc = self.kubectl.stream_logs(job_name)

        def _pump():
            for line in proc.stdout:
                self.write(task_name, line)
            proc.wait()

        thread = threading.Thread(target=_pump, name=f"logs-{task_name}", daemon=True)
        thread.start()
        with self._lock:
            self._streams.append((proc, thread))
        return thread

    def stop(self, timeout: float = 5.0) -> None:
        """Terminate every log stream and wait for the reader threads."""
        with self._lock:
            streams = list(self._streams)
            self._streams.clear()

        for proc, _ in streams:
            if proc.poll() is None:
                proc.terminate()
        for _, thread in streams:
            thread.join(timeout)
