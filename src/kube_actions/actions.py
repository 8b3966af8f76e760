"""
Actions and their execution.

An Action is a named, ordered group of tasks sharing one timeout and one
fail-fast policy. Tasks of an action run concurrently:

- the timeout bounds all tasks together; when it expires the unfinished
  tasks are cancelled and reported as timed out
- with fail-fast, the first failure cancels the unfinished tasks
- without fail-fast, every task runs to completion and failures are collected

Tasks already finished when a timeout or failure occurs keep their status.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ALL_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, List, Optional, Protocol, runtime_checkable

from .errors import ActionFailedError, TaskCancelledError

logger = logging.getLogger(__name__)


@runtime_checkable
class Task(Protocol):
    """One container's unit of cluster work inside an action."""

    @property
    def name(self) -> str:
        ...

    def exec(self, out: IO[str], cancel: threading.Event) -> None:
        """Run to completion. Raises on failure; must return promptly once ``cancel`` is set."""
        ...

    def cleanup(self) -> None:
        ...


class TaskStatus(str, Enum):
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    CANCELLED = 'cancelled'
    TIMED_OUT = 'timed out'


@dataclass
class TaskResult:
    name: str
    status: TaskStatus
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED


@dataclass
class ActionResult:
    name: str
    tasks: List[TaskResult] = field(default_factory=list)
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return all(t.succeeded for t in self.tasks)

    @property
    def failures(self) -> List[TaskResult]:
        return [t for t in self.tasks if not t.succeeded]

    def raise_for_status(self) -> None:
        if not self.succeeded:
            raise ActionFailedError(self.name, [f"{t.name}: {t.status.value}" for t in self.failures])


class Action:
    """
    A named group of tasks with a shared timeout and fail-fast policy.

    Example:
        action = Action('verify', tasks, timeout=600, fail_fast=True)
        result = action.exec(sys.stdout)
        result.raise_for_status()
    """

    def __init__(self, name: str, tasks: List[Task], timeout: int, fail_fast: bool):
        self.name = name
        self.tasks = list(tasks)
        self.timeout = timeout
        self.fail_fast = fail_fast

    def __repr__(self) -> str:
        return (f"Action(name={self.name}, tasks={[t.name for t in self.tasks]}, "
                f"timeout={self.timeout}, fail_fast={self.fail_fast})")

    def exec(self, out: IO[str], cancel: Optional[threading.Event] = None) -> ActionResult:
        """
        Run every task concurrently under this action's policy.

        Args:
            out: Output sink for progress messages
            cancel: External cancellation signal; setting it stops all tasks

        Returns:
            ActionResult with one TaskResult per task, in declaration order
        """
        start = time.monotonic()
        deadline = start + self.timeout
        stop = threading.Event()
        result = ActionResult(name=self.name)

        if not self.tasks:
            return result

        def _relay_external_cancel():
            if cancel is not None:
                while not stop.wait(0.1):
                    if cancel.is_set():
                        stop.set()

        relay = threading.Thread(target=_relay_external_cancel, daemon=True)
        relay.start()

        out.write(f"Starting action {self.name} ({len(self.tasks)} tasks)\n")
        pool = ThreadPoolExecutor(max_workers=len(self.tasks), thread_name_prefix=f"action-{self.name}")
        try:
            futures = [pool.submit(task.exec, out, stop) for task in self.tasks]
            pending = set(futures)
            return_when = FIRST_EXCEPTION if self.fail_fast else ALL_COMPLETED

            while pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    result.timed_out = True
                    break
                done, pending = wait(pending, timeout=min(remaining, 1.0), return_when=return_when)
                if self.fail_fast and any(f.exception() is not None for f in done):
                    break
                if stop.is_set():
                    break

            if pending:
                if result.timed_out:
                    logger.info("Action %s timed out after %ss", self.name, self.timeout)
                elif not stop.is_set():
                    logger.info("Action %s failing fast", self.name)
                stop.set()
                wait(pending)
        finally:
            stop.set()
            pool.shutdown(wait=True)
            relay.join()

        externally_cancelled = cancel is not None and cancel.is_set()
        for task, future in zip(self.tasks, futures):
            result.tasks.append(self._task_result(task, future.exception(), result.timed_out,
                                                  externally_cancelled))

        for task in self.tasks:
            try:
                task.cleanup()
            except Exception as e:
                logger.warning("Cleanup of task %s failed: %s", task.name, e)

        result.duration_seconds = time.monotonic() - start
        status = 'succeeded' if result.succeeded else 'failed'
        out.write(f"Action {self.name} {status} in {result.duration_seconds:.1f}s\n")
        return result

    @staticmethod
    def _task_result(task: Task, error: Optional[BaseException], timed_out: bool,
                     externally_cancelled: bool) -> TaskResult:
        if error is None:
            return TaskResult(task.name, TaskStatus.SUCCEEDED)
        if isinstance(error, TaskCancelledError):
            if timed_out and not externally_cancelled:
                return TaskResult(task.name, TaskStatus.TIMED_OUT, error)
            return TaskResult(task.name, TaskStatus.CANCELLED, error)
        return TaskResult(task.name, TaskStatus.FAILED, error)


def run_actions(actions: List[Action], out: IO[str],
                cancel: Optional[threading.Event] = None) -> List[ActionResult]:
    """
    Execute actions concurrently.

    Returns:
        One ActionResult per action, in the order given
    """
    if not actions:
        return []

    with ThreadPoolExecutor(max_workers=len(actions), thread_name_prefix="actions") as pool:
        futures = [pool.submit(a.exec, out, cancel) for a in actions]
        return [f.result() for f in futures]
