"""Bounded background execution of export tasks.

BackgroundDispatcher runs submitted tasks on up to ``max_threads`` daemon
worker threads fed from a FIFO queue of at most ``max_queue`` tasks. When the
queue is full the AdmissionPolicy decides: run the task on the caller's thread
(default, so nothing is silently lost), reject it, or block until there is
room.

Task failures are logged and never reach the submitter. Worker threads are
daemons; the atexit TerminationHook in lifecycle.py drains them on exit.

Example:
    >>> dispatcher = BackgroundDispatcher(max_threads=2, max_queue=100)
    >>> dispatcher.submit(lambda: client.batch_write_spans(name, records))
    >>> dispatcher.shutdown()
    >>> dispatcher.wait_for_termination(timeout=10)
    True
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from floe_telemetry_stackdriver.errors import ExporterNotRunningError, TaskRejectedError
from floe_telemetry_stackdriver.lifecycle import LifecycleState

if TYPE_CHECKING:
    from floe_telemetry_stackdriver.metrics import ExporterMetrics

logger = structlog.get_logger(__name__)

DEFAULT_MAX_THREADS = 1
DEFAULT_MAX_QUEUE = 1000


class AdmissionPolicy(str, Enum):
    """What submit() does when the queue is full."""

    RUN_INLINE = "run_inline"
    REJECT = "reject"
    BLOCK = "block"


@dataclass(frozen=True)
class _Task:
    task_id: int
    fn: Callable[[], object]


class BackgroundDispatcher:
    """Thread pool with a bounded FIFO queue and caller-runs backpressure.

    Attributes:
        max_threads: Worker thread limit; 0 runs every task inline.
        max_queue: Queue capacity; 0 means unbounded.
        policy: Queue-full behaviour.
    """

    def __init__(
        self,
        max_threads: int = DEFAULT_MAX_THREADS,
        max_queue: int = DEFAULT_MAX_QUEUE,
        policy: AdmissionPolicy = AdmissionPolicy.RUN_INLINE,
        *,
        name: str = "floe-stackdriver",
        on_error: Callable[[Exception], None] | None = None,
        metrics: ExporterMetrics | None = None,
    ) -> None:
        """Initialize the dispatcher. No threads are started until submit().

        Args:
            max_threads: Worker thread limit; 0 runs every task inline.
            max_queue: Queue capacity; 0 means unbounded.
            policy: Queue-full behaviour.
            name: Worker thread name prefix.
            on_error: Called with the exception of every failed task.
            metrics: Collector for inline-run and dropped-task counts.

        Raises:
            ValueError: If max_threads or max_queue is negative.
        """
        if max_threads < 0:
            raise ValueError(f"max_threads must be >= 0, got {max_threads}")
        if max_queue < 0:
            raise ValueError(f"max_queue must be >= 0, got {max_queue}")

        self.max_threads = max_threads
        self.max_queue = max_queue
        self.policy = AdmissionPolicy(policy)
        self._name = name
        self._on_error = on_error
        self._metrics = metrics

        self._cond = threading.Condition()
        self._queue: deque[_Task] = deque()
        self._workers: list[threading.Thread] = []
        self._active = 0
        self._task_seq = 0
        self._state = LifecycleState.RUNNING
        self._termination_callbacks: list[Callable[[], None]] = []
        self._log = logger.bind(component=name)

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is LifecycleState.RUNNING

    @property
    def is_shutting_down(self) -> bool:
        return self._state is LifecycleState.SHUTTING_DOWN

    @property
    def is_shutdown(self) -> bool:
        return self._state is LifecycleState.SHUTDOWN

    @property
    def is_killed(self) -> bool:
        return self._state is LifecycleState.KILLED

    @property
    def active_count(self) -> int:
        """Number of tasks currently executing, including inline runs."""
        with self._cond:
            return self._active

    @property
    def queue_length(self) -> int:
        """Number of tasks waiting for a worker."""
        with self._cond:
            return len(self._queue)

    @property
    def worker_count(self) -> int:
        with self._cond:
            return len(self._workers)

    def submit(self, fn: Callable[[], object]) -> None:
        """Schedule fn for execution.

        Returns without waiting for fn, except when fn runs on the caller's
        thread (max_threads == 0, or queue full under RUN_INLINE) or the
        BLOCK policy waits for room.

        Args:
            fn: Task to run. Its exceptions are logged, not raised.

        Raises:
            ExporterNotRunningError: If shutdown or kill has been called.
            TaskRejectedError: If the queue is full under the REJECT policy.
        """
        with self._cond:
            self._ensure_running()
            self._task_seq += 1
            task = _Task(self._task_seq, fn)

            run_inline = self.max_threads == 0
            while not run_inline and self._queue_full():
                if self.policy is AdmissionPolicy.REJECT:
                    self._log.warning("export_task_rejected", task_id=task.task_id)
                    raise TaskRejectedError(self.max_queue)
                if self.policy is AdmissionPolicy.RUN_INLINE:
                    run_inline = True
                    break
                self._cond.wait()
                self._ensure_running()

            if run_inline:
                self._active += 1
            else:
                self._queue.append(task)
                self._start_worker_if_needed()
                self._cond.notify_all()

        if run_inline:
            self._log.debug("export_task_inline", task_id=task.task_id)
            if self._metrics is not None:
                self._metrics.record_inline_run()
            try:
                self._run(task)
            finally:
                self._task_done()

    def add_termination_callback(self, callback: Callable[[], None]) -> None:
        """Run callback once when SHUTDOWN is reached, or now if it already was."""
        with self._cond:
            if self._state is not LifecycleState.SHUTDOWN:
                self._termination_callbacks.append(callback)
                return
        self._run_callbacks([callback])

    def shutdown(self) -> None:
        """Stop admitting tasks; queued and running tasks complete. Non-blocking."""
        with self._cond:
            if self._state is not LifecycleState.RUNNING:
                return
            self._state = LifecycleState.SHUTTING_DOWN
            self._log.info("dispatcher_shutting_down", queue_length=len(self._queue))
            self._cond.notify_all()
            callbacks = self._check_terminated()
        self._run_callbacks(callbacks)

    def kill(self) -> None:
        """Stop admitting tasks and discard queued ones. Running tasks finish."""
        with self._cond:
            if self._state not in (LifecycleState.RUNNING, LifecycleState.SHUTTING_DOWN):
                return
            dropped = len(self._queue)
            self._queue.clear()
            self._state = LifecycleState.KILLED
            self._log.warning("dispatcher_killed", dropped_tasks=dropped, active_count=self._active)
            self._cond.notify_all()
            callbacks = self._check_terminated()
        if self._metrics is not None:
            self._metrics.record_dropped_tasks(dropped)
        self._run_callbacks(callbacks)

    def wait_for_termination(self, timeout: float | None = None) -> bool:
        """Block until SHUTDOWN or until timeout seconds pass.

        Returns:
            True if SHUTDOWN was reached.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._state is LifecycleState.SHUTDOWN, timeout)

    # _ensure_running, _queue_full, _start_worker_if_needed and _check_terminated
    # are called with self._cond held.

    def _ensure_running(self) -> None:
        if self._state is not LifecycleState.RUNNING:
            raise ExporterNotRunningError(self._state.name)

    def _queue_full(self) -> bool:
        return self.max_queue > 0 and len(self._queue) >= self.max_queue

    def _start_worker_if_needed(self) -> None:
        if len(self._workers) >= self.max_threads:
            return
        worker = threading.Thread(
            target=self._worker_loop,
            name=f"{self._name}-worker-{len(self._workers) + 1}",
            daemon=True,
        )
        self._workers.append(worker)
        worker.start()

    def _worker_loop(self) -> None:
        while True:
            with self._cond:
                while not self._queue and self._state is LifecycleState.RUNNING:
                    self._cond.wait()
                if not self._queue:
                    return
                task = self._queue.popleft()
                self._active += 1
                # Room freed for BLOCK submitters
                self._cond.notify_all()
            try:
                self._run(task)
            finally:
                self._task_done()

    def _run(self, task: _Task) -> None:
        try:
            task.fn()
        except Exception as e:
            self._log.error(
                "export_task_failed",
                task_id=task.task_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if self._on_error is not None:
                try:
                    self._on_error(e)
                except Exception as callback_error:
                    self._log.error(
                        "error_callback_failed", error=str(callback_error), exc_info=True
                    )

    def _task_done(self) -> None:
        with self._cond:
            self._active -= 1
            callbacks = self._check_terminated()
        self._run_callbacks(callbacks)

    def _check_terminated(self) -> list[Callable[[], None]]:
        if self._state not in (LifecycleState.SHUTTING_DOWN, LifecycleState.KILLED):
            return []
        if self._queue or self._active:
            return []
        self._state = LifecycleState.SHUTDOWN
        self._log.info("dispatcher_terminated")
        self._cond.notify_all()
        callbacks, self._termination_callbacks = self._termination_callbacks, []
        return callbacks

    def _run_callbacks(self, callbacks: list[Callable[[], None]]) -> None:
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                self._log.error("termination_callback_failed", error=str(e), exc_info=True)


__all__ = [
    "AdmissionPolicy",
    "BackgroundDispatcher",
    "DEFAULT_MAX_QUEUE",
    "DEFAULT_MAX_THREADS",
]
