"""Unit tests for BackgroundDispatcher.

Concurrency tests hold tasks on a threading.Event and poll observable state
with wait_for instead of sleeping.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from floe_telemetry_stackdriver.dispatcher import AdmissionPolicy, BackgroundDispatcher
from floe_telemetry_stackdriver.errors import ExporterNotRunningError, TaskRejectedError
from floe_telemetry_stackdriver.lifecycle import LifecycleState


def blocking_task(gate: threading.Event, log: list[str], label: str) -> Callable[[], None]:
    def _task() -> None:
        gate.wait(timeout=10)
        log.append(label)

    return _task


class TestSubmit:
    """Tests for task admission and execution."""

    @pytest.mark.requirement("FR-020")
    def test_runs_on_worker_thread(self, wait_for: Callable[..., bool]) -> None:
        dispatcher = BackgroundDispatcher(max_threads=1, max_queue=10)
        threads: list[str] = []
        dispatcher.submit(lambda: threads.append(threading.current_thread().name))
        wait_for(lambda: len(threads) == 1, description="task run")
        assert threads[0].startswith("floe-stackdriver-worker-")
        dispatcher.shutdown()
        assert dispatcher.wait_for_termination(5)

    @pytest.mark.requirement("FR-020")
    def test_workers_started_lazily(self) -> None:
        dispatcher = BackgroundDispatcher(max_threads=4)
        assert dispatcher.worker_count == 0
        dispatcher.submit(lambda: None)
        assert dispatcher.worker_count == 1
        dispatcher.shutdown()
        assert dispatcher.wait_for_termination(5)

    @pytest.mark.requirement("FR-020")
    def test_zero_threads_runs_inline(self) -> None:
        """max_threads=0 runs every task on the caller's thread."""
        dispatcher = BackgroundDispatcher(max_threads=0)
        threads: list[threading.Thread] = []
        dispatcher.submit(lambda: threads.append(threading.current_thread()))
        assert threads == [threading.current_thread()]
        assert dispatcher.worker_count == 0

    @pytest.mark.requirement("FR-020")
    def test_negative_limits_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_threads"):
            BackgroundDispatcher(max_threads=-1)
        with pytest.raises(ValueError, match="max_queue"):
            BackgroundDispatcher(max_queue=-1)

    @pytest.mark.requirement("FR-021")
    def test_task_errors_are_logged_not_raised(self, wait_for: Callable[..., bool]) -> None:
        """Failures reach the error callback, never the submitter."""
        errors: list[Exception] = []
        dispatcher = BackgroundDispatcher(on_error=errors.append)

        def _fail() -> None:
            raise RuntimeError("boom")

        dispatcher.submit(_fail)
        wait_for(lambda: len(errors) == 1, description="error callback")
        assert str(errors[0]) == "boom"
        dispatcher.shutdown()
        assert dispatcher.wait_for_termination(5)

    @pytest.mark.requirement("FR-021")
    def test_inline_task_errors_are_not_raised(self) -> None:
        on_error = MagicMock()
        dispatcher = BackgroundDispatcher(max_threads=0, on_error=on_error)
        dispatcher.submit(MagicMock(side_effect=ValueError("bad")))
        on_error.assert_called_once()
        assert dispatcher.active_count == 0


class TestBackpressure:
    """Tests for queue-full admission policies."""

    @pytest.mark.requirement("FR-022")
    def test_caller_runs_when_workers_and_queue_are_full(
        self, gate: threading.Event, wait_for: Callable[..., bool]
    ) -> None:
        """With N busy workers and Q queued tasks, task Q+N+1 runs on the caller."""
        workers, capacity = 2, 3
        metrics = MagicMock()
        dispatcher = BackgroundDispatcher(max_threads=workers, max_queue=capacity, metrics=metrics)
        log: list[str] = []

        for i in range(workers):
            dispatcher.submit(blocking_task(gate, log, f"worker-{i}"))
        wait_for(lambda: dispatcher.active_count == workers, description="workers busy")

        for i in range(capacity):
            dispatcher.submit(blocking_task(gate, log, f"queued-{i}"))
        assert dispatcher.queue_length == capacity

        caller = threading.current_thread().name
        ran_on: list[str] = []
        dispatcher.submit(lambda: ran_on.append(threading.current_thread().name))

        assert ran_on == [caller]
        metrics.record_inline_run.assert_called_once()
        assert dispatcher.queue_length == capacity

        gate.set()
        dispatcher.shutdown()
        assert dispatcher.wait_for_termination(5)
        assert len(log) == workers + capacity

    @pytest.mark.requirement("FR-022")
    def test_reject_policy_raises(
        self, gate: threading.Event, wait_for: Callable[..., bool]
    ) -> None:
        dispatcher = BackgroundDispatcher(
            max_threads=1, max_queue=1, policy=AdmissionPolicy.REJECT
        )
        log: list[str] = []
        dispatcher.submit(blocking_task(gate, log, "running"))
        wait_for(lambda: dispatcher.active_count == 1, description="worker busy")
        dispatcher.submit(blocking_task(gate, log, "queued"))

        with pytest.raises(TaskRejectedError, match="1 pending"):
            dispatcher.submit(lambda: None)

        gate.set()
        dispatcher.shutdown()
        assert dispatcher.wait_for_termination(5)

    @pytest.mark.requirement("FR-022")
    def test_block_policy_waits_for_room(
        self, gate: threading.Event, wait_for: Callable[..., bool]
    ) -> None:
        dispatcher = BackgroundDispatcher(max_threads=1, max_queue=1, policy=AdmissionPolicy.BLOCK)
        log: list[str] = []
        dispatcher.submit(blocking_task(gate, log, "first"))
        wait_for(lambda: dispatcher.active_count == 1, description="worker busy")
        dispatcher.submit(blocking_task(gate, log, "second"))

        submitted = threading.Event()

        def _submit_third() -> None:
            dispatcher.submit(lambda: log.append("third"))
            submitted.set()

        submitter = threading.Thread(target=_submit_third)
        submitter.start()
        assert not submitted.wait(0.1)

        gate.set()
        submitter.join(timeout=5)
        assert submitted.is_set()
        dispatcher.shutdown()
        assert dispatcher.wait_for_termination(5)
        assert log == ["first", "second", "third"]

    @pytest.mark.requirement("FR-022")
    def test_unbounded_queue(self, gate: threading.Event, wait_for: Callable[..., bool]) -> None:
        dispatcher = BackgroundDispatcher(max_threads=1, max_queue=0)
        log: list[str] = []
        dispatcher.submit(blocking_task(gate, log, "running"))
        wait_for(lambda: dispatcher.active_count == 1, description="worker busy")
        for i in range(50):
            dispatcher.submit(blocking_task(gate, log, str(i)))
        assert dispatcher.queue_length == 50
        gate.set()
        dispatcher.shutdown()
        assert dispatcher.wait_for_termination(5)
        assert len(log) == 51


class TestTermination:
    """Tests for shutdown and kill."""

    @pytest.mark.requirement("FR-023")
    def test_shutdown_drains_queue(
        self, gate: threading.Event, wait_for: Callable[..., bool]
    ) -> None:
        """Queued tasks still run after shutdown; new submissions fail."""
        dispatcher = BackgroundDispatcher(max_threads=1, max_queue=10)
        log: list[str] = []
        dispatcher.submit(blocking_task(gate, log, "a"))
        wait_for(lambda: dispatcher.active_count == 1, description="worker busy")
        dispatcher.submit(blocking_task(gate, log, "b"))
        dispatcher.submit(blocking_task(gate, log, "c"))

        dispatcher.shutdown()
        assert dispatcher.is_shutting_down
        with pytest.raises(ExporterNotRunningError, match="SHUTTING_DOWN"):
            dispatcher.submit(lambda: None)
        assert not dispatcher.wait_for_termination(0.05)

        gate.set()
        assert dispatcher.wait_for_termination(5)
        assert dispatcher.is_shutdown
        assert log == ["a", "b", "c"]

    @pytest.mark.requirement("FR-024")
    def test_kill_discards_queued_tasks(
        self, gate: threading.Event, wait_for: Callable[..., bool]
    ) -> None:
        """Kill drops queued tasks; the running one finishes."""
        metrics = MagicMock()
        dispatcher = BackgroundDispatcher(max_threads=1, max_queue=10, metrics=metrics)
        log: list[str] = []
        dispatcher.submit(blocking_task(gate, log, "running"))
        wait_for(lambda: dispatcher.active_count == 1, description="worker busy")
        for i in range(3):
            dispatcher.submit(blocking_task(gate, log, f"queued-{i}"))

        dispatcher.kill()
        assert dispatcher.is_killed
        assert dispatcher.queue_length == 0
        metrics.record_dropped_tasks.assert_called_once_with(3)

        gate.set()
        assert dispatcher.wait_for_termination(5)
        assert log == ["running"]
        assert dispatcher.state is LifecycleState.SHUTDOWN

    @pytest.mark.requirement("FR-023")
    def test_idle_shutdown_terminates_immediately(self) -> None:
        dispatcher = BackgroundDispatcher()
        dispatcher.shutdown()
        assert dispatcher.is_shutdown
        assert dispatcher.wait_for_termination(0)

    @pytest.mark.requirement("FR-024")
    def test_kill_after_shutdown_is_allowed(self) -> None:
        dispatcher = BackgroundDispatcher()
        dispatcher.shutdown()
        dispatcher.kill()
        assert dispatcher.is_shutdown

    @pytest.mark.requirement("FR-023")
    def test_termination_callbacks_run_once(
        self, gate: threading.Event, wait_for: Callable[..., bool]
    ) -> None:
        dispatcher = BackgroundDispatcher()
        callback = MagicMock()
        dispatcher.add_termination_callback(callback)
        dispatcher.submit(blocking_task(gate, [], "x"))
        wait_for(lambda: dispatcher.active_count == 1, description="worker busy")

        dispatcher.shutdown()
        callback.assert_not_called()
        gate.set()
        assert dispatcher.wait_for_termination(5)
        wait_for(lambda: callback.call_count == 1, description="callback")
        dispatcher.kill()
        assert callback.call_count == 1

    @pytest.mark.requirement("FR-023")
    def test_callback_added_after_termination_runs_now(self) -> None:
        dispatcher = BackgroundDispatcher()
        dispatcher.shutdown()
        callback = MagicMock()
        dispatcher.add_termination_callback(callback)
        callback.assert_called_once()
