"""Exporter lifecycle: shutdown, kill and process-exit termination.

State machine:

    RUNNING ──shutdown()──> SHUTTING_DOWN ──queue drained──> SHUTDOWN
       │                          │                              ^
       └────────kill()────────────┴──> KILLED ──running done─────┘

Transitions are one-way. Only RUNNING admits new work.

A TerminationHook registered with ``atexit`` gives undelivered batches a
bounded grace period when the interpreter exits: it shuts down, waits up to
``timeout`` seconds, and if the queue has not drained kills and waits again.
"""

from __future__ import annotations

import atexit
from enum import Enum, auto
from typing import TYPE_CHECKING

import structlog

from floe_telemetry_stackdriver.errors import ExporterNotRunningError

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from typing_extensions import Self

    from floe_telemetry_stackdriver.dispatcher import BackgroundDispatcher

logger = structlog.get_logger(__name__)


class LifecycleState(Enum):
    """Exporter lifecycle states.

    States:
        RUNNING: Accepting and processing work
        SHUTTING_DOWN: Rejecting new work, draining the queue
        KILLED: Rejecting new work, queue discarded, running tasks finishing
        SHUTDOWN: Terminal, no work running
    """

    RUNNING = auto()
    SHUTTING_DOWN = auto()
    KILLED = auto()
    SHUTDOWN = auto()


class TerminationHook:
    """Drains a lifecycle at interpreter exit.

    Registered with atexit on construction; explicit shutdown or kill
    unregisters it.

    Attributes:
        timeout: Seconds to wait after shutdown, and again after kill.
    """

    def __init__(self, lifecycle: ExporterLifecycle, timeout: float) -> None:
        self._lifecycle = lifecycle
        self.timeout = timeout
        self._registered = True
        atexit.register(self.run)

    @property
    def is_registered(self) -> bool:
        return self._registered

    def unregister(self) -> None:
        """Remove the hook from the atexit registry."""
        if self._registered:
            atexit.unregister(self.run)
            self._registered = False

    def run(self) -> None:
        """Shut down, wait, and kill if the queue did not drain in time."""
        self._registered = False
        dispatcher = self._lifecycle.dispatcher
        dispatcher.shutdown()
        if dispatcher.wait_for_termination(self.timeout):
            return
        logger.warning(
            "exit_drain_timeout",
            timeout=self.timeout,
            queue_length=dispatcher.queue_length,
            active_count=dispatcher.active_count,
        )
        dispatcher.kill()
        dispatcher.wait_for_termination(self.timeout)


class ExporterLifecycle:
    """Lifecycle controller wrapping a dispatcher and its exit hook.

    Examples:
        >>> with ExporterLifecycle(dispatcher, auto_terminate_time=10) as lifecycle:
        ...     lifecycle.ensure_running()
        ...     dispatcher.submit(task)
        >>> lifecycle.is_shutdown
        True
    """

    def __init__(
        self,
        dispatcher: BackgroundDispatcher,
        auto_terminate_time: float | None = None,
    ) -> None:
        """Initialize the lifecycle.

        Args:
            dispatcher: Dispatcher whose state this lifecycle controls.
            auto_terminate_time: Grace period for the exit hook in seconds;
                None registers no hook.
        """
        self.dispatcher = dispatcher
        self._hook: TerminationHook | None = None
        if auto_terminate_time is not None:
            self._hook = TerminationHook(self, auto_terminate_time)

    @property
    def termination_hook(self) -> TerminationHook | None:
        return self._hook

    @property
    def state(self) -> LifecycleState:
        return self.dispatcher.state

    @property
    def is_running(self) -> bool:
        return self.dispatcher.is_running

    @property
    def is_shutting_down(self) -> bool:
        return self.dispatcher.is_shutting_down

    @property
    def is_shutdown(self) -> bool:
        return self.dispatcher.is_shutdown

    @property
    def is_killed(self) -> bool:
        return self.dispatcher.is_killed

    def ensure_running(self) -> None:
        """Raise ExporterNotRunningError unless the lifecycle is RUNNING."""
        state = self.dispatcher.state
        if state is not LifecycleState.RUNNING:
            raise ExporterNotRunningError(state.name)

    def add_termination_callback(self, callback: Callable[[], None]) -> None:
        """Run callback once when SHUTDOWN is reached."""
        self.dispatcher.add_termination_callback(callback)

    def shutdown(self) -> None:
        """Stop accepting work; queued and running tasks still complete."""
        self._unregister_hook()
        self.dispatcher.shutdown()

    def kill(self) -> None:
        """Stop accepting work and discard queued tasks."""
        self._unregister_hook()
        self.dispatcher.kill()

    def wait_for_termination(self, timeout: float | None = None) -> bool:
        """Block until SHUTDOWN or timeout; return True if SHUTDOWN was reached."""
        return self.dispatcher.wait_for_termination(timeout)

    def _unregister_hook(self) -> None:
        if self._hook is not None:
            self._hook.unregister()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown()
        self.wait_for_termination()


__all__ = ["ExporterLifecycle", "LifecycleState", "TerminationHook"]
