"""Lazily-resolved, shared handle to the remote API client.

The client is built on first use by a worker thread, never at exporter
construction, so constructing an exporter needs no credentials or network.
Resolution happens exactly once: success and failure are both memoized. Every
later caller sees the same client, or a fresh ConfigurationError chained to
the original failure (the original is never re-raised, so its traceback does
not grow with each caller).

Example:
    >>> provisioner = ClientProvisioner(lambda: CloudTraceClient(creds))
    >>> provisioner.state
    <ResolutionState.PENDING: 1>
    >>> client = provisioner.resolve()
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from enum import Enum, auto
from typing import Generic, TypeVar

import structlog

from floe_telemetry_stackdriver.errors import ConfigurationError

logger = structlog.get_logger(__name__)

ClientT = TypeVar("ClientT")


class ResolutionState(Enum):
    """ClientProvisioner states.

    States:
        PENDING: Not yet requested
        RESOLVING: Factory running on some thread
        RESOLVED: Client available
        FAILED: Factory raised; every caller gets a ConfigurationError
    """

    PENDING = auto()
    RESOLVING = auto()
    RESOLVED = auto()
    FAILED = auto()


class ClientProvisioner(Generic[ClientT]):
    """Resolve-once holder of a client.

    Uses double-checked locking so concurrent first touches from several
    workers run the factory once and the rest wait for its outcome.
    """

    def __init__(self, factory: Callable[[], ClientT]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._state = ResolutionState.PENDING
        self._client: ClientT | None = None
        self._error: Exception | None = None

    @classmethod
    def from_client(cls, client: ClientT) -> ClientProvisioner[ClientT]:
        """Create a provisioner that is already resolved to client.

        No credential lookup or network work is ever performed.
        """
        provisioner: ClientProvisioner[ClientT] = cls(lambda: client)
        provisioner._client = client
        provisioner._state = ResolutionState.RESOLVED
        return provisioner

    @property
    def state(self) -> ResolutionState:
        return self._state

    @property
    def is_resolved(self) -> bool:
        return self._state is ResolutionState.RESOLVED

    def resolve(self) -> ClientT:
        """Return the client, building it on the first call.

        Returns:
            The shared client.

        Raises:
            ConfigurationError: If the factory raised, on this and every later
                call. The factory's exception is the __cause__.
        """
        # Fast path: no lock once settled
        if self._state is ResolutionState.RESOLVED:
            return self._client  # type: ignore[return-value]

        with self._lock:
            if self._state is ResolutionState.PENDING:
                self._state = ResolutionState.RESOLVING
                try:
                    self._client = self._factory()
                except Exception as e:
                    self._error = e
                    self._state = ResolutionState.FAILED
                    logger.error("client_resolution_failed", error=str(e))
                else:
                    self._state = ResolutionState.RESOLVED
                    logger.debug("client_resolved", client=type(self._client).__name__)

            if self._error is not None:
                raise ConfigurationError(_failure_reason(self._error)) from self._error
            return self._client  # type: ignore[return-value]

    def close(self) -> None:
        """Close the resolved client, if any and if it has close()."""
        with self._lock:
            client = self._client if self._state is ResolutionState.RESOLVED else None
        close = getattr(client, "close", None)
        if callable(close):
            close()
            logger.debug("client_closed", client=type(client).__name__)


def _failure_reason(error: Exception) -> str:
    if isinstance(error, ConfigurationError):
        return error.reason
    return f"client resolution failed: {type(error).__name__}: {error}"


__all__ = ["ClientProvisioner", "ResolutionState"]
