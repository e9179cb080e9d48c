"""Shared pytest fixtures for floe-telemetry-stackdriver tests.

NOTE: Do NOT add __init__.py to test directories - pytest uses importlib mode
which can cause namespace collisions with __init__.py files.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Generator, Sequence
from datetime import datetime, timezone
from typing import Any

import pytest

from floe_telemetry_stackdriver import wire
from floe_telemetry_stackdriver.models import Span


def pytest_configure(config: pytest.Config) -> None:
    """Register the requirement marker."""
    config.addinivalue_line(
        "markers",
        "requirement(id): Mark test with requirement ID for traceability",
    )


def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 5.0,
    interval: float = 0.01,
    description: str = "condition",
) -> bool:
    """Poll until condition() is true or timeout expires.

    Returns:
        True if the condition became true.

    Raises:
        TimeoutError: If the condition is still false after timeout.
    """
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    raise TimeoutError(f"Timed out after {timeout}s waiting for {description}")


class RecordingTraceClient:
    """TraceServiceClient that records calls, optionally blocking on a gate."""

    def __init__(self, gate: threading.Event | None = None) -> None:
        self.gate = gate
        self.calls: list[tuple[str, list[wire.Span]]] = []
        self.caller_threads: list[str] = []
        self.started = 0
        self._lock = threading.Lock()

    def batch_write_spans(self, name: str, spans: Sequence[wire.Span]) -> None:
        with self._lock:
            self.started += 1
        if self.gate is not None:
            self.gate.wait(timeout=10)
        with self._lock:
            self.calls.append((name, list(spans)))
            self.caller_threads.append(threading.current_thread().name)


class RecordingMetricClient:
    """MetricServiceClient that records calls."""

    def __init__(self) -> None:
        self.time_series_calls: list[tuple[str, list[wire.TimeSeries]]] = []
        self.descriptor_calls: list[tuple[str, wire.MetricDescriptor]] = []
        self._lock = threading.Lock()

    def create_time_series(self, name: str, time_series: Sequence[wire.TimeSeries]) -> None:
        with self._lock:
            self.time_series_calls.append((name, list(time_series)))

    def create_metric_descriptor(
        self,
        name: str,
        descriptor: wire.MetricDescriptor,
    ) -> wire.MetricDescriptor:
        with self._lock:
            self.descriptor_calls.append((name, descriptor))
        return descriptor


@pytest.fixture
def start_time() -> datetime:
    """A fixed, timezone-aware start time."""
    return datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_span(start_time: datetime) -> Callable[..., Span]:
    """Factory building minimal spans; keyword overrides replace fields."""

    def _make(**overrides: Any) -> Span:
        fields: dict[str, Any] = {
            "trace_id": "0123456789abcdef0123456789abcdef",
            "span_id": "00f067aa0ba902b7",
            "name": "load_orders",
            "start_time": start_time,
            "end_time": datetime(2024, 1, 1, 12, 0, 2, tzinfo=timezone.utc),
        }
        fields.update(overrides)
        return Span(**fields)

    return _make


@pytest.fixture
def trace_client() -> RecordingTraceClient:
    return RecordingTraceClient()


@pytest.fixture
def metric_client() -> RecordingMetricClient:
    return RecordingMetricClient()


@pytest.fixture
def clean_project_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Remove project and exporter environment variables."""
    for var in ("GOOGLE_CLOUD_PROJECT", "GCLOUD_PROJECT", "FLOE_STACKDRIVER_PROJECT_ID"):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """The wait_for_condition polling helper."""
    return wait_for_condition


@pytest.fixture
def gate() -> Generator[threading.Event, None, None]:
    """Event holding gated clients inside their API call; released on teardown."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def gated_trace_client(gate: threading.Event) -> RecordingTraceClient:
    """Trace client whose calls block until the gate is set."""
    return RecordingTraceClient(gate=gate)
