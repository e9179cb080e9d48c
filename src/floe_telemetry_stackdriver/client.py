"""Clients for the Cloud Trace v2 and Cloud Monitoring v3 REST APIs.

The exporters depend only on the TraceServiceClient and MetricServiceClient
protocols; CloudTraceClient and CloudMonitoringClient are the default httpx
implementations. Tests inject their own objects satisfying the protocols, or
pass an ``httpx.MockTransport`` to the default clients.

Each call is a single synchronous POST. Failures raise TransportError and are
never retried here.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog
from google.auth import credentials as ga_credentials
from google.auth.transport.requests import Request

from floe_telemetry_stackdriver import wire
from floe_telemetry_stackdriver._version import __version__
from floe_telemetry_stackdriver.errors import MetricDescriptorConflictError, TransportError

logger = structlog.get_logger(__name__)

DEFAULT_TRACE_ENDPOINT = "https://cloudtrace.googleapis.com"
DEFAULT_MONITORING_ENDPOINT = "https://monitoring.googleapis.com"
API_CLIENT_HEADER = f"floe-telemetry-stackdriver/{__version__} gl-python httpx/{httpx.__version__}"


@runtime_checkable
class TraceServiceClient(Protocol):
    """Writes span batches to Cloud Trace."""

    def batch_write_spans(self, name: str, spans: Sequence[wire.Span]) -> None:
        """Write spans under the project resource name ``projects/<p>``."""
        ...


@runtime_checkable
class MetricServiceClient(Protocol):
    """Writes time series and metric descriptors to Cloud Monitoring."""

    def create_time_series(self, name: str, time_series: Sequence[wire.TimeSeries]) -> None:
        """Write time series under the project resource name ``projects/<p>``."""
        ...

    def create_metric_descriptor(
        self,
        name: str,
        descriptor: wire.MetricDescriptor,
    ) -> wire.MetricDescriptor:
        """Register a metric descriptor and return the created descriptor."""
        ...


class GoogleApiClient:
    """Authorized JSON-over-HTTP client for a googleapis.com service.

    Attributes:
        endpoint: Service base URL, e.g. https://cloudtrace.googleapis.com.
    """

    def __init__(
        self,
        credentials: ga_credentials.Credentials,
        *,
        endpoint: str,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self._credentials = credentials
        self._refresh_lock = threading.Lock()
        self._http = httpx.Client(
            base_url=self.endpoint,
            timeout=timeout,
            transport=transport,
            headers={"x-goog-api-client": API_CLIENT_HEADER},
        )
        self._log = logger.bind(component=type(self).__name__, endpoint=self.endpoint)

    def _authorization_header(self) -> dict[str, str]:
        # Credentials are shared by all worker threads
        with self._refresh_lock:
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(Request())
                except Exception as e:
                    raise TransportError(
                        self.endpoint, f"credential refresh failed: {e}"
                    ) from e
                self._log.debug("credentials_refreshed")
            return {"Authorization": f"Bearer {self._credentials.token}"}

    def post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON response.

        Args:
            path: Path below the endpoint, e.g. /v2/projects/p/traces:batchWrite.
            body: JSON request body.

        Returns:
            Decoded response body ({} for an empty response).

        Raises:
            MetricDescriptorConflictError: On HTTP 409.
            TransportError: On any other non-2xx status, a network failure, or
                after close().
        """
        url = f"{self.endpoint}{path}"
        if self._http.is_closed:
            raise TransportError(url, "client has been closed")
        try:
            response = self._http.post(path, json=body, headers=self._authorization_header())
        except httpx.RequestError as e:
            raise TransportError(url, str(e) or type(e).__name__) from e

        if response.status_code == 409:
            raise MetricDescriptorConflictError(url, _error_message(response), 409)
        if response.is_error:
            raise TransportError(url, _error_message(response), response.status_code)

        self._log.debug("api_request_completed", path=path, status_code=response.status_code)
        if not response.content:
            return {}
        return response.json()

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._http.close()


def _error_message(response: httpx.Response) -> str:
    # googleapis errors: {"error": {"code": ..., "message": ..., "status": ...}}
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text or response.reason_phrase


class CloudTraceClient(GoogleApiClient):
    """Cloud Trace v2 client implementing TraceServiceClient."""

    def __init__(
        self,
        credentials: ga_credentials.Credentials,
        *,
        endpoint: str = DEFAULT_TRACE_ENDPOINT,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(credentials, endpoint=endpoint, timeout=timeout, transport=transport)

    def batch_write_spans(self, name: str, spans: Sequence[wire.Span]) -> None:
        """Call projects.traces.batchWrite."""
        self.post(f"/v2/{name}/traces:batchWrite", {"spans": [span.to_json() for span in spans]})


class CloudMonitoringClient(GoogleApiClient):
    """Cloud Monitoring v3 client implementing MetricServiceClient."""

    def __init__(
        self,
        credentials: ga_credentials.Credentials,
        *,
        endpoint: str = DEFAULT_MONITORING_ENDPOINT,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(credentials, endpoint=endpoint, timeout=timeout, transport=transport)

    def create_time_series(self, name: str, time_series: Sequence[wire.TimeSeries]) -> None:
        """Call projects.timeSeries.create."""
        self.post(
            f"/v3/{name}/timeSeries",
            {"timeSeries": [series.to_json() for series in time_series]},
        )

    def create_metric_descriptor(
        self,
        name: str,
        descriptor: wire.MetricDescriptor,
    ) -> wire.MetricDescriptor:
        """Call projects.metricDescriptors.create."""
        body = self.post(f"/v3/{name}/metricDescriptors", descriptor.to_json())
        if not body:
            return descriptor
        return wire.MetricDescriptor.model_validate(body)


__all__ = [
    "API_CLIENT_HEADER",
    "CloudMonitoringClient",
    "CloudTraceClient",
    "DEFAULT_MONITORING_ENDPOINT",
    "DEFAULT_TRACE_ENDPOINT",
    "GoogleApiClient",
    "MetricServiceClient",
    "TraceServiceClient",
]
