"""Delivery of completed pipeline traces.

A Transport sends one pipeline document and raises TransportError when
it cannot. The TraceDispatcher runs transports on background threads:
dispatch() converts the trace and submits the send before returning,
and any failure is logged and dropped. A trace is attempted exactly
once - there is no retry - so an unavailable collector never blocks or
fails a pipeline caller.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Protocol

import httpx

from pipetrace.contracts.errors import PipetraceError, TransportError
from pipetrace.contracts.trace import Pipeline
from pipetrace.core.canonical import canonical_json
from pipetrace.core.config import PipetraceSettings, TransportSettings, load_settings
from pipetrace.core.documents import pipeline_to_document
from pipetrace.core.logging import get_logger

logger = get_logger(__name__)


class Transport(Protocol):
    """Protocol for trace transports."""

    def send(self, document: dict[str, Any]) -> None:
        """Deliver one pipeline document.

        Raises:
            TransportError: If delivery failed
        """
        ...


class HTTPTransport:
    """POSTs pipeline documents to a collector's /ingest endpoint."""

    def __init__(self, base_url: str, *, timeout: float = 10.0) -> None:
        """Initialize transport.

        Args:
            base_url: Collector base URL, e.g. "http://localhost:8000"
            timeout: Request timeout in seconds
        """
        self._url = f"{base_url.rstrip('/')}/ingest"
        self._timeout = timeout

    @property
    def url(self) -> str:
        return self._url

    def send(self, document: dict[str, Any]) -> None:
        try:
            body = canonical_json(document)
        except ValueError as e:
            raise TransportError(f"Trace document is not serializable: {e}") from e

        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(
                    self._url,
                    content=body.encode("utf-8"),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.HTTPError as e:
            raise TransportError(f"POST {self._url} failed: {e}") from e

        if not response.is_success:
            raise TransportError(
                f"POST {self._url} returned {response.status_code}: {response.text[:200]}"
            )


class StoreTransport:
    """Ingests pipeline documents straight into a local trace store."""

    def __init__(self, ingestor: Any) -> None:
        """Initialize transport.

        Args:
            ingestor: TraceIngestor for the target store
        """
        self._ingestor = ingestor

    def send(self, document: dict[str, Any]) -> None:
        try:
            self._ingestor.ingest(document)
        except PipetraceError as e:
            raise TransportError(f"Local ingestion failed: {e}") from e


class LoggingTransport:
    """Writes pipeline documents to the log. Used when no backend is set."""

    def send(self, document: dict[str, Any]) -> None:
        logger.info(
            "pipeline_trace",
            pipeline_id=document.get("id"),
            label=document.get("label"),
            document=document,
        )


def transport_from_settings(
    settings: TransportSettings, *, store_url: str | None = None
) -> Transport:
    """Build the transport a TransportSettings section describes.

    Args:
        settings: Transport configuration
        store_url: Database URL for store mode
    """
    if settings.mode == "http":
        assert settings.url is not None, "validated by TransportSettings"
        return HTTPTransport(settings.url, timeout=settings.timeout_seconds)
    if settings.mode == "store":
        from pipetrace.store.database import TraceDB
        from pipetrace.store.ingest import TraceIngestor

        db = TraceDB.from_url(store_url) if store_url else TraceDB.in_memory()
        return StoreTransport(TraceIngestor(db))
    return LoggingTransport()


class TraceDispatcher:
    """Sends pipeline traces on background threads, best effort.

    Example:
        dispatcher = TraceDispatcher(HTTPTransport("http://collector:8000"))
        dispatcher.dispatch(pipeline)  # returns immediately
        dispatcher.flush()             # wait for in-flight sends
    """

    def __init__(self, transport: Transport, *, max_workers: int = 2) -> None:
        self._transport = transport
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="pipetrace-send",
        )
        self._lock = threading.Lock()
        self._pending: set[Future[bool]] = set()

    @property
    def transport(self) -> Transport:
        return self._transport

    def dispatch(self, pipeline: Pipeline) -> "Future[bool] | None":
        """Submit a pipeline trace for delivery. Never raises.

        The document is built synchronously, so later mutation of stage
        payloads by the caller cannot leak into the trace.

        Returns:
            Future resolving to True on delivery, False on failure; None if
            the trace could not be submitted at all
        """
        try:
            document = pipeline_to_document(pipeline)
        except ValueError as e:
            logger.error(
                "trace_serialization_failed",
                pipeline_id=pipeline.id,
                label=pipeline.label,
                error=str(e),
            )
            return None

        try:
            future = self._executor.submit(self._send, pipeline.id, document)
        except RuntimeError as e:
            # Executor already shut down
            logger.error("trace_transport_failed", pipeline_id=pipeline.id, error=str(e))
            return None

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        logger.debug(
            "pipeline_trace_dispatched",
            pipeline_id=pipeline.id,
            label=pipeline.label,
            stages=len(pipeline.stages),
        )
        return future

    def _send(self, pipeline_id: str, document: dict[str, Any]) -> bool:
        try:
            self._transport.send(document)
        except Exception as e:
            # Logged, never raised to the pipeline caller
            logger.error(
                "trace_transport_failed",
                pipeline_id=pipeline_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    def _forget(self, future: "Future[bool]") -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: float | None = None) -> None:
        """Wait for every in-flight send to finish."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def close(self) -> None:
        """Flush and stop the background threads."""
        self.flush()
        self._executor.shutdown(wait=True)


_default_lock = threading.Lock()
_default_dispatcher: TraceDispatcher | None = None


def set_default_dispatcher(dispatcher: TraceDispatcher | None) -> None:
    """Replace the dispatcher used by pipelines constructed without one."""
    global _default_dispatcher
    with _default_lock:
        _default_dispatcher = dispatcher


def default_dispatcher() -> TraceDispatcher:
    """Dispatcher for pipelines constructed without one.

    Built on first use from PIPETRACE_* environment settings.
    """
    global _default_dispatcher
    with _default_lock:
        if _default_dispatcher is None:
            _default_dispatcher = dispatcher_from_settings(load_settings())
        return _default_dispatcher


def dispatcher_from_settings(settings: PipetraceSettings) -> TraceDispatcher:
    """Build a TraceDispatcher from full settings."""
    transport = transport_from_settings(settings.transport, store_url=settings.store.url)
    return TraceDispatcher(transport, max_workers=settings.transport.max_workers)
