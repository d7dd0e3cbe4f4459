# tests/conftest.py
"""Shared test fixtures and helpers.

Provides in-memory trace stores, a recording transport that keeps every
document it was sent, and builders for pipeline documents.

Hypothesis profiles (select with HYPOTHESIS_PROFILE, default "ci"):
- ci: 100 examples
- nightly: 1000 examples
- debug: 10 examples, verbose

    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
import threading
from collections.abc import Iterator
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from pipetrace.contracts.errors import TransportError
from pipetrace.contracts.trace import Pipeline
from pipetrace.instrument.transport import TraceDispatcher, set_default_dispatcher
from pipetrace.store.database import TraceDB
from pipetrace.store.ingest import TraceIngestor

_ALL_PHASES = [Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink]

# deadline off everywhere: stage timing tests sleep and threads vary
settings.register_profile("ci", max_examples=100, phases=_ALL_PHASES, deadline=None)
settings.register_profile("nightly", max_examples=1000, phases=_ALL_PHASES, deadline=None)
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=_ALL_PHASES,
    deadline=None,
)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


class RecordingTransport:
    """Transport that keeps every document it was sent.

    Set fail=True to make every send raise TransportError.
    """

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.documents: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def send(self, document: dict[str, Any]) -> None:
        if self.fail:
            raise TransportError("collector unavailable")
        with self._lock:
            self.documents.append(document)


class CapturingDispatcher:
    """Dispatcher stand-in that keeps assembled Pipelines in memory."""

    def __init__(self) -> None:
        self.pipelines: list[Pipeline] = []

    def dispatch(self, pipeline: Pipeline) -> None:
        self.pipelines.append(pipeline)

    @property
    def last(self) -> Pipeline:
        return self.pipelines[-1]


@pytest.fixture
def capturing_dispatcher() -> CapturingDispatcher:
    return CapturingDispatcher()


@pytest.fixture
def db() -> Iterator[TraceDB]:
    """In-memory trace store."""
    database = TraceDB.in_memory()
    yield database
    database.close()


@pytest.fixture
def ingestor(db: TraceDB) -> TraceIngestor:
    return TraceIngestor(db)


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def dispatcher(recording_transport: RecordingTransport) -> Iterator[TraceDispatcher]:
    """Dispatcher over a RecordingTransport; closed after the test."""
    d = TraceDispatcher(recording_transport)
    yield d
    d.close()


@pytest.fixture
def failing_dispatcher() -> Iterator[TraceDispatcher]:
    """Dispatcher whose transport always raises TransportError."""
    d = TraceDispatcher(RecordingTransport(fail=True))
    yield d
    d.close()


@pytest.fixture(autouse=True)
def _reset_default_dispatcher() -> Iterator[None]:
    yield
    set_default_dispatcher(None)


def _stage_document(
    stage_type: str = "retrieval",
    label: str = "retrieve",
    *,
    status: str = "success",
    started_at: int = 1_000,
    finished_at: int = 1_010,
    input: dict[str, Any] | None = None,
    output: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    error: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a stage document as a transport would send it."""
    doc: dict[str, Any] = {
        "type": stage_type,
        "label": label,
        "status": status,
        "startedAt": started_at,
        "finishedAt": finished_at,
        "input": input if input is not None else {},
        "output": output if output is not None else {"candidates": []},
        "metadata": metadata if metadata is not None else {},
    }
    if error is not None:
        doc["error"] = error
    return doc


def _pipeline_document(
    pipeline_id: str = "p-1",
    label: str = "competitor-selection",
    *,
    status: str = "success",
    started_at: int = 1_000,
    finished_at: int = 1_100,
    stages: list[dict[str, Any]] | None = None,
    error: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a pipeline document as a transport would send it."""
    doc: dict[str, Any] = {
        "id": pipeline_id,
        "label": label,
        "status": status,
        "startedAt": started_at,
        "finishedAt": finished_at,
        "stages": stages if stages is not None else [],
    }
    if error is not None:
        doc["error"] = error
    return doc


def _retrieval_output(count: int) -> dict[str, Any]:
    """Output document of a retrieval stage returning count candidates."""
    return {
        "candidates": [
            {"candidate": {"id": f"c{i}", "title": f"item {i}"}, "id": f"c{i}"}
            for i in range(count)
        ]
    }


@pytest.fixture
def make_stage_document() -> Any:
    """Factory for stage documents."""
    return _stage_document


@pytest.fixture
def make_pipeline_document() -> Any:
    """Factory for pipeline documents."""
    return _pipeline_document


@pytest.fixture
def retrieval_output() -> Any:
    """Factory for retrieval stage output documents."""
    return _retrieval_output
