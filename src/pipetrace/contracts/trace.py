"""Trace contracts produced by the instrumentation layer.

A Pipeline is one execution of an instrumented pipeline instance; its
stages are the complete, call-ordered record of every instrumented
stage invocation made during that execution. Stages are frozen once
built and are never re-sorted.

Timestamps are epoch milliseconds.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypedDict, TypeVar

from pipetrace.contracts.enums import StageType, TraceStatus

T = TypeVar("T")

CandidateId = str | int | float


@dataclass(frozen=True)
class Candidate(Generic[T]):
    """One item flowing through a stage, with its resolved identifier.

    The id is always present: it is the item's id field when the item
    has one, otherwise the item's position in its list.
    """

    candidate: T
    id: CandidateId


@dataclass(frozen=True)
class ScoredCandidate(Generic[T]):
    """Candidate with a finite score."""

    candidate: T
    id: CandidateId
    score: float


@dataclass(frozen=True)
class FilteredCandidate(Generic[T]):
    """Candidate with a pass/fail verdict from a filtering stage."""

    candidate: T
    id: CandidateId
    passed: bool
    reason_label: str | None = None
    reason_text: str | None = None


@dataclass(frozen=True)
class GeneratedCandidate(Generic[T]):
    """Item produced by a generation stage. No id requirement."""

    candidate: T
    reason_text: str | None = None


class StageMetadata(TypedDict, total=False):
    """Derived per-stage statistics, keyed by their stored names.

    Which keys are present depends on the stage type; raw stages and
    scoring stages with no scores carry none.
    """

    retrievalCount: int
    filterInput: int
    filterFailed: int
    filterPassed: int
    failRatio: float | None
    passRatio: float | None
    candidatesGenerated: int
    highestScore: float
    lowestScore: float
    averageScore: float
    averageRankShift: float


@dataclass(frozen=True)
class StageError:
    """Failure details recorded on a stage or pipeline."""

    message: str
    code: str | None = None


@dataclass(frozen=True)
class StageInput:
    """Captured stage arguments.

    any: Opaque captured arguments by semantic name
    candidates: The candidate-list argument, converted
    """

    any: dict[str, Any] | None = None
    candidates: list[Candidate[Any]] | None = None


@dataclass(frozen=True)
class StageOutput:
    """Normalized stage return value. Exactly one field is set per kind."""

    any: Any = None
    candidates: list[Candidate[Any]] | None = None
    filtered_candidates: list[FilteredCandidate[Any]] | None = None
    scored_candidates: list[ScoredCandidate[Any]] | None = None
    generated_candidates: list[GeneratedCandidate[Any]] | None = None


@dataclass(frozen=True)
class Stage:
    """One instrumented call within a pipeline execution.

    Invariants:
    - finished_at >= started_at
    - status FAILURE implies error is set with a non-empty message
    """

    type: StageType
    label: str
    status: TraceStatus
    started_at: int
    finished_at: int
    input: StageInput
    output: StageOutput
    metadata: StageMetadata = field(default_factory=lambda: StageMetadata())
    error: StageError | None = None

    @property
    def duration(self) -> int:
        return self.finished_at - self.started_at


@dataclass(frozen=True)
class Pipeline:
    """One end-to-end execution of an instrumented pipeline.

    Assembled by the entrypoint wrapper at completion (success or
    failure), never partially.
    """

    id: str
    label: str
    started_at: int
    finished_at: int
    status: TraceStatus
    stages: list[Stage]
    error: StageError | None = None

    @property
    def duration(self) -> int:
        return self.finished_at - self.started_at
