"""Stored trace records as read back from the trace store.

These differ from the capture-side contracts in two ways: durations are
materialized, and every stage carries the id of its owning pipeline
(assigned at ingestion, not at capture time).

Repositories convert stored strings to enums and raise on anything
unexpected.
"""

from dataclasses import dataclass

from pipetrace.contracts.enums import StageType, TraceStatus
from pipetrace.contracts.trace import StageError, StageInput, StageMetadata, StageOutput


@dataclass
class StageRecord:
    """A persisted stage.

    input and output are None when the stage was joined onto a query
    result (payloads are projected out); metadata and timing are kept.
    """

    stage_id: str
    pipeline_id: str
    position: int
    type: StageType  # Strict: enum only
    label: str
    status: TraceStatus  # Strict: enum only
    started_at: int
    finished_at: int
    duration: int
    metadata: StageMetadata
    error: StageError | None = None
    input: StageInput | None = None
    output: StageOutput | None = None


@dataclass
class PipelineRecord:
    """A persisted pipeline execution.

    stages is None when the query did not join stages, otherwise the
    owning stages in append order.
    """

    pipeline_id: str
    label: str
    status: TraceStatus  # Strict: enum only
    started_at: int
    finished_at: int
    duration: int
    error: StageError | None = None
    stages: list[StageRecord] | None = None
