"""Shared contracts for cross-boundary data types.

Trace records, stored records, enums and the error taxonomy used by both
the instrumentation side and the store.

Import pattern:
    from pipetrace.contracts import Stage, StageType, TraceStatus
"""

from pipetrace.contracts.enums import (
    CaptureKind,
    StageType,
    TraceStatus,
)
from pipetrace.contracts.errors import (
    CaptureConfigError,
    DuplicatePipelineError,
    InvalidDocumentError,
    InvalidFilterError,
    InvalidScoreError,
    InvalidShapeError,
    MissingCaptureError,
    MissingFieldError,
    NormalizationError,
    PipelineDefinitionError,
    PipetraceError,
    TraceContextError,
    TransportError,
)
from pipetrace.contracts.trace import (
    Candidate,
    CandidateId,
    FilteredCandidate,
    GeneratedCandidate,
    Pipeline,
    ScoredCandidate,
    Stage,
    StageError,
    StageInput,
    StageMetadata,
    StageOutput,
)
from pipetrace.contracts.records import (
    PipelineRecord,
    StageRecord,
)

__all__ = [
    # enums
    "CaptureKind",
    "StageType",
    "TraceStatus",
    # errors
    "CaptureConfigError",
    "DuplicatePipelineError",
    "InvalidDocumentError",
    "InvalidFilterError",
    "InvalidScoreError",
    "InvalidShapeError",
    "MissingCaptureError",
    "MissingFieldError",
    "NormalizationError",
    "PipelineDefinitionError",
    "PipetraceError",
    "TraceContextError",
    "TransportError",
    # trace
    "Candidate",
    "CandidateId",
    "FilteredCandidate",
    "GeneratedCandidate",
    "Pipeline",
    "ScoredCandidate",
    "Stage",
    "StageError",
    "StageInput",
    "StageMetadata",
    "StageOutput",
    # records
    "PipelineRecord",
    "StageRecord",
]
