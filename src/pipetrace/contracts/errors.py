"""Exception taxonomy for instrumentation, transport and the trace store.

Normalization errors are raised while converting a stage's arguments or
return value into candidate records. They are recorded as the stage's
failure and then re-raised to the pipeline body - a malformed stage
output is a caller-visible defect, never silently repaired.

TransportError is the one category that never reaches the pipeline
caller: the dispatcher logs it and moves on.
"""

from typing import Any


class PipetraceError(Exception):
    """Base class for all pipetrace errors."""


# === Normalization ===


class NormalizationError(PipetraceError):
    """Stage input or output could not be converted to candidate records."""


class InvalidShapeError(NormalizationError):
    """Value is not the list shape the stage kind requires."""

    def __init__(self, what: str, value: Any) -> None:
        self.what = what
        self.actual_type = type(value).__name__
        super().__init__(f"{what} must be a list, got {self.actual_type}")


class MissingFieldError(NormalizationError):
    """A required field is absent on a converted item."""

    def __init__(self, field: str, index: int) -> None:
        self.field = field
        self.index = index
        super().__init__(f"Item at index {index} is missing required field '{field}'")


class InvalidScoreError(NormalizationError):
    """A score field does not coerce to a finite number."""

    def __init__(self, field: str, index: int, value: Any) -> None:
        self.field = field
        self.index = index
        self.value = value
        super().__init__(
            f"Item at index {index} has non-numeric score in field '{field}': {value!r}"
        )


# === Definition-time errors ===


class MissingCaptureError(PipetraceError):
    """A stage kind requires a candidate-list capture that was not declared."""

    def __init__(self, label: str, stage_type: str) -> None:
        self.label = label
        self.stage_type = stage_type
        super().__init__(
            f"{stage_type} stage '{label}' requires a candidate-list capture"
        )


class CaptureConfigError(PipetraceError):
    """Capture declarations are inconsistent (duplicates, bad positions)."""


class PipelineDefinitionError(PipetraceError):
    """A traced pipeline type is declared incorrectly."""


class TraceContextError(PipetraceError):
    """The per-instance trace buffer was used out of order."""


# === Transport ===


class TransportError(PipetraceError):
    """Delivering a pipeline trace to the collector failed."""


# === Store ===


class InvalidFilterError(PipetraceError):
    """A query filter request is malformed.

    Distinct from an empty result: an empty result set is not an error.
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class InvalidDocumentError(PipetraceError):
    """An ingested pipeline document failed validation."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class DuplicatePipelineError(PipetraceError):
    """A pipeline with the same id has already been ingested."""

    def __init__(self, pipeline_id: str) -> None:
        self.pipeline_id = pipeline_id
        super().__init__(f"Pipeline '{pipeline_id}' has already been ingested")
