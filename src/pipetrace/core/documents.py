"""Wire documents for pipeline traces.

The transport ships a Pipeline as a JSON document with camelCase keys;
ingestion receives the same shape. Outbound conversion is a plain
function over the trace contracts. Inbound documents cross a trust
boundary, so they are validated with pydantic before anything is
written.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, model_validator
from pydantic.alias_generators import to_camel

from pipetrace.contracts.enums import StageType, TraceStatus
from pipetrace.contracts.records import PipelineRecord, StageRecord
from pipetrace.contracts.trace import (
    Candidate,
    FilteredCandidate,
    GeneratedCandidate,
    Pipeline,
    ScoredCandidate,
    Stage,
    StageError,
    StageInput,
    StageOutput,
)
from pipetrace.core.canonical import to_json_safe

# === Outbound ===


def _payload(value: Any) -> Any:
    # Application data: NaN becomes null instead of dropping the trace
    return to_json_safe(value, strict=False)


def _candidate(c: Candidate[Any]) -> dict[str, Any]:
    return {"candidate": _payload(c.candidate), "id": c.id}


def _scored(c: ScoredCandidate[Any]) -> dict[str, Any]:
    return {"candidate": _payload(c.candidate), "id": c.id, "score": c.score}


def _filtered(c: FilteredCandidate[Any]) -> dict[str, Any]:
    doc: dict[str, Any] = {"candidate": _payload(c.candidate), "id": c.id, "passed": c.passed}
    if c.reason_label is not None:
        doc["reasonLabel"] = c.reason_label
    if c.reason_text is not None:
        doc["reasonText"] = c.reason_text
    return doc


def _generated(c: GeneratedCandidate[Any]) -> dict[str, Any]:
    doc: dict[str, Any] = {"candidate": _payload(c.candidate)}
    if c.reason_text is not None:
        doc["reasonText"] = c.reason_text
    return doc


def _error(error: StageError) -> dict[str, Any]:
    doc: dict[str, Any] = {"message": error.message}
    if error.code is not None:
        doc["code"] = error.code
    return doc


def stage_input_to_document(stage_input: StageInput) -> dict[str, Any]:
    """Convert a StageInput to its JSON-safe document form."""
    doc: dict[str, Any] = {}
    if stage_input.any is not None:
        doc["any"] = _payload(stage_input.any)
    if stage_input.candidates is not None:
        doc["candidates"] = [_candidate(c) for c in stage_input.candidates]
    return to_json_safe(doc)  # type: ignore[no-any-return]


def stage_output_to_document(output: StageOutput) -> dict[str, Any]:
    """Convert a StageOutput to its JSON-safe document form.

    Only the fields set for the stage kind appear. A raw stage's
    output.any is always present, even when null.
    """
    doc: dict[str, Any] = {}
    if output.candidates is not None:
        doc["candidates"] = [_candidate(c) for c in output.candidates]
    elif output.scored_candidates is not None:
        doc["scoredCandidates"] = [_scored(c) for c in output.scored_candidates]
    elif output.filtered_candidates is not None:
        doc["filteredCandidates"] = [_filtered(c) for c in output.filtered_candidates]
    elif output.generated_candidates is not None:
        doc["generatedCandidates"] = [_generated(c) for c in output.generated_candidates]
    else:
        doc["any"] = _payload(output.any)
    return to_json_safe(doc)  # type: ignore[no-any-return]


def stage_to_document(stage: Stage) -> dict[str, Any]:
    """Convert a captured Stage to its wire document."""
    doc: dict[str, Any] = {
        "type": stage.type.value,
        "label": stage.label,
        "status": stage.status.value,
        "startedAt": stage.started_at,
        "finishedAt": stage.finished_at,
        "input": stage_input_to_document(stage.input),
        "output": stage_output_to_document(stage.output),
        "metadata": to_json_safe(dict(stage.metadata)),
    }
    if stage.error is not None:
        doc["error"] = _error(stage.error)
    return doc


def pipeline_to_document(pipeline: Pipeline) -> dict[str, Any]:
    """Convert an assembled Pipeline to the document the transport sends.

    Raises:
        ValueError: If a score or metric is NaN or infinite
    """
    doc: dict[str, Any] = {
        "id": pipeline.id,
        "label": pipeline.label,
        "status": pipeline.status.value,
        "startedAt": pipeline.started_at,
        "finishedAt": pipeline.finished_at,
        "stages": [stage_to_document(stage) for stage in pipeline.stages],
    }
    if pipeline.error is not None:
        doc["error"] = _error(pipeline.error)
    return doc


def stage_record_to_document(record: StageRecord) -> dict[str, Any]:
    """Convert a stored stage to a document, omitting projected-out payloads."""
    doc: dict[str, Any] = {
        "id": record.stage_id,
        "pipelineId": record.pipeline_id,
        "type": record.type.value,
        "label": record.label,
        "status": record.status.value,
        "startedAt": record.started_at,
        "finishedAt": record.finished_at,
        "duration": record.duration,
        "metadata": to_json_safe(dict(record.metadata)),
    }
    if record.input is not None:
        doc["input"] = stage_input_to_document(record.input)
    if record.output is not None:
        doc["output"] = stage_output_to_document(record.output)
    if record.error is not None:
        doc["error"] = _error(record.error)
    return doc


def pipeline_record_to_document(record: PipelineRecord) -> dict[str, Any]:
    """Convert a stored pipeline to a document. stages appears only when joined."""
    doc: dict[str, Any] = {
        "id": record.pipeline_id,
        "label": record.label,
        "status": record.status.value,
        "startedAt": record.started_at,
        "finishedAt": record.finished_at,
        "duration": record.duration,
    }
    if record.error is not None:
        doc["error"] = _error(record.error)
    if record.stages is not None:
        doc["stages"] = [stage_record_to_document(s) for s in record.stages]
    return doc


# === Inbound ===

# Strict numbers keep 1 and 1.5 as sent and reject booleans
DocumentId = StrictInt | StrictFloat | str


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


class CandidateDocument(_Document):
    candidate: Any = None
    id: DocumentId

    def to_trace(self) -> Candidate[Any]:
        return Candidate(candidate=self.candidate, id=self.id)


class ScoredCandidateDocument(_Document):
    candidate: Any = None
    id: DocumentId
    score: float = Field(allow_inf_nan=False)

    def to_trace(self) -> ScoredCandidate[Any]:
        return ScoredCandidate(candidate=self.candidate, id=self.id, score=self.score)


class FilteredCandidateDocument(_Document):
    candidate: Any = None
    id: DocumentId
    passed: bool
    reason_label: str | None = None
    reason_text: str | None = None

    def to_trace(self) -> FilteredCandidate[Any]:
        return FilteredCandidate(
            candidate=self.candidate,
            id=self.id,
            passed=self.passed,
            reason_label=self.reason_label,
            reason_text=self.reason_text,
        )


class GeneratedCandidateDocument(_Document):
    candidate: Any = None
    reason_text: str | None = None

    def to_trace(self) -> GeneratedCandidate[Any]:
        return GeneratedCandidate(candidate=self.candidate, reason_text=self.reason_text)


class ErrorDocument(_Document):
    message: str = ""
    code: str | None = None

    def to_trace(self) -> StageError:
        return StageError(message=self.message, code=self.code)


class StageInputDocument(_Document):
    any: dict[str, Any] | None = None
    candidates: list[CandidateDocument] | None = None

    def to_trace(self) -> StageInput:
        return StageInput(
            any=self.any,
            candidates=[c.to_trace() for c in self.candidates]
            if self.candidates is not None
            else None,
        )


class StageOutputDocument(_Document):
    any: Any = None
    candidates: list[CandidateDocument] | None = None
    filtered_candidates: list[FilteredCandidateDocument] | None = None
    scored_candidates: list[ScoredCandidateDocument] | None = None
    generated_candidates: list[GeneratedCandidateDocument] | None = None

    def to_trace(self) -> StageOutput:
        def convert(docs: list[Any] | None) -> list[Any] | None:
            return [d.to_trace() for d in docs] if docs is not None else None

        return StageOutput(
            any=self.any,
            candidates=convert(self.candidates),
            filtered_candidates=convert(self.filtered_candidates),
            scored_candidates=convert(self.scored_candidates),
            generated_candidates=convert(self.generated_candidates),
        )


class StageDocument(_Document):
    """A stage as received by ingestion.

    Client-sent metadata is accepted but ignored; ingestion recomputes it.
    """

    type: StageType
    label: str = Field(min_length=1)
    status: TraceStatus
    started_at: int
    finished_at: int
    input: StageInputDocument = Field(default_factory=StageInputDocument)
    output: StageOutputDocument = Field(default_factory=StageOutputDocument)
    metadata: dict[str, Any] | None = None
    error: ErrorDocument | None = None

    @model_validator(mode="after")
    def validate_timing(self) -> "StageDocument":
        if self.finished_at < self.started_at:
            raise ValueError("finishedAt must not precede startedAt")
        return self

    def to_trace(self) -> Stage:
        return Stage(
            type=self.type,
            label=self.label,
            status=self.status,
            started_at=self.started_at,
            finished_at=self.finished_at,
            input=self.input.to_trace(),
            output=self.output.to_trace(),
            error=self.error.to_trace() if self.error is not None else None,
        )


class PipelineDocument(_Document):
    """A complete pipeline trace as received by ingestion."""

    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    status: TraceStatus
    started_at: int
    finished_at: int
    stages: list[StageDocument] = Field(default_factory=list)
    error: ErrorDocument | None = None

    @model_validator(mode="after")
    def validate_timing(self) -> "PipelineDocument":
        if self.finished_at < self.started_at:
            raise ValueError("finishedAt must not precede startedAt")
        return self

    def to_trace(self) -> Pipeline:
        return Pipeline(
            id=self.id,
            label=self.label,
            started_at=self.started_at,
            finished_at=self.finished_at,
            status=self.status,
            stages=[stage.to_trace() for stage in self.stages],
            error=self.error.to_trace() if self.error is not None else None,
        )
