"""Repository layer for stored trace records.

Converts SQLAlchemy rows (strings, JSON) into records with enum fields
and typed payloads. Rows were validated on ingestion, so a value that
no longer converts raises instead of being patched up.
"""

from typing import Any

from pipetrace.contracts.enums import StageType, TraceStatus
from pipetrace.contracts.records import PipelineRecord, StageRecord
from pipetrace.contracts.trace import StageError, StageMetadata
from pipetrace.core.documents import StageInputDocument, StageOutputDocument


def _load_error(row: Any) -> StageError | None:
    if row.error_message is None and row.error_code is None:
        return None
    return StageError(message=row.error_message or "", code=row.error_code)


class PipelineRepository:
    """Repository for Pipeline records."""

    def load(self, row: Any, stages: list[StageRecord] | None = None) -> PipelineRecord:
        """Load PipelineRecord from database row.

        Converts status string to enum. Crashes on invalid data.
        """
        return PipelineRecord(
            pipeline_id=row.pipeline_id,
            label=row.label,
            status=TraceStatus(row.status),
            started_at=row.started_at,
            finished_at=row.finished_at,
            duration=row.duration,
            error=_load_error(row),
            stages=stages,
        )


class StageRepository:
    """Repository for Stage records."""

    def load(self, row: Any, *, with_payloads: bool = True) -> StageRecord:
        """Load StageRecord from database row.

        Converts type and status strings to enums, and JSON payloads to
        typed input/output when with_payloads is set.
        """
        return StageRecord(
            stage_id=row.stage_id,
            pipeline_id=row.pipeline_id,
            position=row.position,
            type=StageType(row.type),
            label=row.label,
            status=TraceStatus(row.status),
            started_at=row.started_at,
            finished_at=row.finished_at,
            duration=row.duration,
            metadata=StageMetadata(**row.metadata_json),  # type: ignore[typeddict-item]
            error=_load_error(row),
            input=StageInputDocument.model_validate(row.input_json).to_trace()
            if with_payloads
            else None,
            output=StageOutputDocument.model_validate(row.output_json).to_trace()
            if with_payloads
            else None,
        )
