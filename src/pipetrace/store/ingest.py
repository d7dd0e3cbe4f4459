"""Ingestion: persist received pipeline documents.

The store is the canonical source of derived statistics. Durations are
materialized here and every stage's metadata is recomputed from its
input and output; whatever metadata the client sent is ignored. The
stage-to-pipeline foreign key is established here, not at capture time.
"""

import uuid
from typing import Any

from pydantic import ValidationError
from sqlalchemy import select

from pipetrace.contracts.errors import DuplicatePipelineError, InvalidDocumentError
from pipetrace.contracts.trace import Pipeline
from pipetrace.core.canonical import to_json_safe
from pipetrace.core.documents import (
    PipelineDocument,
    stage_input_to_document,
    stage_output_to_document,
)
from pipetrace.core.logging import get_logger
from pipetrace.core.metrics import derive_metadata
from pipetrace.store.database import TraceDB
from pipetrace.store.schema import pipelines_table, stages_table

logger = get_logger(__name__)


def _generate_id() -> str:
    """Generate a unique ID."""
    return uuid.uuid4().hex


def parse_pipeline_document(document: dict[str, Any]) -> Pipeline:
    """Validate a received pipeline document.

    Raises:
        InvalidDocumentError: With the individual validation errors
    """
    try:
        return PipelineDocument.model_validate(document).to_trace()
    except ValidationError as e:
        errors = e.errors(include_url=False)
        details = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in errors
        )
        raise InvalidDocumentError(f"Invalid pipeline document: {details}", errors) from e


class TraceIngestor:
    """Writes pipelines and their stages to the trace store.

    Example:
        ingestor = TraceIngestor(TraceDB.in_memory())
        pipeline_id = ingestor.ingest(document)
    """

    def __init__(self, db: TraceDB) -> None:
        self._db = db

    def ingest(self, document: dict[str, Any]) -> str:
        """Validate and persist one pipeline document.

        Args:
            document: Pipeline document as sent by a transport

        Returns:
            The stored pipeline id

        Raises:
            InvalidDocumentError: If the document fails validation
            DuplicatePipelineError: If the pipeline id was already ingested
        """
        return self.ingest_pipeline(parse_pipeline_document(document))

    def ingest_pipeline(self, pipeline: Pipeline) -> str:
        """Persist an already-validated Pipeline in one transaction.

        Raises:
            DuplicatePipelineError: If the pipeline id was already ingested
        """
        with self._db.connection() as conn:
            existing = conn.execute(
                select(pipelines_table.c.pipeline_id).where(
                    pipelines_table.c.pipeline_id == pipeline.id
                )
            ).first()
            if existing is not None:
                raise DuplicatePipelineError(pipeline.id)

            conn.execute(
                pipelines_table.insert().values(
                    pipeline_id=pipeline.id,
                    label=pipeline.label,
                    status=pipeline.status.value,
                    error_message=pipeline.error.message if pipeline.error else None,
                    error_code=pipeline.error.code if pipeline.error else None,
                    started_at=pipeline.started_at,
                    finished_at=pipeline.finished_at,
                    duration=pipeline.duration,
                )
            )

            stage_rows = [
                {
                    "stage_id": _generate_id(),
                    "pipeline_id": pipeline.id,
                    "position": position,
                    "type": stage.type.value,
                    "label": stage.label,
                    "status": stage.status.value,
                    "error_message": stage.error.message if stage.error else None,
                    "error_code": stage.error.code if stage.error else None,
                    "started_at": stage.started_at,
                    "finished_at": stage.finished_at,
                    "duration": stage.duration,
                    "input_json": stage_input_to_document(stage.input),
                    "output_json": stage_output_to_document(stage.output),
                    "metadata_json": to_json_safe(
                        dict(derive_metadata(stage.type, stage.input, stage.output))
                    ),
                }
                for position, stage in enumerate(pipeline.stages)
            ]
            if stage_rows:
                conn.execute(stages_table.insert(), stage_rows)

        logger.info(
            "pipeline_ingested",
            pipeline_id=pipeline.id,
            label=pipeline.label,
            status=pipeline.status.value,
            stages=len(pipeline.stages),
        )
        return pipeline.id
