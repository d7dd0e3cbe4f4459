# tests/store/test_ingest.py
"""Tests for pipeline document ingestion."""

from typing import Any

import pytest
from sqlalchemy import select

from pipetrace.store.schema import pipelines_table, stages_table


class TestIngest:
    """Documents are validated, durations materialized, metadata recomputed."""

    def test_pipeline_and_stages_persisted(
        self,
        db: Any,
        ingestor: Any,
        make_pipeline_document: Any,
        make_stage_document: Any,
        retrieval_output: Any,
    ) -> None:
        document = make_pipeline_document(
            stages=[
                make_stage_document(label="first", output=retrieval_output(2)),
                make_stage_document(
                    "raw", "second", started_at=1_020, finished_at=1_050, output={"any": 7}
                ),
            ]
        )

        assert ingestor.ingest(document) == "p-1"

        with db.connection() as conn:
            pipeline = conn.execute(select(pipelines_table)).one()
            stages = conn.execute(
                select(stages_table).order_by(stages_table.c.position)
            ).fetchall()

        assert pipeline.duration == 100
        assert [s.label for s in stages] == ["first", "second"]
        assert [s.position for s in stages] == [0, 1]
        assert all(s.pipeline_id == "p-1" for s in stages)
        assert [s.duration for s in stages] == [10, 30]
        assert stages[1].output_json == {"any": 7}

    def test_client_metadata_ignored(
        self,
        db: Any,
        ingestor: Any,
        make_pipeline_document: Any,
        make_stage_document: Any,
        retrieval_output: Any,
    ) -> None:
        document = make_pipeline_document(
            stages=[
                make_stage_document(
                    output=retrieval_output(4), metadata={"retrievalCount": 999, "bogus": 1}
                )
            ]
        )
        ingestor.ingest(document)

        with db.connection() as conn:
            stage = conn.execute(select(stages_table)).one()

        assert stage.metadata_json == {"retrievalCount": 4}

    def test_filtering_metadata_recomputed(
        self, db: Any, ingestor: Any, make_pipeline_document: Any, make_stage_document: Any
    ) -> None:
        candidates = [{"candidate": {"id": i}, "id": i} for i in range(10)]
        verdicts = [
            {"candidate": {"id": i}, "id": i, "passed": i >= 3} for i in range(10)
        ]
        document = make_pipeline_document(
            stages=[
                make_stage_document(
                    "filtering",
                    "screen",
                    input={"candidates": candidates},
                    output={"filteredCandidates": verdicts},
                )
            ]
        )
        ingestor.ingest(document)

        with db.connection() as conn:
            stage = conn.execute(select(stages_table)).one()

        assert stage.metadata_json["filterInput"] == 10
        assert stage.metadata_json["failRatio"] == 0.3
        assert stage.metadata_json["passRatio"] == 0.7

    def test_failed_stage_error_persisted(
        self, db: Any, ingestor: Any, make_pipeline_document: Any, make_stage_document: Any
    ) -> None:
        document = make_pipeline_document(
            status="failure",
            error={"message": "boom", "code": "RuntimeError"},
            stages=[
                make_stage_document(
                    status="failure", error={"message": "boom", "code": "RuntimeError"}
                )
            ],
        )
        ingestor.ingest(document)

        with db.connection() as conn:
            pipeline = conn.execute(select(pipelines_table)).one()
            stage = conn.execute(select(stages_table)).one()

        assert pipeline.status == "failure"
        assert pipeline.error_code == "RuntimeError"
        assert stage.error_message == "boom"

    def test_invalid_document_rejected_before_write(self, db: Any, ingestor: Any) -> None:
        from pipetrace.contracts.errors import InvalidDocumentError

        with pytest.raises(InvalidDocumentError) as exc_info:
            ingestor.ingest({"id": "p-1", "label": "x", "status": "maybe"})

        assert exc_info.value.errors
        with db.connection() as conn:
            assert conn.execute(select(pipelines_table)).fetchall() == []

    def test_duplicate_id_rejected(
        self, db: Any, ingestor: Any, make_pipeline_document: Any, make_stage_document: Any
    ) -> None:
        from pipetrace.contracts.errors import DuplicatePipelineError

        ingestor.ingest(make_pipeline_document(stages=[make_stage_document()]))

        with pytest.raises(DuplicatePipelineError) as exc_info:
            ingestor.ingest(make_pipeline_document(stages=[make_stage_document()]))

        assert exc_info.value.pipeline_id == "p-1"
        with db.connection() as conn:
            assert len(conn.execute(select(stages_table)).fetchall()) == 1

    def test_ingest_pipeline_from_trace(self, db: Any, ingestor: Any) -> None:
        from pipetrace.contracts.enums import TraceStatus
        from pipetrace.contracts.trace import Pipeline

        ingestor.ingest_pipeline(
            Pipeline(
                id="direct",
                label="x",
                started_at=5,
                finished_at=9,
                status=TraceStatus.SUCCESS,
                stages=[],
            )
        )

        with db.connection() as conn:
            assert conn.execute(select(pipelines_table.c.duration)).scalar() == 4


class TestEndToEnd:
    """Instrumented pipeline -> store transport -> query."""

    def test_traced_execution_is_queryable(self, db: Any, ingestor: Any) -> None:
        from pipetrace.instrument import (
            StoreTransport,
            TraceDispatcher,
            TracedPipeline,
            entrypoint,
            opaque,
            retrieval_stage,
        )
        from pipetrace.store.query import TraceQuery

        class Lookup(TracedPipeline, label="lookup-e2e"):
            def _find(self, query: str) -> list[dict[str, str]]:
                return [{"id": f"{query}-{i}"} for i in range(6)]

            find = retrieval_stage("find", _find, id_field="id", captures=[opaque(0, "query")])

            def _run(self, query: str) -> list[dict[str, str]]:
                return self.find(query)

            run = entrypoint(_run)

        dispatcher = TraceDispatcher(StoreTransport(ingestor))
        try:
            Lookup(dispatcher=dispatcher).run("mouse")
            dispatcher.flush()
        finally:
            dispatcher.close()

        (record,) = TraceQuery(db).run({"stage": {"type": "retrieval", "$retrievalCount": 6}})
        assert record.label == "lookup-e2e"
        assert record.stages is not None
        assert record.stages[0].metadata == {"retrievalCount": 6}
