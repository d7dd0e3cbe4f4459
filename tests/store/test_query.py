# tests/store/test_query.py
"""Tests for filter compilation and query execution."""

from typing import Any

import pytest


class TestCompileStageFilter:
    """Marker-prefixed metric keys map to metadata paths."""

    def test_metric_key_rewritten(self) -> None:
        from pipetrace.store.query import compile_stage_filter

        compiled = compile_stage_filter({"type": "retrieval", "$metricX": 6})

        assert compiled == {"type": "retrieval", "metadata.metricX": 6}

    def test_other_keys_verbatim(self) -> None:
        from pipetrace.store.query import compile_stage_filter

        compiled = compile_stage_filter({"label": "rank", "startedAt": {"$gt": 5}})

        assert compiled == {"label": "rank", "startedAt": {"$gt": 5}}

    def test_validated_model_compiles_by_alias(self) -> None:
        from pipetrace.store.query import StageFilter, compile_stage_filter

        stage_filter = StageFilter.model_validate(
            {"type": "filtering", "$failRatio": {"$gt": 0.5}, "duration": {"$lt": 100}}
        )

        assert compile_stage_filter(stage_filter) == {
            "type": "filtering",
            "duration": {"$lt": 100},
            "metadata.failRatio": {"$gt": 0.5},
        }


class TestValidateFilter:
    """Malformed filters are rejected before any query runs."""

    @pytest.mark.parametrize(
        "request_body",
        [
            {"pipelines": {}},
            {"stage": {"$notAMetric": 1}},
            {"stage": {"type": "sorting"}},
            {"stage": {"duration": {"$gte": 5}}},
            {"stage": {"duration": {}}},
            {"stage": {"duration": "fast"}},
            {"pipeline": {"status": "pending"}},
            {"pipeline": {"label": {"$gt": 1}}},
        ],
    )
    def test_invalid(self, request_body: dict[str, Any]) -> None:
        from pipetrace.contracts.errors import InvalidFilterError
        from pipetrace.store.query import validate_filter

        with pytest.raises(InvalidFilterError) as exc_info:
            validate_filter(request_body)

        assert exc_info.value.errors

    def test_range_with_both_bounds(self) -> None:
        from pipetrace.store.query import NumericRange, validate_filter

        query = validate_filter({"pipeline": {"duration": {"$gt": 10, "$lt": 20}}})

        assert query.pipeline is not None
        assert query.pipeline.duration == NumericRange(gt=10, lt=20)

    def test_empty_request(self) -> None:
        from pipetrace.store.query import validate_filter

        query = validate_filter({})

        assert query.pipeline is None
        assert query.stage is None


@pytest.fixture
def populated(
    db: Any,
    ingestor: Any,
    make_pipeline_document: Any,
    make_stage_document: Any,
    retrieval_output: Any,
) -> Any:
    """Three pipelines:

    p-small: retrieval of 2, 50ms
    p-large: retrieval of 6 then ranking, 500ms
    p-failed: retrieval of 6, failed, 80ms
    """
    ranking_input = {"candidates": [{"candidate": i, "id": i} for i in (1, 2, 3)]}
    ranking_output = {"candidates": [{"candidate": i, "id": i} for i in (3, 2, 1)]}

    ingestor.ingest(
        make_pipeline_document(
            "p-small",
            "search",
            started_at=1_000,
            finished_at=1_050,
            stages=[
                make_stage_document(
                    label="retrieve",
                    output=retrieval_output(2),
                    input={"any": {"query": "mouse"}},
                )
            ],
        )
    )
    ingestor.ingest(
        make_pipeline_document(
            "p-large",
            "competitor-selection",
            started_at=2_000,
            finished_at=2_500,
            stages=[
                make_stage_document(
                    label="retrieve",
                    started_at=2_000,
                    finished_at=2_100,
                    output=retrieval_output(6),
                ),
                make_stage_document(
                    "ranking",
                    "rank",
                    started_at=2_100,
                    finished_at=2_200,
                    input=ranking_input,
                    output=ranking_output,
                ),
            ],
        )
    )
    ingestor.ingest(
        make_pipeline_document(
            "p-failed",
            "competitor-selection",
            status="failure",
            started_at=3_000,
            finished_at=3_080,
            error={"message": "boom"},
            stages=[
                make_stage_document(
                    label="retrieve",
                    started_at=3_000,
                    finished_at=3_010,
                    output=retrieval_output(6),
                )
            ],
        )
    )
    return db


class TestTraceQueryRun:
    """The three resolution branches."""

    def test_no_filter_returns_all_without_stages(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        results = TraceQuery(populated).run({})

        assert [r.pipeline_id for r in results] == ["p-small", "p-large", "p-failed"]
        assert all(r.stages is None for r in results)

    def test_pipeline_filter_only(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        results = TraceQuery(populated).run({"pipeline": {"label": "competitor-selection"}})

        assert [r.pipeline_id for r in results] == ["p-large", "p-failed"]
        large = results[0]
        assert large.stages is not None
        assert [s.label for s in large.stages] == ["retrieve", "rank"]
        assert all(s.input is None and s.output is None for s in large.stages)
        assert large.stages[1].metadata == {"averageRankShift": 1.0}

    def test_pipeline_duration_range(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        results = TraceQuery(populated).run({"pipeline": {"duration": {"$gt": 60, "$lt": 600}}})

        assert [r.pipeline_id for r in results] == ["p-large", "p-failed"]

    def test_pipeline_status(self, populated: Any) -> None:
        from pipetrace.contracts.enums import TraceStatus
        from pipetrace.store.query import TraceQuery

        (result,) = TraceQuery(populated).run({"pipeline": {"status": "failure"}})

        assert result.pipeline_id == "p-failed"
        assert result.status == TraceStatus.FAILURE
        assert result.error is not None
        assert result.error.message == "boom"

    def test_stage_metric_equality(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        results = TraceQuery(populated).run(
            {"stage": {"type": "retrieval", "$retrievalCount": 6}}
        )

        assert [r.pipeline_id for r in results] == ["p-large", "p-failed"]
        assert all(r.stages is not None for r in results)

    def test_stage_filter_returns_all_stages_of_matching_pipelines(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        (result,) = TraceQuery(populated).run({"stage": {"type": "ranking"}})

        assert result.pipeline_id == "p-large"
        assert result.stages is not None
        assert [s.type.value for s in result.stages] == ["retrieval", "ranking"]

    def test_stage_and_pipeline_filters_combined(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        results = TraceQuery(populated).run(
            {
                "pipeline": {"status": "success"},
                "stage": {"$retrievalCount": {"$gt": 5}},
            }
        )

        assert [r.pipeline_id for r in results] == ["p-large"]

    def test_metric_range(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        results = TraceQuery(populated).run({"stage": {"$retrievalCount": {"$lt": 3}}})

        assert [r.pipeline_id for r in results] == ["p-small"]

    def test_no_match_is_empty_list(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        assert TraceQuery(populated).run({"stage": {"$retrievalCount": 1000}}) == []
        assert TraceQuery(populated).run({"pipeline": {"id": "nope"}}) == []

    def test_invalid_filter_raises(self, populated: Any) -> None:
        from pipetrace.contracts.errors import InvalidFilterError
        from pipetrace.store.query import TraceQuery

        with pytest.raises(InvalidFilterError):
            TraceQuery(populated).run({"stage": {"$bogus": 1}})

    def test_empty_database(self, db: Any) -> None:
        from pipetrace.store.query import TraceQuery

        assert TraceQuery(db).run({}) == []
        assert TraceQuery(db).run({"stage": {"type": "raw"}}) == []


class TestFindStages:
    def test_find_stages_in_order(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        stages = TraceQuery(populated).find_stages({"label": "retrieve"})

        assert sorted(s.pipeline_id for s in stages) == ["p-failed", "p-large", "p-small"]
        assert all(s.input is None for s in stages)

    def test_find_stages_with_payloads(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        (stage,) = TraceQuery(populated).find_stages(
            {"$retrievalCount": 2}, with_payloads=True
        )

        assert stage.input is not None
        assert stage.input.any == {"query": "mouse"}
        assert stage.output is not None
        assert len(stage.output.candidates or []) == 2


class TestGetPipeline:
    def test_full_payloads(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        record = TraceQuery(populated).get_pipeline("p-large")

        assert record is not None
        assert record.duration == 500
        assert record.stages is not None
        ranking = record.stages[1]
        assert ranking.position == 1
        assert ranking.input is not None
        assert [c.id for c in ranking.input.candidates or []] == [1, 2, 3]
        assert ranking.output is not None
        assert [c.id for c in ranking.output.candidates or []] == [3, 2, 1]

    def test_unknown_id(self, populated: Any) -> None:
        from pipetrace.store.query import TraceQuery

        assert TraceQuery(populated).get_pipeline("missing") is None

    def test_fractional_ids_round_trip(
        self, db: Any, ingestor: Any, make_pipeline_document: Any, make_stage_document: Any
    ) -> None:
        from pipetrace.store.query import TraceQuery

        before = [{"candidate": {"id": i}, "id": i} for i in (1.5, 2.5)]
        after = list(reversed(before))
        ingestor.ingest(
            make_pipeline_document(
                "p-fractional",
                stages=[
                    make_stage_document(
                        "ranking",
                        "rerank",
                        input={"candidates": before},
                        output={"candidates": after},
                    )
                ],
            )
        )

        record = TraceQuery(db).get_pipeline("p-fractional")

        assert record is not None
        assert record.stages is not None
        (stage,) = record.stages
        assert stage.input is not None
        assert stage.output is not None
        assert [c.id for c in stage.input.candidates or []] == [1.5, 2.5]
        assert [c.id for c in stage.output.candidates or []] == [2.5, 1.5]
        assert all(type(c.id) is float for c in stage.input.candidates or [])
        assert stage.metadata == {"averageRankShift": 1.0}
