# tests/contracts/test_trace_contracts.py
"""Tests for trace contracts, enums and errors."""

import dataclasses

import pytest


class TestEnums:
    """Enums are (str, Enum) for database storage."""

    def test_stage_types(self) -> None:
        from pipetrace.contracts import StageType

        assert {t.value for t in StageType} == {
            "retrieval",
            "scoring",
            "filtering",
            "generation",
            "ranking",
            "raw",
        }

    def test_status_is_str(self) -> None:
        from pipetrace.contracts import TraceStatus

        assert TraceStatus.SUCCESS == "success"
        assert TraceStatus("failure") is TraceStatus.FAILURE

    def test_invalid_value_raises(self) -> None:
        from pipetrace.contracts import StageType

        with pytest.raises(ValueError):
            StageType("sorting")


class TestStage:
    """Stage records are frozen; duration is derived."""

    def _stage(self) -> object:
        from pipetrace.contracts import Stage, StageInput, StageOutput, StageType, TraceStatus

        return Stage(
            type=StageType.RAW,
            label="prepare",
            status=TraceStatus.SUCCESS,
            started_at=1_000,
            finished_at=1_250,
            input=StageInput(any={}),
            output=StageOutput(any="done"),
        )

    def test_duration(self) -> None:
        stage = self._stage()

        assert stage.duration == 250  # type: ignore[attr-defined]

    def test_frozen(self) -> None:
        stage = self._stage()

        with pytest.raises(dataclasses.FrozenInstanceError):
            stage.label = "other"  # type: ignore[attr-defined]

    def test_metadata_defaults_empty(self) -> None:
        stage = self._stage()

        assert stage.metadata == {}  # type: ignore[attr-defined]
        assert stage.error is None  # type: ignore[attr-defined]

    def test_pipeline_duration(self) -> None:
        from pipetrace.contracts import Pipeline, TraceStatus

        pipeline = Pipeline(
            id="p1",
            label="x",
            started_at=10,
            finished_at=15,
            status=TraceStatus.SUCCESS,
            stages=[],
        )

        assert pipeline.duration == 5


class TestErrors:
    """Error taxonomy carries offending details as attributes."""

    def test_normalization_errors_share_base(self) -> None:
        from pipetrace.contracts import (
            InvalidScoreError,
            InvalidShapeError,
            MissingFieldError,
            NormalizationError,
            PipetraceError,
        )

        for error in (
            InvalidShapeError("value", None),
            MissingFieldError("id", 2),
            InvalidScoreError("score", 1, "abc"),
        ):
            assert isinstance(error, NormalizationError)
            assert isinstance(error, PipetraceError)

    def test_missing_field_attributes(self) -> None:
        from pipetrace.contracts import MissingFieldError

        error = MissingFieldError("passed", 3)

        assert error.field == "passed"
        assert error.index == 3
        assert "index 3" in str(error)

    def test_invalid_shape_names_type(self) -> None:
        from pipetrace.contracts import InvalidShapeError

        error = InvalidShapeError("Return value of stage 'x'", {"a": 1})

        assert error.actual_type == "dict"
        assert "must be a list" in str(error)

    def test_missing_capture_names_stage(self) -> None:
        from pipetrace.contracts import MissingCaptureError

        error = MissingCaptureError("score-items", "scoring")

        assert error.label == "score-items"
        assert "candidate-list capture" in str(error)

    def test_filter_error_keeps_details(self) -> None:
        from pipetrace.contracts import InvalidFilterError

        error = InvalidFilterError("bad", [{"loc": ("stage",), "msg": "x"}])

        assert error.errors[0]["msg"] == "x"
        assert InvalidFilterError("bad").errors == []
