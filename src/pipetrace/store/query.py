"""Trace queries: filter requests compiled to a two-phase lookup.

A filter request has two optional sections:

    {
        "pipeline": {"label": "competitor-selection", "duration": {"$lt": 500}},
        "stage": {"type": "retrieval", "$retrievalCount": {"$gt": 5}}
    }

Stage keys carrying the "$" marker name derived metrics and compile to
"metadata.<name>" paths; every other key passes through verbatim.

Resolution:
- No sections: every pipeline, stages omitted
- Pipeline section only: matching pipelines with their stages joined
- Stage section: the distinct ids of pipelines owning a matching stage,
  narrowed by the pipeline section, with their stages joined

Joined stages never carry input/output payloads; metadata and timing
are kept. Requests are validated before any query runs - a malformed
filter raises InvalidFilterError, while no matches is just [].
"""

from collections.abc import Mapping
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    ValidationError,
    model_validator,
)
from sqlalchemy import ColumnElement, and_, select

from pipetrace.contracts.enums import StageType, TraceStatus
from pipetrace.contracts.errors import InvalidFilterError
from pipetrace.contracts.records import PipelineRecord, StageRecord
from pipetrace.store.database import TraceDB
from pipetrace.store.repositories import PipelineRepository, StageRepository
from pipetrace.store.schema import pipelines_table, stages_table

METRIC_MARKER = "$"
METADATA_PREFIX = "metadata."

# === Filter request models ===


class _Filter(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)


class NumericRange(_Filter):
    """Open numeric range: {"$gt": n}, {"$lt": n} or both."""

    gt: StrictInt | StrictFloat | None = Field(default=None, alias="$gt")
    lt: StrictInt | StrictFloat | None = Field(default=None, alias="$lt")

    @model_validator(mode="after")
    def validate_has_bound(self) -> "NumericRange":
        if self.gt is None and self.lt is None:
            raise ValueError("range needs at least one of $gt, $lt")
        return self


NumericFieldQuery = StrictInt | StrictFloat | NumericRange


class PipelineFilter(_Filter):
    """Pipeline-level predicates."""

    id: str | None = None
    label: str | None = None
    status: TraceStatus | None = None
    started_at: NumericFieldQuery | None = Field(default=None, alias="startedAt")
    finished_at: NumericFieldQuery | None = Field(default=None, alias="finishedAt")
    duration: NumericFieldQuery | None = None


class StageFilter(_Filter):
    """Stage-level predicates, including "$"-marked metric fields."""

    type: StageType | None = None
    label: str | None = None
    status: TraceStatus | None = None
    started_at: NumericFieldQuery | None = Field(default=None, alias="startedAt")
    finished_at: NumericFieldQuery | None = Field(default=None, alias="finishedAt")
    duration: NumericFieldQuery | None = None

    retrieval_count: NumericFieldQuery | None = Field(default=None, alias="$retrievalCount")

    filter_input: NumericFieldQuery | None = Field(default=None, alias="$filterInput")
    filter_failed: NumericFieldQuery | None = Field(default=None, alias="$filterFailed")
    filter_passed: NumericFieldQuery | None = Field(default=None, alias="$filterPassed")
    fail_ratio: NumericFieldQuery | None = Field(default=None, alias="$failRatio")
    pass_ratio: NumericFieldQuery | None = Field(default=None, alias="$passRatio")

    candidates_generated: NumericFieldQuery | None = Field(
        default=None, alias="$candidatesGenerated"
    )

    highest_score: NumericFieldQuery | None = Field(default=None, alias="$highestScore")
    lowest_score: NumericFieldQuery | None = Field(default=None, alias="$lowestScore")
    average_score: NumericFieldQuery | None = Field(default=None, alias="$averageScore")

    average_rank_shift: NumericFieldQuery | None = Field(
        default=None, alias="$averageRankShift"
    )


class QueryFilter(_Filter):
    """A complete filter request."""

    pipeline: PipelineFilter | None = None
    stage: StageFilter | None = None


def validate_filter(request: Mapping[str, Any] | QueryFilter) -> QueryFilter:
    """Validate a raw filter request.

    Raises:
        InvalidFilterError: Listing every problem found
    """
    if isinstance(request, QueryFilter):
        return request
    try:
        return QueryFilter.model_validate(request)
    except ValidationError as e:
        errors = e.errors(include_url=False)
        details = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in errors
        )
        raise InvalidFilterError(f"Invalid filter: {details}", errors) from e


# === Compilation ===


def _fields_of(section: Mapping[str, Any] | BaseModel) -> dict[str, Any]:
    if isinstance(section, BaseModel):
        return section.model_dump(mode="json", by_alias=True, exclude_none=True)
    return dict(section)


def compile_stage_filter(stage_filter: Mapping[str, Any] | StageFilter) -> dict[str, Any]:
    """Rewrite marker-prefixed metric keys to their metadata paths.

    Example:
        >>> compile_stage_filter({"type": "retrieval", "$retrievalCount": 6})
        {'type': 'retrieval', 'metadata.retrievalCount': 6}
    """
    compiled: dict[str, Any] = {}
    for key, value in _fields_of(stage_filter).items():
        if key.startswith(METRIC_MARKER):
            compiled[METADATA_PREFIX + key[len(METRIC_MARKER):]] = value
        else:
            compiled[key] = value
    return compiled


def compile_pipeline_filter(
    pipeline_filter: Mapping[str, Any] | PipelineFilter,
) -> dict[str, Any]:
    """Pipeline filter keys pass through verbatim."""
    return _fields_of(pipeline_filter)


_PIPELINE_COLUMNS: dict[str, Any] = {
    "id": pipelines_table.c.pipeline_id,
    "label": pipelines_table.c.label,
    "status": pipelines_table.c.status,
    "startedAt": pipelines_table.c.started_at,
    "finishedAt": pipelines_table.c.finished_at,
    "duration": pipelines_table.c.duration,
}

_STAGE_COLUMNS: dict[str, Any] = {
    "type": stages_table.c.type,
    "label": stages_table.c.label,
    "status": stages_table.c.status,
    "startedAt": stages_table.c.started_at,
    "finishedAt": stages_table.c.finished_at,
    "duration": stages_table.c.duration,
}

# Joined stages carry no input/output payloads
_STAGE_SUMMARY_COLUMNS = [
    c for c in stages_table.c if c.name not in ("input_json", "output_json")
]


def _column_for(path: str, columns: Mapping[str, Any], *, allow_metadata: bool) -> Any:
    if allow_metadata and path.startswith(METADATA_PREFIX):
        return stages_table.c.metadata_json[path[len(METADATA_PREFIX):]].as_float()
    try:
        return columns[path]
    except KeyError:
        raise InvalidFilterError(f"Unknown filter field '{path}'") from None


def _predicate(column: Any, value: Any, path: str) -> ColumnElement[bool]:
    if isinstance(value, Mapping):
        if not value:
            raise InvalidFilterError(f"Empty operator object for '{path}'")
        clauses = []
        for operator, operand in value.items():
            if operator == "$gt":
                clauses.append(column > operand)
            elif operator == "$lt":
                clauses.append(column < operand)
            else:
                raise InvalidFilterError(f"Unsupported operator '{operator}' for '{path}'")
        return and_(*clauses)
    return column == value  # type: ignore[no-any-return]


def where_clauses(
    compiled: Mapping[str, Any],
    columns: Mapping[str, Any],
    *,
    allow_metadata: bool = False,
) -> list[ColumnElement[bool]]:
    """Translate a compiled filter into SQLAlchemy where-clauses.

    Raises:
        InvalidFilterError: On unknown fields or operators
    """
    return [
        _predicate(_column_for(path, columns, allow_metadata=allow_metadata), value, path)
        for path, value in compiled.items()
    ]


# === Execution ===


class TraceQuery:
    """Read-only query surface over the trace store.

    Example:
        query = TraceQuery(db)
        pipelines = query.run({"stage": {"type": "retrieval", "$retrievalCount": 6}})
    """

    def __init__(self, db: TraceDB) -> None:
        self._db = db
        self._pipelines = PipelineRepository()
        self._stages = StageRepository()

    def run(self, request: Mapping[str, Any] | QueryFilter) -> list[PipelineRecord]:
        """Resolve a filter request to pipelines.

        Raises:
            InvalidFilterError: Before any query executes
        """
        query = validate_filter(request)

        pipeline_clauses = (
            where_clauses(compile_pipeline_filter(query.pipeline), _PIPELINE_COLUMNS)
            if query.pipeline is not None
            else None
        )

        if query.stage is None:
            if pipeline_clauses is None:
                return self._all_pipelines()
            return self._pipelines_with_stages(pipeline_clauses)

        stage_clauses = where_clauses(
            compile_stage_filter(query.stage), _STAGE_COLUMNS, allow_metadata=True
        )
        pipeline_ids = self._matching_pipeline_ids(stage_clauses)
        if not pipeline_ids:
            return []
        return self._pipelines_with_stages(
            [pipelines_table.c.pipeline_id.in_(pipeline_ids), *(pipeline_clauses or [])]
        )

    def find_stages(
        self,
        stage_filter: Mapping[str, Any] | StageFilter,
        *,
        with_payloads: bool = False,
    ) -> list[StageRecord]:
        """Stages matching a stage filter, in pipeline then append order.

        Raises:
            InvalidFilterError: On a malformed filter
        """
        if not isinstance(stage_filter, StageFilter):
            stage_filter = validate_filter({"stage": stage_filter}).stage or StageFilter()
        clauses = where_clauses(
            compile_stage_filter(stage_filter), _STAGE_COLUMNS, allow_metadata=True
        )
        columns = list(stages_table.c) if with_payloads else _STAGE_SUMMARY_COLUMNS
        with self._db.connection() as conn:
            rows = conn.execute(
                select(*columns)
                .where(*clauses)
                .order_by(stages_table.c.pipeline_id, stages_table.c.position)
            ).fetchall()
        return [self._stages.load(row, with_payloads=with_payloads) for row in rows]

    def get_pipeline(self, pipeline_id: str) -> PipelineRecord | None:
        """One pipeline with its full stages, payloads included."""
        with self._db.connection() as conn:
            row = conn.execute(
                select(pipelines_table).where(pipelines_table.c.pipeline_id == pipeline_id)
            ).first()
            if row is None:
                return None
            stage_rows = conn.execute(
                select(stages_table)
                .where(stages_table.c.pipeline_id == pipeline_id)
                .order_by(stages_table.c.position)
            ).fetchall()
        stages = [self._stages.load(r, with_payloads=True) for r in stage_rows]
        return self._pipelines.load(row, stages)

    def _matching_pipeline_ids(self, stage_clauses: list[ColumnElement[bool]]) -> list[str]:
        with self._db.connection() as conn:
            rows = conn.execute(
                select(stages_table.c.pipeline_id).where(*stage_clauses).distinct()
            ).fetchall()
        return [row.pipeline_id for row in rows]

    def _all_pipelines(self) -> list[PipelineRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                select(pipelines_table).order_by(
                    pipelines_table.c.started_at, pipelines_table.c.pipeline_id
                )
            ).fetchall()
        return [self._pipelines.load(row) for row in rows]

    def _pipelines_with_stages(
        self, clauses: list[ColumnElement[bool]]
    ) -> list[PipelineRecord]:
        with self._db.connection() as conn:
            rows = conn.execute(
                select(pipelines_table)
                .where(*clauses)
                .order_by(pipelines_table.c.started_at, pipelines_table.c.pipeline_id)
            ).fetchall()
            if not rows:
                return []
            stage_rows = conn.execute(
                select(*_STAGE_SUMMARY_COLUMNS)
                .where(stages_table.c.pipeline_id.in_([row.pipeline_id for row in rows]))
                .order_by(stages_table.c.pipeline_id, stages_table.c.position)
            ).fetchall()

        stages_by_pipeline: dict[str, list[StageRecord]] = {row.pipeline_id: [] for row in rows}
        for stage_row in stage_rows:
            stages_by_pipeline[stage_row.pipeline_id].append(
                self._stages.load(stage_row, with_payloads=False)
            )
        return [
            self._pipelines.load(row, stages_by_pipeline[row.pipeline_id]) for row in rows
        ]
