# src/pipetrace/store/__init__.py
"""Trace store: persistence, ingestion and queries over pipeline traces."""

from pipetrace.store.database import TraceDB
from pipetrace.store.ingest import TraceIngestor, parse_pipeline_document
from pipetrace.store.query import (
    NumericRange,
    PipelineFilter,
    QueryFilter,
    StageFilter,
    TraceQuery,
    compile_pipeline_filter,
    compile_stage_filter,
    validate_filter,
)
from pipetrace.store.schema import metadata, pipelines_table, stages_table

__all__ = [
    "NumericRange",
    "PipelineFilter",
    "QueryFilter",
    "StageFilter",
    "TraceDB",
    "TraceIngestor",
    "TraceQuery",
    "compile_pipeline_filter",
    "compile_stage_filter",
    "metadata",
    "parse_pipeline_document",
    "pipelines_table",
    "stages_table",
    "validate_filter",
]
