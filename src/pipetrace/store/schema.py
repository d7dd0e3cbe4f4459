# src/pipetrace/store/schema.py
"""SQLAlchemy table definitions for the trace store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends. Stage payloads and
derived metadata are JSON documents; metric filters reach into
metadata_json by key.
"""

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# Shared metadata for all tables
metadata = MetaData()

# === Pipelines ===

pipelines_table = Table(
    "pipelines",
    metadata,
    Column("pipeline_id", String(64), primary_key=True),
    Column("label", String(256), nullable=False, index=True),
    Column("status", String(16), nullable=False, index=True),
    Column("error_message", Text),
    Column("error_code", String(128), index=True),
    Column("started_at", BigInteger, nullable=False, index=True),
    Column("finished_at", BigInteger, nullable=False, index=True),
    Column("duration", BigInteger, nullable=False, index=True),
)

# === Stages ===

stages_table = Table(
    "stages",
    metadata,
    Column("stage_id", String(64), primary_key=True),
    Column(
        "pipeline_id",
        String(64),
        ForeignKey("pipelines.pipeline_id"),
        nullable=False,
        index=True,
    ),
    Column("position", Integer, nullable=False),
    Column("type", String(16), nullable=False, index=True),
    Column("label", String(256), nullable=False, index=True),
    Column("status", String(16), nullable=False, index=True),
    Column("error_message", Text),
    Column("error_code", String(128), index=True),
    Column("started_at", BigInteger, nullable=False, index=True),
    Column("finished_at", BigInteger, nullable=False, index=True),
    Column("duration", BigInteger, nullable=False, index=True),
    Column("input_json", JSON, nullable=False),
    Column("output_json", JSON, nullable=False),
    Column("metadata_json", JSON, nullable=False),
    UniqueConstraint("pipeline_id", "position"),
)

Index("ix_stages_type_label", stages_table.c.type, stages_table.c.label)
