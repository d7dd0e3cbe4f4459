# src/pipetrace/core/__init__.py
"""Core infrastructure: Normalization, Metrics, Canonical, Documents, Configuration, Logging."""

from pipetrace.core.canonical import (
    canonical_json,
    to_json_safe,
)
from pipetrace.core.config import (
    LoggingSettings,
    PipetraceSettings,
    StoreSettings,
    TransportSettings,
    load_settings,
)
from pipetrace.core.logging import (
    configure_logging,
    get_logger,
)
from pipetrace.core.metrics import (
    average_rank_shift,
    derive_metadata,
)
from pipetrace.core.normalize import (
    MISSING,
    field_accessor,
    to_candidates,
    to_filtered_candidates,
    to_generated_candidates,
    to_scored_candidates,
)

__all__ = [
    "MISSING",
    "LoggingSettings",
    "PipetraceSettings",
    "StoreSettings",
    "TransportSettings",
    "average_rank_shift",
    "canonical_json",
    "configure_logging",
    "derive_metadata",
    "field_accessor",
    "get_logger",
    "load_settings",
    "to_candidates",
    "to_filtered_candidates",
    "to_generated_candidates",
    "to_json_safe",
    "to_scored_candidates",
]
