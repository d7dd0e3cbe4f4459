"""Instrumentation: traced pipelines, stage wrappers and trace delivery.

Example:
    from pipetrace.instrument import (
        TracedPipeline, candidate_list, entrypoint, opaque, retrieval_stage,
    )

    class Competitors(TracedPipeline, label="competitor-selection"):
        def _search(self, query):
            ...

        search = retrieval_stage(
            "keyword-search", _search, id_field="asin", captures=[opaque(0, "query")]
        )

        def _run(self, product):
            return self.search(product["title"])

        run = entrypoint(_run)
"""

from pipetrace.instrument.capture import (
    Capture,
    CaptureDescriptor,
    candidate_list,
    opaque,
)
from pipetrace.instrument.context import TraceContext
from pipetrace.instrument.pipeline import TracedPipeline, entrypoint
from pipetrace.instrument.stages import (
    filtering_stage,
    generation_stage,
    ranking_stage,
    raw_stage,
    retrieval_stage,
    scoring_stage,
)
from pipetrace.instrument.transport import (
    HTTPTransport,
    LoggingTransport,
    StoreTransport,
    TraceDispatcher,
    Transport,
    default_dispatcher,
    dispatcher_from_settings,
    set_default_dispatcher,
    transport_from_settings,
)

__all__ = [
    "Capture",
    "CaptureDescriptor",
    "HTTPTransport",
    "LoggingTransport",
    "StoreTransport",
    "TraceContext",
    "TraceDispatcher",
    "TracedPipeline",
    "Transport",
    "candidate_list",
    "default_dispatcher",
    "dispatcher_from_settings",
    "entrypoint",
    "filtering_stage",
    "generation_stage",
    "opaque",
    "ranking_stage",
    "raw_stage",
    "retrieval_stage",
    "scoring_stage",
    "set_default_dispatcher",
    "transport_from_settings",
]
