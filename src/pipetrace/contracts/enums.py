"""Status codes and kinds used across subsystem boundaries."""

from enum import Enum


class StageType(str, Enum):
    """Role of an instrumented stage within a pipeline.

    Uses (str, Enum) because this IS stored in the database (stages.type).
    """

    RETRIEVAL = "retrieval"
    SCORING = "scoring"
    FILTERING = "filtering"
    GENERATION = "generation"
    RANKING = "ranking"
    RAW = "raw"


class TraceStatus(str, Enum):
    """Outcome of a pipeline execution or a single stage invocation.

    Uses (str, Enum) for database serialization to pipelines.status
    and stages.status.
    """

    SUCCESS = "success"
    FAILURE = "failure"


class CaptureKind(str, Enum):
    """How a captured stage argument is recorded.

    OPAQUE: Stored as-is under input.any
    CANDIDATE_LIST: Converted to Candidate records under input.candidates

    Uses (str, Enum) so descriptors serialize cleanly in logs.
    """

    OPAQUE = "opaque"
    CANDIDATE_LIST = "candidate-list"
