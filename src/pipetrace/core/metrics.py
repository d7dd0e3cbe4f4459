"""Derived per-stage statistics.

Metadata is a pure function of a stage's type, normalized input and
normalized output. The instrumentation computes it when a stage is
recorded and ingestion recomputes it from the stored payloads - the
store is the canonical source of derived statistics, client-sent
metadata is never trusted.

Zero-input filtering: failRatio and passRatio are None when the
filter saw no input candidates. A non-finite ratio would be rejected
by canonical serialization, and None keeps the row out of any
ratio range query.
"""

from collections.abc import Callable, Hashable, Sequence

from pipetrace.contracts.enums import StageType
from pipetrace.contracts.trace import StageInput, StageMetadata, StageOutput


def average_rank_shift(ids_a: Sequence[Hashable], ids_b: Sequence[Hashable]) -> float:
    """Normalized rank shift between two orderings of candidate ids.

    0 means the common items kept their positions, 1 means maximal
    reordering. Ranks are 1-based within each sequence; when an id
    repeats, its later position wins.

    The average displacement of the n common items is normalized by the
    largest average displacement n items can have, which a full reversal
    reaches: floor(n**2 / 2) / n. Extra items in ids_b can push ranks
    past n, hence the cap at 1.

    This is not the plain avgShift / (n - 1) normalization: for n = 3 a
    full reversal has average shift 4/3, which scores 1.0 here but 2/3
    under avgShift / (n - 1).

    Args:
        ids_a: Ids before the ranking stage
        ids_b: Ids after the ranking stage

    Returns:
        A value in [0, 1]. No overlap between non-empty sequences counts
        as maximal disagreement (1); two empty sequences as none (0).

    Example:
        >>> average_rank_shift([1, 2, 3], [3, 2, 1])
        1.0
    """
    rank_a = {item_id: position for position, item_id in enumerate(ids_a, start=1)}
    rank_b = {item_id: position for position, item_id in enumerate(ids_b, start=1)}

    common = [item_id for item_id in ids_a if item_id in rank_b]
    n = len(common)
    if n == 0:
        return 0.0 if not rank_a and not rank_b else 1.0
    if n == 1:
        return 0.0

    total_shift = sum(abs(rank_a[item_id] - rank_b[item_id]) for item_id in common)
    max_average_shift = (n * n // 2) / n
    return min(1.0, (total_shift / n) / max_average_shift)


def _retrieval(stage_input: StageInput, output: StageOutput) -> StageMetadata:
    candidates = output.candidates
    return StageMetadata(retrievalCount=len(candidates) if candidates else 0)


def _scoring(stage_input: StageInput, output: StageOutput) -> StageMetadata:
    scores = [c.score for c in output.scored_candidates or ()]
    if not scores:
        return StageMetadata()
    return StageMetadata(
        highestScore=max(scores),
        lowestScore=min(scores),
        averageScore=sum(scores) / len(scores),
    )


def _filtering(stage_input: StageInput, output: StageOutput) -> StageMetadata:
    filter_input = len(stage_input.candidates or ())
    filter_failed = sum(1 for c in output.filtered_candidates or () if not c.passed)
    filter_passed = filter_input - filter_failed
    return StageMetadata(
        filterInput=filter_input,
        filterFailed=filter_failed,
        filterPassed=filter_passed,
        failRatio=filter_failed / filter_input if filter_input else None,
        passRatio=filter_passed / filter_input if filter_input else None,
    )


def _generation(stage_input: StageInput, output: StageOutput) -> StageMetadata:
    return StageMetadata(candidatesGenerated=len(output.generated_candidates or ()))


def _ranking(stage_input: StageInput, output: StageOutput) -> StageMetadata:
    before = [c.id for c in stage_input.candidates or ()]
    after = [c.id for c in output.candidates or ()]
    return StageMetadata(averageRankShift=average_rank_shift(before, after))


def _raw(stage_input: StageInput, output: StageOutput) -> StageMetadata:
    return StageMetadata()


_DERIVERS: dict[StageType, Callable[[StageInput, StageOutput], StageMetadata]] = {
    StageType.RETRIEVAL: _retrieval,
    StageType.SCORING: _scoring,
    StageType.FILTERING: _filtering,
    StageType.GENERATION: _generation,
    StageType.RANKING: _ranking,
    StageType.RAW: _raw,
}


def derive_metadata(
    stage_type: StageType,
    stage_input: StageInput,
    output: StageOutput,
) -> StageMetadata:
    """Compute a stage's metadata from its normalized input and output."""
    return _DERIVERS[stage_type](stage_input, output)
