"""Stage wrappers that record every stage invocation into the trace.

Each factory takes a label, the stage operation and its kind-specific
configuration, and returns a new operation with the same signature.
The wrapped operation is meant to be a method of a TracedPipeline:

    class Competitors(TracedPipeline, label="competitor-selection"):
        def _retrieve(self, keywords):
            ...

        retrieve = retrieval_stage(
            "retrieve-candidates",
            _retrieve,
            id_field="id",
            captures=[opaque(0, "keywords")],
        )

Every invocation, whatever its outcome, appends exactly one Stage to
the instance's trace buffer:
1. Read and snapshot declared arguments, build the stage input
2. Record start time
3. Invoke (awaiting coroutine operations)
4. On success: normalize output, derive metadata, append, return the
   original value unmodified
5. On failure (any BaseException, cancellation included): append a
   failure stage with the kind's empty output and re-raise the original
   exception unmodified

The input is built before the operation runs, so an operation that
sorts its candidate list in place is recorded with the order it was
given. A normalization error on an otherwise successful call, whether
from the input or the output, takes the failure path: the operation's
value is lost and the normalization error is recorded and raised
instead.
"""

import functools
import inspect
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar

from pipetrace.contracts.enums import StageType, TraceStatus
from pipetrace.contracts.errors import MissingCaptureError, NormalizationError
from pipetrace.contracts.trace import Stage, StageError, StageInput, StageOutput
from pipetrace.core.logging import get_logger
from pipetrace.core.metrics import derive_metadata
from pipetrace.core.normalize import (
    FieldSpec,
    to_candidates,
    to_filtered_candidates,
    to_generated_candidates,
    to_scored_candidates,
)
from pipetrace.instrument.capture import Capture, CaptureDescriptor, CapturedArguments
from pipetrace.instrument.context import attached_context, now_ms

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class StageSpec:
    """Static description of one traced stage operation."""

    type: StageType
    label: str
    descriptor: CaptureDescriptor
    normalize_output: Callable[[Any], StageOutput]
    empty_output: StageOutput
    input_id_field: FieldSpec = "id"


@dataclass(frozen=True)
class _PreparedInput:
    """Stage input built at call time.

    error holds the NormalizationError raised while converting the
    candidate-list argument; value then carries only the opaque part.
    """

    value: StageInput
    error: NormalizationError | None = None


def error_of(exc: BaseException) -> StageError:
    """Failure details for a stage or pipeline record."""
    return StageError(message=str(exc) or type(exc).__name__, code=type(exc).__name__)


def _prepare_input(spec: StageSpec, captured: CapturedArguments) -> _PreparedInput:
    any_input: dict[str, Any] | None = None
    if spec.type == StageType.RAW or spec.descriptor.has_opaque:
        any_input = dict(captured.opaque)

    if captured.candidate_name is None:
        return _PreparedInput(StageInput(any=any_input))
    try:
        candidates = to_candidates(
            captured.candidates,
            spec.input_id_field,
            what=f"Argument '{captured.candidate_name}' of stage '{spec.label}'",
        )
    except NormalizationError as e:
        return _PreparedInput(StageInput(any=any_input), error=e)
    return _PreparedInput(StageInput(any=any_input, candidates=candidates))


def _append(instance: Any, spec: StageSpec, stage: Stage) -> None:
    if not attached_context(instance).append(stage):
        logger.warning(
            "stage_untraced",
            stage=spec.label,
            reason="called outside a traced entrypoint",
        )


def _record_failure(
    instance: Any,
    spec: StageSpec,
    prepared: _PreparedInput,
    started_at: int,
    exc: BaseException,
) -> None:
    if prepared.error is not None and prepared.error is not exc:
        logger.warning(
            "stage_input_unconvertible",
            stage=spec.label,
            error=str(prepared.error),
        )
    stage = Stage(
        type=spec.type,
        label=spec.label,
        status=TraceStatus.FAILURE,
        started_at=started_at,
        finished_at=now_ms(),
        input=prepared.value,
        output=spec.empty_output,
        error=error_of(exc),
    )
    _append(instance, spec, stage)


def _record_success(
    instance: Any,
    spec: StageSpec,
    prepared: _PreparedInput,
    started_at: int,
    result: Any,
) -> None:
    """Normalize and append a success stage.

    Raises:
        NormalizationError: After recording it as this stage's failure
    """
    finished_at = now_ms()
    if prepared.error is not None:
        _record_failure(instance, spec, prepared, started_at, prepared.error)
        raise prepared.error
    try:
        output = spec.normalize_output(result)
    except NormalizationError as e:
        _record_failure(instance, spec, prepared, started_at, e)
        raise

    stage = Stage(
        type=spec.type,
        label=spec.label,
        status=TraceStatus.SUCCESS,
        started_at=started_at,
        finished_at=finished_at,
        input=prepared.value,
        output=output,
        metadata=derive_metadata(spec.type, prepared.value, output),
    )
    _append(instance, spec, stage)


def _instance_of(args: tuple[Any, ...], spec: StageSpec) -> Any:
    if not args:
        raise TypeError(
            f"Traced stage '{spec.label}' must be called as a method of a pipeline instance"
        )
    return args[0]


def _wrap(spec: StageSpec, fn: F) -> F:
    read_all_opaque = spec.type == StageType.RAW

    if inspect.iscoroutinefunction(fn):

        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            instance = _instance_of(args, spec)
            captured = spec.descriptor.read(args, kwargs, all_opaque=read_all_opaque)
            prepared = _prepare_input(spec, captured)
            started_at = now_ms()
            try:
                result = await fn(*args, **kwargs)
            except BaseException as e:
                _record_failure(instance, spec, prepared, started_at, e)
                raise
            _record_success(instance, spec, prepared, started_at, result)
            return result

        async_wrapper.__pipetrace_stage__ = spec  # type: ignore[attr-defined]
        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        instance = _instance_of(args, spec)
        captured = spec.descriptor.read(args, kwargs, all_opaque=read_all_opaque)
        prepared = _prepare_input(spec, captured)
        started_at = now_ms()
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:
            _record_failure(instance, spec, prepared, started_at, e)
            raise
        _record_success(instance, spec, prepared, started_at, result)
        return result

    wrapper.__pipetrace_stage__ = spec  # type: ignore[attr-defined]
    return wrapper  # type: ignore[return-value]


def _descriptor(
    stage_type: StageType,
    label: str,
    fn: Callable[..., Any],
    captures: Iterable[Capture],
    *,
    requires_candidates: bool,
) -> CaptureDescriptor:
    if not label:
        raise ValueError("Stage label must be a non-empty string")
    descriptor = CaptureDescriptor.build(fn, captures)
    if requires_candidates and descriptor.candidate_capture is None:
        raise MissingCaptureError(label, stage_type.value)
    return descriptor


def _output_label(label: str) -> str:
    return f"Return value of stage '{label}'"


def raw_stage(label: str, fn: F, *, captures: Iterable[Capture] = ()) -> F:
    """Trace a stage with no structural expectations.

    input.any maps every captured argument by name; output.any is the
    returned value.
    """
    spec = StageSpec(
        type=StageType.RAW,
        label=label,
        descriptor=_descriptor(StageType.RAW, label, fn, captures, requires_candidates=False),
        normalize_output=lambda result: StageOutput(any=result),
        empty_output=StageOutput(any=None),
    )
    return _wrap(spec, fn)


def retrieval_stage(
    label: str,
    fn: F,
    *,
    id_field: FieldSpec,
    captures: Iterable[Capture] = (),
) -> F:
    """Trace a stage that returns a list of retrieved candidates."""
    what = _output_label(label)
    spec = StageSpec(
        type=StageType.RETRIEVAL,
        label=label,
        descriptor=_descriptor(
            StageType.RETRIEVAL, label, fn, captures, requires_candidates=False
        ),
        normalize_output=lambda result: StageOutput(
            candidates=to_candidates(result, id_field, what=what)
        ),
        empty_output=StageOutput(candidates=[]),
        input_id_field=id_field,
    )
    return _wrap(spec, fn)


def scoring_stage(
    label: str,
    fn: F,
    *,
    id_field: FieldSpec,
    score_field: FieldSpec,
    captures: Iterable[Capture],
) -> F:
    """Trace a stage that scores a candidate-list argument.

    Raises:
        MissingCaptureError: If no candidate-list capture is declared
    """
    what = _output_label(label)
    spec = StageSpec(
        type=StageType.SCORING,
        label=label,
        descriptor=_descriptor(StageType.SCORING, label, fn, captures, requires_candidates=True),
        normalize_output=lambda result: StageOutput(
            scored_candidates=to_scored_candidates(result, id_field, score_field, what=what)
        ),
        empty_output=StageOutput(scored_candidates=[]),
        input_id_field=id_field,
    )
    return _wrap(spec, fn)


def filtering_stage(
    label: str,
    fn: F,
    *,
    id_field: FieldSpec,
    passed_field: FieldSpec,
    reason_label_field: FieldSpec | None = None,
    reason_text_field: FieldSpec | None = None,
    captures: Iterable[Capture],
) -> F:
    """Trace a stage that returns a pass/fail verdict per candidate.

    The caller receives the operation's own return value, never the
    normalized records.

    Raises:
        MissingCaptureError: If no candidate-list capture is declared
    """
    what = _output_label(label)
    spec = StageSpec(
        type=StageType.FILTERING,
        label=label,
        descriptor=_descriptor(
            StageType.FILTERING, label, fn, captures, requires_candidates=True
        ),
        normalize_output=lambda result: StageOutput(
            filtered_candidates=to_filtered_candidates(
                result,
                id_field,
                passed_field,
                reason_label_field,
                reason_text_field,
                what=what,
            )
        ),
        empty_output=StageOutput(filtered_candidates=[]),
        input_id_field=id_field,
    )
    return _wrap(spec, fn)


def generation_stage(
    label: str,
    fn: F,
    *,
    reason_text_field: FieldSpec | None = None,
    id_field: FieldSpec = "id",
    captures: Iterable[Capture] = (),
) -> F:
    """Trace a stage that returns a list of generated items.

    A candidate-list capture is optional; when declared it is recorded
    under input.candidates using id_field.
    """
    what = _output_label(label)
    spec = StageSpec(
        type=StageType.GENERATION,
        label=label,
        descriptor=_descriptor(
            StageType.GENERATION, label, fn, captures, requires_candidates=False
        ),
        normalize_output=lambda result: StageOutput(
            generated_candidates=to_generated_candidates(result, reason_text_field, what=what)
        ),
        empty_output=StageOutput(generated_candidates=[]),
        input_id_field=id_field,
    )
    return _wrap(spec, fn)


def ranking_stage(
    label: str,
    fn: F,
    *,
    id_field: FieldSpec,
    captures: Iterable[Capture],
) -> F:
    """Trace a stage that reorders a candidate-list argument.

    The captured list is the order before the stage, the returned list
    the order after it; their rank shift becomes averageRankShift.

    Raises:
        MissingCaptureError: If no candidate-list capture is declared
    """
    what = _output_label(label)
    spec = StageSpec(
        type=StageType.RANKING,
        label=label,
        descriptor=_descriptor(StageType.RANKING, label, fn, captures, requires_candidates=True),
        normalize_output=lambda result: StageOutput(
            candidates=to_candidates(result, id_field, what=what)
        ),
        empty_output=StageOutput(candidates=[]),
        input_id_field=id_field,
    )
    return _wrap(spec, fn)
