"""Traced pipeline types and the entrypoint wrapper.

A pipeline type declares its label once, at class creation:

    class Competitors(TracedPipeline, label="competitor-selection"):
        async def _run(self, product):
            ...

        run = entrypoint(_run)

Calling the entrypoint opens the instance's trace buffer, runs the
body (whose traced stage calls fill the buffer), then assembles one
Pipeline from the label, timing, stages and outcome and hands it to
the dispatcher - before returning the body's result or re-raising its
exception. Delivery failures never change the caller's outcome.
"""

import functools
import inspect
import uuid
from collections.abc import Callable
from typing import Any, ClassVar, TypeVar

from pipetrace.contracts.enums import TraceStatus
from pipetrace.contracts.errors import PipelineDefinitionError
from pipetrace.contracts.trace import Pipeline
from pipetrace.core.logging import get_logger
from pipetrace.instrument.context import TraceContext, attached_context, now_ms
from pipetrace.instrument.stages import error_of
from pipetrace.instrument.transport import TraceDispatcher, default_dispatcher

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_ENTRYPOINT_MARKER = "__pipetrace_entrypoint__"


class TracedPipeline:
    """Base class for instrumented pipelines.

    Subclasses bind their label with a class keyword and declare at most
    one entrypoint. Each instance owns one trace buffer for its lifetime.

    Args:
        dispatcher: Where completed traces go; defaults to the
            process-wide dispatcher built from PIPETRACE_* settings
    """

    trace_label: ClassVar[str]

    def __init_subclass__(cls, *, label: str | None = None, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if label is not None:
            if not isinstance(label, str) or not label:
                raise PipelineDefinitionError(
                    f"{cls.__name__}: pipeline label must be a non-empty string"
                )
            cls.trace_label = label
        elif not getattr(cls, "trace_label", None):
            raise PipelineDefinitionError(
                f"{cls.__name__} must declare a label: "
                f"class {cls.__name__}(TracedPipeline, label='...')"
            )

        entrypoints = [
            name for name, value in vars(cls).items() if getattr(value, _ENTRYPOINT_MARKER, False)
        ]
        if len(entrypoints) > 1:
            raise PipelineDefinitionError(
                f"{cls.__name__} declares more than one entrypoint: {sorted(entrypoints)}"
            )

    def __init__(self, dispatcher: TraceDispatcher | None = None) -> None:
        self._trace_dispatcher = dispatcher

    @property
    def trace_context(self) -> TraceContext:
        return attached_context(self)

    @property
    def trace_dispatcher(self) -> TraceDispatcher:
        dispatcher = vars(self).get("_trace_dispatcher")
        return dispatcher if dispatcher is not None else default_dispatcher()

    def new_trace_id(self) -> str:
        """Id for the next execution's trace. Override to supply your own."""
        return uuid.uuid4().hex


class _Execution:
    """One entrypoint invocation: owns the buffer from open to handoff."""

    def __init__(self, instance: TracedPipeline) -> None:
        self._instance = instance
        self.pipeline_id = instance.new_trace_id()
        self._context = instance.trace_context
        self._context.begin()
        self.started_at = now_ms()

    def finish(self, error: BaseException | None = None) -> Pipeline:
        finished_at = now_ms()
        pipeline = Pipeline(
            id=self.pipeline_id,
            label=type(self._instance).trace_label,
            started_at=self.started_at,
            finished_at=finished_at,
            status=TraceStatus.SUCCESS if error is None else TraceStatus.FAILURE,
            stages=self._context.finish(),
            error=error_of(error) if error is not None else None,
        )
        try:
            self._instance.trace_dispatcher.dispatch(pipeline)
        except Exception as e:
            # Settings or dispatcher errors never replace the body outcome
            logger.error(
                "trace_transport_failed",
                pipeline_id=pipeline.id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return pipeline


def entrypoint(fn: F) -> F:
    """Wrap a pipeline's top-level method so each call produces one trace.

    Raises:
        TraceContextError: At call time, if the same instance is already
            executing its entrypoint
    """

    if inspect.iscoroutinefunction(fn):

        @functools.wraps(fn)
        async def async_wrapper(self: TracedPipeline, *args: Any, **kwargs: Any) -> Any:
            execution = _Execution(self)
            try:
                result = await fn(self, *args, **kwargs)
            except BaseException as e:
                execution.finish(error=e)
                raise
            execution.finish()
            return result

        setattr(async_wrapper, _ENTRYPOINT_MARKER, True)
        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(fn)
    def wrapper(self: TracedPipeline, *args: Any, **kwargs: Any) -> Any:
        execution = _Execution(self)
        try:
            result = fn(self, *args, **kwargs)
        except BaseException as e:
            execution.finish(error=e)
            raise
        execution.finish()
        return result

    setattr(wrapper, _ENTRYPOINT_MARKER, True)
    return wrapper  # type: ignore[return-value]
