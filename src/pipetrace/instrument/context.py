"""Per-instance trace buffer.

Every traced pipeline instance owns exactly one TraceContext for its
lifetime. The entrypoint opens it on entry and drains it on exit;
stage wrappers append to it in between. Buffers are addressed through
the instance, never through the pipeline type, so concurrent
executions of different instances cannot interleave.

Appends are mutually exclusive under a lock. The lock only ever guards
the list mutation itself, never a suspension point.
"""

import threading
import time

from pipetrace.contracts.errors import TraceContextError
from pipetrace.contracts.trace import Stage


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return time.time_ns() // 1_000_000


class TraceContext:
    """Ordered stage buffer for one pipeline instance.

    Example:
        ctx = TraceContext()
        ctx.begin()
        ctx.append(stage)
        stages = ctx.finish()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stages: list[Stage] = []
        self._open = False

    @property
    def is_open(self) -> bool:
        """Whether an execution is currently collecting stages."""
        with self._lock:
            return self._open

    def begin(self) -> None:
        """Open the buffer for a new execution.

        Raises:
            TraceContextError: If an execution is already in progress on
                this instance
        """
        with self._lock:
            if self._open:
                raise TraceContextError(
                    "An execution is already in progress on this pipeline instance"
                )
            self._open = True
            self._stages = []

    def append(self, stage: Stage) -> bool:
        """Append a stage if an execution is open.

        Returns:
            True if recorded, False if no execution was open
        """
        with self._lock:
            if not self._open:
                return False
            self._stages.append(stage)
            return True

    def finish(self) -> list[Stage]:
        """Close the buffer and hand over its stages in append order.

        Raises:
            TraceContextError: If no execution is open
        """
        with self._lock:
            if not self._open:
                raise TraceContextError("No execution in progress on this pipeline instance")
            stages, self._stages = self._stages, []
            self._open = False
            return stages

    def __len__(self) -> int:
        with self._lock:
            return len(self._stages)


_CONTEXT_ATTRIBUTE = "_pipetrace_context"


def attached_context(instance: object) -> TraceContext:
    """Return the TraceContext attached to a pipeline instance.

    The context is created on first use and lives as long as the
    instance does.

    Raises:
        TraceContextError: If the instance cannot hold attributes
    """
    try:
        attributes = vars(instance)
    except TypeError as e:
        raise TraceContextError(
            f"Cannot attach a trace context to {type(instance).__name__}; "
            "traced stages must be methods of a pipeline instance"
        ) from e
    context = attributes.get(_CONTEXT_ATTRIBUTE)
    if context is None:
        context = attributes.setdefault(_CONTEXT_ATTRIBUTE, TraceContext())
    return context  # type: ignore[no-any-return]
