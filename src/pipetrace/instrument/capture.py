"""Static capture descriptors for stage arguments.

A stage declares, once, which of its arguments are recorded: by
position, under a semantic name, and with a kind. Positions count the
wrapped method's arguments after the pipeline instance, so position 0
is the first argument after self.

The parameter name at each position is resolved from the function
signature when the descriptor is built, which lets call-time lookup
fall back to keyword arguments without inspecting the call.
"""

import inspect
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pipetrace.contracts.enums import CaptureKind
from pipetrace.contracts.errors import CaptureConfigError


@dataclass(frozen=True)
class Capture:
    """One captured argument."""

    position: int
    name: str
    kind: CaptureKind = CaptureKind.OPAQUE


def opaque(position: int, name: str) -> Capture:
    """Capture an argument as-is under input.any."""
    return Capture(position=position, name=name, kind=CaptureKind.OPAQUE)


def candidate_list(position: int, name: str) -> Capture:
    """Capture a candidate-list argument, converted into input.candidates."""
    return Capture(position=position, name=name, kind=CaptureKind.CANDIDATE_LIST)


def snapshot(value: Any) -> Any:
    """Copy nested dict, list, tuple and set containers; other values are shared.

    Captured arguments are snapshotted at call time so an operation that
    sorts or edits its argument in place cannot rewrite its recorded input.
    """
    if isinstance(value, Mapping):
        return {key: snapshot(item) for key, item in value.items()}
    if isinstance(value, list):
        return [snapshot(item) for item in value]
    if type(value) is tuple:
        return tuple(snapshot(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return type(value)(value)
    return value


@dataclass(frozen=True)
class _BoundCapture:
    capture: Capture
    arg_index: int
    parameter: str | None


@dataclass(frozen=True)
class CapturedArguments:
    """Arguments read for one call.

    opaque: Opaque captures by semantic name
    candidates: The raw candidate-list argument, if one was declared
    candidate_name: Semantic name of the candidate-list capture
    """

    opaque: dict[str, Any]
    candidates: Any = None
    candidate_name: str | None = None


class CaptureDescriptor:
    """Resolved, immutable capture set for one stage operation.

    Example:
        descriptor = CaptureDescriptor.build(
            fn, [opaque(0, "product"), candidate_list(1, "candidates")]
        )
        captured = descriptor.read(args, kwargs)
    """

    def __init__(self, bound: Sequence[_BoundCapture]) -> None:
        self._bound = tuple(bound)

    @classmethod
    def build(
        cls,
        fn: Callable[..., Any],
        captures: Iterable[Capture],
    ) -> "CaptureDescriptor":
        """Validate captures against fn's signature.

        Raises:
            CaptureConfigError: On negative or duplicate positions, duplicate
                names, or more than one candidate-list capture
        """
        captures = list(captures)
        positions = [c.position for c in captures]
        names = [c.name for c in captures]
        if any(p < 0 for p in positions):
            raise CaptureConfigError(f"Capture positions must be >= 0, got {positions}")
        if len(set(positions)) != len(positions):
            raise CaptureConfigError(f"Duplicate capture positions: {positions}")
        if len(set(names)) != len(names):
            raise CaptureConfigError(f"Duplicate capture names: {names}")
        if sum(1 for c in captures if c.kind == CaptureKind.CANDIDATE_LIST) > 1:
            raise CaptureConfigError("At most one candidate-list capture per stage")

        parameters = _positional_parameters(fn)
        bound = []
        for c in sorted(captures, key=lambda c: c.position):
            # +1 skips the pipeline instance
            arg_index = c.position + 1
            parameter = parameters[arg_index] if arg_index < len(parameters) else None
            bound.append(_BoundCapture(capture=c, arg_index=arg_index, parameter=parameter))
        return cls(bound)

    @property
    def captures(self) -> tuple[Capture, ...]:
        return tuple(b.capture for b in self._bound)

    @property
    def candidate_capture(self) -> Capture | None:
        for b in self._bound:
            if b.capture.kind == CaptureKind.CANDIDATE_LIST:
                return b.capture
        return None

    @property
    def has_opaque(self) -> bool:
        return any(b.capture.kind == CaptureKind.OPAQUE for b in self._bound)

    def read(
        self,
        args: Sequence[Any],
        kwargs: Mapping[str, Any],
        *,
        all_opaque: bool = False,
    ) -> CapturedArguments:
        """Read and snapshot declared arguments from one call.

        Arguments that were not supplied (defaults) are captured as None.

        Args:
            args: Positional arguments, including the pipeline instance
            kwargs: Keyword arguments
            all_opaque: Treat candidate-list captures as opaque (raw stages)
        """
        opaque_values: dict[str, Any] = {}
        candidates: Any = None
        candidate_name: str | None = None
        for b in self._bound:
            value: Any = None
            if b.arg_index < len(args):
                value = args[b.arg_index]
            elif b.parameter is not None:
                value = kwargs.get(b.parameter)

            value = snapshot(value)
            if b.capture.kind == CaptureKind.CANDIDATE_LIST and not all_opaque:
                candidates = value
                candidate_name = b.capture.name
            else:
                opaque_values[b.capture.name] = value
        return CapturedArguments(
            opaque=opaque_values,
            candidates=candidates,
            candidate_name=candidate_name,
        )


def _positional_parameters(fn: Callable[..., Any]) -> list[str]:
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return []
    return [
        p.name
        for p in signature.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
    ]
