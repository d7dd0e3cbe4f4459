"""Candidate normalization: arbitrary stage values to candidate records.

All functions are pure. They never filter or reorder: output position i
always corresponds to input item i.

Id resolution (used by every converter): when the item has the id
field, its value is the id; otherwise the item's 0-based position is.

Fields are given either as a name or as an accessor callable. A name
reads a mapping key, or an attribute for non-mapping items (dataclasses,
pydantic models, plain objects). Accessors return MISSING when the
field is absent - presence rules test against MISSING, never None.
"""

import math
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pipetrace.contracts.errors import (
    InvalidScoreError,
    InvalidShapeError,
    MissingFieldError,
)
from pipetrace.contracts.trace import (
    Candidate,
    CandidateId,
    FilteredCandidate,
    GeneratedCandidate,
    ScoredCandidate,
)


class _Missing:
    """Sentinel for an absent field."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

Accessor = Callable[[Any], Any]
FieldSpec = str | Accessor


def field_accessor(field: FieldSpec) -> Accessor:
    """Build an accessor for a field name, or return a callable unchanged."""
    if callable(field):
        return field

    def get(item: Any) -> Any:
        if isinstance(item, Mapping):
            return item[field] if field in item else MISSING
        return getattr(item, field, MISSING)

    get.__name__ = field
    return get


def field_name(field: FieldSpec) -> str:
    """Human-readable name of a field spec, for error messages."""
    if isinstance(field, str):
        return field
    return getattr(field, "__name__", repr(field))


def require_list(value: Any, what: str = "value") -> Sequence[Any]:
    """Check that value is a list (or tuple) of items.

    Raises:
        InvalidShapeError: For anything else, including str and dict
    """
    if not isinstance(value, (list, tuple)):
        raise InvalidShapeError(what, value)
    return value


def _resolve_id(value: Any, index: int) -> CandidateId:
    # A present-but-null id counts as absent so the id is never None
    if value is MISSING or value is None:
        return index
    return value  # type: ignore[no-any-return]


def _coerce_score(value: Any, field: str, index: int) -> float:
    if value is MISSING or value is None:
        raise InvalidScoreError(field, index, None)
    try:
        score = float(value)
    except (TypeError, ValueError) as e:
        raise InvalidScoreError(field, index, value) from e
    if not math.isfinite(score):
        raise InvalidScoreError(field, index, value)
    return score


def _optional_text(value: Any) -> str | None:
    if value is MISSING or value is None:
        return None
    return value if isinstance(value, str) else str(value)


def to_candidates(
    items: Any,
    id_field: FieldSpec = "id",
    *,
    what: str = "value",
) -> list[Candidate[Any]]:
    """Wrap each item as a Candidate with a resolved id.

    Raises:
        InvalidShapeError: If items is not a list
    """
    get_id = field_accessor(id_field)
    return [
        Candidate(candidate=item, id=_resolve_id(get_id(item), index))
        for index, item in enumerate(require_list(items, what))
    ]


def to_scored_candidates(
    items: Any,
    id_field: FieldSpec,
    score_field: FieldSpec,
    *,
    what: str = "value",
) -> list[ScoredCandidate[Any]]:
    """Wrap each item as a ScoredCandidate.

    Scores are coerced with float(). Missing, None, unparseable and
    non-finite scores are hard errors, never defaulted.

    Raises:
        InvalidShapeError: If items is not a list
        InvalidScoreError: Naming the first offending index
    """
    get_id = field_accessor(id_field)
    get_score = field_accessor(score_field)
    score_name = field_name(score_field)
    return [
        ScoredCandidate(
            candidate=item,
            id=_resolve_id(get_id(item), index),
            score=_coerce_score(get_score(item), score_name, index),
        )
        for index, item in enumerate(require_list(items, what))
    ]


def to_filtered_candidates(
    items: Any,
    id_field: FieldSpec,
    passed_field: FieldSpec,
    reason_label_field: FieldSpec | None = None,
    reason_text_field: FieldSpec | None = None,
    *,
    what: str = "value",
) -> list[FilteredCandidate[Any]]:
    """Wrap each item as a FilteredCandidate.

    Unlike the other converters the id field is mandatory here: a
    filter verdict must be attributable to a specific candidate. A
    configured reason field is a commitment that it exists on every item.

    Raises:
        InvalidShapeError: If items is not a list
        MissingFieldError: Naming the field and index of the first absence
    """
    required: list[tuple[str, Accessor]] = [
        (field_name(id_field), field_accessor(id_field)),
        (field_name(passed_field), field_accessor(passed_field)),
    ]
    optional: list[tuple[str, Accessor] | None] = [
        (field_name(f), field_accessor(f)) if f is not None else None
        for f in (reason_label_field, reason_text_field)
    ]

    result: list[FilteredCandidate[Any]] = []
    for index, item in enumerate(require_list(items, what)):
        values: list[Any] = []
        for name, get in required:
            value = get(item)
            if value is MISSING:
                raise MissingFieldError(name, index)
            values.append(value)

        reasons: list[str | None] = []
        for spec in optional:
            if spec is None:
                reasons.append(None)
                continue
            name, get = spec
            value = get(item)
            if value is MISSING:
                raise MissingFieldError(name, index)
            reasons.append(_optional_text(value))

        item_id, passed = values
        result.append(
            FilteredCandidate(
                candidate=item,
                id=_resolve_id(item_id, index),
                passed=bool(passed),
                reason_label=reasons[0],
                reason_text=reasons[1],
            )
        )
    return result


def to_generated_candidates(
    items: Any,
    reason_text_field: FieldSpec | None = None,
    *,
    what: str = "value",
) -> list[GeneratedCandidate[Any]]:
    """Wrap each generated item. Reason text is optional per item.

    Raises:
        InvalidShapeError: If items is not a list
    """
    get_reason = field_accessor(reason_text_field) if reason_text_field is not None else None
    return [
        GeneratedCandidate(
            candidate=item,
            reason_text=_optional_text(get_reason(item)) if get_reason else None,
        )
        for item in require_list(items, what)
    ]
