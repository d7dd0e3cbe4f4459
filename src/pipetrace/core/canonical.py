# src/pipetrace/core/canonical.py
"""JSON-safe conversion and canonical serialization of trace payloads.

Opaque stage payloads are whatever the instrumented code passed around:
numpy scalars and arrays, pandas timestamps, dataclasses, pydantic
models. to_json_safe() reduces them to plain JSON values before a trace
leaves the process or lands in a JSON column. canonical_json() then
renders RFC 8785 (JCS) text via the rfc8785 package, so equal traces
always produce byte-identical request bodies.

NaN policy:
- strict (default): non-finite floats raise ValueError. Derived
  metrics, scores and whole documents are converted this way.
- lenient (strict=False): non-finite floats become None. Used only for
  application payloads: candidate values and input/output "any".
"""

import dataclasses
import math
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

import numpy as np
import pandas as pd
import rfc8785
from pydantic import BaseModel


def _finite(value: float, strict: bool) -> float | None:
    if math.isnan(value) or math.isinf(value):
        if not strict:
            return None
        raise ValueError(f"Trace payload contains non-finite number {value!r}; use None instead")
    return float(value)


def _scalar(obj: Any, strict: bool = True) -> Any:
    """JSON form of a leaf value, or the value itself when already plain."""
    # bool before int: bool is an int subclass
    if obj is None or isinstance(obj, (bool, str)):
        return obj
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, (int, np.integer)):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        return _finite(obj, strict)
    if obj is pd.NaT or obj is pd.NA:
        return None
    if isinstance(obj, pd.Timestamp):
        stamp = obj.tz_localize("UTC") if obj.tz is None else obj.tz_convert("UTC")
        return stamp.isoformat()
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return obj


def to_json_safe(obj: Any, *, strict: bool = True) -> Any:
    """Recursively convert a payload to JSON-safe values.

    Mapping keys become strings; sequences, sets and arrays become lists.
    Anything left without a JSON form is rendered with str().

    Args:
        obj: Payload to convert
        strict: Raise on NaN and infinity; when False they become None

    Raises:
        ValueError: If strict and any nested number is NaN or infinite
    """
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="python")
    elif dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        obj = {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    elif isinstance(obj, np.ndarray):
        obj = obj.tolist()

    if isinstance(obj, Mapping):
        return {str(key): to_json_safe(value, strict=strict) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [to_json_safe(item, strict=strict) for item in obj]

    value = _scalar(obj, strict)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def canonical_json(obj: Any) -> str:
    """RFC 8785 text for a payload.

    Raises:
        ValueError: If the payload contains NaN or infinity
    """
    return rfc8785.dumps(to_json_safe(obj)).decode("utf-8")
