"""Report parameter coercion.

The report execution endpoint only accepts strings and arrays of strings,
so every input-control value is converted before it goes on the wire.
"""

from __future__ import annotations

import json
import math
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

from .errors import create_internal_error

_OMIT = object()


def format_timestamp(value: date | datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2023-01-01T00:00:00.000Z."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _format_number(value: int | float | Decimal) -> str:
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return format_timestamp(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _transform_value(key: str, value: Any, seen: Optional[set[int]] = None) -> Any:
    if value is None:
        return _OMIT
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return _format_number(value)
    if isinstance(value, (datetime, date)):
        return format_timestamp(value)
    if isinstance(value, (list, tuple)):
        seen = set() if seen is None else seen
        if id(value) in seen:
            raise create_internal_error(
                f"Circular structure in report parameter '{key}'",
                {"parameter": key},
            )
        seen.add(id(value))
        items = [_transform_value(key, item, seen) for item in value]
        seen.discard(id(value))
        return [item for item in items if item is not _OMIT]
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=_json_default)
    except (TypeError, ValueError) as exc:
        raise create_internal_error(
            f"Report parameter '{key}' could not be serialized: {exc}",
            {"parameter": key, "type": type(value).__name__},
        ) from exc


def transform_parameters(parameters: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Convert parameter values into the scalar/array string shapes the server accepts.

    ``None`` values are dropped, lists keep their shape (multi-select
    controls), anything structured becomes a compact JSON string.
    """
    if not parameters:
        return {}

    transformed: dict[str, Any] = {}
    for key, value in parameters.items():
        result = _transform_value(str(key), value)
        if result is not _OMIT:
            transformed[str(key)] = result
    return transformed
