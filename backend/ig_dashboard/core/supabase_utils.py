from __future__ import annotations

import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterator, List, Mapping, Optional, Sequence, TypeVar

T = TypeVar("T")


def raise_for_error(response: Any) -> None:
    """Raise a RuntimeError if the Supabase response carries an error."""
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(str(error))
    if isinstance(response, Mapping) and response.get("error"):
        raise RuntimeError(str(response["error"]))


def get_data(response: Any) -> List[dict]:
    """Extract row data from a Supabase response as a list of dicts."""
    data = getattr(response, "data", None)
    if data is None and isinstance(response, Mapping):
        data = response.get("data")
    if data is None:
        return []
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        return [data]
    return list(data)


def get_single_data(response: Any) -> Optional[dict]:
    """First row of a Supabase response, or None."""
    rows = get_data(response)
    return rows[0] if rows else None


def to_jsonable(value: Any) -> Any:
    """Convert values to something PostgREST accepts (ISO dates, plain numbers, no NaN)."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    return value


def prepare_record(data: Mapping[str, Any]) -> dict:
    """Prepare a dict for Supabase insert/update/upsert."""
    return {k: to_jsonable(v) for k, v in data.items()}


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Split rows into upsert batches."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]
