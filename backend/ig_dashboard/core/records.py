from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Optional


class Record(dict):
    """Row object returned by the repositories (row.account_id, row.media_id, ...)."""

    def __getattr__(self, key: str) -> Any:
        try:
            return self[key]
        except KeyError as e:
            raise AttributeError(key) from e

    def __setattr__(self, key: str, value: Any) -> None:
        self[key] = value


def to_record(row: Optional[Mapping[str, Any]]) -> Optional[Record]:
    if row is None:
        return None
    return Record(row)


def to_records(rows: Iterable[Mapping[str, Any]]) -> List[Record]:
    return [Record(r) for r in rows]


def public_fields(row: Mapping[str, Any], hidden: Iterable[str]) -> Record:
    """Copy of a row without secret columns (access tokens etc.)."""
    hidden_keys = set(hidden)
    return Record({k: v for k, v in row.items() if k not in hidden_keys})
