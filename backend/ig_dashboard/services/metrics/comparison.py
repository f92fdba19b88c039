"""
Period comparison
期間比較（変化量・変化率）
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .normalizer import Number, as_number

# 前期間が 0 で今期間が正の場合の変化率（「新規」を表す表示上の値で、数学的な比率ではない）
NEW_FROM_ZERO_PERCENT = 100


@dataclass(frozen=True)
class ComparisonResult:
    current: Number
    previous: Number
    change: Number
    change_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def compare_periods(current: Number, previous: Number) -> ComparisonResult:
    """
    2期間の値を比較

    previous が 0 のときは current > 0 なら 100、それ以外は 0 を change_percent とする。
    """
    change = current - previous
    if previous > 0:
        change_percent = change / previous * 100
    elif current > 0:
        change_percent = NEW_FROM_ZERO_PERCENT
    else:
        change_percent = 0
    return ComparisonResult(
        current=current,
        previous=previous,
        change=change,
        change_percent=change_percent,
    )


def previous_period(since: date, until: date) -> Tuple[date, date]:
    """同じ日数で直前の期間（since / until とも含む）"""
    if until < since:
        raise ValueError(f"until ({until}) must not be before since ({since})")
    length = (until - since).days + 1
    previous_until = since - timedelta(days=1)
    previous_since = previous_until - timedelta(days=length - 1)
    return previous_since, previous_until


def sum_daily_rows(rows: Iterable[Mapping[str, Any]], metrics: Sequence[str]) -> Dict[str, Number]:
    """日次行の合計（数値でない・欠損値は 0 扱い）"""
    totals: Dict[str, Number] = {name: 0 for name in metrics}
    for row in rows:
        for name in metrics:
            totals[name] += as_number(row.get(name)) or 0
    return totals


def compare_totals(
    current: Mapping[str, Optional[Number]],
    previous: Mapping[str, Optional[Number]],
    metrics: Sequence[str],
) -> Dict[str, ComparisonResult]:
    return {
        name: compare_periods(current.get(name) or 0, previous.get(name) or 0)
        for name in metrics
    }
