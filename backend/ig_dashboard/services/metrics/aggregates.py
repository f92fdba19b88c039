"""
Dashboard aggregates
メディア種別の内訳・ストーリーズ集計・欠損メッセージなど、画面上部のサマリ値
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .normalizer import NormalizedMedia, as_number

STORY_TOTAL_FIELDS = ("views", "reach", "replies", "exits", "taps_forward", "taps_back")

MESSAGE_INSIGHTS_LIMIT = "INSIGHTS_LIMIT"
MESSAGE_PARTIAL_METRICS = "PARTIAL_METRICS"


def _media_type(item: NormalizedMedia) -> str:
    return str(item.media.get("media_type") or "UNKNOWN").upper()


def media_type_distribution(items: Sequence[NormalizedMedia]) -> Dict[str, int]:
    """media_type ごとの件数"""
    distribution: Dict[str, int] = OrderedDict()
    for item in items:
        key = _media_type(item)
        distribution[key] = distribution.get(key, 0) + 1
    return dict(distribution)


def sum_canonical(items: Sequence[NormalizedMedia], name: str) -> Optional[float]:
    """
    正規メトリクス・派生指標の合計

    全件で値が不明な場合は 0 ではなく None を返す。
    """
    values = [item.metrics.value(name) for item in items]
    known = [v for v in values if v is not None]
    if not known:
        return None
    return sum(known)


def engagement_by_media_type(items: Sequence[NormalizedMedia]) -> Dict[str, Dict[str, Any]]:
    """メディア種別ごとの件数・合計エンゲージメント・平均エンゲージメント率"""
    groups: Dict[str, List[NormalizedMedia]] = OrderedDict()
    for item in items:
        groups.setdefault(_media_type(item), []).append(item)

    result: Dict[str, Dict[str, Any]] = {}
    for key, group in groups.items():
        rates = [
            item.metrics.derived.engagement_rate
            for item in group
            if item.metrics.derived.engagement_rate is not None
        ]
        result[key] = {
            "count": len(group),
            "total_engagement": sum(item.metrics.derived.engagement for item in group),
            "avg_engagement_rate": sum(rates) / len(rates) if rates else None,
        }
    return result


def aggregate_stories(stories: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    ストーリーズの合計値

    stories は insights（RawMetricBag）を持つ辞書。views は views / impressions の順で採用。
    """
    totals = {name: 0 for name in STORY_TOTAL_FIELDS}
    for story in stories:
        raw = story.get("insights") or {}
        for name in STORY_TOTAL_FIELDS:
            if name == "views":
                value = as_number(raw.get("views"))
                if value is None:
                    value = as_number(raw.get("impressions"))
            else:
                value = as_number(raw.get(name))
            totals[name] += value or 0

    avg_completion_rate = None
    if totals["views"] > 0:
        avg_completion_rate = round((1 - totals["exits"] / totals["views"]) * 100)

    return {
        "total_stories": len(stories),
        **{f"total_{name}": value for name, value in totals.items()},
        "total_impressions": totals["views"],
        "avg_completion_rate": avg_completion_rate,
    }


def build_messages(
    total_media: int,
    max_insights_posts: int,
    items: Sequence[NormalizedMedia],
) -> List[str]:
    """利用者に表示する注意メッセージ"""
    messages: List[str] = []
    if total_media > max_insights_posts:
        messages.append(
            f"{MESSAGE_INSIGHTS_LIMIT}: insights were fetched for the latest "
            f"{max_insights_posts} of {total_media} posts"
        )

    partial = sum(
        1
        for item in items
        if item.metrics.partialness.is_partial or not item.metrics.partialness.has_insights
    )
    if partial > 0:
        messages.append(
            f"{MESSAGE_PARTIAL_METRICS}: {partial} items have missing or unavailable metrics"
        )
    return messages
