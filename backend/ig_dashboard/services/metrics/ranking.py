"""
Content ranking
正規化済みメディアの並び替えとトップコンテンツ抽出
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .normalizer import NormalizedMedia

logger = logging.getLogger(__name__)

RANKABLE_METRICS = ("score", "reach", "views", "engagement")

# 値が不明なコンテンツは既知の値（0 を含む）より下に並べる
UNKNOWN_SORT_VALUE = -1


def sort_value(item: NormalizedMedia, metric: str) -> float:
    value = item.metrics.value(metric)
    return UNKNOWN_SORT_VALUE if value is None else value


def rank_media(
    items: Sequence[NormalizedMedia],
    metric: str = "score",
    limit: Optional[int] = None,
) -> List[NormalizedMedia]:
    """
    指定メトリクスの降順で並べ替え

    同値の場合は入力順を維持する（安定ソート、第2キーなし）。
    """
    if metric not in RANKABLE_METRICS:
        raise ValueError(f"Unsupported ranking metric: {metric}")

    ranked = sorted(items, key=lambda item: sort_value(item, metric), reverse=True)
    if limit is not None:
        ranked = ranked[:max(0, limit)]
    return ranked


def build_top_content(
    items: Sequence[NormalizedMedia],
    limit: int = 20,
) -> Dict[str, List[NormalizedMedia]]:
    """投稿（リール以外）とリールそれぞれのトップコンテンツ"""
    posts = [item for item in items if not item.is_reel]
    reels = [item for item in items if item.is_reel]
    return {
        "top_posts_by_score": rank_media(posts, "score", limit),
        "top_posts_by_reach": rank_media(posts, "reach", limit),
        "top_reels_by_views": rank_media(reels, "views", limit),
        "top_reels_by_score": rank_media(reels, "score", limit),
    }


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = value.replace("Z", "+00:00")
    # Graph API は "+0000" 形式のオフセットを返す
    if len(text) > 5 and text[-5] in "+-" and text[-3] != ":":
        text = f"{text[:-2]}:{text[-2:]}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _resolve_zone(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{name}', falling back to UTC")
        return timezone.utc


def best_post_per_day(
    items: Sequence[NormalizedMedia],
    metric: str = "engagement",
    tz_name: str = "UTC",
) -> List[Dict[str, object]]:
    """
    アカウントのタイムゾーンでの日付ごとに最も成績の良い投稿を返す

    Returns:
        [{"date": "YYYY-MM-DD", "item": NormalizedMedia}, ...]（新しい日付順）
    """
    if metric not in RANKABLE_METRICS:
        raise ValueError(f"Unsupported ranking metric: {metric}")

    zone = _resolve_zone(tz_name)
    best: Dict[str, NormalizedMedia] = {}

    for item in items:
        posted_at = _parse_timestamp(item.media.get("timestamp"))
        if posted_at is None:
            continue
        day = posted_at.astimezone(zone).date().isoformat()
        current = best.get(day)
        if current is None or sort_value(item, metric) > sort_value(current, metric):
            best[day] = item

    return [{"date": day, "item": best[day]} for day in sorted(best, reverse=True)]
