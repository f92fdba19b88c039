"""
Metric Normalizer
Graph API のバージョン・トークン種別・コンテンツ種別ごとに異なるメトリクス名を
正規名（views / reach / saves / shares / total_interactions）へ揃え、
派生指標（エンゲージメント、スコア、各種レート）と欠損情報を算出します。

I/O は行わず、入力も変更しない純粋関数のみで構成しています。
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from ...schemas.graph_schema import InsightsResponse

logger = logging.getLogger(__name__)

Number = Union[int, float]
RawMetricBag = Dict[str, Number]


class ContentKind(str, Enum):
    """コンテンツ種別"""
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    CAROUSEL = "CAROUSEL"
    STORY = "STORY"


REEL_PRODUCT_TYPES = frozenset({"REELS", "REEL"})

# 正規名 -> 優先順のエイリアス（先に見つかった値を採用し、合算・平均はしない）
# 過去データとの比較が崩れないよう、順序は固定
METRIC_ALIASES: Dict[str, Tuple[str, ...]] = {
    "views": ("views", "plays", "video_views", "impressions"),
    "reach": ("reach",),
    "saves": ("saved", "saves"),
    "shares": ("shares",),
    "total_interactions": ("total_interactions", "engagement"),
}

# 全コンテンツ種別で期待する正規メトリクス（missing_metrics の並び順）
EXPECTED_METRICS: Tuple[str, ...] = ("saves", "shares", "reach", "views")

# コンテンツ種別ごとにリクエストするメトリクスの組み合わせ（完全なもの → 最小限）
# 無効なメトリクス名を含むと Graph API はリクエスト全体をエラーにするため、順に試す
_STORY_CANDIDATES = [
    "views,reach,replies,exits,taps_forward,taps_back",
    "impressions,reach,replies,exits,taps_forward,taps_back",
]
_CAROUSEL_CANDIDATES = [
    "views,reach,saved,shares,total_interactions",
    "views,reach,saved,total_interactions",
    "views,reach,saved,shares",
    "views,reach,saved",
    "reach,saved,total_interactions",
    "reach,saved,shares",
    "reach,saved",
    "reach",
]
_REEL_CANDIDATES = [
    "plays,reach,saved,shares,total_interactions",
    "video_views,reach,saved,shares,total_interactions",
    "views,reach,saved,shares,total_interactions",
    "plays,reach,saved,shares",
    "video_views,reach,saved,shares",
    "views,reach,saved,shares",
    "plays,reach,saved",
    "video_views,reach,saved",
    "views,reach,saved",
    "plays,reach",
    "video_views,reach",
    "views,reach",
    "reach,saved,shares",
    "reach,saved",
    "reach",
]
_VIDEO_CANDIDATES = [
    "video_views,reach,saved,shares,total_interactions",
    "views,reach,saved,shares,total_interactions",
    "video_views,reach,saved,total_interactions",
    "views,reach,saved,total_interactions",
    "video_views,reach,saved,shares",
    "views,reach,saved,shares",
    "video_views,reach,saved",
    "views,reach,saved",
    "video_views,reach",
    "views,reach",
    "reach,saved,shares",
    "reach,saved",
    "reach",
]
_IMAGE_CANDIDATES = [
    "views,reach,saved,shares,total_interactions",
    "views,reach,saved,total_interactions",
    "views,reach,saved,shares",
    "views,reach,saved",
    "views,reach",
    "reach,saved,shares",
    "reach,saved",
    "reach",
]


def as_number(value: Any) -> Optional[Number]:
    """有限な数値のみを返す（bool・NaN・Infinity・文字列は None）"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return value
    return None


def _count(value: Any) -> Number:
    number = as_number(value)
    if number is None or number < 0:
        return 0
    return number


@dataclass(frozen=True)
class ContentDescriptor:
    """正規化に必要なコンテンツ属性（likes / comments はメディアオブジェクト側の値）"""
    kind: ContentKind
    is_reel: bool = False
    likes: Number = 0
    comments: Number = 0

    @classmethod
    def from_media(cls, media: Mapping[str, Any]) -> "ContentDescriptor":
        media_type = str(media.get("media_type") or "").upper()
        product_type = str(media.get("media_product_type") or "").upper()

        if media_type == "STORY" or product_type == "STORY":
            kind = ContentKind.STORY
        elif media_type == "CAROUSEL_ALBUM":
            kind = ContentKind.CAROUSEL
        elif media_type == "VIDEO":
            kind = ContentKind.VIDEO
        else:
            kind = ContentKind.IMAGE

        return cls(
            kind=kind,
            is_reel=product_type in REEL_PRODUCT_TYPES,
            likes=_count(media.get("like_count")),
            comments=_count(media.get("comments_count")),
        )

    @classmethod
    def for_story(cls, story: Mapping[str, Any]) -> "ContentDescriptor":
        # /stories エンドポイントは media_type に IMAGE / VIDEO を返すため種別を明示する
        return cls(
            kind=ContentKind.STORY,
            likes=_count(story.get("like_count")),
            comments=_count(story.get("comments_count")),
        )


@dataclass(frozen=True)
class ScoreWeights:
    """「トップコンテンツ」ランキング用の重み（計測値ではなく編集上の方針）"""
    likes: Number = 1
    comments: Number = 2
    saves: Number = 3
    shares: Number = 4


DEFAULT_SCORE_WEIGHTS = ScoreWeights()


@dataclass(frozen=True)
class CanonicalMetrics:
    views: Optional[Number]
    reach: Optional[Number]
    saves: Optional[Number]
    shares: Optional[Number]
    total_interactions: Optional[Number]
    views_source: Optional[str] = None
    raw: Mapping[str, Number] = field(default_factory=dict)

    def get(self, name: str) -> Optional[Number]:
        return getattr(self, name)


@dataclass(frozen=True)
class DerivedMetrics:
    likes: Number
    comments: Number
    engagement: Number
    score: Number
    engagement_rate: Optional[float]
    reach_rate: Optional[float]
    views_rate: Optional[float]
    interactions_per_1000_reach: Optional[float]
    completion_rate: Optional[int] = None


@dataclass(frozen=True)
class PartialnessFlag:
    is_partial: bool
    missing_metrics: Tuple[str, ...]
    has_insights: bool


@dataclass(frozen=True)
class NormalizedMetrics:
    canonical: CanonicalMetrics
    derived: DerivedMetrics
    partialness: PartialnessFlag

    def value(self, name: str) -> Optional[Number]:
        """ランキング等で使う値を正規メトリクス・派生指標から名前で取得"""
        if name in METRIC_ALIASES:
            return self.canonical.get(name)
        return getattr(self.derived, name)

    def to_dict(self) -> Dict[str, Any]:
        c, d, p = self.canonical, self.derived, self.partialness
        return {
            "likes": d.likes,
            "comments": d.comments,
            "saves": c.saves,
            "shares": c.shares,
            "reach": c.reach,
            "views": c.views,
            "views_source": c.views_source,
            "total_interactions": c.total_interactions,
            "engagement": d.engagement,
            "score": d.score,
            "engagement_rate": d.engagement_rate,
            "reach_rate": d.reach_rate,
            "views_rate": d.views_rate,
            "interactions_per_1000_reach": d.interactions_per_1000_reach,
            "completion_rate": d.completion_rate,
            "has_insights": p.has_insights,
            "is_partial": p.is_partial,
            "missing_metrics": list(p.missing_metrics),
        }


@dataclass(frozen=True)
class NormalizedMedia:
    """プロバイダのメディアオブジェクトと正規化結果の組"""
    media: Mapping[str, Any]
    metrics: NormalizedMetrics

    @property
    def media_id(self) -> Optional[str]:
        return self.media.get("id")

    @property
    def is_reel(self) -> bool:
        return str(self.media.get("media_product_type") or "").upper() in REEL_PRODUCT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in self.media.items() if k not in ("insights", "computed")}
        # insights は受信したキーのまま保持（エクスポート・将来のメトリクス追加用）
        data["insights"] = dict(self.metrics.canonical.raw)
        data["computed"] = self.metrics.to_dict()
        return data


def parse_raw_metric_bag(payload: Any, context: str = "") -> RawMetricBag:
    """
    Graph API の insights レスポンスを RawMetricBag に変換

    各メトリクスは values の最後の値（なければ total_value）を採用し、
    数値でない値は捨てる。想定外の形はログに残して空の bag を返す。
    """
    where = f" ({context})" if context else ""
    if not isinstance(payload, Mapping):
        logger.warning(f"Unexpected insights payload type{where}: {type(payload).__name__}")
        return {}

    try:
        response = InsightsResponse.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Unexpected insights payload shape{where}: {e.error_count()} validation errors")
        return {}

    bag: RawMetricBag = {}
    for entry in response.data:
        if entry.values:
            value = as_number(entry.values[-1].value)
        elif entry.total_value is not None:
            value = as_number(entry.total_value.value)
        else:
            value = None

        if value is None:
            logger.debug(f"Ignoring metric without numeric value{where}: {entry.name}")
            continue
        bag[entry.name] = value
    return bag


def insight_metric_candidates(descriptor: ContentDescriptor) -> List[str]:
    """コンテンツ種別ごとのメトリクス組み合わせ（優先順）"""
    if descriptor.kind == ContentKind.STORY:
        return list(_STORY_CANDIDATES)
    if descriptor.kind == ContentKind.CAROUSEL:
        return list(_CAROUSEL_CANDIDATES)
    if descriptor.is_reel:
        return list(_REEL_CANDIDATES)
    if descriptor.kind == ContentKind.VIDEO:
        return list(_VIDEO_CANDIDATES)
    return list(_IMAGE_CANDIDATES)


def pick_metric(raw: Mapping[str, Any], aliases: Tuple[str, ...]) -> Tuple[Optional[Number], Optional[str]]:
    """エイリアスを順に見て最初に存在する値と、そのキー名を返す"""
    for key in aliases:
        value = as_number(raw.get(key))
        if value is not None:
            return value, key
    return None, None


def expected_metrics(descriptor: ContentDescriptor) -> Tuple[str, ...]:
    # views は現行 API では全種別で取得可能なため、種別による除外はない
    return EXPECTED_METRICS


def _finite_total(value: Number, name: str) -> Number:
    if not math.isfinite(value):
        logger.warning(f"Non-finite {name} total ({value}), using 0")
        return 0
    return value


def _rate(numerator: Optional[Number], denominator: Optional[Number], scale: Number) -> Optional[float]:
    if numerator is None or denominator is None or denominator <= 0:
        return None
    result = numerator * scale / denominator
    if not math.isfinite(result):
        return None
    return result


def resolve_canonical(raw_bag: Optional[Mapping[str, Any]]) -> CanonicalMetrics:
    raw = dict(raw_bag or {})
    views, views_source = pick_metric(raw, METRIC_ALIASES["views"])
    reach, _ = pick_metric(raw, METRIC_ALIASES["reach"])
    saves, _ = pick_metric(raw, METRIC_ALIASES["saves"])
    shares, _ = pick_metric(raw, METRIC_ALIASES["shares"])
    total_interactions, _ = pick_metric(raw, METRIC_ALIASES["total_interactions"])
    return CanonicalMetrics(
        views=views,
        reach=reach,
        saves=saves,
        shares=shares,
        total_interactions=total_interactions,
        views_source=views_source,
        raw=raw,
    )


def derive_metrics(
    canonical: CanonicalMetrics,
    descriptor: ContentDescriptor,
    followers_count: Optional[Any] = None,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
) -> DerivedMetrics:
    """派生指標の算出（合計では None を 0 扱い、比率では None を伝播）"""
    likes = descriptor.likes
    comments = descriptor.comments
    # canonical の値はそのまま保持し、合計には非負の値のみ使う
    saves = _count(canonical.saves)
    shares = _count(canonical.shares)

    engagement = _finite_total(likes + comments + saves + shares, "engagement")
    score = _finite_total(
        likes * weights.likes
        + comments * weights.comments
        + saves * weights.saves
        + shares * weights.shares,
        "score",
    )

    followers = as_number(followers_count)
    if followers is not None and followers <= 0:
        followers = None

    completion_rate = None
    if descriptor.kind == ContentKind.STORY:
        views = canonical.views
        if views is not None and views > 0:
            exits = as_number(canonical.raw.get("exits")) or 0
            completion_rate = round((1 - exits / views) * 100)

    return DerivedMetrics(
        likes=likes,
        comments=comments,
        engagement=engagement,
        score=score,
        engagement_rate=_rate(engagement, followers, 100),
        reach_rate=_rate(canonical.reach, followers, 100),
        views_rate=_rate(canonical.views, canonical.reach, 100),
        interactions_per_1000_reach=_rate(engagement, canonical.reach, 1000),
        completion_rate=completion_rate,
    )


def assess_partialness(canonical: CanonicalMetrics, descriptor: ContentDescriptor) -> PartialnessFlag:
    missing = tuple(name for name in expected_metrics(descriptor) if canonical.get(name) is None)
    return PartialnessFlag(
        is_partial=len(missing) > 0,
        missing_metrics=missing,
        has_insights=len(canonical.raw) > 0,
    )


def normalize(
    raw_bag: Optional[Mapping[str, Any]],
    descriptor: ContentDescriptor,
    followers_count: Optional[Any] = None,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
) -> NormalizedMetrics:
    """1コンテンツ分のメトリクスを正規化"""
    canonical = resolve_canonical(raw_bag)
    return NormalizedMetrics(
        canonical=canonical,
        derived=derive_metrics(canonical, descriptor, followers_count, weights),
        partialness=assess_partialness(canonical, descriptor),
    )


def normalize_media(
    media: Mapping[str, Any],
    raw_bag: Optional[Mapping[str, Any]],
    followers_count: Optional[Any] = None,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
    descriptor: Optional[ContentDescriptor] = None,
) -> NormalizedMedia:
    descriptor = descriptor or ContentDescriptor.from_media(media)
    return NormalizedMedia(media=media, metrics=normalize(raw_bag, descriptor, followers_count, weights))
