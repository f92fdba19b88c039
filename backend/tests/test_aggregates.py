from ig_dashboard.services.metrics.aggregates import (
    aggregate_stories,
    build_messages,
    engagement_by_media_type,
    media_type_distribution,
    sum_canonical,
)
from ig_dashboard.services.metrics.normalizer import normalize_media

from fakes import make_media


def test_media_type_distribution():
    items = [
        normalize_media(make_media("1", "IMAGE"), {}),
        normalize_media(make_media("2", "VIDEO", "REELS"), {}),
        normalize_media(make_media("3", "IMAGE"), {}),
        normalize_media({"id": "4"}, {}),
    ]
    assert media_type_distribution(items) == {"IMAGE": 2, "VIDEO": 1, "UNKNOWN": 1}


def test_sum_canonical_ignores_unknown_values():
    items = [
        normalize_media(make_media("1"), {"reach": 10}),
        normalize_media(make_media("2"), {}),
        normalize_media(make_media("3"), {"reach": 5}),
    ]
    assert sum_canonical(items, "reach") == 15
    assert sum_canonical(items, "views") is None


def test_engagement_by_media_type():
    items = [
        normalize_media(make_media("1", "IMAGE", likes=10, comments=0), {}, followers_count=100),
        normalize_media(make_media("2", "IMAGE", likes=30, comments=0), {}, followers_count=100),
        normalize_media(make_media("3", "VIDEO", likes=5, comments=0), {}),
    ]
    result = engagement_by_media_type(items)
    assert result["IMAGE"] == {"count": 2, "total_engagement": 40, "avg_engagement_rate": 20.0}
    assert result["VIDEO"]["avg_engagement_rate"] is None


def test_aggregate_stories():
    stories = [
        {"id": "s1", "insights": {"views": 100, "reach": 80, "exits": 10, "replies": 1, "taps_forward": 20}},
        {"id": "s2", "insights": {"impressions": 100, "reach": 70, "exits": 30, "taps_back": 4}},
        {"id": "s3"},
    ]
    result = aggregate_stories(stories)
    assert result["total_stories"] == 3
    assert result["total_views"] == 200
    assert result["total_impressions"] == 200
    assert result["total_reach"] == 150
    assert result["total_exits"] == 40
    assert result["total_replies"] == 1
    assert result["total_taps_forward"] == 20
    assert result["total_taps_back"] == 4
    assert result["avg_completion_rate"] == 80


def test_aggregate_stories_without_views():
    assert aggregate_stories([])["avg_completion_rate"] is None


def test_messages():
    items = [
        normalize_media(make_media("1"), {"views": 1, "reach": 1, "saved": 1, "shares": 1}),
        normalize_media(make_media("2"), {"reach": 1}),
        normalize_media(make_media("3"), {}),
    ]
    messages = build_messages(total_media=250, max_insights_posts=200, items=items)
    assert messages[0].startswith("INSIGHTS_LIMIT:")
    assert messages[1].startswith("PARTIAL_METRICS: 2 items")


def test_no_messages_when_complete():
    items = [normalize_media(make_media("1"), {"views": 1, "reach": 1, "saved": 1, "shares": 1})]
    assert build_messages(total_media=1, max_insights_posts=200, items=items) == []
