import pytest

from ig_dashboard.services.metrics.normalizer import normalize_media
from ig_dashboard.services.metrics.ranking import best_post_per_day, build_top_content, rank_media

from fakes import make_media


def item(media_id, bag=None, media_type="IMAGE", product_type="FEED", likes=0, comments=0,
         timestamp="2024-03-10T15:00:00+0000"):
    media = make_media(media_id, media_type, product_type, likes=likes, comments=comments, timestamp=timestamp)
    return normalize_media(media, bag or {})


def ids(items):
    return [i.media_id for i in items]


def test_rank_by_score_descending():
    items = [item("a", likes=1), item("b", likes=5), item("c", likes=3)]
    assert ids(rank_media(items, "score")) == ["b", "c", "a"]


def test_ties_keep_input_order():
    items = [item("a", likes=2), item("b", likes=2), item("c", likes=2), item("d", likes=9)]
    assert ids(rank_media(items, "score")) == ["d", "a", "b", "c"]


def test_unknown_values_sort_below_zero():
    items = [item("unknown"), item("zero", {"reach": 0}), item("ten", {"reach": 10})]
    assert ids(rank_media(items, "reach")) == ["ten", "zero", "unknown"]


def test_limit():
    items = [item(str(n), likes=n) for n in range(30)]
    assert len(rank_media(items, "score", limit=20)) == 20


def test_unsupported_metric():
    with pytest.raises(ValueError):
        rank_media([], "likes_per_minute")


def test_build_top_content_splits_reels():
    items = [
        item("post", {"reach": 50}, likes=1),
        item("reel-low", {"plays": 10}, "VIDEO", "REELS", likes=9),
        item("reel-high", {"plays": 100}, "VIDEO", "REELS", likes=1),
        item("video", {"video_views": 500}, "VIDEO", "FEED"),
    ]
    top = build_top_content(items, limit=20)
    assert ids(top["top_posts_by_score"]) == ["post", "video"]
    assert ids(top["top_posts_by_reach"]) == ["post", "video"]
    assert ids(top["top_reels_by_views"]) == ["reel-high", "reel-low"]
    assert ids(top["top_reels_by_score"]) == ["reel-low", "reel-high"]


def test_best_post_per_day_uses_account_timezone():
    items = [
        # 2024-03-10 01:00 UTC は サンパウロ時間で 2024-03-09 22:00
        item("late", likes=5, timestamp="2024-03-10T01:00:00+0000"),
        item("day9", likes=3, timestamp="2024-03-09T15:00:00+0000"),
        item("day10-a", likes=1, timestamp="2024-03-10T15:00:00+0000"),
        item("day10-b", likes=1, timestamp="2024-03-10T18:00:00+0000"),
    ]
    best = best_post_per_day(items, "engagement", "America/Sao_Paulo")
    assert [(b["date"], b["item"].media_id) for b in best] == [
        ("2024-03-10", "day10-a"),
        ("2024-03-09", "late"),
    ]


def test_best_post_per_day_skips_items_without_timestamp():
    media = make_media("x")
    media["timestamp"] = None
    assert best_post_per_day([normalize_media(media, {})]) == []
