import math

import pytest

from ig_dashboard.services.metrics.normalizer import (
    ContentDescriptor,
    ContentKind,
    ScoreWeights,
    insight_metric_candidates,
    normalize,
    normalize_media,
    parse_raw_metric_bag,
)

from fakes import insights_payload, make_media

IMAGE = ContentDescriptor(kind=ContentKind.IMAGE, likes=10, comments=2)


class TestAliasResolution:
    def test_views_key_wins_over_plays(self):
        result = normalize({"views": 300, "plays": 999, "reach": 100}, IMAGE)
        assert result.canonical.views == 300
        assert result.canonical.views_source == "views"

    @pytest.mark.parametrize(
        "bag, expected, source",
        [
            ({"plays": 40, "video_views": 30, "impressions": 20}, 40, "plays"),
            ({"video_views": 30, "impressions": 20}, 30, "video_views"),
            ({"impressions": 20}, 20, "impressions"),
        ],
    )
    def test_views_priority_order(self, bag, expected, source):
        result = normalize(bag, IMAGE)
        assert result.canonical.views == expected
        assert result.canonical.views_source == source

    def test_views_missing_is_none_and_reported(self):
        result = normalize({"reach": 50, "saved": 3, "shares": 1}, IMAGE)
        assert result.canonical.views is None
        assert result.canonical.views_source is None
        assert "views" in result.partialness.missing_metrics

    def test_saved_preferred_over_saves(self):
        assert normalize({"saved": 4, "saves": 9}, IMAGE).canonical.saves == 4
        assert normalize({"saves": 9}, IMAGE).canonical.saves == 9

    def test_total_interactions_falls_back_to_engagement(self):
        assert normalize({"engagement": 17}, IMAGE).canonical.total_interactions == 17
        assert normalize({"total_interactions": 5, "engagement": 17}, IMAGE).canonical.total_interactions == 5

    def test_zero_is_a_known_value(self):
        result = normalize({"views": 0, "reach": 0, "saved": 0, "shares": 0}, IMAGE)
        assert result.canonical.views == 0
        assert result.canonical.reach == 0
        assert result.partialness.is_partial is False

    def test_non_numeric_values_are_ignored(self):
        result = normalize({"views": "12", "plays": True, "video_views": 7}, IMAGE)
        assert result.canonical.views == 7
        assert result.canonical.views_source == "video_views"

    def test_raw_bag_is_preserved_and_not_mutated(self):
        bag = {"plays": 10, "reach": 5, "custom_metric": 1}
        before = dict(bag)
        result = normalize(bag, IMAGE)
        assert bag == before
        assert dict(result.canonical.raw) == before


class TestDerivedMetrics:
    def test_engagement_treats_missing_saves_and_shares_as_zero(self):
        result = normalize({}, IMAGE)
        assert result.derived.engagement == 12

    def test_engagement_rate(self):
        assert normalize({}, IMAGE, followers_count=100).derived.engagement_rate == 12.0

    @pytest.mark.parametrize("followers", [None, 0, -5, "100"])
    def test_engagement_rate_none_without_followers(self, followers):
        result = normalize({"reach": 10}, IMAGE, followers_count=followers)
        assert result.derived.engagement_rate is None
        assert result.derived.reach_rate is None

    def test_views_rate(self):
        assert normalize({"reach": 200, "views": 50}, IMAGE).derived.views_rate == 25.0

    @pytest.mark.parametrize("bag", [{"views": 50}, {"views": 50, "reach": 0}])
    def test_views_rate_none_without_reach(self, bag):
        result = normalize(bag, IMAGE)
        assert result.derived.views_rate is None
        assert result.derived.interactions_per_1000_reach is None

    def test_reach_rate_and_interactions_per_1000_reach(self):
        result = normalize({"reach": 400, "saved": 3, "shares": 1}, IMAGE, followers_count=1000)
        assert result.derived.reach_rate == 40.0
        assert result.derived.engagement == 16
        assert result.derived.interactions_per_1000_reach == 40.0

    def test_score_uses_default_weights(self):
        result = normalize({"saved": 3, "shares": 1}, IMAGE)
        assert result.derived.score == 10 * 1 + 2 * 2 + 3 * 3 + 1 * 4

    def test_score_uses_custom_weights(self):
        weights = ScoreWeights(likes=0, comments=0, saves=1, shares=10)
        result = normalize({"saved": 3, "shares": 1}, IMAGE, weights=weights)
        assert result.derived.score == 13

    def test_negative_saves_and_shares_do_not_reduce_engagement(self):
        result = normalize({"saved": -50, "shares": -3}, IMAGE, followers_count=100)
        assert result.canonical.saves == -50
        assert result.canonical.shares == -3
        assert result.derived.engagement == 12
        assert result.derived.engagement_rate == 12.0
        assert result.derived.score == 10 * 1 + 2 * 2

    def test_overflowing_totals_stay_finite(self):
        result = normalize({"saved": 1e308, "shares": 1e308, "reach": 100}, IMAGE, followers_count=100)
        derived = result.derived
        assert math.isfinite(derived.engagement) and derived.engagement >= 0
        assert math.isfinite(derived.score)
        assert derived.engagement_rate is None or math.isfinite(derived.engagement_rate)
        assert derived.interactions_per_1000_reach is None or math.isfinite(derived.interactions_per_1000_reach)

    def test_story_completion_rate(self):
        story = ContentDescriptor(kind=ContentKind.STORY)
        result = normalize({"views": 200, "exits": 50, "reach": 150}, story)
        assert result.derived.completion_rate == 75

    def test_completion_rate_only_for_stories(self):
        assert normalize({"views": 200, "exits": 50}, IMAGE).derived.completion_rate is None


class TestPartialness:
    def test_empty_bag(self):
        result = normalize({}, IMAGE)
        assert result.partialness.has_insights is False
        assert result.partialness.is_partial is True
        assert result.partialness.missing_metrics == ("saves", "shares", "reach", "views")

    def test_complete_bag(self):
        result = normalize({"views": 1, "reach": 1, "saved": 1, "shares": 1}, IMAGE)
        assert result.partialness.has_insights is True
        assert result.partialness.is_partial is False
        assert result.partialness.missing_metrics == ()

    def test_missing_order_is_stable(self):
        result = normalize({"reach": 1}, IMAGE)
        assert result.partialness.missing_metrics == ("saves", "shares", "views")


def test_normalize_is_deterministic():
    bag = {"plays": 120, "reach": 80, "saved": 4, "shares": 2, "total_interactions": 30}
    reel = ContentDescriptor(kind=ContentKind.VIDEO, is_reel=True, likes=20, comments=5)
    assert normalize(bag, reel, 500) == normalize(bag, reel, 500)
    assert normalize(bag, reel, 500).to_dict() == normalize(bag, reel, 500).to_dict()


class TestContentDescriptor:
    def test_reel(self):
        descriptor = ContentDescriptor.from_media(make_media("1", "VIDEO", "REELS", likes=3, comments=1))
        assert descriptor.kind == ContentKind.VIDEO
        assert descriptor.is_reel is True
        assert (descriptor.likes, descriptor.comments) == (3, 1)

    def test_carousel(self):
        descriptor = ContentDescriptor.from_media(make_media("1", "CAROUSEL_ALBUM"))
        assert descriptor.kind == ContentKind.CAROUSEL
        assert descriptor.is_reel is False

    def test_invalid_counts_become_zero(self):
        descriptor = ContentDescriptor.from_media({"id": "1", "like_count": None, "comments_count": "x"})
        assert descriptor.kind == ContentKind.IMAGE
        assert (descriptor.likes, descriptor.comments) == (0, 0)


class TestCandidates:
    def test_reel_candidates_start_with_plays(self):
        reel = ContentDescriptor(kind=ContentKind.VIDEO, is_reel=True)
        candidates = insight_metric_candidates(reel)
        assert candidates[0] == "plays,reach,saved,shares,total_interactions"
        assert candidates[-1] == "reach"

    def test_carousel_checked_before_reel(self):
        carousel = ContentDescriptor(kind=ContentKind.CAROUSEL, is_reel=True)
        assert insight_metric_candidates(carousel)[0] == "views,reach,saved,shares,total_interactions"

    def test_story_candidates(self):
        story = ContentDescriptor(kind=ContentKind.STORY)
        assert insight_metric_candidates(story) == [
            "views,reach,replies,exits,taps_forward,taps_back",
            "impressions,reach,replies,exits,taps_forward,taps_back",
        ]

    def test_candidates_returns_a_copy(self):
        candidates = insight_metric_candidates(IMAGE)
        candidates.clear()
        assert insight_metric_candidates(IMAGE)


class TestParseRawMetricBag:
    def test_parses_last_value(self):
        payload = {"data": [{"name": "reach", "values": [{"value": 1}, {"value": 7}]}]}
        assert parse_raw_metric_bag(payload) == {"reach": 7}

    def test_total_value_fallback(self):
        payload = {"data": [{"name": "views", "total_value": {"value": 42}}]}
        assert parse_raw_metric_bag(payload) == {"views": 42}

    def test_drops_non_numeric(self):
        payload = insights_payload({"reach": 5, "saved": None, "shares": "3", "plays": False})
        assert parse_raw_metric_bag(payload) == {"reach": 5}

    @pytest.mark.parametrize("payload", [None, [], "oops", {"data": "oops"}, {"data": [{"values": []}]}])
    def test_unexpected_shapes_give_empty_bag(self, payload):
        assert parse_raw_metric_bag(payload) == {}


def test_normalized_media_to_dict():
    media = make_media("m1", "IMAGE", likes=10, comments=2)
    item = normalize_media(media, {"reach": 200, "views": 50, "saved": 1}, followers_count=100)
    data = item.to_dict()
    assert data["id"] == "m1"
    assert data["insights"] == {"reach": 200, "views": 50, "saved": 1}
    assert data["computed"]["engagement"] == 13
    assert data["computed"]["views_rate"] == 25.0
    assert data["computed"]["shares"] is None
    assert data["computed"]["missing_metrics"] == ["shares"]
    assert "insights" not in media
