from datetime import date, datetime, timezone

import pytest

from ig_dashboard.repositories.connected_account_repository import AccountNotFoundError
from ig_dashboard.services.api.comparison_service import ComparisonService
from ig_dashboard.services.api.dashboard_service import DashboardService, clamp_limits
from ig_dashboard.services.data_collection.instagram_api_client import InstagramAuthError

from fakes import (
    FakeAccountRepository,
    FakeDailyRepository,
    FakeGraphClient,
    FakeMetadataRepository,
    FakePostsRepository,
    FakeSnapshotRepository,
    make_media,
)

pytestmark = pytest.mark.usefixtures("no_score_weights_env")


def build_service(account, client, snapshot=None, posts=None, metadata=None, daily=None):
    account_repo = FakeAccountRepository([account])
    posts_repo = posts or FakePostsRepository()
    service = DashboardService(
        account_repo=account_repo,
        snapshot_repo=snapshot or FakeSnapshotRepository(),
        posts_repo=posts_repo,
        metadata_repo=metadata or FakeMetadataRepository(),
        comparison_service=ComparisonService(account_repo, daily or FakeDailyRepository(), posts_repo),
        client_factory=client,
    )
    return service


def live_client(**kwargs):
    media = [
        make_media("reel", "VIDEO", "REELS", likes=50, comments=5, timestamp="2024-03-10T15:00:00+0000"),
        make_media("img", "IMAGE", likes=10, comments=1, timestamp="2024-03-10T12:00:00+0000"),
        make_media("old", "CAROUSEL_ALBUM", likes=3, comments=0, timestamp="2024-03-01T12:00:00+0000"),
    ]
    insights = {
        "reel": {"plays": 900, "reach": 400, "saved": 8, "shares": 4},
        "img": {"views": 120, "reach": 100, "saved": 1, "shares": 0},
        "old": {"views": 10, "reach": 10, "saved": 0, "shares": 0},
    }
    stories = [{"id": "s1", "media_type": "IMAGE", "timestamp": "2024-03-10T10:00:00+0000"}]
    insights["s1"] = {"views": 200, "reach": 150, "exits": 50}
    return FakeGraphClient(media=media, insights=insights, stories=stories, **kwargs)


def test_clamp_limits():
    assert clamp_limits(5000, 100, 10) == (2000, 50, 10)
    assert clamp_limits(10, 5, 50) == (10, 5, 10)
    assert clamp_limits(0, 0, -1) == (1, 1, 0)


async def test_live_load_builds_payload_and_persists(account):
    client = live_client()
    posts = FakePostsRepository()
    snapshot = FakeSnapshotRepository()
    metadata = FakeMetadataRepository()
    service = build_service(account, client, snapshot=snapshot, posts=posts, metadata=metadata)

    payload = await service.load_dashboard("acc-1", max_posts=10, max_insights_posts=2)

    assert payload["success"] is True
    assert payload["source"] == "live"
    assert payload["token_type"] == "IGAA"
    assert payload["total_posts"] == 3
    assert payload["total_views"] == 1020
    assert [m["id"] for m in payload["top_posts_by_score"]] == ["img", "old"]
    assert [m["id"] for m in payload["top_reels_by_views"]] == ["reel"]
    assert payload["media_type_distribution"] == {"VIDEO": 1, "IMAGE": 1, "CAROUSEL_ALBUM": 1}
    assert payload["messages"][0] == "INSIGHTS_LIMIT: insights were fetched for the latest 2 of 3 posts"
    assert payload["stories"][0]["insights"]["completion_rate"] == 75
    assert payload["stories_aggregate"]["total_stories"] == 1
    assert "access_token" not in payload["profile"]
    assert "comparison" not in payload

    assert sorted(client.insight_calls) == ["img", "reel", "s1"]
    assert client.request_cache is not None
    assert len(posts.saved_items) == 3
    assert snapshot.saved[0]["followers_count"] == 1000
    assert metadata.marked[0]["posts"] is True
    assert metadata.marked[0]["newest_post_date"] == "2024-03-10T15:00:00+0000"


async def test_persistence_failure_is_not_fatal(account):
    service = build_service(account, live_client(), posts=FakePostsRepository(fail_on_save=True))
    payload = await service.load_dashboard("acc-1")
    assert payload["source"] == "live"
    assert payload["total_posts"] == 3


async def test_fresh_cache_is_renormalized_without_graph_calls(account):
    client = live_client()
    fresh = {"last_posts_sync": datetime.now(timezone.utc).isoformat()}
    rows = [
        {
            "account_id": "acc-1",
            "media_id": "cached-1",
            "media_type": "VIDEO",
            "media_product_type": "REELS",
            "timestamp": "2024-03-10T15:00:00+0000",
            "like_count": 5,
            "comments_count": 1,
            "insights_raw": {"plays": 70, "reach": 50},
        }
    ]
    service = build_service(
        account,
        client,
        snapshot=FakeSnapshotRepository({"username": "brand", "followers_count": 100}),
        posts=FakePostsRepository(rows),
        metadata=FakeMetadataRepository(fresh),
    )

    payload = await service.load_dashboard("acc-1")

    assert payload["source"] == "cache"
    assert payload["cache_status"]["should_refresh"] is False
    assert client.entered == 0
    media = payload["media"][0]
    assert media["computed"]["views"] == 70
    assert media["computed"]["views_source"] == "plays"
    assert media["computed"]["engagement_rate"] == 6.0
    assert payload["stories"] == []


async def test_force_refresh_ignores_fresh_cache(account):
    fresh = {"last_posts_sync": datetime.now(timezone.utc).isoformat()}
    service = build_service(
        account,
        live_client(),
        snapshot=FakeSnapshotRepository({"username": "brand", "followers_count": 100}),
        posts=FakePostsRepository([{"account_id": "acc-1", "media_id": "x", "timestamp": "2024-03-10T00:00:00Z"}]),
        metadata=FakeMetadataRepository(fresh),
    )
    payload = await service.load_dashboard("acc-1", force_refresh=True)
    assert payload["source"] == "live"


async def test_auth_error_propagates(account):
    service = build_service(account, live_client(auth_error_on="profile"))
    with pytest.raises(InstagramAuthError):
        await service.load_dashboard("acc-1")


async def test_unknown_account(account):
    service = build_service(account, live_client())
    with pytest.raises(AccountNotFoundError):
        await service.load_dashboard("missing")


async def test_malformed_score_weights_is_not_reported_as_missing_account(account, monkeypatch):
    monkeypatch.setenv("IG_SCORE_WEIGHTS", "1,2,3")
    service = build_service(account, live_client())
    with pytest.raises(ValueError) as excinfo:
        await service.load_dashboard("acc-1")
    assert not isinstance(excinfo.value, AccountNotFoundError)


async def test_comparison_is_attached_for_a_period(account):
    daily = FakeDailyRepository([
        {"account_id": "acc-1", "insight_date": "2024-03-09", "reach": 100},
        {"account_id": "acc-1", "insight_date": "2024-03-12", "reach": 50},
    ])
    posts = FakePostsRepository([
        {
            "account_id": "acc-1",
            "media_id": "p1",
            "media_type": "IMAGE",
            "timestamp": "2024-03-10T15:00:00+0000",
            "like_count": 10,
            "comments_count": 2,
            "insights_raw": {"reach": 80},
        },
        {
            "account_id": "acc-1",
            "media_id": "p0",
            "media_type": "IMAGE",
            "timestamp": "2024-03-03T15:00:00+0000",
            "like_count": 4,
            "comments_count": 0,
            "insights_raw": {"reach": 40},
        },
    ])
    service = build_service(account, live_client(), posts=posts, daily=daily)

    payload = await service.load_dashboard("acc-1", since=date(2024, 3, 8), until=date(2024, 3, 14))

    comparison = payload["comparison"]
    assert comparison["previous_period"] == {"since": "2024-03-01", "until": "2024-03-07"}
    assert comparison["account"]["reach"] == {"current": 150, "previous": 0, "change": 150, "change_percent": 100}
    assert comparison["posts"]["posts"]["current"] == 1
    assert comparison["posts"]["reach"]["change_percent"] == 100.0
    assert comparison["days_with_data"] == {"current": 2, "previous": 0}
