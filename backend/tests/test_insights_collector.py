import asyncio

import pytest

from ig_dashboard.services.data_collection.insights_collector import (
    collect_media_insights,
    collect_story_insights,
    story_payload,
)
from ig_dashboard.services.data_collection.instagram_api_client import InstagramAuthError

from fakes import FakeGraphClient, make_media


class ConcurrencyTrackingClient(FakeGraphClient):
    """同時に実行中のインサイト取得数の最大値を記録する"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_media_insights(self, media_id, access_token, candidates, graph_base=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        return await super().get_media_insights(media_id, access_token, candidates, graph_base)


class SlowSiblingsClient(FakeGraphClient):
    """auth_error_on 以外の取得を遅らせ、完了したものを記録する"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.completed = []

    async def get_media_insights(self, media_id, access_token, candidates, graph_base=None):
        if media_id == self.auth_error_on:
            await asyncio.sleep(0)
        else:
            await asyncio.sleep(0.05)
            self.completed.append(media_id)
        return await super().get_media_insights(media_id, access_token, candidates, graph_base)


async def test_batches_bound_parallelism_and_keep_order():
    media = [make_media(str(n)) for n in range(120)]
    client = ConcurrencyTrackingClient(insights={str(n): {"reach": n} for n in range(120)})

    items = await collect_media_insights(client, "IGAAtoken", media, batch_size=50, max_insights_posts=200)

    assert [i.media_id for i in items] == [str(n) for n in range(120)]
    assert items[7].metrics.canonical.reach == 7
    assert client.max_in_flight == 50


async def test_items_beyond_insights_cap_are_not_requested():
    media = [make_media(str(n)) for n in range(5)]
    client = FakeGraphClient(insights={str(n): {"reach": 10} for n in range(5)})

    items = await collect_media_insights(client, "IGAAtoken", media, batch_size=2, max_insights_posts=3)

    assert sorted(client.insight_calls) == ["0", "1", "2"]
    assert [i.metrics.partialness.has_insights for i in items] == [True, True, True, False, False]


async def test_exhausted_item_degrades_alone():
    media = [make_media("ok"), make_media("missing"), make_media("ok2")]
    client = FakeGraphClient(insights={"ok": {"reach": 1}, "ok2": {"reach": 2}})

    items = await collect_media_insights(client, "IGAAtoken", media)

    missing = items[1].metrics
    assert missing.partialness.has_insights is False
    assert missing.partialness.is_partial is True
    assert items[0].metrics.partialness.has_insights is True


async def test_auth_error_aborts_collection():
    media = [make_media(str(n)) for n in range(4)]
    client = FakeGraphClient(insights={}, auth_error_on="2")

    with pytest.raises(InstagramAuthError):
        await collect_media_insights(client, "IGAAtoken", media, batch_size=2)


async def test_auth_error_cancels_in_flight_media_requests():
    media = [make_media(str(n)) for n in range(4)]
    client = SlowSiblingsClient(auth_error_on="1")

    with pytest.raises(InstagramAuthError):
        await collect_media_insights(client, "IGAAtoken", media, batch_size=4)

    await asyncio.sleep(0.1)
    assert client.completed == []


async def test_auth_error_cancels_in_flight_story_requests():
    stories = [{"id": f"s{n}", "media_type": "IMAGE"} for n in range(3)]
    client = SlowSiblingsClient(auth_error_on="s2")

    with pytest.raises(InstagramAuthError):
        await collect_story_insights(client, "IGAAtoken", stories)

    await asyncio.sleep(0.1)
    assert client.completed == []


async def test_followers_feed_engagement_rate():
    media = [make_media("1", likes=10, comments=2)]
    client = FakeGraphClient(insights={"1": {"reach": 100}})

    items = await collect_media_insights(client, "IGAAtoken", media, followers_count=100)

    assert items[0].metrics.derived.engagement_rate == 12.0


async def test_story_insights_and_payload():
    stories = [{"id": "s1", "media_type": "IMAGE", "timestamp": "2024-03-10T10:00:00+0000"}]
    client = FakeGraphClient(insights={"s1": {"impressions": 200, "reach": 150, "exits": 50}})

    items = await collect_story_insights(client, "IGAAtoken", stories)
    payload = story_payload(items[0])

    assert items[0].metrics.derived.completion_rate == 75
    assert payload["insights"]["views"] == 200
    assert payload["insights"]["completion_rate"] == 75
    assert payload["insights"]["impressions"] == 200


async def test_story_without_insights_payload_keeps_unknowns():
    client = FakeGraphClient()
    items = await collect_story_insights(client, "IGAAtoken", [{"id": "s1"}])
    payload = story_payload(items[0])
    assert payload["insights"] == {"views": None, "completion_rate": None}
