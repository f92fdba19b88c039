"""
Insights fan-out
メディア・ストーリーズのインサイトを一定数ずつ並列取得し、正規化する
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

from ...core.instagram_config import instagram_config
from ...core.supabase_utils import chunked
from ..metrics.normalizer import (
    DEFAULT_SCORE_WEIGHTS,
    ContentDescriptor,
    NormalizedMedia,
    RawMetricBag,
    ScoreWeights,
    insight_metric_candidates,
    normalize_media,
)
from .instagram_api_client import InstagramAPIClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run_batch(coros: Iterable[Awaitable[T]]) -> List[T]:
    """
    1バッチ分を並列実行し、入力順で結果を返す

    いずれかが例外で終わった時点で残りのタスクをキャンセルして待ち合わせ、
    その例外（入力順で最初のもの）を送出する。
    """
    tasks = [asyncio.ensure_future(c) for c in coros]
    if not tasks:
        return []
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.debug(f"Cancelled {len(pending)} pending insights requests")

    errors = [t.exception() for t in tasks if not t.cancelled()]
    for error in errors:
        if error is not None:
            raise error
    return [t.result() for t in tasks]


async def _fetch_bag(
    client: InstagramAPIClient,
    access_token: str,
    item: Mapping[str, Any],
    descriptor: ContentDescriptor,
    graph_base: Optional[str],
) -> RawMetricBag:
    media_id = item.get("id")
    if not media_id:
        logger.warning("Skipping insights for item without id")
        return {}
    return await client.get_media_insights(
        media_id,
        access_token,
        insight_metric_candidates(descriptor),
        graph_base=graph_base,
    )


async def collect_media_insights(
    client: InstagramAPIClient,
    access_token: str,
    media: Sequence[Mapping[str, Any]],
    followers_count: Optional[Any] = None,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
    batch_size: int = instagram_config.INSIGHTS_BATCH_SIZE,
    max_insights_posts: int = instagram_config.DEFAULT_MAX_INSIGHTS_POSTS,
    graph_base: Optional[str] = None,
) -> List[NormalizedMedia]:
    """
    投稿のインサイトを取得して正規化

    batch_size 件ずつ同時にリクエストし、バッチ単位で完了を待ってから次へ進む。
    先頭から max_insights_posts 件を超える投稿はリクエストせず空の bag で正規化する。
    認証エラーは全体を中断する（呼び出し元へ送出）。
    結果の順序は入力（プロバイダの返却順）と同じ。
    """
    results: List[NormalizedMedia] = []
    offset = 0

    for batch in chunked(list(media), batch_size):
        async def process(index: int, item: Mapping[str, Any]) -> NormalizedMedia:
            descriptor = ContentDescriptor.from_media(item)
            if index < max_insights_posts:
                bag = await _fetch_bag(client, access_token, item, descriptor, graph_base)
            else:
                bag = {}
            return normalize_media(item, bag, followers_count, weights, descriptor)

        batch_results = await _run_batch(process(offset + i, item) for i, item in enumerate(batch))
        results.extend(batch_results)
        offset += len(batch)
        logger.debug(f"Insights batch done: {offset}/{len(media)} items")

    with_insights = sum(1 for item in results if item.metrics.partialness.has_insights)
    logger.info(f"Collected media insights: {with_insights}/{len(results)} items with insights")
    return results


async def collect_story_insights(
    client: InstagramAPIClient,
    access_token: str,
    stories: Sequence[Mapping[str, Any]],
    followers_count: Optional[Any] = None,
    weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
    batch_size: int = instagram_config.INSIGHTS_BATCH_SIZE,
    graph_base: Optional[str] = None,
) -> List[NormalizedMedia]:
    """ストーリーズのインサイトを取得して正規化（件数上限は取得時に適用済み）"""
    results: List[NormalizedMedia] = []

    for batch in chunked(list(stories), batch_size):
        async def process(item: Mapping[str, Any]) -> NormalizedMedia:
            descriptor = ContentDescriptor.for_story(item)
            bag = await _fetch_bag(client, access_token, item, descriptor, graph_base)
            return normalize_media(item, bag, followers_count, weights, descriptor)

        results.extend(await _run_batch(process(item) for item in batch))

    logger.info(f"Collected story insights for {len(results)} stories")
    return results


def story_payload(item: NormalizedMedia) -> Dict[str, Any]:
    """ストーリーズの表示用データ（insights に views / completion_rate を補完、不明値は None）"""
    data = item.to_dict()
    insights = dict(data["insights"])
    insights["views"] = item.metrics.canonical.views
    insights["completion_rate"] = item.metrics.derived.completion_rate
    data["insights"] = insights
    return data
