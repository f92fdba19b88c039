"""
Dashboard Service
ダッシュボード表示用データの組み立て

アカウント取得 → キャッシュ判定 → (キャッシュ再正規化 | Graph API 取得・正規化・保存)
→ ランキング・集計 → 期間比較 の順で処理する。
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from supabase import Client

from ...core.instagram_config import instagram_config
from ...core.request_cache import RequestCache
from ...repositories.cache_metadata_repository import CacheMetadataRepository, CacheStatus
from ...repositories.connected_account_repository import AccountNotFoundError, ConnectedAccountRepository
from ...repositories.daily_insights_repository import DailyInsightsRepository
from ...repositories.posts_cache_repository import (
    PostsCacheRepository,
    cached_row_insights,
    cached_row_to_media,
)
from ...repositories.profile_snapshot_repository import PROFILE_COLUMNS, ProfileSnapshotRepository
from ..data_collection.insights_collector import (
    collect_media_insights,
    collect_story_insights,
    story_payload,
)
from ..data_collection.instagram_api_client import InstagramAPIClient
from ..metrics.aggregates import (
    aggregate_stories,
    build_messages,
    engagement_by_media_type,
    media_type_distribution,
    sum_canonical,
)
from ..metrics.normalizer import NormalizedMedia, ScoreWeights, normalize_media
from ..metrics.ranking import best_post_per_day, build_top_content
from .comparison_service import ComparisonService

logger = logging.getLogger(__name__)

SOURCE_LIVE = "live"
SOURCE_CACHE = "cache"


def clamp_limits(
    max_posts: Optional[int] = None,
    max_stories: Optional[int] = None,
    max_insights_posts: Optional[int] = None,
) -> Tuple[int, int, int]:
    """取得件数の上限を許容範囲に丸める"""
    config = instagram_config
    posts = config.DEFAULT_MAX_POSTS if max_posts is None else max(1, min(config.MAX_POSTS_LIMIT, max_posts))
    stories = (
        config.DEFAULT_MAX_STORIES
        if max_stories is None
        else max(1, min(config.MAX_STORIES_LIMIT, max_stories))
    )
    insights = config.DEFAULT_MAX_INSIGHTS_POSTS if max_insights_posts is None else max_insights_posts
    insights = max(0, min(posts, insights))
    return posts, stories, insights


class DashboardService:
    """ダッシュボードサービス"""

    def __init__(
        self,
        account_repo: ConnectedAccountRepository,
        snapshot_repo: ProfileSnapshotRepository,
        posts_repo: PostsCacheRepository,
        metadata_repo: CacheMetadataRepository,
        comparison_service: ComparisonService,
        client_factory: Callable[..., InstagramAPIClient] = InstagramAPIClient,
    ):
        self.account_repo = account_repo
        self.snapshot_repo = snapshot_repo
        self.posts_repo = posts_repo
        self.metadata_repo = metadata_repo
        self.comparison_service = comparison_service
        self.client_factory = client_factory
        self.config = instagram_config

    async def load_dashboard(
        self,
        account_id: str,
        max_posts: Optional[int] = None,
        max_stories: Optional[int] = None,
        max_insights_posts: Optional[int] = None,
        force_refresh: bool = False,
        since: Optional[date] = None,
        until: Optional[date] = None,
    ) -> Dict[str, Any]:
        """
        ダッシュボードデータを取得

        Args:
            account_id: connected_accounts.id
            max_posts: 取得する投稿数の上限（1〜2000）
            max_stories: 取得するストーリーズ数の上限（1〜50）
            max_insights_posts: インサイトを取得する投稿数（新しい順、0〜max_posts）
            force_refresh: キャッシュを無視して Graph API から取得
            since / until: 期間比較の対象期間（両方指定時のみ）

        Raises:
            AccountNotFoundError: アカウントが存在しない
            InstagramAuthError: トークン無効・期限切れ（再接続が必要）
        """
        started = time.monotonic()
        request_id = uuid.uuid4().hex
        max_posts, max_stories, max_insights_posts = clamp_limits(max_posts, max_stories, max_insights_posts)

        account = await self.account_repo.get_by_id(account_id)
        if not account:
            raise AccountNotFoundError(account_id)

        logger.info(
            f"[{request_id}] Loading dashboard for @{account.get('account_username')} "
            f"(account={account_id}, max_posts={max_posts}, max_insights_posts={max_insights_posts}, force_refresh={force_refresh})"
        )

        weights = ScoreWeights(*self.config.get_score_weights())
        cache_status = await self._get_cache_status(account_id, force_refresh)

        loaded = None
        if not cache_status.should_refresh:
            loaded = await self._load_from_cache(account, max_posts, weights)
        if loaded is None:
            loaded = await self._load_live(account, max_posts, max_stories, max_insights_posts, weights)

        source, profile, items, stories, total_media = loaded
        payload = self._build_payload(
            account=account,
            source=source,
            profile=profile,
            items=items,
            stories=stories,
            total_media=total_media,
            max_insights_posts=max_insights_posts,
            cache_status=cache_status,
        )

        if since and until:
            payload["comparison"] = await self.comparison_service.compare(
                account_id, since, until, followers_count=profile.get("followers_count")
            )

        payload["request_id"] = request_id
        payload["duration_ms"] = int((time.monotonic() - started) * 1000)
        logger.info(f"[{request_id}] Dashboard ready: source={source}, media={len(items)}, {payload['duration_ms']}ms")
        return payload

    async def _get_cache_status(self, account_id: str, force_refresh: bool) -> CacheStatus:
        try:
            return await self.metadata_repo.get_status(account_id, self.config.CACHE_MAX_AGE_HOURS, force_refresh)
        except Exception as e:
            logger.warning(f"Failed to read cache metadata for {account_id}, fetching live: {e}")
            return CacheStatus(has_cached_data=False, last_sync=None, cache_age_hours=None, should_refresh=True)

    async def _load_from_cache(
        self,
        account: Dict[str, Any],
        max_posts: int,
        weights: ScoreWeights,
    ) -> Optional[Tuple[str, Dict[str, Any], List[NormalizedMedia], List[Dict[str, Any]], int]]:
        """キャッシュ済みの insights_raw を現在のルールで再正規化（データがなければ None）"""
        account_id = account["id"]
        try:
            snapshot = await self.snapshot_repo.get_latest(account_id)
            rows = await self.posts_repo.get_posts(account_id, limit=max_posts)
        except Exception as e:
            logger.warning(f"Failed to read cached posts for {account_id}, fetching live: {e}")
            return None

        if not snapshot or not rows:
            logger.info(f"No usable cache for {account_id}, fetching live")
            return None

        profile: Dict[str, Any] = {"id": account.get("provider_account_id")}
        for column in PROFILE_COLUMNS:
            profile[column] = snapshot.get(column)

        followers_count = profile.get("followers_count")
        items = [
            normalize_media(cached_row_to_media(row), cached_row_insights(row), followers_count, weights)
            for row in rows
        ]
        logger.info(f"Loaded {len(items)} posts from cache for {account_id}")
        return SOURCE_CACHE, profile, items, [], len(items)

    async def _load_live(
        self,
        account: Dict[str, Any],
        max_posts: int,
        max_stories: int,
        max_insights_posts: int,
        weights: ScoreWeights,
    ) -> Tuple[str, Dict[str, Any], List[NormalizedMedia], List[Dict[str, Any]], int]:
        """Graph API から取得（認証エラーは呼び出し元へ送出）"""
        account_id = account["id"]
        business_id = account["provider_account_id"]

        # TODO: トークン暗号化を導入したらここで復号化する
        access_token = account["access_token"]

        request_cache = RequestCache(ttl_seconds=self.config.REQUEST_CACHE_TTL_SECONDS)
        async with self.client_factory(request_cache=request_cache) as client:
            profile = await client.get_basic_account_data(business_id, access_token)
            media = await client.get_media(business_id, access_token, max_posts=max_posts)
            stories = await client.get_stories(business_id, access_token, max_stories=max_stories)

            followers_count = profile.get("followers_count")
            items = await collect_media_insights(
                client,
                access_token,
                media,
                followers_count=followers_count,
                weights=weights,
                batch_size=self.config.INSIGHTS_BATCH_SIZE,
                max_insights_posts=max_insights_posts,
            )
            story_items = await collect_story_insights(
                client,
                access_token,
                stories,
                followers_count=followers_count,
                weights=weights,
                batch_size=self.config.INSIGHTS_BATCH_SIZE,
            )

        logger.debug(f"Request cache stats for {account_id}: {request_cache.stats()}")
        await self._persist(account_id, business_id, profile, items)
        return SOURCE_LIVE, profile, items, [story_payload(s) for s in story_items], len(media)

    async def _persist(
        self,
        account_id: str,
        business_id: str,
        profile: Dict[str, Any],
        items: List[NormalizedMedia],
    ) -> None:
        """キャッシュテーブルへ保存（失敗してもダッシュボード表示は継続）"""
        today = datetime.now(timezone.utc).date()
        try:
            await self.snapshot_repo.save_snapshot(account_id, business_id, profile, today)
            saved = await self.posts_repo.save_posts(account_id, items)

            timestamps = sorted(t for t in (item.media.get("timestamp") for item in items) if t)
            await self.metadata_repo.mark_synced(
                account_id,
                profile=True,
                posts=True,
                total_posts_cached=saved,
                oldest_post_date=timestamps[0] if timestamps else None,
                newest_post_date=timestamps[-1] if timestamps else None,
            )
        except Exception as e:
            logger.error(f"Failed to persist dashboard cache for {account_id}: {e}", exc_info=True)

    def _build_payload(
        self,
        account: Dict[str, Any],
        source: str,
        profile: Dict[str, Any],
        items: List[NormalizedMedia],
        stories: List[Dict[str, Any]],
        total_media: int,
        max_insights_posts: int,
        cache_status: CacheStatus,
    ) -> Dict[str, Any]:
        top_limit = self.config.TOP_CONTENT_LIMIT
        top = build_top_content(items, limit=top_limit)
        access_token = account.get("access_token") or ""

        return {
            "success": True,
            "source": source,
            "account_id": account["id"],
            "token_type": self.config.detect_token_type(access_token),
            "snapshot_date": datetime.now(timezone.utc).date().isoformat(),
            "provider": "instagram_graph_api",
            "api_version": self.config.API_VERSION,
            "cache_status": cache_status.to_dict(),
            "profile": profile,
            "media": [item.to_dict() for item in items],
            "total_posts": len(items),
            "total_views": sum_canonical(items, "views") or 0,
            "total_reach": sum_canonical(items, "reach") or 0,
            **{key: [item.to_dict() for item in ranked] for key, ranked in top.items()},
            "media_type_distribution": media_type_distribution(items),
            "engagement_by_media_type": engagement_by_media_type(items),
            "best_posts_by_day": [
                {"date": entry["date"], "media_id": entry["item"].media_id}
                for entry in best_post_per_day(items, "engagement", self.config.DEFAULT_TIMEZONE)
            ],
            "stories": stories,
            "stories_aggregate": aggregate_stories(stories),
            "messages": build_messages(total_media, max_insights_posts, items),
        }


def create_dashboard_service(supabase: Client) -> DashboardService:
    """Dashboard Service インスタンス作成"""
    posts_repo = PostsCacheRepository(supabase, instagram_config.POSTS_CACHE_UPSERT_BATCH_SIZE)
    account_repo = ConnectedAccountRepository(supabase)
    return DashboardService(
        account_repo=account_repo,
        snapshot_repo=ProfileSnapshotRepository(supabase),
        posts_repo=posts_repo,
        metadata_repo=CacheMetadataRepository(supabase),
        comparison_service=ComparisonService(account_repo, DailyInsightsRepository(supabase), posts_repo),
    )
