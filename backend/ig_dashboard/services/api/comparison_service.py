"""
Comparison Service
指定期間と直前の同じ長さの期間を比較する（アカウント日次インサイト・投稿）
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from supabase import Client

from ...core.instagram_config import instagram_config
from ...repositories.connected_account_repository import AccountNotFoundError, ConnectedAccountRepository
from ...repositories.daily_insights_repository import DailyInsightsRepository
from ...repositories.posts_cache_repository import (
    PostsCacheRepository,
    cached_row_insights,
    cached_row_to_media,
)
from ..metrics.comparison import compare_totals, previous_period, sum_daily_rows
from ..metrics.normalizer import NormalizedMedia, ScoreWeights, normalize_media

logger = logging.getLogger(__name__)

ACCOUNT_METRICS = ("reach", "impressions", "accounts_engaged", "profile_views", "website_clicks")
POST_METRICS = ("posts", "likes", "comments", "saves", "shares", "reach", "views", "engagement")


def post_totals(items: Sequence[NormalizedMedia]) -> Dict[str, float]:
    """投稿の合計値（不明な値は 0 扱い）"""
    totals: Dict[str, float] = {name: 0 for name in POST_METRICS}
    totals["posts"] = len(items)
    for item in items:
        for name in POST_METRICS[1:]:
            totals[name] += item.metrics.value(name) or 0
    return totals


class ComparisonService:
    """期間比較サービス"""

    def __init__(
        self,
        account_repo: ConnectedAccountRepository,
        daily_repo: DailyInsightsRepository,
        posts_repo: PostsCacheRepository,
    ):
        self.account_repo = account_repo
        self.daily_repo = daily_repo
        self.posts_repo = posts_repo

    async def _period_posts(
        self,
        account_id: str,
        since: date,
        until: date,
        followers_count: Optional[Any],
        weights: ScoreWeights,
    ) -> List[NormalizedMedia]:
        rows = await self.posts_repo.get_posts(account_id, since=since, until=until)
        return [
            normalize_media(cached_row_to_media(row), cached_row_insights(row), followers_count, weights)
            for row in rows
        ]

    async def compare(
        self,
        account_id: str,
        since: date,
        until: date,
        followers_count: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """
        期間比較

        Args:
            account_id: connected_accounts.id
            since: 期間開始日（含む）
            until: 期間終了日（含む）
            followers_count: エンゲージメント率の分母（省略可）

        Returns:
            current_period / previous_period / account / posts
        """
        account = await self.account_repo.get_by_id(account_id)
        if not account:
            raise AccountNotFoundError(account_id)

        prev_since, prev_until = previous_period(since, until)
        logger.info(f"Comparing {since}..{until} with {prev_since}..{prev_until} for account {account_id}")

        weights = ScoreWeights(*instagram_config.get_score_weights())

        current_daily = await self.daily_repo.get_by_date_range(account_id, since, until)
        previous_daily = await self.daily_repo.get_by_date_range(account_id, prev_since, prev_until)
        account_comparison = compare_totals(
            sum_daily_rows(current_daily, ACCOUNT_METRICS),
            sum_daily_rows(previous_daily, ACCOUNT_METRICS),
            ACCOUNT_METRICS,
        )

        current_posts = await self._period_posts(account_id, since, until, followers_count, weights)
        previous_posts = await self._period_posts(account_id, prev_since, prev_until, followers_count, weights)
        posts_comparison = compare_totals(
            post_totals(current_posts),
            post_totals(previous_posts),
            POST_METRICS,
        )

        return {
            "account_id": account_id,
            "current_period": {"since": since.isoformat(), "until": until.isoformat()},
            "previous_period": {"since": prev_since.isoformat(), "until": prev_until.isoformat()},
            "account": {name: result.to_dict() for name, result in account_comparison.items()},
            "posts": {name: result.to_dict() for name, result in posts_comparison.items()},
            "days_with_data": {"current": len(current_daily), "previous": len(previous_daily)},
        }


def create_comparison_service(supabase: Client) -> ComparisonService:
    """Comparison Service インスタンス作成"""
    return ComparisonService(
        account_repo=ConnectedAccountRepository(supabase),
        daily_repo=DailyInsightsRepository(supabase),
        posts_repo=PostsCacheRepository(supabase, instagram_config.POSTS_CACHE_UPSERT_BATCH_SIZE),
    )
