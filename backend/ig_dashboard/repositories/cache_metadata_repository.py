"""
Cache Metadata Repository
instagram_cache_metadata（アカウントごとの最終同期日時）
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from supabase import Client

from ..core.records import Record, to_record
from ..core.supabase_utils import get_single_data, prepare_record, raise_for_error


@dataclass
class CacheStatus:
    """投稿キャッシュの状態"""
    has_cached_data: bool
    last_sync: Optional[str]
    cache_age_hours: Optional[float]
    should_refresh: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_cached_data": self.has_cached_data,
            "last_sync": self.last_sync,
            "cache_age_hours": self.cache_age_hours,
            "should_refresh": self.should_refresh,
        }


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def evaluate_cache_status(
    metadata: Optional[Dict[str, Any]],
    max_age_hours: float,
    force_refresh: bool = False,
    now: Optional[datetime] = None,
) -> CacheStatus:
    """最終投稿同期からの経過時間で鮮度を判定（max_age_hours 以内なら新鮮）"""
    last_sync = _parse_datetime((metadata or {}).get("last_posts_sync"))
    if last_sync is None:
        return CacheStatus(has_cached_data=False, last_sync=None, cache_age_hours=None, should_refresh=True)

    now = now or datetime.now(timezone.utc)
    age_hours = (now - last_sync).total_seconds() / 3600
    return CacheStatus(
        has_cached_data=True,
        last_sync=last_sync.isoformat(),
        cache_age_hours=age_hours,
        should_refresh=force_refresh or age_hours > max_age_hours,
    )


class CacheMetadataRepository:
    """キャッシュメタデータ"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def get(self, account_id: str) -> Optional[Record]:
        res = (
            self.supabase.table("instagram_cache_metadata")
            .select("*")
            .eq("account_id", account_id)
            .limit(1)
            .execute()
        )
        raise_for_error(res)
        return to_record(get_single_data(res))

    async def get_status(
        self,
        account_id: str,
        max_age_hours: float,
        force_refresh: bool = False,
    ) -> CacheStatus:
        return evaluate_cache_status(await self.get(account_id), max_age_hours, force_refresh)

    async def mark_synced(
        self,
        account_id: str,
        profile: bool = False,
        insights: bool = False,
        posts: bool = False,
        total_posts_cached: Optional[int] = None,
        oldest_post_date: Optional[str] = None,
        newest_post_date: Optional[str] = None,
    ) -> None:
        """同期日時を更新（指定したものだけ）"""
        now = datetime.now(timezone.utc)
        metadata: Dict[str, Any] = {"account_id": account_id}
        if profile:
            metadata["last_profile_sync"] = now
        if insights:
            metadata["last_insights_sync"] = now
        if posts:
            metadata["last_posts_sync"] = now
        if total_posts_cached is not None:
            metadata["total_posts_cached"] = total_posts_cached
        if oldest_post_date:
            metadata["oldest_post_date"] = oldest_post_date
        if newest_post_date:
            metadata["newest_post_date"] = newest_post_date

        res = (
            self.supabase.table("instagram_cache_metadata")
            .upsert(prepare_record(metadata), on_conflict="account_id")
            .execute()
        )
        raise_for_error(res)
