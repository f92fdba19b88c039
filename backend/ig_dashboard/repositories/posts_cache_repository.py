"""
Posts Cache Repository
instagram_posts_cache（投稿とインサイトのキャッシュ）
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from supabase import Client

from ..core.records import Record, to_records
from ..core.supabase_utils import chunked, get_data, prepare_record, raise_for_error
from ..services.metrics.normalizer import NormalizedMedia

logger = logging.getLogger(__name__)

# プロバイダのメディアオブジェクトからそのまま保存する列
MEDIA_COLUMNS = (
    "caption",
    "media_type",
    "media_product_type",
    "media_url",
    "permalink",
    "thumbnail_url",
    "timestamp",
    "like_count",
    "comments_count",
)


def build_post_cache_row(account_id: str, item: NormalizedMedia, fetched_at: datetime) -> Dict[str, Any]:
    """正規化済み投稿をキャッシュ行に変換（insights_raw は受信したキーのまま）"""
    canonical = item.metrics.canonical
    derived = item.metrics.derived
    raw = canonical.raw

    row: Dict[str, Any] = {"account_id": account_id, "media_id": item.media_id}
    for column in MEDIA_COLUMNS:
        row[column] = item.media.get(column)
    row.update({
        "impressions": raw.get("impressions"),
        "reach": canonical.reach,
        "engagement": derived.engagement,
        "saved": canonical.saves,
        "video_views": raw.get("video_views"),
        "plays": raw.get("plays"),
        "engagement_rate": derived.engagement_rate,
        "insights_raw": dict(raw),
        "computed_raw": item.metrics.to_dict(),
        "last_fetched_at": fetched_at,
    })
    return row


def cached_row_to_media(row: Mapping[str, Any]) -> Dict[str, Any]:
    """キャッシュ行をプロバイダのメディアオブジェクトの形に戻す"""
    media: Dict[str, Any] = {"id": row.get("media_id")}
    for column in MEDIA_COLUMNS:
        media[column] = row.get(column)
    return media


def cached_row_insights(row: Mapping[str, Any]) -> Dict[str, Any]:
    raw = row.get("insights_raw")
    return dict(raw) if isinstance(raw, Mapping) else {}


class PostsCacheRepository:
    """投稿キャッシュ"""

    def __init__(self, supabase: Client, batch_size: int = 100):
        self.supabase = supabase
        self.batch_size = batch_size

    async def save_posts(self, account_id: str, items: Sequence[NormalizedMedia]) -> int:
        """
        投稿をまとめて保存（media_id で上書き）

        Returns:
            int: 保存した行数
        """
        rows = [
            build_post_cache_row(account_id, item, datetime.now(timezone.utc))
            for item in items
            if item.media_id
        ]
        if not rows:
            return 0

        logger.info(f"Saving {len(rows)} posts to cache for account {account_id}")
        saved = 0
        for batch in chunked(rows, self.batch_size):
            res = (
                self.supabase.table("instagram_posts_cache")
                .upsert([prepare_record(r) for r in batch], on_conflict="media_id")
                .execute()
            )
            raise_for_error(res)
            saved += len(batch)
            logger.debug(f"Saved posts cache batch {saved}/{len(rows)}")
        return saved

    async def get_posts(
        self,
        account_id: str,
        since: Optional[date] = None,
        until: Optional[date] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """キャッシュ済み投稿（新しい順）"""
        query = self.supabase.table("instagram_posts_cache").select("*").eq("account_id", account_id)
        if since:
            query = query.gte("timestamp", f"{since.isoformat()}T00:00:00Z")
        if until:
            query = query.lte("timestamp", f"{until.isoformat()}T23:59:59Z")
        query = query.order("timestamp", desc=True)
        if limit:
            query = query.limit(limit)
        res = query.execute()
        raise_for_error(res)
        return to_records(get_data(res))
