"""
Daily Insights Repository
instagram_daily_insights（アカウント単位の日次インサイト）
"""
from datetime import date
from typing import Any, Dict, List, Mapping, Sequence

from supabase import Client

from ..core.records import Record, to_records
from ..core.supabase_utils import get_data, prepare_record, raise_for_error

DAILY_METRIC_COLUMNS = (
    "reach",
    "impressions",
    "accounts_engaged",
    "profile_views",
    "website_clicks",
    "follower_count",
    "email_contacts",
    "phone_call_clicks",
    "text_message_clicks",
    "get_directions_clicks",
)


def build_daily_row(account_id: str, insight_date: str, metrics: Mapping[str, Any]) -> Dict[str, Any]:
    """日次行（取得できなかったメトリクスは NULL）"""
    row: Dict[str, Any] = {"account_id": account_id, "insight_date": insight_date}
    for column in DAILY_METRIC_COLUMNS:
        row[column] = metrics.get(column)
    return row


class DailyInsightsRepository:
    """日次アカウントインサイト"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def upsert_many(self, rows: Sequence[Mapping[str, Any]]) -> int:
        """日次行をまとめて保存（account_id, insight_date で上書き）"""
        if not rows:
            return 0
        res = (
            self.supabase.table("instagram_daily_insights")
            .upsert([prepare_record(r) for r in rows], on_conflict="account_id,insight_date")
            .execute()
        )
        raise_for_error(res)
        return len(rows)

    async def get_by_date_range(self, account_id: str, start_date: date, end_date: date) -> List[Record]:
        """日付範囲の日次行（新しい順）"""
        res = (
            self.supabase.table("instagram_daily_insights")
            .select("*")
            .eq("account_id", account_id)
            .gte("insight_date", start_date.isoformat())
            .lte("insight_date", end_date.isoformat())
            .order("insight_date", desc=True)
            .execute()
        )
        raise_for_error(res)
        return to_records(get_data(res))
