"""
Profile Snapshot Repository
instagram_profile_snapshots（1アカウント1日1行のプロフィール履歴）
"""
from datetime import date
from typing import Any, Dict, Mapping, Optional

from supabase import Client

from ..core.records import Record, to_record
from ..core.supabase_utils import get_single_data, prepare_record, raise_for_error

PROFILE_COLUMNS = (
    "username",
    "name",
    "biography",
    "followers_count",
    "follows_count",
    "media_count",
    "profile_picture_url",
    "website",
)


def build_snapshot_row(
    account_id: str,
    business_id: str,
    profile: Mapping[str, Any],
    snapshot_date: date,
) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "account_id": account_id,
        "business_id": business_id,
        "snapshot_date": snapshot_date,
    }
    for column in PROFILE_COLUMNS:
        row[column] = profile.get(column)
    return row


class ProfileSnapshotRepository:
    """プロフィールスナップショット"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def save_snapshot(
        self,
        account_id: str,
        business_id: str,
        profile: Mapping[str, Any],
        snapshot_date: date,
    ) -> Record:
        """当日分のスナップショットを保存（同日は上書き）"""
        row = build_snapshot_row(account_id, business_id, profile, snapshot_date)
        res = (
            self.supabase.table("instagram_profile_snapshots")
            .upsert(prepare_record(row), on_conflict="account_id,snapshot_date")
            .execute()
        )
        raise_for_error(res)
        return to_record(get_single_data(res)) or Record(row)

    async def get_latest(self, account_id: str) -> Optional[Record]:
        """最新のスナップショット"""
        res = (
            self.supabase.table("instagram_profile_snapshots")
            .select("*")
            .eq("account_id", account_id)
            .order("snapshot_date", desc=True)
            .limit(1)
            .execute()
        )
        raise_for_error(res)
        return to_record(get_single_data(res))
