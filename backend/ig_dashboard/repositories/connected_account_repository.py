"""
Connected Account Repository
Supabase (PostgREST) 経由で connected_accounts を参照するデータアクセス層
"""
from typing import List, Optional

from supabase import Client

from ..core.records import Record, public_fields, to_record, to_records
from ..core.supabase_utils import get_data, get_single_data, raise_for_error

ACCOUNT_COLUMNS = "id,user_id,provider,provider_account_id,access_token,account_username"
INSTAGRAM_PROVIDERS = ("facebook", "instagram")
SECRET_COLUMNS = ("access_token",)


class AccountNotFoundError(LookupError):
    """指定 ID の連携アカウントが存在しない"""

    def __init__(self, account_id: str):
        super().__init__(f"Account not found: {account_id}")
        self.account_id = account_id


class ConnectedAccountRepository:
    """連携済み Instagram アカウント（読み取り専用）"""

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def get_all(self, user_id: Optional[str] = None) -> List[Record]:
        """Instagram 系プロバイダの連携アカウント一覧"""
        query = (
            self.supabase.table("connected_accounts")
            .select(ACCOUNT_COLUMNS)
            .in_("provider", list(INSTAGRAM_PROVIDERS))
        )
        if user_id:
            query = query.eq("user_id", user_id)
        res = query.order("account_username").execute()
        raise_for_error(res)
        return to_records(get_data(res))

    async def get_by_id(self, account_id: str) -> Optional[Record]:
        """ID による連携アカウント取得"""
        res = (
            self.supabase.table("connected_accounts")
            .select(ACCOUNT_COLUMNS)
            .eq("id", account_id)
            .limit(1)
            .execute()
        )
        raise_for_error(res)
        return to_record(get_single_data(res))

    @staticmethod
    def to_public(account: Record) -> Record:
        """API レスポンス用（アクセストークンを除外）"""
        return public_fields(account, SECRET_COLUMNS)
