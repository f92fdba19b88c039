"""
Dashboard API schemas
ダッシュボード・アカウント・同期 API のリクエスト/レスポンスモデル
"""
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class DashboardRequest(BaseModel):
    """ダッシュボード取得リクエスト"""
    account_id: str = Field(..., description="connected_accounts.id")
    max_posts: Optional[int] = Field(default=None, description="取得する投稿数の上限（1〜2000、既定 500）")
    max_stories: Optional[int] = Field(default=None, description="取得するストーリーズ数の上限（1〜50、既定 25）")
    max_insights_posts: Optional[int] = Field(
        default=None,
        description="インサイトを取得する投稿数（新しい順、既定 200）",
    )
    force_refresh: bool = Field(default=False, description="キャッシュを無視して Graph API から取得")
    since: Optional[date] = Field(default=None, description="期間比較の開始日")
    until: Optional[date] = Field(default=None, description="期間比較の終了日")

    @model_validator(mode="after")
    def check_period(self) -> "DashboardRequest":
        if (self.since is None) != (self.until is None):
            raise ValueError("since and until must be given together")
        if self.since and self.until and self.until < self.since:
            raise ValueError("until must not be before since")
        return self


class ConnectedAccountResponse(BaseModel):
    """連携アカウント（アクセストークンは含まない）"""
    id: str
    user_id: Optional[str] = None
    provider: Optional[str] = None
    provider_account_id: Optional[str] = None
    account_username: Optional[str] = None
    token_type: Optional[str] = None


class AccountListResponse(BaseModel):
    accounts: List[ConnectedAccountResponse]
    total: int


class TokenValidationResponse(BaseModel):
    account_id: str
    valid: bool
    token_type: str
    reconnect_required: bool = False
    message: Optional[str] = None


class DailyInsightsSyncRequest(BaseModel):
    """日次インサイト同期トリガー"""
    days_back: Optional[int] = Field(default=None, ge=1, le=30, description="何日前から取得するか（既定 2）")
    account_id: Optional[str] = Field(default=None, description="対象アカウント（未指定時は全アカウント）")
    backfill: bool = Field(default=False, description="true の場合は取得可能な30日分を取得")
    dry_run: bool = Field(default=False, description="true の場合DB保存を行わない")
