"""
Instagram Graph API configuration
Graph API のエンドポイント・取得フィールド・上限値などの設定
"""

from __future__ import annotations

import os
from typing import Dict, List, Tuple

# トークン種別
TOKEN_TYPE_INSTAGRAM = "IGAA"
TOKEN_TYPE_FACEBOOK = "EAA"
TOKEN_TYPE_UNKNOWN = "unknown"


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


class InstagramConfig:
    """Graph API 設定"""

    API_VERSION = os.getenv("INSTAGRAM_API_VERSION", "v24.0")
    FACEBOOK_GRAPH_HOST = os.getenv("FACEBOOK_GRAPH_HOST", "https://graph.facebook.com")
    INSTAGRAM_GRAPH_HOST = os.getenv("INSTAGRAM_GRAPH_HOST", "https://graph.instagram.com")

    REQUEST_TIMEOUT_SECONDS = _int_env("IG_REQUEST_TIMEOUT_SECONDS", 30)

    # 投稿取得
    MEDIA_PAGE_LIMIT = 100
    DEFAULT_MAX_POSTS = 500
    MAX_POSTS_LIMIT = 2000
    DEFAULT_MAX_STORIES = 25
    MAX_STORIES_LIMIT = 50
    DEFAULT_MAX_INSIGHTS_POSTS = _int_env("IG_MAX_INSIGHTS_POSTS", 200)

    # インサイト取得の同時実行数（1バッチあたり）
    INSIGHTS_BATCH_SIZE = _int_env("IG_INSIGHTS_BATCH_SIZE", 50)

    # 1回のダッシュボード読み込み内でのみ有効なリクエストキャッシュ
    REQUEST_CACHE_TTL_SECONDS = _int_env("IG_REQUEST_CACHE_TTL_SECONDS", 300)

    # Supabase キャッシュの有効期限
    CACHE_MAX_AGE_HOURS = _float_env("IG_CACHE_MAX_AGE_HOURS", 24.0)
    POSTS_CACHE_UPSERT_BATCH_SIZE = 100

    TOP_CONTENT_LIMIT = 20
    DEFAULT_TIMEZONE = os.getenv("IG_ACCOUNT_TIMEZONE", "America/Sao_Paulo")

    # likes, comments, saves, shares の順
    DEFAULT_SCORE_WEIGHTS = "1,2,3,4"

    # 日次アカウントインサイトの同期
    DAILY_SYNC_DAYS_BACK = _int_env("IG_DAILY_SYNC_DAYS_BACK", 2)

    def get_common_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "ig-dashboard-backend/1.0",
        }

    def detect_token_type(self, access_token: str) -> str:
        """アクセストークンの接頭辞から種別を判定"""
        token = access_token or ""
        if token.startswith("IGAA") or token.startswith("IGQV") or token.startswith("IG"):
            return TOKEN_TYPE_INSTAGRAM
        if token.startswith("EAA"):
            return TOKEN_TYPE_FACEBOOK
        return TOKEN_TYPE_UNKNOWN

    def get_graph_base(self, access_token: str) -> str:
        """トークン種別に対応する Graph API ベースURL（IGAA トークンは graph.instagram.com のみ有効）"""
        if self.detect_token_type(access_token) == TOKEN_TYPE_INSTAGRAM:
            return f"{self.INSTAGRAM_GRAPH_HOST}/{self.API_VERSION}"
        return f"{self.FACEBOOK_GRAPH_HOST}/{self.API_VERSION}"

    def get_alternate_graph_base(self, access_token: str) -> str:
        """主系で失敗したときに試すもう一方のベースURL"""
        if self.detect_token_type(access_token) == TOKEN_TYPE_INSTAGRAM:
            return f"{self.FACEBOOK_GRAPH_HOST}/{self.API_VERSION}"
        return f"{self.INSTAGRAM_GRAPH_HOST}/{self.API_VERSION}"

    def get_user_url(self, graph_base: str, instagram_user_id: str) -> str:
        return f"{graph_base}/{instagram_user_id}"

    def get_user_media_url(self, graph_base: str, instagram_user_id: str) -> str:
        return f"{graph_base}/{instagram_user_id}/media"

    def get_user_stories_url(self, graph_base: str, instagram_user_id: str) -> str:
        return f"{graph_base}/{instagram_user_id}/stories"

    def get_insights_url(self, graph_base: str, object_id: str) -> str:
        return f"{graph_base}/{object_id}/insights"

    def get_profile_fields(self) -> str:
        return "id,username,name,biography,followers_count,follows_count,media_count,profile_picture_url,website"

    def get_media_fields(self) -> str:
        return "id,caption,media_type,media_product_type,media_url,permalink,thumbnail_url,timestamp,like_count,comments_count"

    def get_story_fields(self) -> str:
        return "id,media_type,media_url,permalink,timestamp"

    def get_daily_account_metric_groups(self) -> List[Tuple[str, List[str]]]:
        """日次アカウントインサイトのメトリクスグループ（グループ単位で取得・失敗を分離）"""
        return [
            ("reach/profile_views", ["reach", "profile_views"]),
            ("impressions", ["impressions"]),
            ("accounts_engaged", ["accounts_engaged"]),
            ("follower_count", ["follower_count"]),
            (
                "contact_clicks",
                [
                    "website_clicks",
                    "text_message_clicks",
                    "email_contacts",
                    "phone_call_clicks",
                    "get_directions_clicks",
                ],
            ),
        ]

    def get_max_daily_values(self) -> Dict[str, int]:
        """日次値として妥当な上限（累積値が日次として返るケースを除外）"""
        return {
            "reach": 500_000,
            "impressions": 1_000_000,
            "profile_views": 100_000,
            "accounts_engaged": 100_000,
            "website_clicks": 50_000,
            "follower_count": 10_000_000,
        }

    def get_score_weights(self) -> Tuple[float, float, float, float]:
        """ランキング用スコアの重み（IG_SCORE_WEIGHTS="likes,comments,saves,shares"）"""
        raw = os.getenv("IG_SCORE_WEIGHTS", self.DEFAULT_SCORE_WEIGHTS)
        parts = [p.strip() for p in raw.split(",") if p.strip()]
        if len(parts) != 4:
            raise ValueError(f"IG_SCORE_WEIGHTS must have 4 comma-separated numbers, got: {raw!r}")
        likes, comments, saves, shares = (float(p) for p in parts)
        return likes, comments, saves, shares


instagram_config = InstagramConfig()
