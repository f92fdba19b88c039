"""
Instagram Graph API Client
Instagram Graph API との通信を担当するクライアント
トークン種別（IGAA / EAA）に応じて graph.instagram.com / graph.facebook.com を使い分ける
"""
import aiohttp
import asyncio
import json
from datetime import date
from typing import Dict, Any, List, Optional, Sequence
import logging

from ...core.instagram_config import instagram_config
from ...core.request_cache import RequestCache
from ..metrics.normalizer import RawMetricBag, parse_raw_metric_bag

# ログ設定
logger = logging.getLogger(__name__)

# アカウント単位の認証エラー（再接続が必要）
AUTH_ERROR_CODES = frozenset({190, 102})
AUTH_ERROR_MESSAGES = (
    "Cannot parse access token",
    "Invalid OAuth access token",
    "Error validating access token",
    "Session has expired",
)

RECONNECT_MESSAGE = (
    "Access token is invalid or expired. Please reconnect your Instagram account to obtain a new token."
)


class InstagramAPIError(Exception):
    """Instagram API エラー"""
    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        error_data: Optional[Dict] = None,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.error_data = error_data or {}
        self.status = status


class InstagramAuthError(InstagramAPIError):
    """トークン無効・期限切れなどアカウント単位の認証エラー（リトライしない）"""

    reconnect_message = RECONNECT_MESSAGE


def is_auth_error(status: Optional[int], error_info: Dict[str, Any]) -> bool:
    """Graph API のエラー内容が認証エラーかどうか"""
    if status == 401:
        return True
    if error_info.get("code") in AUTH_ERROR_CODES:
        return True
    message = str(error_info.get("message") or "")
    return any(fragment in message for fragment in AUTH_ERROR_MESSAGES)


class InstagramAPIClient:
    """Instagram Graph API クライアント"""

    def __init__(self, request_cache: Optional[RequestCache] = None):
        self.config = instagram_config
        self.session: Optional[aiohttp.ClientSession] = None
        self.request_cache = request_cache

    async def __aenter__(self):
        """非同期コンテキストマネージャー入口"""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.config.REQUEST_TIMEOUT_SECONDS),
            headers=self.config.get_common_headers()
        )
        logger.debug("Instagram API client session created")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """非同期コンテキストマネージャー出口"""
        if self.session:
            await self.session.close()
            self.session = None
            logger.debug("Instagram API client session closed")

    def _graph_base(self, access_token: str, graph_base: Optional[str]) -> str:
        return graph_base or self.config.get_graph_base(access_token)

    async def _make_request(
        self,
        url: str,
        params: Dict[str, Any],
        method: str = "GET"
    ) -> Dict[str, Any]:
        """
        API リクエストを実行

        Args:
            url: リクエストURL
            params: クエリパラメータ
            method: HTTPメソッド

        Returns:
            Dict[str, Any]: API レスポンス

        Raises:
            InstagramAuthError: 認証エラー時
            InstagramAPIError: その他の API エラー時
        """
        if not self.session:
            raise InstagramAPIError("API client session not initialized")

        cache_key = None
        if self.request_cache is not None and method.upper() == "GET":
            cache_key = RequestCache.make_key(url, params)
            cached = self.request_cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Request cache hit for {url}")
                return cached

        try:
            logger.debug(f"Making {method} request to {url} with params: {list(params.keys())}")

            async with self.session.request(method, url, params=params) as response:
                status = response.status
                text = await response.text()

            response_data = json.loads(text) if text else {}

        except aiohttp.ClientError as e:
            logger.error(f"Network error during API request: {str(e)}")
            raise InstagramAPIError(f"Network error: {str(e)}") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Timeout during API request to {url}")
            raise InstagramAPIError("Request timed out") from e
        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error: {str(e)}")
            raise InstagramAPIError(f"Invalid JSON response: {str(e)}", status=status) from e

        if not isinstance(response_data, dict):
            raise InstagramAPIError("Unexpected response type", status=status)

        # エラーレスポンスのチェック
        if "error" in response_data or status >= 400:
            error_info = response_data.get("error") or {}
            if not isinstance(error_info, dict):
                error_info = {"message": str(error_info)}
            error_code = error_info.get("code")
            error_message = error_info.get("message", f"HTTP {status}")

            if is_auth_error(status, error_info):
                logger.error(f"Instagram API auth error - Code: {error_code}, Message: {error_message}")
                raise InstagramAuthError(
                    f"Instagram API auth error: {error_message}",
                    error_code=error_code,
                    error_data=error_info,
                    status=status,
                )

            logger.warning(f"Instagram API error - Status: {status}, Code: {error_code}, Message: {error_message}")
            raise InstagramAPIError(
                f"Instagram API error: {error_message}",
                error_code=error_code,
                error_data=error_info,
                status=status,
            )

        logger.debug(f"API request successful - Response keys: {list(response_data.keys())}")
        if cache_key is not None:
            self.request_cache.set(cache_key, response_data)
        return response_data

    async def get_basic_account_data(
        self,
        instagram_user_id: str,
        access_token: str,
        fields: Optional[str] = None,
        graph_base: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        プロフィール取得

        Args:
            instagram_user_id: Instagram User ID
            access_token: アクセストークン（平文）
            fields: 取得フィールド（省略時はプロフィール全体）
            graph_base: Graph API ベースURL（省略時はトークン種別から判定）

        Returns:
            Dict[str, Any]: アカウント情報
        """
        base = self._graph_base(access_token, graph_base)
        url = self.config.get_user_url(base, instagram_user_id)

        params = {
            'fields': fields or self.config.get_profile_fields(),
            'access_token': access_token
        }

        try:
            logger.info(f"Fetching account profile for user: {instagram_user_id}")
            data = await self._make_request(url, params)

            missing_fields = [field for field in ('id', 'username') if field not in data]
            if missing_fields and fields is None:
                logger.warning(f"Missing required fields in account profile: {missing_fields}")

            logger.info(f"Successfully fetched account profile - Username: {data.get('username', 'unknown')}")
            return data

        except InstagramAPIError as e:
            logger.error(f"Failed to fetch account profile for user {instagram_user_id}: {str(e)}")
            raise

    async def get_media(
        self,
        instagram_user_id: str,
        access_token: str,
        max_posts: int = instagram_config.DEFAULT_MAX_POSTS,
        graph_base: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        投稿一覧取得（ページング対応・新しい順）

        Args:
            instagram_user_id: Instagram User ID
            access_token: アクセストークン（平文）
            max_posts: 最大取得件数
        """
        base = self._graph_base(access_token, graph_base)
        url = self.config.get_user_media_url(base, instagram_user_id)

        params = {
            "fields": self.config.get_media_fields(),
            "access_token": access_token,
            "limit": self.config.MEDIA_PAGE_LIMIT,
        }

        logger.info(f"Fetching media for user: {instagram_user_id}, max_posts={max_posts}")

        data = await self._make_request(url, params)
        collected: List[Dict[str, Any]] = list(data.get("data") or [])
        next_url = (data.get("paging") or {}).get("next")

        while next_url and len(collected) < max_posts:
            # next URL にはクエリ（access_token 含む）が含まれる
            page = await self._make_request(next_url, {})
            batch = page.get("data") or []
            if not batch:
                break
            collected.extend(batch)
            next_url = (page.get("paging") or {}).get("next")

        media = collected[:max_posts]
        logger.info(f"Successfully fetched media - {len(media)} items collected")
        return media

    async def get_stories(
        self,
        instagram_user_id: str,
        access_token: str,
        max_stories: int = instagram_config.DEFAULT_MAX_STORIES,
        graph_base: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        公開中ストーリーズ取得

        ストーリーズは任意データのため、認証エラー以外の失敗は空リストとして扱う。
        """
        base = self._graph_base(access_token, graph_base)
        url = self.config.get_user_stories_url(base, instagram_user_id)

        params = {
            "fields": self.config.get_story_fields(),
            "access_token": access_token,
            "limit": max_stories,
        }

        try:
            logger.info(f"Fetching stories for user: {instagram_user_id}")
            data = await self._make_request(url, params)
        except InstagramAuthError:
            raise
        except InstagramAPIError as e:
            logger.warning(f"Failed to fetch stories for user {instagram_user_id} (continuing): {str(e)}")
            return []

        stories = list(data.get("data") or [])[:max_stories]
        logger.info(f"Successfully fetched stories - {len(stories)} items")
        return stories

    async def get_media_insights(
        self,
        media_id: str,
        access_token: str,
        candidates: Sequence[str],
        graph_base: Optional[str] = None,
    ) -> RawMetricBag:
        """
        メディアのインサイト取得（メトリクス組み合わせを順に試す）

        1つでも無効なメトリクス名を含むとリクエスト全体が失敗するため、
        空でない結果が得られた最初の組み合わせを採用する。
        全て失敗した場合は空の bag を返す。認証エラーはそのまま送出する。

        Args:
            media_id: メディアID
            access_token: アクセストークン（平文）
            candidates: カンマ区切りメトリクスの組み合わせ（優先順）

        Returns:
            RawMetricBag: メトリクス名 -> 値
        """
        base = self._graph_base(access_token, graph_base)
        url = self.config.get_insights_url(base, media_id)

        for metrics in candidates:
            params = {
                'metric': metrics,
                'access_token': access_token
            }
            try:
                data = await self._make_request(url, params)
            except InstagramAuthError:
                raise
            except InstagramAPIError as e:
                logger.debug(f"Insights candidate '{metrics}' failed for media {media_id}: {str(e)}")
                continue

            bag = parse_raw_metric_bag(data, context=f"media {media_id}")
            if bag:
                logger.debug(f"Insights fetched for media {media_id} with '{metrics}': {list(bag.keys())}")
                return bag
            logger.debug(f"Insights candidate '{metrics}' returned no values for media {media_id}")

        logger.info(f"No insights available for media {media_id} after {len(candidates)} candidates")
        return {}

    async def get_account_insights(
        self,
        instagram_user_id: str,
        access_token: str,
        metrics: Sequence[str],
        since: date,
        until: date,
        graph_base: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        アカウントの日次インサイト取得（period=day）

        Returns:
            Dict[str, Any]: Graph API のレスポンス（data: [{name, values: [{value, end_time}]}]）
        """
        base = self._graph_base(access_token, graph_base)
        url = self.config.get_insights_url(base, instagram_user_id)

        params = {
            'metric': ','.join(metrics),
            'period': 'day',
            'since': since.strftime('%Y-%m-%d'),
            'until': until.strftime('%Y-%m-%d'),
            'access_token': access_token
        }

        logger.info(f"Fetching account insights for user: {instagram_user_id}, metrics={','.join(metrics)}, {since}..{until}")
        data = await self._make_request(url, params)
        logger.debug(f"Account insights response: {len(data.get('data') or [])} metrics")
        return data

    async def validate_access_token(
        self,
        instagram_user_id: str,
        access_token: str
    ) -> bool:
        """
        アクセストークンの有効性を検証

        Args:
            instagram_user_id: Instagram User ID
            access_token: アクセストークン（平文）

        Returns:
            bool: トークンが有効な場合 True
        """
        try:
            logger.info(f"Validating access token for user: {instagram_user_id}")

            # プロフィール取得でトークンをテスト
            await self.get_basic_account_data(instagram_user_id, access_token, fields="id,username")

            logger.info(f"Access token validation successful for user: {instagram_user_id}")
            return True

        except InstagramAPIError as e:
            logger.error(f"Access token validation failed for user {instagram_user_id}: {str(e)}")
            return False
