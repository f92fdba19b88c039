"""
Daily Insights Sync Service
アカウント単位の日次インサイト（reach / impressions / accounts_engaged など）を
Graph API から取得して instagram_daily_insights に蓄積するサービス。
Graph API は直近30日分しか返さないため、定期実行で履歴を残す。
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ...core.database import get_db_sync
from ...core.instagram_config import instagram_config
from ...repositories.cache_metadata_repository import CacheMetadataRepository
from ...repositories.connected_account_repository import ConnectedAccountRepository
from ...repositories.daily_insights_repository import DailyInsightsRepository, build_daily_row
from ..metrics.normalizer import as_number
from .instagram_api_client import InstagramAPIClient, InstagramAPIError, InstagramAuthError

# ログ設定
logger = logging.getLogger(__name__)

MAX_DAYS_BACK = 30

DailyMap = Dict[str, Dict[str, float]]


@dataclass
class AccountSyncResult:
    """アカウント単位の同期結果"""
    account: str
    success: bool
    days: int = 0
    error: Optional[str] = None
    reconnect_required: bool = False


@dataclass
class DailySyncSummary:
    """日次同期サマリー"""
    days_back: int
    total_accounts: int
    accounts_synced: int
    total_days_synced: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    results: List[AccountSyncResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "days_back": self.days_back,
            "total_accounts": self.total_accounts,
            "accounts_synced": self.accounts_synced,
            "total_days_synced": self.total_days_synced,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "results": [r.__dict__ for r in self.results],
        }


def clamp_days_back(days_back: Optional[int], backfill: bool = False) -> int:
    """取得日数（1〜30、backfill 時は30）"""
    if backfill:
        return MAX_DAYS_BACK
    if days_back is None:
        return instagram_config.DAILY_SYNC_DAYS_BACK
    return min(MAX_DAYS_BACK, max(1, days_back))


def _date_key(end_time: str) -> Optional[str]:
    try:
        parsed = datetime.fromisoformat(end_time.replace("Z", "+00:00").replace("+0000", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date().isoformat()


def add_daily_values(
    daily_map: DailyMap,
    metric_name: str,
    values: Iterable[Mapping[str, Any]],
    max_values: Mapping[str, float],
) -> None:
    """
    values の各要素を日付ごとに振り分ける

    数値でない値・end_time のない値は無視し、日次として不自然に大きい値
    （累積値が日次として返ってきたもの）は警告して捨てる。
    """
    for entry in values:
        if not isinstance(entry, Mapping):
            continue
        value = as_number(entry.get("value"))
        end_time = entry.get("end_time")
        if value is None or not isinstance(end_time, str):
            continue
        date_key = _date_key(end_time)
        if date_key is None:
            continue

        max_value = max_values.get(metric_name)
        if max_value is not None and value > max_value:
            logger.warning(f"Suspicious {metric_name} value {value} for {date_key} exceeds max {max_value} - skipping")
            continue

        daily_map.setdefault(date_key, {})[metric_name] = value


def collect_daily_map(payloads: Iterable[Mapping[str, Any]], max_values: Mapping[str, float]) -> DailyMap:
    """Graph API のレスポンス群を 日付 -> {メトリクス: 値} に変換"""
    daily_map: DailyMap = {}
    for payload in payloads:
        for metric in payload.get("data") or []:
            if not isinstance(metric, Mapping):
                continue
            name = metric.get("name")
            values = metric.get("values")
            if name and isinstance(values, list):
                add_daily_values(daily_map, name, values, max_values)
    return daily_map


def build_daily_rows(
    account_id: str,
    daily_map: DailyMap,
    latest_follower_count: Optional[Any] = None,
) -> List[Dict[str, Any]]:
    """日付昇順の保存用行（最新日の follower_count はプロフィールの値で上書き）"""
    rows = [build_daily_row(account_id, day, daily_map[day]) for day in sorted(daily_map)]
    followers = as_number(latest_follower_count)
    if rows and followers is not None:
        rows[-1]["follower_count"] = followers
    return rows


class DailyInsightsSyncService:
    """日次アカウントインサイト同期サービス"""

    def __init__(
        self,
        account_repo: Optional[ConnectedAccountRepository] = None,
        daily_repo: Optional[DailyInsightsRepository] = None,
        metadata_repo: Optional[CacheMetadataRepository] = None,
        client_factory: Callable[[], InstagramAPIClient] = InstagramAPIClient,
    ):
        self.account_repo = account_repo
        self.daily_repo = daily_repo
        self.metadata_repo = metadata_repo
        self.client_factory = client_factory
        self.config = instagram_config

    def _init_repositories(self):
        """リポジトリ初期化（未指定のものだけ）"""
        if self.account_repo and self.daily_repo and self.metadata_repo:
            return
        db = get_db_sync()
        self.account_repo = self.account_repo or ConnectedAccountRepository(db)
        self.daily_repo = self.daily_repo or DailyInsightsRepository(db)
        self.metadata_repo = self.metadata_repo or CacheMetadataRepository(db)
        logger.info("Repositories initialized successfully")

    async def sync_all(
        self,
        days_back: Optional[int] = None,
        account_id: Optional[str] = None,
        backfill: bool = False,
        dry_run: bool = False,
    ) -> DailySyncSummary:
        """
        連携済みアカウント（または指定アカウント）の日次インサイトを同期

        Args:
            days_back: 何日前から取得するか（1〜30）
            account_id: 対象の connected_accounts.id（未指定時は全アカウント）
            backfill: true の場合は取得可能な30日分を取得
            dry_run: true の場合DB保存を行わない
        """
        started_at = datetime.now(timezone.utc)
        days_back = clamp_days_back(days_back, backfill)
        logger.info(f"Starting daily insights sync (days_back={days_back}, backfill={backfill}, account_id={account_id or 'all'})")

        self._init_repositories()

        if account_id:
            account = await self.account_repo.get_by_id(account_id)
            accounts = [account] if account else []
        else:
            accounts = await self.account_repo.get_all()
        logger.info(f"Found {len(accounts)} account(s) to sync")

        results: List[AccountSyncResult] = []
        async with self.client_factory() as api_client:
            for account in accounts:
                result = await self.sync_account(api_client, account, days_back, dry_run)
                results.append(result)

        completed_at = datetime.now(timezone.utc)
        summary = DailySyncSummary(
            days_back=days_back,
            total_accounts=len(results),
            accounts_synced=sum(1 for r in results if r.success),
            total_days_synced=sum(r.days for r in results),
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
            results=results,
        )
        logger.info(
            f"Daily insights sync completed: {summary.accounts_synced}/{summary.total_accounts} accounts, "
            f"{summary.total_days_synced} day rows, {summary.duration_seconds:.2f}s"
        )
        return summary

    async def _fetch_group(
        self,
        api_client: InstagramAPIClient,
        business_id: str,
        access_token: str,
        label: str,
        metrics: List[str],
        since: date,
        until: date,
    ) -> Optional[Dict[str, Any]]:
        """メトリクスグループを主系・代替ホストの順に取得（両方失敗なら None）"""
        endpoints = [
            self.config.get_graph_base(access_token),
            self.config.get_alternate_graph_base(access_token),
        ]
        for graph_base in endpoints:
            try:
                payload = await api_client.get_account_insights(
                    business_id, access_token, metrics, since, until, graph_base=graph_base
                )
                logger.info(f"{label} fetched successfully from {graph_base}")
                return payload
            except InstagramAuthError:
                raise
            except InstagramAPIError as e:
                logger.warning(f"{label} failed on {graph_base}: {str(e)}")
        logger.warning(f"{label} failed on all endpoints")
        return None

    async def sync_account(
        self,
        api_client: InstagramAPIClient,
        account: Mapping[str, Any],
        days_back: int,
        dry_run: bool = False,
    ) -> AccountSyncResult:
        """単一アカウントの同期（失敗はこのアカウントのみ）"""
        account_id = account["id"]
        business_id = account["provider_account_id"]
        label = account.get("account_username") or account_id

        # TODO: トークン暗号化を導入したらここで復号化する
        access_token = account["access_token"]

        until = datetime.now(timezone.utc).date()
        since = until - timedelta(days=days_back)
        logger.info(f"Syncing account {label}: {since} .. {until}")

        try:
            payloads: List[Dict[str, Any]] = []
            for group_label, metrics in self.config.get_daily_account_metric_groups():
                payload = await self._fetch_group(
                    api_client, business_id, access_token, group_label, metrics, since, until
                )
                if payload is not None:
                    payloads.append(payload)

            daily_map = collect_daily_map(payloads, self.config.get_max_daily_values())
            if not daily_map:
                logger.info(f"No daily insights collected for {label}")
                return AccountSyncResult(account=label, success=True, days=0)

            followers_count = None
            try:
                profile = await api_client.get_basic_account_data(
                    business_id, access_token, fields="followers_count"
                )
                followers_count = profile.get("followers_count")
            except InstagramAuthError:
                raise
            except InstagramAPIError as e:
                logger.warning(f"Failed to fetch profile followers for {label}: {str(e)}")

            rows = build_daily_rows(account_id, daily_map, followers_count)

            if dry_run:
                logger.info(f"DRY RUN - {len(rows)} daily rows for {label} not saved")
                return AccountSyncResult(account=label, success=True, days=len(rows))

            await self.daily_repo.upsert_many(rows)
            try:
                await self.metadata_repo.mark_synced(account_id, insights=True)
            except RuntimeError as e:
                logger.warning(f"Failed to update cache metadata for {label}: {e}")

            logger.info(f"Saved {len(rows)} daily insight rows for {label}")
            return AccountSyncResult(account=label, success=True, days=len(rows))

        except InstagramAuthError as e:
            logger.error(f"Auth error syncing {label}: {str(e)}")
            return AccountSyncResult(
                account=label,
                success=False,
                error=InstagramAuthError.reconnect_message,
                reconnect_required=True,
            )
        except (InstagramAPIError, RuntimeError) as e:
            logger.error(f"Error syncing {label}: {str(e)}")
            return AccountSyncResult(account=label, success=False, error=str(e))


def create_daily_sync_service() -> DailyInsightsSyncService:
    """Daily Insights Sync Service インスタンス作成"""
    return DailyInsightsSyncService()
