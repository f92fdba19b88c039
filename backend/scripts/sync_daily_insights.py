#!/usr/bin/env python3
"""
Daily Insights Sync Script
スケジューラから実行される日次アカウントインサイト同期のエントリーポイント

Usage:
    python scripts/sync_daily_insights.py
    python scripts/sync_daily_insights.py --days-back 7 --account <connected_account_id>
    python scripts/sync_daily_insights.py --backfill --dry-run
    python scripts/sync_daily_insights.py --check-tokens
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

# backend ディレクトリをパスに追加
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

# .envファイルを読み込み
load_dotenv()

from ig_dashboard.core.database import check_connection, get_db_sync
from ig_dashboard.repositories.connected_account_repository import ConnectedAccountRepository
from ig_dashboard.services.data_collection.daily_sync_service import create_daily_sync_service
from ig_dashboard.services.data_collection.instagram_api_client import InstagramAPIClient

# ログ設定
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    """コマンドライン引数の解析"""
    parser = argparse.ArgumentParser(
        description='Instagram Daily Insights Sync Script',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 直近2日分（既定）を全アカウントで同期
  python scripts/sync_daily_insights.py

  # 特定アカウントの直近7日分
  python scripts/sync_daily_insights.py --days-back 7 --account 00000000-0000-0000-0000-000000000000

  # 取得可能な30日分をドライランで確認
  python scripts/sync_daily_insights.py --backfill --dry-run

  # 全アカウントのトークン有効性だけを確認
  python scripts/sync_daily_insights.py --check-tokens
        """
    )

    parser.add_argument(
        '--days-back',
        type=int,
        help='何日前から取得するか (1-30、未指定時は IG_DAILY_SYNC_DAYS_BACK または 2)',
        metavar='N'
    )
    parser.add_argument(
        '--account',
        type=str,
        help='対象アカウント (connected_accounts.id)',
        metavar='ACCOUNT_ID'
    )
    parser.add_argument(
        '--backfill',
        action='store_true',
        help='取得可能な30日分を取得'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='ドライラン実行（データベースに保存しない）'
    )
    parser.add_argument(
        '--check-tokens',
        action='store_true',
        help='同期せずにアクセストークンの有効性のみ確認'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='詳細ログ出力'
    )
    parser.add_argument(
        '--output',
        type=str,
        help='結果をJSONファイルに出力',
        metavar='output.json'
    )

    args = parser.parse_args(argv)
    if args.days_back is not None and not 1 <= args.days_back <= 30:
        parser.error("--days-back must be between 1 and 30")
    return args


def setup_logging(verbose: bool):
    """ログレベル設定"""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger('ig_dashboard').setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def print_summary(summary):
    """実行結果サマリーを表示"""
    print("\n" + "=" * 60)
    print("DAILY INSIGHTS SYNC SUMMARY")
    print("=" * 60)
    print(f"Days back: {summary.days_back}")
    print(f"Duration: {summary.duration_seconds:.2f} seconds")
    print(f"Accounts synced: {summary.accounts_synced}/{summary.total_accounts}")
    print(f"Day rows: {summary.total_days_synced}")
    print("-" * 60)
    for result in summary.results:
        mark = "OK " if result.success else "NG "
        print(f"{mark} {result.account}: {result.days} days")
        if result.error:
            print(f"    Error: {result.error}")
    print("=" * 60)


async def check_tokens(account_id=None) -> int:
    """連携アカウントのトークン確認（無効なものがあれば 1）"""
    repo = ConnectedAccountRepository(get_db_sync())
    if account_id:
        account = await repo.get_by_id(account_id)
        accounts = [account] if account else []
    else:
        accounts = await repo.get_all()

    invalid = 0
    async with InstagramAPIClient() as client:
        for account in accounts:
            label = account.get("account_username") or account["id"]
            valid = await client.validate_access_token(account["provider_account_id"], account["access_token"])
            print(f"{'OK ' if valid else 'NG '} {label}")
            if not valid:
                invalid += 1

    logger.info(f"Token check completed: {len(accounts) - invalid}/{len(accounts)} valid")
    return 1 if invalid else 0


async def main(argv=None):
    """メイン処理"""
    args = parse_arguments(argv)
    setup_logging(args.verbose)

    # 環境変数チェック
    required_env_vars = ['SUPABASE_URL', 'SUPABASE_SERVICE_ROLE_KEY']
    missing_vars = [var for var in required_env_vars if not os.getenv(var)]
    if missing_vars:
        logger.error(f"Missing required environment variables: {', '.join(missing_vars)}")
        return 1

    try:
        logger.info("Testing database connection...")
        if not check_connection():
            logger.error("Database connection failed")
            return 1

        if args.check_tokens:
            return await check_tokens(args.account)

        service = create_daily_sync_service()
        summary = await service.sync_all(
            days_back=args.days_back,
            account_id=args.account,
            backfill=args.backfill,
            dry_run=args.dry_run,
        )

        print_summary(summary)

        if args.output:
            with open(args.output, 'w', encoding='utf-8') as f:
                json.dump(summary.to_dict(), f, indent=2, ensure_ascii=False)
            logger.info(f"Results saved to {args.output}")

        if summary.accounts_synced < summary.total_accounts:
            logger.warning(f"Sync completed with {summary.total_accounts - summary.accounts_synced} failed accounts")
            return 1

        logger.info("Daily insights sync completed successfully")
        return 0

    except KeyboardInterrupt:
        logger.info("Sync interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Critical error in daily insights sync: {str(e)}", exc_info=True)
        return 1


def cli_entry_point():
    """CLI エントリーポイント"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nSync interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    cli_entry_point()
