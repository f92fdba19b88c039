"""
Dashboard API Endpoints
ダッシュボード表示用データの取得
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from supabase import Client

from ...core.database import get_db
from ...repositories.connected_account_repository import AccountNotFoundError
from ...schemas.dashboard_schema import DashboardRequest
from ...services.api.dashboard_service import DashboardService, create_dashboard_service
from ...services.data_collection.instagram_api_client import InstagramAPIError, InstagramAuthError

# ログ設定
logger = logging.getLogger(__name__)

# ルーター設定
router = APIRouter(tags=["dashboard"])


def get_dashboard_service(db: Client = Depends(get_db)) -> DashboardService:
    return create_dashboard_service(db)


def reconnect_exception(error: InstagramAuthError) -> HTTPException:
    """認証エラー（再接続が必要）のレスポンス"""
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "message": error.reconnect_message,
            "reconnect_required": True,
            "error_code": error.error_code,
        },
    )


@router.post(
    "/dashboard",
    summary="ダッシュボードデータ取得",
    description="プロフィール・投稿・ストーリーズと正規化済みメトリクス、ランキング、集計を返します。",
)
async def get_dashboard(
    request: DashboardRequest,
    service: DashboardService = Depends(get_dashboard_service),
) -> Dict[str, Any]:
    """
    ダッシュボードデータ取得

    - **account_id**: connected_accounts.id
    - **force_refresh**: キャッシュを無視して Graph API から取得
    - **since / until**: 指定時は直前の同じ長さの期間との比較を含む
    """
    try:
        logger.info(f"POST /dashboard - account_id={request.account_id}, force_refresh={request.force_refresh}")

        return await service.load_dashboard(
            account_id=request.account_id,
            max_posts=request.max_posts,
            max_stories=request.max_stories,
            max_insights_posts=request.max_insights_posts,
            force_refresh=request.force_refresh,
            since=request.since,
            until=request.until,
        )

    except InstagramAuthError as e:
        logger.warning(f"Dashboard auth error for account {request.account_id}: {str(e)}")
        raise reconnect_exception(e)
    except InstagramAPIError as e:
        logger.error(f"Dashboard upstream error for account {request.account_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Instagram API error: {str(e)}",
        )
    except AccountNotFoundError as e:
        logger.warning(f"Dashboard request rejected: {str(e)}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to load dashboard: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error occurred while loading dashboard",
        )
