"""
Comparisons API Endpoints
期間比較
"""
import logging
from datetime import date
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, status
from supabase import Client

from ...core.database import get_db
from ...repositories.connected_account_repository import AccountNotFoundError
from ...services.api.comparison_service import ComparisonService, create_comparison_service

# ログ設定
logger = logging.getLogger(__name__)

# ルーター設定
router = APIRouter(tags=["comparisons"])


def get_comparison_service(db: Client = Depends(get_db)) -> ComparisonService:
    return create_comparison_service(db)


@router.get(
    "/comparisons",
    summary="期間比較",
    description="指定期間と直前の同じ長さの期間について、アカウント指標と投稿指標の変化量・変化率を返します。",
)
async def get_comparison(
    account_id: str = Query(..., description="connected_accounts.id"),
    since: date = Query(..., description="期間開始日（含む）"),
    until: date = Query(..., description="期間終了日（含む）"),
    service: ComparisonService = Depends(get_comparison_service),
) -> Dict[str, Any]:
    if until < since:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="until must not be before since",
        )

    try:
        logger.info(f"GET /comparisons - account_id={account_id}, {since}..{until}")
        return await service.compare(account_id, since, until)

    except AccountNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to compare periods: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error occurred while comparing periods",
        )
