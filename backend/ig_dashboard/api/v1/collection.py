"""
Collection (Sync) API Endpoints
Cloud Scheduler 等からの日次インサイト同期の定期実行・手動実行を受け付けます。
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException, status

from ...schemas.dashboard_schema import DailyInsightsSyncRequest
from ...services.data_collection.daily_sync_service import (
    DailyInsightsSyncService,
    create_daily_sync_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/collection", tags=["collection"])

_COLLECTION_TOKEN_ENV = "COLLECTION_TRIGGER_TOKEN"

# 1プロセス内の重複実行防止（単一インスタンス前提の軽量ロック）
_sync_lock = asyncio.Lock()
_sync_last_status: Dict[str, Any] = {
    "running": False,
    "started_at": None,
    "completed_at": None,
    "last_error": None,
    "last_summary": None,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2:
        return None
    scheme, token = parts[0].strip(), parts[1].strip()
    if scheme.lower() != "bearer":
        return None
    return token or None


def require_collection_token(
    authorization: Optional[str] = Header(None),
    x_collection_token: Optional[str] = Header(None),
) -> None:
    """定期実行/手動実行用の簡易認証（共有トークン）。"""
    expected = os.getenv(_COLLECTION_TOKEN_ENV)
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"{_COLLECTION_TOKEN_ENV} is not configured",
        )

    token = _extract_bearer_token(authorization) or (x_collection_token.strip() if x_collection_token else None)
    if token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def get_sync_service() -> DailyInsightsSyncService:
    return create_daily_sync_service()


async def _run_daily_sync_job(service: DailyInsightsSyncService, req: DailyInsightsSyncRequest) -> None:
    try:
        _sync_last_status.update(
            {
                "running": True,
                "started_at": _now_iso(),
                "completed_at": None,
                "last_error": None,
                "last_summary": None,
            }
        )

        summary = await service.sync_all(
            days_back=req.days_back,
            account_id=req.account_id,
            backfill=req.backfill,
            dry_run=req.dry_run,
        )
        _sync_last_status["last_summary"] = summary.to_dict()
    except Exception as e:
        logger.error(f"Daily insights sync job failed: {e}", exc_info=True)
        _sync_last_status["last_error"] = str(e)
    finally:
        _sync_last_status["running"] = False
        _sync_last_status["completed_at"] = _now_iso()
        if _sync_lock.locked():
            _sync_lock.release()


@router.post(
    "/daily-insights",
    summary="日次インサイト同期トリガー",
    description="バックグラウンドで日次アカウントインサイトの同期を開始します。重複実行は拒否します。",
)
async def trigger_daily_insights_sync(
    background_tasks: BackgroundTasks,
    request: DailyInsightsSyncRequest = Body(default_factory=DailyInsightsSyncRequest),
    service: DailyInsightsSyncService = Depends(get_sync_service),
    _: None = Depends(require_collection_token),
) -> Dict[str, Any]:
    if _sync_lock.locked():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Daily insights sync is already running")

    # ロックを獲得してからバックグラウンドに渡す（同時リクエストの二重起動防止）
    await _sync_lock.acquire()

    background_tasks.add_task(_run_daily_sync_job, service, request)

    return {
        "accepted": True,
        "job": "daily_insights_sync",
        "queued_at": _now_iso(),
        "days_back": request.days_back,
        "account_id": request.account_id,
        "backfill": request.backfill,
        "dry_run": request.dry_run,
    }


@router.get(
    "/daily-insights/status",
    summary="日次インサイト同期ステータス",
    description="直近の実行状況（同一プロセス内）を返します。",
)
async def get_daily_insights_sync_status(
    _: None = Depends(require_collection_token),
) -> Dict[str, Any]:
    return _sync_last_status
