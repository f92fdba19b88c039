"""
API v1 Router
APIエンドポイントの統合
"""
from fastapi import APIRouter

from .dashboard import router as dashboard_router
from .comparisons import router as comparisons_router
from .accounts import router as accounts_router
from .collection import router as collection_router

# v1 APIルーター
api_v1_router = APIRouter(prefix="/api/v1")

# 各機能のルーターを統合
api_v1_router.include_router(dashboard_router)
api_v1_router.include_router(comparisons_router)
api_v1_router.include_router(accounts_router, prefix="/accounts")
api_v1_router.include_router(collection_router)
