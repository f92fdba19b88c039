"""
Accounts API Endpoints
連携アカウントの一覧・トークン確認
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from supabase import Client

from ...core.database import get_db
from ...core.instagram_config import instagram_config
from ...repositories.connected_account_repository import ConnectedAccountRepository
from ...schemas.dashboard_schema import (
    AccountListResponse,
    ConnectedAccountResponse,
    TokenValidationResponse,
)
from ...services.data_collection.instagram_api_client import (
    InstagramAPIClient,
    InstagramAPIError,
    InstagramAuthError,
)

# ログ設定
logger = logging.getLogger(__name__)

# ルーター設定
router = APIRouter(tags=["accounts"])


def get_account_repository(db: Client = Depends(get_db)) -> ConnectedAccountRepository:
    return ConnectedAccountRepository(db)


def get_api_client_factory():
    return InstagramAPIClient


# trailing slashありとなしの両方に対応
@router.get(
    "/",
    response_model=AccountListResponse,
    summary="連携アカウント一覧取得",
)
@router.get(
    "",
    response_model=AccountListResponse,
    summary="連携アカウント一覧取得",
    description="Instagram 連携済みアカウントの一覧を取得します（アクセストークンは含みません）。",
)
async def get_accounts(
    user_id: Optional[str] = Query(None, description="所有ユーザーで絞り込み"),
    repo: ConnectedAccountRepository = Depends(get_account_repository),
) -> AccountListResponse:
    try:
        logger.info(f"GET /accounts - user_id={user_id}")
        accounts = await repo.get_all(user_id=user_id)

        items = []
        for account in accounts:
            public = ConnectedAccountRepository.to_public(account)
            items.append(
                ConnectedAccountResponse(
                    **public,
                    token_type=instagram_config.detect_token_type(account.get("access_token") or ""),
                )
            )
        return AccountListResponse(accounts=items, total=len(items))

    except Exception as e:
        logger.error(f"Failed to get accounts: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Internal server error occurred while fetching accounts"
        )


@router.post(
    "/{account_id}/validate-token",
    response_model=TokenValidationResponse,
    summary="トークン有効性確認",
    description="指定されたアカウントのアクセストークンで Graph API のプロフィール取得を試します。",
)
async def validate_account_token(
    account_id: str,
    repo: ConnectedAccountRepository = Depends(get_account_repository),
    client_factory=Depends(get_api_client_factory),
) -> TokenValidationResponse:
    try:
        logger.info(f"POST /accounts/{account_id}/validate-token")

        account = await repo.get_by_id(account_id)
        if not account:
            raise HTTPException(status_code=404, detail=f"Account not found: {account_id}")

        # TODO: トークン暗号化を導入したらここで復号化する
        access_token = account.get("access_token") or ""
        token_type = instagram_config.detect_token_type(access_token)

        async with client_factory() as client:
            try:
                await client.get_basic_account_data(
                    account["provider_account_id"], access_token, fields="id,username"
                )
            except InstagramAuthError:
                return TokenValidationResponse(
                    account_id=account_id,
                    valid=False,
                    token_type=token_type,
                    reconnect_required=True,
                    message=InstagramAuthError.reconnect_message,
                )
            except InstagramAPIError as e:
                return TokenValidationResponse(
                    account_id=account_id,
                    valid=False,
                    token_type=token_type,
                    message=str(e),
                )

        return TokenValidationResponse(account_id=account_id, valid=True, token_type=token_type)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to validate token: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="Internal server error occurred while validating token"
        )
