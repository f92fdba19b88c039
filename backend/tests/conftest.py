"""
Shared pytest fixtures.
"""
import pytest


@pytest.fixture
def account():
    return {
        "id": "acc-1",
        "user_id": "user-1",
        "provider": "instagram",
        "provider_account_id": "1789",
        "access_token": "IGAAtesttoken",
        "account_username": "brand",
    }


@pytest.fixture
def no_score_weights_env(monkeypatch):
    monkeypatch.delenv("IG_SCORE_WEIGHTS", raising=False)
