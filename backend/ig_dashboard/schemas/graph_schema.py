"""
Graph API response schemas
Graph API の insights レスポンスを境界で検証するためのモデル
"""
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InsightValue(BaseModel):
    """insights の values 要素"""
    model_config = ConfigDict(extra="ignore")

    value: Any = None
    end_time: Optional[str] = None


class InsightTotalValue(BaseModel):
    """metric_type=total_value 指定時の集計値"""
    model_config = ConfigDict(extra="ignore")

    value: Any = None


class InsightEntry(BaseModel):
    """insights の data 要素（1メトリクス）"""
    model_config = ConfigDict(extra="ignore")

    name: str
    values: List[InsightValue] = Field(default_factory=list)
    total_value: Optional[InsightTotalValue] = None


class InsightsResponse(BaseModel):
    """/{object_id}/insights のレスポンス"""
    model_config = ConfigDict(extra="ignore")

    data: List[InsightEntry] = Field(default_factory=list)
