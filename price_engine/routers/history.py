"""
历史价格路由
POST /api/history/point    - 指定时间点的价格
POST /api/history/series   - 价格序列
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from price_engine.models.quote import Holding
from price_engine.models.response import ApiResponse
from price_engine.services.history_service import get_history_service

router = APIRouter(prefix="/api/history", tags=["历史价格"])


class PointRequest(BaseModel):
    holding: Holding
    date: str = Field(..., description="目标时间，ISO 格式；只有日期时按 00:00 UTC")
    tolerance_hours: Optional[float] = Field(default=None, gt=0)


class SeriesRequest(BaseModel):
    holding: Holding
    range_days: int = Field(default=30, ge=1, le=3650)


@router.post("/point", response_model=ApiResponse)
async def historical_point(body: PointRequest):
    """获取目标时间附近的价格，没有样本时 data 为 null"""
    try:
        point = await get_history_service().resolve_historical_point(
            body.holding, body.date, body.tolerance_hours
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"无法解析日期 {body.date}: {exc}",
        )
    if point is None:
        return ApiResponse.ok(data=None, message="目标时间附近没有可用价格")
    return ApiResponse.ok(data=point.model_dump(mode="json"))


@router.post("/series", response_model=ApiResponse)
async def price_series(body: SeriesRequest):
    """获取价格序列"""
    points = await get_history_service().resolve_price_series(body.holding, body.range_days)
    return ApiResponse.ok(
        data=[p.model_dump(mode="json") for p in points],
        count=len(points),
        range_days=body.range_days,
    )
