"""
报价路由
POST /api/quotes/batch     - 批量解析报价
POST /api/quotes/resolve   - 解析单个持仓
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from price_engine.models.quote import BatchOptions, Holding, Quote
from price_engine.models.response import ApiResponse
from price_engine.services.quote_service import get_quote_service

router = APIRouter(prefix="/api/quotes", tags=["报价"])


class BatchRequest(BaseModel):
    holdings: List[Holding] = Field(default_factory=list)
    options: Optional[BatchOptions] = None


@router.post("/batch", response_model=ApiResponse)
async def resolve_batch(body: BatchRequest):
    """批量解析报价：每个键恰好一条结果（报价或缺失标记）"""
    results = await get_quote_service().resolve_quotes_batch(body.holdings, body.options)
    quotes = {key: entry.model_dump(mode="json") for key, entry in results.items()}
    missing = sum(1 for entry in results.values() if not isinstance(entry, Quote))
    return ApiResponse.ok(
        data=quotes,
        message=f"解析完成：{len(quotes)} 条，缺失 {missing} 条",
        count=len(quotes),
        missing=missing,
    )


@router.post("/resolve", response_model=ApiResponse)
async def resolve_one(holding: Holding):
    """解析单个持仓的报价"""
    quote = await get_quote_service().resolve_quote(holding)
    if quote is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{holding.display_key} 没有可用价格",
        )
    return ApiResponse.ok(data=quote.model_dump(mode="json"))
