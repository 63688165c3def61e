"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 清理缓存
"""

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel

from price_engine.layers.cache import CacheKind, get_freshness_cache, get_last_good_store
from price_engine.models.response import ApiResponse

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


class ClearRequest(BaseModel):
    kind: Optional[CacheKind] = None   # 为空时清理全部类别
    include_last_good: bool = False


@router.get("/stats", response_model=ApiResponse)
async def cache_stats():
    """获取缓存统计信息（进程内新鲜度缓存 + Redis 最后有效值）"""
    return ApiResponse.ok(data={
        "freshness": get_freshness_cache().stats(),
        "last_good": await get_last_good_store().stats(),
    })


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(body: Optional[ClearRequest] = None):
    """清理新鲜度缓存，可选同时清理最后有效值"""
    body = body or ClearRequest()
    removed = get_freshness_cache().clear(body.kind)
    removed_last_good = await get_last_good_store().clear() if body.include_last_good else 0
    scope = body.kind.value if body.kind else "all"
    return ApiResponse.ok(
        data={"removed": removed, "removed_last_good": removed_last_good},
        message=f"缓存已清理: {scope}",
    )
