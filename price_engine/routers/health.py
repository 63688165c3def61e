"""健康检查路由"""

import time

from fastapi import APIRouter

from price_engine import __version__
from price_engine.db import check_health
from price_engine.layers.cache import get_freshness_cache

router = APIRouter(tags=["健康检查"])


@router.get("/health")
async def health():
    """服务健康检查"""
    db_health = await check_health()
    return {
        "success": True,
        "data": {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "service": "price-engine",
            "databases": db_health,
            "cache": get_freshness_cache().stats()["entries"],
        },
        "message": "服务运行正常",
    }


@router.get("/healthz")
async def healthz():
    """Kubernetes liveness probe"""
    return {"status": "ok"}


@router.get("/readyz")
async def readyz():
    """Kubernetes readiness probe"""
    return {"ready": True}
