"""
price-engine 行情解析服务
独立 FastAPI 应用程序入口

启动方式:
    uvicorn price_engine.main:app --host 0.0.0.0 --port 8002
    python -m price_engine.main
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from price_engine import __version__
from price_engine.config import settings
from price_engine.db import init_redis, close_connections
from price_engine.models.response import ApiResponse
from price_engine.routers import health, quotes, history, cache
from price_engine.services.history_service import reset_history_service
from price_engine.services.http_client import close_http_client
from price_engine.services.quote_service import reset_quote_service

# ── 日志配置 ──────────────────────────────────────────────
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── 生命周期管理 ──────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用启动/关闭生命周期钩子"""
    logger.info("=" * 60)
    logger.info(f"🚀 price-engine v{__version__} 启动中")
    logger.info(f"   Backend   : {settings.BACKEND_API_BASE}")
    logger.info(f"   Redis     : {settings.REDIS_HOST}:{settings.REDIS_PORT}")
    logger.info(f"   Relays    : {'启用' if settings.RELAY_ENABLED else '停用（直连）'}")
    logger.info("=" * 60)

    # Redis 失败不阻断启动，降级为无最后有效值存储
    if await init_redis():
        logger.info("✅ Redis 连接就绪")
    else:
        logger.warning("⚠️ Redis 不可用，过期回退仅使用持仓自带价格")

    yield

    logger.info("🔄 行情解析服务正在关闭...")
    await close_http_client()
    reset_quote_service()
    reset_history_service()
    await close_connections()
    logger.info("✅ 行情解析服务已关闭")


# ── 应用实例 ──────────────────────────────────────────────
app = FastAPI(
    title="price-engine 行情解析服务",
    description=(
        "为持仓组合解析实时报价与历史价格：\n"
        "- 📊 全局股票 / ETF / 指数 / 加密货币（后端聚合接口，分块串行）\n"
        "- 🏛️ 本地交易所证券（抓取源轮换 + 中继链）\n"
        "- 🔁 本地失败项自动改走全局数据源\n"
        "- 🗄️ 进程内新鲜度缓存 + Redis 最后有效值\n\n"
        "**分层架构**\n"
        "```\n"
        "Identifiers  ← 持仓 → 规范标识符\n"
        "Routing      ← 本地交易所 / 全局 分桶\n"
        "Fetchers     ← 本地抓取源 ∥ 全局批量\n"
        "Waterfall    ← 本地失败项救援\n"
        "Merger       ← 新鲜 > 救援 > 过期 > 缺失\n"
        "```"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS 中间件 ───────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── 请求计时中间件 ─────────────────────────────────────────
@app.middleware("http")
async def add_process_time(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = f"{(time.time() - start) * 1000:.1f}ms"
    return response


# ── 全局异常处理 ──────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"未处理的异常: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ApiResponse.fail(error="内部服务错误", message=str(exc)).model_dump(),
    )


# ── 注册路由 ──────────────────────────────────────────────
app.include_router(health.router)
app.include_router(quotes.router)
app.include_router(history.router)
app.include_router(cache.router)


# ── 根路由 ───────────────────────────────────────────────
@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "price-engine",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


# ── 直接运行入口 ──────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "price_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
