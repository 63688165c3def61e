"""
共享出站 HTTP 客户端（后端聚合接口、抓取源、中继共用一个连接池）
"""

import logging
from typing import Optional

import httpx

from price_engine import __version__
from price_engine.config import settings

logger = logging.getLogger(__name__)

_client: Optional[httpx.AsyncClient] = None


def get_http_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=settings.HTTP_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": f"price-engine/{__version__}"},
        )
    return _client


async def close_http_client() -> None:
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
        logger.info("出站 HTTP 客户端已关闭")
    _client = None
