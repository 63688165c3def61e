"""
历史价格服务
  resolve_historical_point : 指定时间点的价格（容差内最近样本）
  resolve_price_series     : 图表用价格序列
本地交易所证券没有历史数据源，直接返回空结果，不发起请求。
"""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional, Union

import httpx
import pandas as pd

from price_engine.config import settings
from price_engine.layers.cache import CacheKind, FreshnessCache, _make_key, get_freshness_cache
from price_engine.layers.global_batch import GlobalBatchFetcher
from price_engine.layers.identifiers import resolve_identifier
from price_engine.layers.processing import (
    ProcessingLayer,
    get_processing_layer,
    range_for_days,
    to_utc_timestamp,
)
from price_engine.layers.routing import is_exchange_local
from price_engine.models.quote import Holding, PricePoint
from price_engine.services.http_client import get_http_client

logger = logging.getLogger(__name__)

_HISTORY_CACHE_NS = "history"
_INTERVAL = "1d"


class HistoryService:
    """历史价格业务服务"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[FreshnessCache] = None,
        processor: Optional[ProcessingLayer] = None,
        fetcher: Optional[GlobalBatchFetcher] = None,
    ):
        self._cache = cache or get_freshness_cache()
        self._proc = processor or get_processing_layer()
        self._fetcher = fetcher or GlobalBatchFetcher(client or get_http_client())

    def _identifier_for(self, holding: Holding) -> Optional[str]:
        identifier = resolve_identifier(holding)
        if identifier is None:
            logger.info(f"{holding.display_key} 无法解析标识符，跳过历史查询")
            return None
        if is_exchange_local(holding, identifier):
            logger.debug(f"{identifier} 为本地交易所证券，没有历史数据源")
            return None
        return identifier

    async def _load_series(self, identifier: str, range_: str) -> pd.DataFrame:
        """读取（或拉取并缓存）标准化后的历史序列"""
        key = _make_key(_HISTORY_CACHE_NS, identifier, range_, _INTERVAL)
        cached = self._cache.get(key, CacheKind.HISTORY)
        if cached is not None:
            return cached

        payload = await self._fetcher.fetch_history(identifier, range_, _INTERVAL)
        if payload.error:
            logger.warning(f"{identifier} 历史数据不可用（{range_}）: {payload.error}")
            return self._proc.normalize_series([])

        df = self._proc.normalize_series(payload.points)
        if not df.empty:
            self._cache.put(key, CacheKind.HISTORY, df)
        return df

    # ── 时间点价格 ────────────────────────────────────────

    async def resolve_historical_point(
        self,
        holding: Holding,
        target: Union[datetime, date, str],
        tolerance_hours: Optional[float] = None,
    ) -> Optional[PricePoint]:
        """
        获取目标时间附近的价格

        Args:
            holding: 持仓
            target: 目标时间；只有日期时按当天 00:00 UTC
            tolerance_hours: 最近样本与目标的最大距离，默认 24 小时

        Returns:
            最近样本；本地交易所证券、无数据或超出容差时返回 None
        """
        identifier = self._identifier_for(holding)
        if identifier is None:
            return None

        target_ts = to_utc_timestamp(target)
        age_days = (pd.Timestamp.now(tz=timezone.utc) - target_ts) / pd.Timedelta(days=1)
        # 多取一天，容差窗口不会落在区间外
        range_ = range_for_days(max(age_days, 0) + 1)

        df = await self._load_series(identifier, range_)
        tolerance = settings.HISTORY_TOLERANCE_HOURS if tolerance_hours is None else tolerance_hours
        point = self._proc.nearest_point(df, target_ts, tolerance)
        if point is None:
            logger.info(f"{identifier} 在 {target_ts.isoformat()} 附近 {tolerance}h 内没有样本")
        return point

    # ── 价格序列 ──────────────────────────────────────────

    async def resolve_price_series(self, holding: Holding, range_days: int = 30) -> List[PricePoint]:
        """获取价格序列（按时间升序，已去重，不含非正价格）"""
        identifier = self._identifier_for(holding)
        if identifier is None:
            return []
        df = await self._load_series(identifier, range_for_days(range_days))
        return self._proc.to_points(df)


# ── 模块级别单例 ──────────────────────────────────────────
_history_service: Optional[HistoryService] = None


def get_history_service() -> HistoryService:
    global _history_service
    if _history_service is None:
        _history_service = HistoryService()
    return _history_service


def reset_history_service() -> None:
    global _history_service
    _history_service = None
