"""
缓存层
  L1: 进程内新鲜度缓存（报价 60 秒 / 历史 300 秒，读时淘汰过期项）
  L2: Redis 最后有效值（仅作为过期回退来源，不参与新鲜度判断）
另提供基于持仓自身更新时间的过期判断
"""

import hashlib
import json
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from price_engine.config import settings
from price_engine.db import get_redis
from price_engine.models.quote import Holding, Provenance, Quote

logger = logging.getLogger(__name__)


def _make_key(namespace: str, *parts: str) -> str:
    """生成规范化缓存键"""
    raw = ":".join([namespace] + list(parts))
    if len(raw) > 200:
        raw = namespace + ":" + hashlib.md5(raw.encode()).hexdigest()
    return raw


class CacheKind(str, Enum):
    QUOTE = "quote"
    HISTORY = "history"


class FreshnessCache:
    """按 (类别, 键) 存储 (值, 写入时间)；所有操作在同一把锁内完成，后写者胜出"""

    def __init__(self, ttls: Optional[Dict[CacheKind, float]] = None, clock=time.monotonic):
        self._ttls = ttls or {
            CacheKind.QUOTE: settings.QUOTE_CACHE_TTL,
            CacheKind.HISTORY: settings.HISTORY_CACHE_TTL,
        }
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[CacheKind, str], Tuple[Any, float]] = {}
        self._metrics = {"hits": 0, "misses": 0, "writes": 0, "expired": 0}

    def get(self, key: str, kind: CacheKind) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get((kind, key))
            if entry is None:
                self._metrics["misses"] += 1
                return None
            value, written_at = entry
            if self._clock() - written_at >= self._ttls[kind]:
                del self._entries[(kind, key)]
                self._metrics["expired"] += 1
                self._metrics["misses"] += 1
                return None
            self._metrics["hits"] += 1
        logger.debug(f"缓存命中（{kind.value}）: {key}")
        return value

    def put(self, key: str, kind: CacheKind, value: Any) -> None:
        with self._lock:
            self._entries[(kind, key)] = (value, self._clock())
            self._metrics["writes"] += 1

    def evict(self, key: str, kind: Optional[CacheKind] = None) -> int:
        kinds = [kind] if kind else list(CacheKind)
        removed = 0
        with self._lock:
            for k in kinds:
                if self._entries.pop((k, key), None) is not None:
                    removed += 1
        return removed

    def clear(self, kind: Optional[CacheKind] = None) -> int:
        with self._lock:
            if kind is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                keys = [k for k in self._entries if k[0] == kind]
                for k in keys:
                    del self._entries[k]
                removed = len(keys)
        return removed

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            sizes = {kind.value: 0 for kind in CacheKind}
            for kind, _ in self._entries:
                sizes[kind.value] += 1
            return {
                "entries": sizes,
                "ttl_seconds": {kind.value: ttl for kind, ttl in self._ttls.items()},
                **self._metrics,
            }


def is_holding_fresh(
    holding: Holding,
    max_age_minutes: float = 5,
    now: Optional[datetime] = None,
) -> bool:
    """持仓自带价格是否足够新（调用方已信任的数据无需联网）"""
    if holding.current_price is None or holding.last_updated is None:
        return False
    now = now or datetime.now(tz=timezone.utc)
    updated = holding.last_updated
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return now - updated < timedelta(minutes=max_age_minutes)


class LastGoodStore:
    """Redis 中保存每个标识符最后一次成功的报价，失败时作为过期回退"""

    _NAMESPACE = "last_good"

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Quote]:
        keys = list(keys)
        redis = get_redis()
        if not redis or not keys:
            return {}
        result: Dict[str, Quote] = {}
        try:
            raws = await redis.mget([_make_key(self._NAMESPACE, k) for k in keys])
        except Exception as exc:
            logger.debug(f"Redis 读取失败: {exc}")
            return {}
        for key, raw in zip(keys, raws):
            if not raw:
                continue
            try:
                result[key] = Quote.model_validate(json.loads(raw))
            except ValueError as exc:
                logger.debug(f"最后有效值解析失败 {key}: {exc}")
        return result

    async def put_many(self, quotes: Iterable[Quote]) -> None:
        redis = get_redis()
        if not redis:
            return
        try:
            async with redis.pipeline(transaction=False) as pipe:
                for quote in quotes:
                    pipe.setex(
                        _make_key(self._NAMESPACE, quote.id),
                        settings.LAST_GOOD_TTL,
                        quote.model_dump_json(),
                    )
                await pipe.execute()
        except Exception as exc:
            logger.debug(f"Redis 写入失败: {exc}")

    async def clear(self) -> int:
        redis = get_redis()
        if not redis:
            return 0
        removed = 0
        try:
            async for key in redis.scan_iter(match=f"{self._NAMESPACE}:*"):
                removed += await redis.delete(key)
        except Exception as exc:
            logger.debug(f"Redis 清理失败: {exc}")
        return removed

    async def stats(self) -> dict:
        redis = get_redis()
        if not redis:
            return {"status": "disabled"}
        try:
            count = 0
            async for _ in redis.scan_iter(match=f"{self._NAMESPACE}:*"):
                count += 1
            return {"keys": count, "status": "healthy"}
        except Exception as exc:
            return {"status": "error", "error": str(exc)}


def as_cached(quote: Quote) -> Quote:
    """缓存中取出的报价统一标记为 cached"""
    return quote.model_copy(update={"provenance": Provenance.CACHED, "is_stale": False, "error": None})


# ── 模块级别单例 ──────────────────────────────────────────
_cache: Optional[FreshnessCache] = None
_last_good: Optional[LastGoodStore] = None


def get_freshness_cache() -> FreshnessCache:
    global _cache
    if _cache is None:
        _cache = FreshnessCache()
    return _cache


def get_last_good_store() -> LastGoodStore:
    global _last_good
    if _last_good is None:
        _last_good = LastGoodStore()
    return _last_good
