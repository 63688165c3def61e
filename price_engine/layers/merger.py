"""
结果合并层
把缓存命中、本地获取、瀑布救援、全局获取以及过期候选合并为
每个请求键恰好一条结果的映射。

优先级：新鲜 > 救援 > 过期 > 缺失
"""

import logging
from typing import Dict, Iterable, List, Optional

from price_engine.layers.cache import CacheKind, FreshnessCache, LastGoodStore
from price_engine.models.quote import (
    FailureReason,
    Outcome,
    Provenance,
    Quote,
    QuoteEntry,
    QuoteMissing,
)

logger = logging.getLogger(__name__)

_WRITE_BACK = {Provenance.FRESH_LOCAL, Provenance.FRESH_GLOBAL, Provenance.FALLBACK_VIA_GLOBAL}


def _as_stale(quote: Quote, error: str) -> Quote:
    return quote.model_copy(update={
        "provenance": Provenance.STALE,
        "is_stale": True,
        "error": error or None,
    })


class ResultMerger:

    def __init__(self, cache: FreshnessCache, last_good: Optional[LastGoodStore] = None):
        self._cache = cache
        self._last_good = last_good

    async def merge(
        self,
        keys: Iterable[str],
        cached: Optional[Dict[str, Quote]] = None,
        fresh: Optional[Dict[str, Outcome]] = None,
        rescued: Optional[Dict[str, Outcome]] = None,
        stale: Optional[Dict[str, Quote]] = None,
        failures: Optional[Dict[str, Outcome]] = None,
    ) -> Dict[str, QuoteEntry]:
        """
        合并各路结果

        Args:
            keys: 请求的全部键（保序）
            cached: 缓存直接满足的报价
            fresh: 本地 / 全局获取结果（含失败）
            rescued: 瀑布救援结果（按原始标识符）
            stale: 过期候选报价
            failures: 其他失败信息（例如无法解析的标识符）

        Returns:
            每个键恰好一条：Quote 或 QuoteMissing
        """
        cached = cached or {}
        fresh = fresh or {}
        rescued = rescued or {}
        stale = stale or {}
        failures = failures or {}

        merged: Dict[str, QuoteEntry] = {}
        written: List[Quote] = []

        for key in keys:
            if key in merged:
                continue
            if key in cached:
                merged[key] = cached[key]
                continue

            candidates = [o for o in (fresh.get(key), rescued.get(key)) if o is not None]
            winner = next((o for o in candidates if o.success), None)
            if winner is not None:
                merged[key] = winner.quote
                if winner.quote.provenance in _WRITE_BACK:
                    written.append(winner.quote)
                continue

            last_failure = next(
                (o for o in (rescued.get(key), fresh.get(key), failures.get(key)) if o is not None),
                None,
            )
            detail = last_failure.error if last_failure else ""
            if key in stale:
                merged[key] = _as_stale(stale[key].model_copy(update={"id": key}), detail)
                continue

            reason = (last_failure.reason if last_failure and last_failure.reason else FailureReason.PAYLOAD)
            merged[key] = QuoteMissing(
                id=key,
                symbol=last_failure.holding.symbol if last_failure and last_failure.holding else None,
                reason=reason,
                error=detail,
            )

        for quote in written:
            self._cache.put(quote.id, CacheKind.QUOTE, quote)
        if written and self._last_good is not None:
            await self._last_good.put_many(written)

        counts: Dict[str, int] = {}
        for entry in merged.values():
            tag = entry.provenance.value if isinstance(entry, Quote) else "missing"
            counts[tag] = counts.get(tag, 0) + 1
        logger.info(f"结果合并完成：{len(merged)} 条，分布 {counts}")
        return merged
