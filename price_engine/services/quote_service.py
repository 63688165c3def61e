"""
报价解析服务
串联 标识 → 缓存过滤 → 分桶 → 本地获取 ∥ 全局批量（含瀑布救援）→ 合并，
对外提供单个 / 批量报价解析接口。单个标识符的失败不会导致整批失败。
"""

import logging
import time
from typing import Dict, List, Optional, Sequence

import httpx

from price_engine.config import settings
from price_engine.layers.cache import (
    CacheKind,
    FreshnessCache,
    LastGoodStore,
    as_cached,
    get_freshness_cache,
    get_last_good_store,
    is_holding_fresh,
)
from price_engine.layers.global_batch import GlobalBatchFetcher
from price_engine.layers.identifiers import entry_key, resolve_identifier
from price_engine.layers.local_exchange import FunderSource, GlobesSource, LocalExchangeFetcher
from price_engine.layers.merger import ResultMerger
from price_engine.layers.relay import RelayChain
from price_engine.layers.routing import RoutedHolding, classify
from price_engine.layers.waterfall import WaterfallRetryCoordinator
from price_engine.models.quote import (
    BatchOptions,
    FailureReason,
    Holding,
    Outcome,
    Provenance,
    Quote,
    QuoteMap,
    quote_from_holding,
)
from price_engine.services.http_client import get_http_client

logger = logging.getLogger(__name__)


def default_options() -> BatchOptions:
    return BatchOptions(
        max_age_minutes=settings.DEFAULT_MAX_AGE_MINUTES,
        chunk_size=settings.GLOBAL_CHUNK_SIZE,
    )


class QuoteService:
    """报价解析业务服务"""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[FreshnessCache] = None,
        last_good: Optional[LastGoodStore] = None,
        local_fetcher: Optional[LocalExchangeFetcher] = None,
        global_fetcher: Optional[GlobalBatchFetcher] = None,
    ):
        client = client or get_http_client()
        relay = RelayChain(client)
        self._cache = cache or get_freshness_cache()
        self._last_good = last_good or get_last_good_store()
        self._local = local_fetcher or LocalExchangeFetcher([FunderSource(relay), GlobesSource(relay)])
        self._global = global_fetcher or GlobalBatchFetcher(client)
        self._waterfall = WaterfallRetryCoordinator()
        self._merger = ResultMerger(self._cache, self._last_good)

    # ── 批量解析 ──────────────────────────────────────────

    async def resolve_quotes_batch(
        self,
        holdings: Sequence[Holding],
        options: Optional[BatchOptions] = None,
    ) -> QuoteMap:
        """
        批量解析报价

        Args:
            holdings: 持仓列表（规范标识符相同的持仓只解析一次）
            options: 新鲜度窗口 / 强制刷新 / 全局批量块大小

        Returns:
            键 → Quote 或 QuoteMissing；每个键恰好一条
        """
        options = options or default_options()
        started = time.perf_counter()

        keys: List[str] = []
        by_key: Dict[str, Holding] = {}
        pending: List[RoutedHolding] = []
        unresolved: Dict[str, Outcome] = {}

        cached: Dict[str, Quote] = {}
        for holding in holdings:
            identifier = resolve_identifier(holding)
            key = identifier or entry_key(holding)
            if key in by_key:
                continue
            keys.append(key)
            by_key[key] = holding
            if identifier is not None:
                pending.append(RoutedHolding(identifier, holding))
            elif not options.force_refresh and is_holding_fresh(holding, options.max_age_minutes):
                cached[key] = quote_from_holding(holding, key, Provenance.CACHED)
            else:
                unresolved[key] = Outcome.fail(
                    FailureReason.UNRESOLVABLE, f"无法解析 {holding.display_key} 的标识符", holding
                )

        # 缓存过滤：持仓自身足够新，或新鲜度缓存命中
        if not options.force_refresh:
            remaining: List[RoutedHolding] = []
            for routed in pending:
                if is_holding_fresh(routed.holding, options.max_age_minutes):
                    cached[routed.identifier] = quote_from_holding(
                        routed.holding, routed.identifier, Provenance.CACHED
                    )
                    continue
                hit = self._cache.get(routed.identifier, CacheKind.QUOTE)
                if hit is not None:
                    cached[routed.identifier] = as_cached(hit)
                    continue
                remaining.append(routed)
            pending = remaining

        routing = classify(pending)
        logger.info(
            f"批量解析：{len(keys)} 个键，缓存命中 {len(cached)}，"
            f"本地 {len(routing.local)}，全局 {len(routing.global_)}，无法解析 {len(unresolved)}"
        )

        local_results = await self._local.fetch_all(routing.local)
        retry_items = self._waterfall.build_retry_items(
            {k: o for k, o in local_results.items() if not o.success}
        )

        submission = self._waterfall.submission_ids(
            [r.identifier for r in routing.global_], retry_items
        )
        global_results = await self._global.fetch_quotes(submission, options.chunk_size)
        rescued = self._waterfall.remap(global_results, retry_items)

        fresh: Dict[str, Outcome] = dict(local_results)
        for routed in routing.global_:
            fresh[routed.identifier] = global_results.get(
                routed.identifier, Outcome.fail(FailureReason.PAYLOAD, "全局结果缺失")
            )

        unsatisfied = [
            k for k in keys
            if k not in cached
            and not any(o is not None and o.success for o in (fresh.get(k), rescued.get(k)))
        ]
        stale = await self._stale_candidates(unsatisfied, by_key)

        merged = await self._merger.merge(
            keys,
            cached=cached,
            fresh=fresh,
            rescued=rescued,
            stale=stale,
            failures=unresolved,
        )
        logger.info(f"批量解析完成，耗时 {time.perf_counter() - started:.3f}s")
        return merged

    async def _stale_candidates(self, keys: List[str], by_key: Dict[str, Holding]) -> Dict[str, Quote]:
        """过期回退：优先 Redis 最后有效值，其次持仓自带的最后价格"""
        if not keys:
            return {}
        last_good = await self._last_good.get_many(k for k in keys if not k.startswith("unresolved:"))
        stale: Dict[str, Quote] = {}
        for key in keys:
            quote = last_good.get(key) or quote_from_holding(by_key[key], key, Provenance.STALE)
            if quote is not None:
                stale[key] = quote
        return stale

    # ── 单个解析 ──────────────────────────────────────────

    async def resolve_quote(
        self, holding: Holding, options: Optional[BatchOptions] = None
    ) -> Optional[Quote]:
        """解析单个持仓；没有任何可用价格时返回 None"""
        results = await self.resolve_quotes_batch([holding], options)
        entry = next(iter(results.values()), None)
        return entry if isinstance(entry, Quote) else None


# ── 模块级别单例 ──────────────────────────────────────────
_quote_service: Optional[QuoteService] = None


def get_quote_service() -> QuoteService:
    global _quote_service
    if _quote_service is None:
        _quote_service = QuoteService()
    return _quote_service


def reset_quote_service() -> None:
    """关闭共享客户端后调用，下次访问时重新构建"""
    global _quote_service
    _quote_service = None
