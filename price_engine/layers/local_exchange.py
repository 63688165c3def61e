"""
本地交易所获取层
通过抓取源（Funder → Globes）解析特拉维夫证券交易所的证券报价，
所有网络请求经由中继链发出；两个源都失败时返回携带原始持仓的失败结果，
不向上抛出异常。
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from price_engine.config import settings
from price_engine.layers.identifiers import is_numeric_security_id, parse_identifier
from price_engine.layers.relay import RelayChain
from price_engine.models.quote import (
    FailureReason,
    Holding,
    Outcome,
    Provenance,
    Quote,
    change_amount_of,
    utc_now,
)

logger = logging.getLogger(__name__)

_LOCAL_CURRENCY = "ILS"


# ── 载荷解析辅助 ──────────────────────────────────────────

def _find_first_value(obj: Any, keys: Sequence[str], max_depth: int = 6) -> Any:
    """在 dict / list 中做有界的广度优先查找，返回第一个命中键的值"""
    wanted = {k.lower() for k in keys}
    queue = deque([(obj, 0)])
    while queue:
        node, depth = queue.popleft()
        if isinstance(node, dict):
            for key, value in node.items():
                if str(key).lower() in wanted and value not in (None, ""):
                    return value
            children = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        if depth < max_depth:
            queue.extend((child, depth + 1) for child in children if isinstance(child, (dict, list)))
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "").replace("%", "")
    try:
        return float(text)
    except ValueError:
        return None


def _to_timestamp(value: Any):
    if value in (None, ""):
        return utc_now()
    ts = pd.to_datetime(value, utc=True, errors="coerce")
    return utc_now() if pd.isna(ts) else ts.to_pydatetime()


def normalize_minor_units(raw: float, threshold: Optional[float] = None) -> float:
    """
    价格单位归一化

    抓取源对同一证券时而给出谢克尔、时而给出阿格拉（1/100 谢克尔），
    经验规则：解析出的价格高于阈值（默认 20）即视为阿格拉，除以 100。
    该阈值针对本交易所的观测数据调校，不是通用的货币规则。
    """
    threshold = settings.MINOR_UNIT_THRESHOLD if threshold is None else threshold
    if raw > threshold:
        return round(raw / 100, 6)
    return raw


def _build_quote(
    identifier: str,
    holding: Holding,
    price: float,
    name: Optional[str],
    change_pct: Optional[float],
    timestamp,
) -> Quote:
    _, security_id = parse_identifier(identifier)
    if not isinstance(name, str):
        name = None
    change_pct = change_pct or 0.0
    return Quote(
        id=identifier,
        symbol=holding.symbol or security_id,
        name=(name or holding.name or security_id).strip(),
        price=price,
        currency=_LOCAL_CURRENCY,
        change_pct=change_pct,
        change_amount=change_amount_of(price, change_pct),
        timestamp=timestamp,
        provenance=Provenance.FRESH_LOCAL,
    )


# ── 各抓取源的载荷归一化（每个源一个函数） ────────────────

def normalize_funder_payload(
    payload: Any, identifier: str, holding: Holding, threshold: Optional[float] = None
) -> Outcome:
    """Funder 返回 JSON 对象，价格字段名不固定"""
    if not isinstance(payload, (dict, list)):
        return Outcome.fail(FailureReason.PAYLOAD, "funder: 载荷不是 JSON 对象", holding)
    raw = _to_float(_find_first_value(payload, ("lastPrice", "price", "unitPrice", "sellPrice", "buyPrice")))
    if raw is None or raw <= 0:
        return Outcome.fail(FailureReason.PAYLOAD, "funder: 缺少价格字段", holding)
    quote = _build_quote(
        identifier,
        holding,
        price=normalize_minor_units(raw, threshold),
        name=_find_first_value(payload, ("fundName", "name", "hebName")),
        change_pct=_to_float(_find_first_value(payload, ("dailyChange", "changePercent", "dayYield"))),
        timestamp=_to_timestamp(_find_first_value(payload, ("updateDate", "lastUpdate", "date"))),
    )
    return Outcome.ok(quote)


def normalize_globes_payload(
    payload: Any, identifier: str, holding: Holding, threshold: Optional[float] = None
) -> Outcome:
    """Globes 返回 [ { "Table": { "Security": [ {...} ] } } ]"""
    try:
        security = payload[0]["Table"]["Security"][0]
    except (KeyError, IndexError, TypeError):
        return Outcome.fail(FailureReason.PAYLOAD, "globes: 载荷结构异常", holding)
    if not isinstance(security, dict):
        return Outcome.fail(FailureReason.PAYLOAD, "globes: 载荷结构异常", holding)

    raw = None
    for field in ("LastDealRate", "LastRate", "BaseRate"):
        raw = _to_float(security.get(field))
        if raw:
            break
    if raw is None or raw <= 0:
        return Outcome.fail(FailureReason.PAYLOAD, "globes: 缺少价格字段", holding)

    name = security.get("HebName") or security.get("EngName")
    quote = _build_quote(
        identifier,
        holding,
        price=normalize_minor_units(raw, threshold),
        name=name,
        change_pct=_to_float(security.get("PercentageChange") or security.get("BaseRateChangePercentage")),
        timestamp=_to_timestamp(security.get("LastDealTime")),
    )
    return Outcome.ok(quote)


# ── 抓取源策略 ────────────────────────────────────────────

class LocalSource(ABC):
    """本地交易所抓取源的统一接口"""

    name: str = ""

    def __init__(self, relay: RelayChain):
        self._relay = relay

    @abstractmethod
    async def fetch(self, identifier: str, security_id: str, holding: Holding) -> Outcome:
        ...

    def _decode(self, text: str) -> Any:
        try:
            return json.loads(text)
        except ValueError:
            logger.warning(f"[{self.name}] 响应不是合法 JSON")
            return None


class FunderSource(LocalSource):
    """主抓取源：GET 请求，主 / 备中继都可用"""

    name = "funder"

    async def fetch(self, identifier: str, security_id: str, holding: Holding) -> Outcome:
        url = settings.FUNDER_QUOTE_URL.format(security_id=security_id)
        resp = await self._relay.fetch(url, method="GET", headers={"Accept": "application/json"})
        if not resp.ok:
            return Outcome.fail(FailureReason.TRANSPORT, f"funder: {resp.error}", holding)
        payload = self._decode(resp.text)
        return normalize_funder_payload(payload, identifier, holding)


class GlobesSource(LocalSource):
    """次抓取源：POST 表单请求，只有支持提交的主中继可用"""

    name = "globes"

    async def fetch(self, identifier: str, security_id: str, holding: Holding) -> Outcome:
        resp = await self._relay.fetch(
            settings.GLOBES_FEEDER_URL,
            method="POST",
            data={"instrumentId": security_id, "type": "49"},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if not resp.ok:
            return Outcome.fail(FailureReason.TRANSPORT, f"globes: {resp.error}", holding)
        payload = self._decode(resp.text)
        return normalize_globes_payload(payload, identifier, holding)


class LocalExchangeFetcher:
    """按顺序轮换抓取源，全部失败返回失败结果（携带原始持仓）"""

    def __init__(self, sources: List[LocalSource], max_concurrency: Optional[int] = None):
        self._sources = sources
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.LOCAL_MAX_CONCURRENCY)

    async def fetch(self, identifier: str, holding: Holding) -> Outcome:
        _, native = parse_identifier(identifier)
        security_id = native if is_numeric_security_id(native) else holding.security_id
        if not is_numeric_security_id(security_id):
            return Outcome.fail(FailureReason.PAYLOAD, f"{identifier} 没有证券编号", holding)

        failures: List[Outcome] = []
        async with self._semaphore:
            for source in self._sources:
                try:
                    outcome = await source.fetch(identifier, security_id, holding)
                except Exception as exc:
                    logger.warning(f"[{source.name}] 获取 {identifier} 异常: {exc!r}")
                    outcome = Outcome.fail(FailureReason.TRANSPORT, f"{source.name}: {exc!r}", holding)
                if outcome.success:
                    logger.debug(f"[{source.name}] ✅ {identifier} = {outcome.quote.price}")
                    return outcome
                failures.append(outcome)
                logger.info(f"[{source.name}] {identifier} 获取失败: {outcome.error}")

        # 只要有一个源拿到了响应但结构不对，就归为载荷错误
        if failures and all(f.reason == FailureReason.TRANSPORT for f in failures):
            reason = FailureReason.TRANSPORT
        else:
            reason = FailureReason.PAYLOAD
        return Outcome.fail(reason, "; ".join(f.error for f in failures), holding)

    async def fetch_all(self, routed: Sequence) -> Dict[str, Outcome]:
        """本地桶内所有证券并发获取，汇合后返回"""
        if not routed:
            return {}
        outcomes = await asyncio.gather(*(self.fetch(r.identifier, r.holding) for r in routed))
        results = {r.identifier: o for r, o in zip(routed, outcomes)}
        failed = sum(1 for o in outcomes if not o.success)
        logger.info(f"本地交易所获取完成：成功 {len(outcomes) - failed}，失败 {failed}")
        return results
