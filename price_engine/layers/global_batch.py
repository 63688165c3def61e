"""
全局批量获取层
通过后端聚合接口获取全局股票 / 加密货币报价与历史序列。
标识符按块提交，块与块之间严格串行，避免触发上游限流。
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import httpx

from price_engine.config import settings
from price_engine.layers.identifiers import parse_identifier
from price_engine.models.quote import (
    FailureReason,
    HistoryPayload,
    Outcome,
    Provenance,
    Quote,
    change_amount_of,
    utc_now,
)

logger = logging.getLogger(__name__)

# 以阿格拉计价的币种别名
_MINOR_CURRENCY_ALIASES = {"ILA": "ILS"}


def chunked(ids: Sequence[str], size: int) -> List[List[str]]:
    """按固定大小切块，最后一块可能不足"""
    size = max(1, int(size))
    return [list(ids[i:i + size]) for i in range(0, len(ids), size)]


def normalize_currency(price: float, currency: Optional[str]):
    """ILA（阿格拉）→ ILS，价格除以 100"""
    code = (currency or "USD").upper()
    if code in _MINOR_CURRENCY_ALIASES:
        return round(price / 100, 6), _MINOR_CURRENCY_ALIASES[code]
    return price, code


def _parse_ms(value: Any) -> datetime:
    try:
        return datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return utc_now()


def _quote_from_item(identifier: str, item: Dict[str, Any]) -> Outcome:
    if item.get("error"):
        return Outcome.fail(FailureReason.PAYLOAD, str(item["error"]))
    try:
        raw = float(item["price"])
    except (KeyError, TypeError, ValueError):
        return Outcome.fail(FailureReason.PAYLOAD, f"{identifier} 缺少价格字段")
    if raw <= 0:
        return Outcome.fail(FailureReason.PAYLOAD, f"{identifier} 价格无效: {raw}")

    price, currency = normalize_currency(raw, item.get("currency"))
    try:
        change_pct = float(item.get("changePct") or 0.0)
    except (TypeError, ValueError):
        change_pct = 0.0
    _, native = parse_identifier(identifier)
    symbol = item.get("symbol") or native
    return Outcome.ok(Quote(
        id=identifier,
        symbol=symbol,
        name=item.get("name") or symbol,
        price=price,
        currency=currency,
        change_pct=change_pct,
        change_amount=change_amount_of(price, change_pct),
        timestamp=_parse_ms(item.get("timestamp")),
        provenance=Provenance.FRESH_GLOBAL,
    ))


class GlobalBatchFetcher:
    """后端聚合接口客户端"""

    def __init__(self, client: httpx.AsyncClient, base_url: Optional[str] = None):
        self._client = client
        self._base_url = (base_url or settings.BACKEND_API_BASE).rstrip("/")

    async def fetch_quotes(
        self, ids: Sequence[str], chunk_size: Optional[int] = None
    ) -> Dict[str, Outcome]:
        """
        批量获取报价

        Args:
            ids: 规范标识符列表（调用方已去重）
            chunk_size: 每块最多提交的标识符数量

        Returns:
            每个提交的标识符恰好一个 Outcome
        """
        results: Dict[str, Outcome] = {}
        if not ids:
            return results

        chunks = chunked(ids, chunk_size or settings.GLOBAL_CHUNK_SIZE)
        for round_no, chunk in enumerate(chunks, start=1):
            results.update(await self._fetch_chunk(chunk))
            logger.debug(f"全局批量第 {round_no}/{len(chunks)} 轮完成，{len(chunk)} 个标识符")

        failed = sum(1 for o in results.values() if not o.success)
        logger.info(
            f"全局批量获取完成：{len(ids)} 个标识符，{len(chunks)} 轮，"
            f"成功 {len(ids) - failed}，失败 {failed}"
        )
        return results

    async def _fetch_chunk(self, chunk: List[str]) -> Dict[str, Outcome]:
        try:
            resp = await self._client.post(
                f"{self._base_url}/quote", json={"ids": chunk}, timeout=settings.HTTP_TIMEOUT
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            logger.warning(f"全局批量请求失败（{len(chunk)} 个标识符）: {exc!r}")
            return {i: Outcome.fail(FailureReason.TRANSPORT, f"backend: {exc.__class__.__name__}") for i in chunk}
        except ValueError:
            logger.warning("全局批量响应不是合法 JSON")
            return {i: Outcome.fail(FailureReason.PAYLOAD, "backend: 响应不是合法 JSON") for i in chunk}

        if isinstance(payload, dict):
            payload = payload.get("data") or payload.get("quotes") or []
        by_id = {
            item.get("id"): item
            for item in payload if isinstance(item, dict) and isinstance(item.get("id"), str)
        } if isinstance(payload, list) else {}

        results: Dict[str, Outcome] = {}
        for identifier in chunk:
            item = by_id.get(identifier)
            if item is None:
                results[identifier] = Outcome.fail(FailureReason.PAYLOAD, f"{identifier} 不在响应中")
            else:
                results[identifier] = _quote_from_item(identifier, item)
        return results

    async def fetch_history(self, identifier: str, range_: str, interval: str = "1d") -> HistoryPayload:
        """获取历史序列；传输或载荷错误写入 error 字段，不抛出"""
        try:
            resp = await self._client.get(
                f"{self._base_url}/history",
                params={"id": identifier, "range": range_, "interval": interval},
                timeout=settings.HTTP_TIMEOUT,
            )
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            logger.warning(f"历史数据请求失败 {identifier} ({range_}): {exc!r}")
            return HistoryPayload(id=identifier, error=f"backend: {exc.__class__.__name__}")
        except ValueError:
            return HistoryPayload(id=identifier, error="backend: 响应不是合法 JSON")

        if not isinstance(payload, dict):
            return HistoryPayload(id=identifier, error="backend: 载荷结构异常")
        if payload.get("error"):
            return HistoryPayload(id=identifier, error=str(payload["error"]))

        points = [p for p in payload.get("points") or [] if isinstance(p, dict)]
        currency = (payload.get("currency") or "USD").upper()
        if currency in _MINOR_CURRENCY_ALIASES:
            points = [
                {"t": p.get("t"), "v": normalize_currency(float(p["v"]), currency)[0]}
                for p in points if isinstance(p.get("v"), (int, float))
            ]
            currency = _MINOR_CURRENCY_ALIASES[currency]
        return HistoryPayload(
            id=identifier,
            points=points,
            currency=currency,
            source=payload.get("source") or "",
        )
