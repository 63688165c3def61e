"""
路由层 – 把持仓划分到 本地交易所桶 / 全局桶
每次调用重新计算，不缓存（持仓的数据源标签可能在两次调用之间被修正）
"""

from typing import Iterable, List, NamedTuple, Optional

from price_engine.config import settings
from price_engine.layers.identifiers import parse_identifier, resolve_identifier
from price_engine.models.quote import Holding, Provider

_LOCAL_SOURCES = {"tase-local", "tase"}


class RoutedHolding(NamedTuple):
    identifier: str
    holding: Holding


class RoutingResult(NamedTuple):
    local: List[RoutedHolding]
    global_: List[RoutedHolding]


def is_exchange_local(holding: Holding, identifier: Optional[str] = None) -> bool:
    """数据源标签 / 规范标识符 / 代码后缀 任一指向本地交易所即为本地"""
    if (holding.market_data_source or "").strip().lower() in _LOCAL_SOURCES:
        return True
    identifier = identifier or resolve_identifier(holding)
    if identifier:
        provider, _ = parse_identifier(identifier)
        if provider == Provider.TASE:
            return True
    symbol = (holding.symbol or "").strip().upper()
    return bool(symbol) and symbol.endswith(settings.EXCHANGE_LOCAL_SUFFIX.upper())


def classify(holdings: Iterable[RoutedHolding]) -> RoutingResult:
    """全划分且互斥：每个持仓恰好落入一个桶"""
    local: List[RoutedHolding] = []
    global_: List[RoutedHolding] = []
    for routed in holdings:
        if is_exchange_local(routed.holding, routed.identifier):
            local.append(routed)
        else:
            global_.append(routed)
    return RoutingResult(local=local, global_=global_)
