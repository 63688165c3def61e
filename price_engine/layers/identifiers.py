"""
标识层 – 持仓 → 规范标识符
纯函数，不做 I/O、不做缓存，下游可以反复调用

规范标识符格式：
  加密货币   cg:<coingecko id>       例如 cg:bitcoin
  全局股票   yahoo:<symbol>          例如 yahoo:AAPL、yahoo:^GSPC
  本地交易所 tase:<证券编号>          例如 tase:1183441
"""

import re
from typing import Optional, Tuple

from price_engine.config import settings
from price_engine.models.quote import Holding, Provider

_PREFIXES = tuple(f"{p.value}:" for p in Provider)
_NUMERIC_ID_RE = re.compile(r"^\d{4,10}$")
_LEGACY_TASE_RE = re.compile(r"^yahoo:(\d+)(\.TA)?$")

_CRYPTO_SOURCES = {"coingecko"}
_LOCAL_SOURCES = {"tase-local", "tase"}
_GLOBAL_SOURCES = {"yahoo", "finnhub"}
_UNTRACKED_SOURCES = {"manual"}


def _strip_prefix(value: str) -> str:
    for prefix in _PREFIXES:
        if value.startswith(prefix):
            return value[len(prefix):]
    return value


def _strip_suffix(value: str) -> str:
    suffix = settings.EXCHANGE_LOCAL_SUFFIX
    if suffix and value.upper().endswith(suffix.upper()):
        return value[: -len(suffix)]
    return value


def is_numeric_security_id(value: Optional[str]) -> bool:
    """是否为本地交易所证券编号（4-10 位纯数字，可带前缀）"""
    if not value or not isinstance(value, str):
        return False
    return bool(_NUMERIC_ID_RE.match(_strip_prefix(value.strip())))


def migrate_legacy_identifier(identifier: str) -> str:
    """旧格式 yahoo:1183441 / yahoo:1183441.TA 迁移为 tase:1183441"""
    match = _LEGACY_TASE_RE.match(identifier)
    if match:
        return f"{Provider.TASE.value}:{match.group(1)}"
    return identifier


def parse_identifier(identifier: str) -> Tuple[Optional[Provider], str]:
    """拆分规范标识符为 (数据源, 原生代码)，无前缀时数据源为 None"""
    head, sep, tail = identifier.partition(":")
    if sep:
        try:
            return Provider(head), tail
        except ValueError:
            pass
    return None, identifier


def _security_number(holding: Holding) -> Optional[str]:
    for candidate in (holding.security_id, holding.api_id, holding.symbol):
        if candidate:
            clean = _strip_suffix(_strip_prefix(str(candidate).strip()))
            if is_numeric_security_id(clean):
                return clean
    return None


def resolve_identifier(holding: Holding) -> Optional[str]:
    """
    解析持仓的规范标识符，无法解析时返回 None（不抛异常）

    解析顺序：
      1. 持仓显式声明的标识符（api_id 已带前缀）
      2. 声明的数据源标签 / 资产类别
      3. 代码后缀约定（<数字>.TA → 本地交易所）
    """
    source = (holding.market_data_source or "").strip().lower()
    if source in _UNTRACKED_SOURCES:
        return None

    api_id = (holding.api_id or "").strip()
    symbol = (holding.symbol or "").strip()

    # 1. 显式标识符
    if api_id:
        migrated = migrate_legacy_identifier(api_id)
        if migrated.startswith(_PREFIXES):
            return migrated

    # 2. 数据源标签
    if source in _CRYPTO_SOURCES or (holding.asset_type or "").upper() == "CRYPTO":
        coin_id = api_id or symbol
        if coin_id:
            return f"{Provider.COINGECKO.value}:{_strip_prefix(coin_id)}"

    looks_local = holding.currency.upper() == "ILS" and is_numeric_security_id(api_id or symbol)
    if source in _LOCAL_SOURCES or looks_local:
        number = _security_number(holding)
        if number:
            return f"{Provider.TASE.value}:{number}"

    if source in _GLOBAL_SOURCES and (api_id or symbol):
        return f"{Provider.YAHOO.value}:{api_id or symbol}"

    # 3. 后缀约定
    native = api_id or symbol
    if not native:
        return None
    if native.upper().endswith(settings.EXCHANGE_LOCAL_SUFFIX.upper()) and is_numeric_security_id(_strip_suffix(native)):
        return f"{Provider.TASE.value}:{_strip_suffix(native)}"
    if ":" in native:
        return None
    return f"{Provider.YAHOO.value}:{native}"


def entry_key(holding: Holding) -> str:
    """结果映射中的键：规范标识符；无法解析的持仓使用 unresolved:<id>"""
    return resolve_identifier(holding) or f"unresolved:{holding.display_key}"


def build_rescue_identifier(holding: Holding, original_id: str) -> str:
    """
    为本地交易所失败项构造全局标识符：代码 + 交易所后缀
    代码为纯数字时改用证券编号
    """
    _, native = parse_identifier(original_id)
    base = _strip_suffix(_strip_prefix(holding.symbol or native))
    if base.isdigit():
        base = holding.security_id or native or base
        base = _strip_suffix(base)
    return f"{Provider.YAHOO.value}:{base}{settings.EXCHANGE_LOCAL_SUFFIX}"
