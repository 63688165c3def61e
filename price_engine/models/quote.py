"""
行情领域模型
持仓（调用方拥有）、报价、缺失标记、单次获取结果、重试项
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    """规范标识符中的数据源前缀"""
    YAHOO = "yahoo"   # 全局股票 / ETF / 指数
    COINGECKO = "cg"  # 全局加密货币
    TASE = "tase"     # 本地交易所（特拉维夫证券交易所），证券编号


class Provenance(str, Enum):
    """报价来源标签"""
    FRESH_LOCAL = "fresh-local"
    FRESH_GLOBAL = "fresh-global"
    FALLBACK_VIA_GLOBAL = "fallback-via-global"
    CACHED = "cached"
    STALE = "stale"


class FailureReason(str, Enum):
    """错误分类：传输 / 载荷结构 / 无法解析标识 / 仅有过期值"""
    TRANSPORT = "transport"
    PAYLOAD = "payload"
    UNRESOLVABLE = "unresolvable"
    STALE_ONLY = "stale-only"


class Holding(BaseModel):
    """持仓记录（由调用方维护，本服务只读）"""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    api_id: Optional[str] = None
    security_id: Optional[str] = None
    market_data_source: Optional[str] = None
    asset_type: Optional[str] = None
    currency: str = "USD"
    current_price: Optional[float] = None
    change_24h: Optional[float] = None
    last_updated: Optional[datetime] = None

    @property
    def display_key(self) -> str:
        return self.id or self.symbol or self.api_id or "unknown"


class Quote(BaseModel):
    """完整报价；不允许部分填充"""
    id: str
    symbol: str
    name: str
    price: float
    currency: str
    change_pct: float = 0.0
    change_amount: float = 0.0
    timestamp: datetime
    provenance: Provenance
    is_stale: bool = False
    error: Optional[str] = None
    status: str = "ok"


class QuoteMissing(BaseModel):
    """缺失标记：所有路径均失败且无可用旧值"""
    id: str
    symbol: Optional[str] = None
    reason: FailureReason
    error: str = ""
    status: str = "missing"


QuoteEntry = Union[Quote, QuoteMissing]


class Outcome(BaseModel):
    """单次获取的结果：要么是报价，要么是带分类的失败原因"""
    quote: Optional[Quote] = None
    reason: Optional[FailureReason] = None
    error: str = ""
    holding: Optional[Holding] = None  # 失败时携带原始持仓，供回退层使用

    @property
    def success(self) -> bool:
        return self.quote is not None

    @classmethod
    def ok(cls, quote: Quote) -> "Outcome":
        return cls(quote=quote)

    @classmethod
    def fail(
        cls, reason: FailureReason, error: str = "", holding: Optional[Holding] = None
    ) -> "Outcome":
        return cls(reason=reason, error=error, holding=holding)


class RetryItem(BaseModel):
    """本地交易所失败项改写为全局标识符后的重试项"""
    original_id: str
    holding: Holding
    rescue_id: str


class BatchOptions(BaseModel):
    """批量解析选项"""
    max_age_minutes: float = Field(default=5, ge=0)
    force_refresh: bool = False
    chunk_size: int = Field(default=20, ge=1)


class PricePoint(BaseModel):
    timestamp: datetime
    price: float


class HistoryPayload(BaseModel):
    """后端历史接口返回的时间序列"""
    id: str
    points: list = Field(default_factory=list)  # [{"t": ms, "v": price}, ...]
    currency: str = "USD"
    source: str = ""
    error: Optional[str] = None


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def change_amount_of(price: float, change_pct: float) -> float:
    """由涨跌幅推算涨跌额"""
    return round(price * (change_pct or 0.0) / 100, 6)


def quote_from_holding(
    holding: Holding,
    key: str,
    provenance: Provenance,
    error: Optional[str] = None,
) -> Optional[Quote]:
    """用持仓自带的最后价格构造报价；没有价格时返回 None"""
    if holding.current_price is None:
        return None
    change_pct = holding.change_24h or 0.0
    symbol = holding.symbol or holding.api_id or key
    return Quote(
        id=key,
        symbol=symbol,
        name=holding.name or symbol,
        price=holding.current_price,
        currency=holding.currency,
        change_pct=change_pct,
        change_amount=change_amount_of(holding.current_price, change_pct),
        timestamp=holding.last_updated or utc_now(),
        provenance=provenance,
        is_stale=provenance == Provenance.STALE,
        error=error,
    )


QuoteMap = Dict[str, QuoteEntry]
