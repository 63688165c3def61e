"""
数据处理层
对后端返回的历史序列进行清洗、排序、去重，并按目标时间选取最近样本。
"""

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from price_engine.models.quote import PricePoint

logger = logging.getLogger(__name__)

# (最大天数, 后端区间)
_RANGE_STEPS = [
    (7, "5d"),
    (30, "1mo"),
    (90, "3mo"),
    (180, "6mo"),
    (365, "1y"),
]
_LONGEST_RANGE = "5y"


def range_for_days(days: float) -> str:
    """天数映射为后端支持的区间"""
    for limit, range_ in _RANGE_STEPS:
        if days <= limit:
            return range_
    return _LONGEST_RANGE


def to_utc_timestamp(target: Union[datetime, date, str]) -> pd.Timestamp:
    """目标时间统一为 UTC；只有日期时取当天 00:00 UTC，无时区的时间视为 UTC"""
    if isinstance(target, date) and not isinstance(target, datetime):
        target = datetime.combine(target, time.min, tzinfo=timezone.utc)
    ts = pd.Timestamp(target)
    if ts.tzinfo is None:
        return ts.tz_localize("UTC")
    return ts.tz_convert("UTC")


class ProcessingLayer:
    """数据处理层：清洗 + 格式化 + 最近点选取"""

    def normalize_series(self, points: List[Dict[str, Any]]) -> pd.DataFrame:
        """
        将原始 {t, v} 点列表标准化为 DataFrame

        标准列：timestamp (UTC), price
        丢弃无法解析的时间、非有限值和非正价格；同一时间保留最后一条
        """
        if not points:
            return pd.DataFrame(columns=["timestamp", "price"])

        df = pd.DataFrame(points)
        for col in ("t", "v"):
            if col not in df.columns:
                df[col] = None

        df["timestamp"] = pd.to_datetime(pd.to_numeric(df["t"], errors="coerce"), unit="ms", utc=True)
        df["price"] = pd.to_numeric(df["v"], errors="coerce")
        df = df.dropna(subset=["timestamp", "price"])
        df = df[(df["price"] > 0) & (df["price"] != float("inf"))]

        df = df.drop_duplicates(subset=["timestamp"], keep="last")
        df = df.sort_values("timestamp").reset_index(drop=True)
        return df[["timestamp", "price"]]

    def to_points(self, df: pd.DataFrame) -> List[PricePoint]:
        """DataFrame 转换为 PricePoint 列表"""
        if df.empty:
            return []
        return [
            PricePoint(timestamp=row.timestamp.to_pydatetime(), price=float(row.price))
            for row in df.itertuples(index=False)
        ]

    def nearest_point(
        self,
        df: pd.DataFrame,
        target: Union[datetime, date, str],
        tolerance_hours: float = 24.0,
    ) -> Optional[PricePoint]:
        """选取距离目标时间最近的样本；超出容差返回 None（容差边界包含在内）"""
        if df.empty:
            return None
        target_ts = to_utc_timestamp(target)
        distance = (df["timestamp"] - target_ts).abs()
        idx = distance.idxmin()
        if distance[idx] > pd.Timedelta(hours=tolerance_hours):
            logger.debug(f"最近样本距目标 {distance[idx]}，超出容差 {tolerance_hours}h")
            return None
        row = df.loc[idx]
        return PricePoint(timestamp=row["timestamp"].to_pydatetime(), price=float(row["price"]))


# ── 模块级别单例 ──────────────────────────────────────────
_processor: Optional[ProcessingLayer] = None


def get_processing_layer() -> ProcessingLayer:
    global _processor
    if _processor is None:
        _processor = ProcessingLayer()
    return _processor
