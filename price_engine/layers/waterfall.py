"""
瀑布重试层 – 本地交易所失败项改走全局数据源
只有这一跳重试；救援结果按原始标识符回写，一个都不丢
"""

import logging
from typing import Dict, Iterable, List, Sequence

from price_engine.layers.identifiers import build_rescue_identifier
from price_engine.models.quote import FailureReason, Outcome, Provenance, RetryItem

logger = logging.getLogger(__name__)


class WaterfallRetryCoordinator:

    def build_retry_items(self, failures: Dict[str, Outcome]) -> List[RetryItem]:
        """每个失败的本地标识符生成一个重试项；没有持仓信息的失败项无法救援"""
        items: List[RetryItem] = []
        for original_id, outcome in failures.items():
            if outcome.success:
                continue
            if outcome.holding is None:
                logger.warning(f"[WATERFALL] {original_id} 缺少持仓信息，跳过救援")
                continue
            items.append(RetryItem(
                original_id=original_id,
                holding=outcome.holding,
                rescue_id=build_rescue_identifier(outcome.holding, original_id),
            ))
        if items:
            logger.info(f"[WATERFALL] {len(items)} 个本地交易所失败项转入全局批量")
        return items

    @staticmethod
    def submission_ids(global_ids: Iterable[str], retry_items: Sequence[RetryItem]) -> List[str]:
        """普通全局标识符 + 救援标识符，保序去重，共用同一批量调用"""
        seen = set()
        ordered: List[str] = []
        for identifier in list(global_ids) + [item.rescue_id for item in retry_items]:
            if identifier not in seen:
                seen.add(identifier)
                ordered.append(identifier)
        return ordered

    def remap(self, results: Dict[str, Outcome], retry_items: Sequence[RetryItem]) -> Dict[str, Outcome]:
        """救援结果改回原始标识符，来源标记为 fallback-via-global"""
        rescued: Dict[str, Outcome] = {}
        for item in retry_items:
            outcome = results.get(item.rescue_id)
            if outcome is None or not outcome.success:
                detail = outcome.error if outcome is not None else "救援结果缺失"
                reason = outcome.reason if outcome is not None and outcome.reason else FailureReason.PAYLOAD
                rescued[item.original_id] = Outcome.fail(
                    reason, f"{item.rescue_id}: {detail}", item.holding
                )
                continue
            rescued[item.original_id] = Outcome.ok(outcome.quote.model_copy(update={
                "id": item.original_id,
                "provenance": Provenance.FALLBACK_VIA_GLOBAL,
            }))
        ok = sum(1 for o in rescued.values() if o.success)
        if retry_items:
            logger.info(f"[WATERFALL] 救援完成：{ok}/{len(retry_items)} 成功")
        return rescued
