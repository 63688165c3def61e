"""
price-engine 行情解析服务
独立的价格解析微服务，为持仓组合提供实时报价与历史价格

架构分层：
  标识层   (Identifiers)  → 持仓 → 规范标识符 (yahoo: / cg: / tase:)
  路由层   (Routing)      → 本地交易所桶 / 全局桶 划分
  获取层   (Fetchers)     → 本地交易所抓取源轮换 + 全局聚合批量接口
  回退层   (Waterfall)    → 本地失败项改写为全局标识符重试
  合并层   (Merger)       → 缓存命中 / 新鲜结果 / 救援结果 / 过期值 统一合并
  缓存层   (Cache)        → 进程内短 TTL 缓存 + Redis 最后有效值
  处理层   (Processing)   → 时间序列清洗与最近点选取
"""

__version__ = "1.0.0"
