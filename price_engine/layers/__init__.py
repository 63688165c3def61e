"""
报价解析分层架构
  identifiers    : 持仓 → 规范标识符
  cache          : 新鲜度缓存（进程内）+ 最后有效值（Redis）
  routing        : 本地交易所 / 全局 分桶
  relay          : 中继链（主中继 → 备用中继）
  local_exchange : 本地交易所抓取源轮换
  global_batch   : 后端聚合接口，分块串行
  waterfall      : 本地失败项改走全局
  merger         : 结果合并
  processing     : 历史序列清洗与最近点选取
"""
