"""
行情解析服务配置模块
支持从环境变量读取配置，自动检测 Docker 容器环境并启用服务发现
"""

import os
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _is_docker() -> bool:
    """检测当前是否运行在 Docker 容器内"""
    return (
        os.path.exists("/.dockerenv")
        or os.environ.get("DOCKER_CONTAINER", "").lower() in ("1", "true", "yes")
    )


def _default_redis_host() -> str:
    """Docker 环境使用服务名 'redis'，本地使用 'localhost'"""
    return "redis" if _is_docker() else "localhost"


def _default_backend_base() -> str:
    """Docker 环境使用服务名 'backend'，本地使用 'localhost'"""
    host = "backend" if _is_docker() else "localhost"
    return f"http://{host}:3000/api"


class PriceEngineSettings(BaseSettings):
    """行情解析服务配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── 基础配置 ──────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8002)
    DEBUG: bool = Field(default=False)
    ALLOWED_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"]
    )

    # ── Redis 配置（最后有效值存储，可选） ─────────────────
    REDIS_HOST: str = Field(default_factory=_default_redis_host)
    REDIS_PORT: int = Field(default=6379)
    REDIS_PASSWORD: str = Field(default="")
    REDIS_DB: int = Field(default=0)
    REDIS_ENABLED: bool = Field(default=True)
    REDIS_MAX_CONNECTIONS: int = Field(default=20)

    @property
    def REDIS_URL(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── 后端聚合接口 ───────────────────────────────────────
    BACKEND_API_BASE: str = Field(default_factory=_default_backend_base)
    HTTP_TIMEOUT: float = Field(default=10.0)

    # ── 本地交易所（TASE）抓取源 ──────────────────────────
    FUNDER_QUOTE_URL: str = Field(default="https://www.funder.co.il/api/fund/{security_id}")
    GLOBES_FEEDER_URL: str = Field(default="https://www.globes.co.il/Portal/Handlers/GTOFeeder.ashx")
    EXCHANGE_LOCAL_SUFFIX: str = Field(default=".TA")
    MINOR_UNIT_THRESHOLD: float = Field(default=20.0)  # 超过该值视为阿格拉（1/100 谢克尔）
    LOCAL_MAX_CONCURRENCY: int = Field(default=8)

    # ── 中继代理 ──────────────────────────────────────────
    RELAY_ENABLED: bool = Field(default=True)
    PRIMARY_RELAY_URL: str = Field(default="https://corsproxy.io/?{url}")
    BACKUP_RELAY_URL: str = Field(default="https://api.allorigins.win/get?url={url}")
    PRIMARY_RELAY_TIMEOUT: float = Field(default=4.0)
    BACKUP_RELAY_TIMEOUT: float = Field(default=6.0)

    # ── 缓存配置 ──────────────────────────────────────────
    QUOTE_CACHE_TTL: int = Field(default=60)          # 报价 TTL（秒）
    HISTORY_CACHE_TTL: int = Field(default=300)       # 历史序列 TTL（秒）
    LAST_GOOD_TTL: int = Field(default=7 * 24 * 3600)  # 最后有效值保留时长
    DEFAULT_MAX_AGE_MINUTES: int = Field(default=5)
    GLOBAL_CHUNK_SIZE: int = Field(default=20)
    HISTORY_TOLERANCE_HOURS: float = Field(default=24.0)

    # ── 日志配置 ──────────────────────────────────────────
    LOG_LEVEL: str = Field(default="INFO")
    TZ: str = Field(default="Asia/Jerusalem")


@lru_cache
def get_settings() -> PriceEngineSettings:
    """获取全局配置（单例）"""
    return PriceEngineSettings()


settings = get_settings()
