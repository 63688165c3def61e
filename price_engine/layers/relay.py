"""
中继层 – 通过中继代理访问被直连屏蔽的抓取源
按顺序尝试：主中继（通用，支持 GET / POST）→ 备用中继（更慢更稳，仅支持只读 GET）
"""

import logging
from typing import Dict, List, NamedTuple, Optional
from urllib.parse import quote

import httpx

from price_engine.config import settings

logger = logging.getLogger(__name__)


class Relay(NamedTuple):
    name: str
    template: str          # 包含 {url} 占位符
    supports_post: bool
    requires_unwrap: bool  # 响应包在 {"contents": "..."} 中
    timeout: float

    def build_url(self, target: str) -> str:
        return self.template.format(url=quote(target, safe=""))


class RelayResponse(NamedTuple):
    ok: bool
    status: int = 0
    text: str = ""
    relay: Optional[str] = None
    error: str = ""


def default_relays() -> List[Relay]:
    return [
        Relay(
            name="corsproxy",
            template=settings.PRIMARY_RELAY_URL,
            supports_post=True,
            requires_unwrap=False,
            timeout=settings.PRIMARY_RELAY_TIMEOUT,
        ),
        Relay(
            name="allorigins",
            template=settings.BACKUP_RELAY_URL,
            supports_post=False,
            requires_unwrap=True,
            timeout=settings.BACKUP_RELAY_TIMEOUT,
        ),
    ]


class RelayChain:
    """中继链：逐个尝试可用中继，传输失败不抛出，返回 ok=False"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        relays: Optional[List[Relay]] = None,
        enabled: Optional[bool] = None,
    ):
        self._client = client
        self._relays = relays if relays is not None else default_relays()
        self._enabled = settings.RELAY_ENABLED if enabled is None else enabled

    def viable_relays(self, method: str) -> List[Relay]:
        """提交类请求（POST）只能走支持 POST 的中继"""
        is_post = method.upper() != "GET"
        return [r for r in self._relays if not is_post or r.supports_post]

    async def fetch(
        self,
        url: str,
        method: str = "GET",
        data: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> RelayResponse:
        if not self._enabled:
            return await self._direct(url, method, data, headers)

        last_error = "没有可用中继"
        for relay in self.viable_relays(method):
            try:
                resp = await self._client.request(
                    method.upper(),
                    relay.build_url(url),
                    data=data,
                    headers=headers,
                    timeout=relay.timeout,
                )
            except httpx.HTTPError as exc:
                last_error = f"{relay.name}: {exc.__class__.__name__}"
                logger.warning(f"[RELAY] {relay.name} 请求失败 {url}: {exc!r}")
                continue

            if not resp.is_success:
                last_error = f"{relay.name}: HTTP {resp.status_code}"
                logger.warning(f"[RELAY] {relay.name} 返回 {resp.status_code}: {url}")
                continue

            if relay.requires_unwrap:
                try:
                    contents = resp.json().get("contents")
                except (ValueError, AttributeError):
                    contents = None
                if not isinstance(contents, str):
                    last_error = f"{relay.name}: 响应格式异常"
                    logger.warning(f"[RELAY] {relay.name} 响应无法解包: {url}")
                    continue
                return RelayResponse(ok=True, status=200, text=contents, relay=relay.name)

            return RelayResponse(ok=True, status=resp.status_code, text=resp.text, relay=relay.name)

        logger.warning(f"[RELAY] ❌ 所有中继均失败: {url}")
        return RelayResponse(ok=False, error=last_error)

    async def _direct(self, url, method, data, headers) -> RelayResponse:
        try:
            resp = await self._client.request(
                method.upper(), url, data=data, headers=headers, timeout=settings.HTTP_TIMEOUT
            )
        except httpx.HTTPError as exc:
            return RelayResponse(ok=False, error=f"direct: {exc.__class__.__name__}")
        if not resp.is_success:
            return RelayResponse(ok=False, status=resp.status_code, error=f"direct: HTTP {resp.status_code}")
        return RelayResponse(ok=True, status=resp.status_code, text=resp.text, relay="direct")
