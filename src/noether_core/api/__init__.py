# src/noether_core/api/__init__.py
from __future__ import annotations

import logging
import ssl
from typing import Any, Optional

import httpx

from .gateway import (
    ChainCallError,
    ChainGateway,
    ChainResult,
    OrderInfo,
    parse_contract_error_code,
)

logger = logging.getLogger(__name__)


class HTTPClient:
    """
    外部 REST API（価格フィード等）の薄いラッパ
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        verify: bool | str | ssl.SSLContext = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._cli = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, verify=verify, transport=transport
        )
        logger.debug("HTTPClient initialised: %s", self.base_url)

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        指定パスに GET リクエストを送り、JSON を返す。
        例: await cli.get("ticker/price", params={"symbols": '["BTCUSDT"]'})
        """
        url = f"/{path.lstrip('/')}"
        resp = await self._cli.get(url, params=params)
        resp.raise_for_status()  # 4xx / 5xx なら例外
        return resp.json()

    async def close(self) -> None:
        await self._cli.aclose()


__all__ = [
    "ChainCallError",
    "ChainGateway",
    "ChainResult",
    "HTTPClient",
    "OrderInfo",
    "parse_contract_error_code",
]
