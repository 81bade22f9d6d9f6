# 〔このモジュールがすること〕
# 外部の参照価格（Binance の ticker/price）を 1 回のリクエストでまとめて取得し、
# 表示シンボル（BTC / ETH / XLM）→ 価格（float）の dict に変換します。
# 取得に失敗したとき（通信断・4xx/5xx・壊れた JSON）は資産セット全体で PriceFeedError を送出します。

from __future__ import annotations

import json
from typing import Any, Iterable, Optional, Protocol

import httpx

from noether_core.api import HTTPClient
from noether_core.utils.logger import get_logger
from noether_core.utils.retry import retry_async

from .config import AssetConfig

logger = get_logger("keeper.price_feed")


class PriceFeedError(RuntimeError):
    """価格フィードが資産セット全体について価格を返せなかった。"""


class PriceSource(Protocol):
    async def fetch_prices(self, symbols: Optional[Iterable[str]] = None) -> dict[str, float]: ...


class BinancePriceSource:
    """〔このクラスがすること〕 /ticker/price?symbols=[...] を叩いて価格 dict を返します。"""

    def __init__(self, client: HTTPClient, assets: Iterable[AssetConfig]) -> None:
        self._client = client
        self._assets = tuple(assets)

    @retry_async(max_attempts=2, base_delay=0.5, retry_on=(httpx.HTTPError,))
    async def _get_tickers(self, feed_symbols: list[str]) -> Any:
        # Binance は空白なしの JSON 配列しか受け付けない
        encoded = json.dumps(feed_symbols, separators=(",", ":"))
        return await self._client.get("ticker/price", params={"symbols": encoded})

    async def fetch_prices(self, symbols: Optional[Iterable[str]] = None) -> dict[str, float]:
        wanted = set(symbols) if symbols is not None else None
        assets = [a for a in self._assets if wanted is None or a.symbol in wanted]
        if not assets:
            return {}

        try:
            data = await self._get_tickers([a.feed_symbol for a in assets])
        except httpx.HTTPError as exc:
            raise PriceFeedError(f"price feed unavailable: {exc}") from exc
        except ValueError as exc:  # JSON デコード失敗
            raise PriceFeedError(f"price feed returned malformed body: {exc}") from exc

        if not isinstance(data, list):
            raise PriceFeedError(f"unexpected price feed payload: {data!r}")

        by_feed: dict[str, float] = {}
        for row in data:
            if not isinstance(row, dict) or "symbol" not in row:
                continue
            try:
                by_feed[str(row["symbol"])] = float(row["price"])
            except (KeyError, TypeError, ValueError):
                logger.warning("⚠️ skipping malformed ticker row: %r", row)

        prices = {a.symbol: by_feed[a.feed_symbol] for a in assets if a.feed_symbol in by_feed}
        logger.debug("fetched prices: %s", prices)
        return prices


__all__ = ["BinancePriceSource", "PriceFeedError", "PriceSource"]
