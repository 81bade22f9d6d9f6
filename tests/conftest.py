"""Shared fixtures: in-memory chain gateway and price source doubles."""

from __future__ import annotations

# Ensure consistent SSL certificate verification using certifi's CA bundle.
import asyncio
import os
from typing import Any, Optional

import certifi
import pytest

from bots.keeper.config import KeeperConfig
from bots.keeper.stats import SessionStats
from noether_core.api import ChainResult, OrderInfo

os.environ.setdefault("SSL_CERT_FILE", certifi.where())
os.environ.setdefault("REQUESTS_CA_BUNDLE", certifi.where())

WRITE_CALLS = {"liquidate", "execute_order", "apply_funding", "update_oracle_price"}


class FakeGateway:
    """〔このクラスがすること〕
    ChainGateway の in-memory 実装。呼び出しは calls に (名前, 引数...) で記録します。
    - read_errors[(call, id)] に例外を入れるとその読み取りで送出
    - *_results に ChainResult を入れると書き込みの戻り値を差し替え
    - execute_results に例外を入れると送信時に送出
    - oracle_results には ChainResult / 例外のリストも入れられる（再送のテスト用）
    """

    def __init__(self) -> None:
        self.positions: list[int] = []
        self.liquidatable: set[int] = set()
        self.liquidate_results: dict[int, ChainResult] = {}
        self.orders: list[int] = []
        self.triggered: set[int] = set()
        self.order_info: dict[int, Optional[OrderInfo]] = {}
        self.execute_results: dict[int, Any] = {}
        self.funding_result: ChainResult = ChainResult.ok("tx-funding")
        self.oracle_results: dict[str, Any] = {}
        self.read_errors: dict[tuple, Exception] = {}
        self.oracle_delay_s = 0.0
        self.calls: list[tuple] = []

    def _raise_if_set(self, *key) -> None:
        err = self.read_errors.get(key)
        if err is not None:
            raise err

    async def list_open_position_ids(self) -> list[int]:
        self.calls.append(("list_open_position_ids",))
        self._raise_if_set("list_open_position_ids")
        return list(self.positions)

    async def is_liquidatable(self, position_id: int) -> bool:
        self.calls.append(("is_liquidatable", position_id))
        self._raise_if_set("is_liquidatable", position_id)
        return position_id in self.liquidatable

    async def liquidate(self, position_id: int) -> ChainResult:
        self.calls.append(("liquidate", position_id))
        return self.liquidate_results.get(position_id, ChainResult.ok(f"tx-liq-{position_id}", 0))

    async def list_pending_order_ids(self) -> list[int]:
        self.calls.append(("list_pending_order_ids",))
        self._raise_if_set("list_pending_order_ids")
        return list(self.orders)

    async def should_execute_order(self, order_id: int) -> bool:
        self.calls.append(("should_execute_order", order_id))
        self._raise_if_set("should_execute_order", order_id)
        return order_id in self.triggered

    async def get_order(self, order_id: int) -> Optional[OrderInfo]:
        self.calls.append(("get_order", order_id))
        if order_id in self.order_info:
            return self.order_info[order_id]
        return OrderInfo(order_id, "StopLoss", "Long", "BTC")

    async def execute_order(self, order_id: int) -> ChainResult:
        self.calls.append(("execute_order", order_id))
        result = self.execute_results.get(order_id, ChainResult.ok(f"tx-ord-{order_id}", 1_0000000))
        if isinstance(result, Exception):
            raise result
        return result

    async def apply_funding(self) -> ChainResult:
        self.calls.append(("apply_funding",))
        return self.funding_result

    async def update_oracle_price(self, asset: str, scaled_price: int) -> ChainResult:
        self.calls.append(("update_oracle_price", asset, scaled_price))
        if self.oracle_delay_s:
            await asyncio.sleep(self.oracle_delay_s)
        result = self.oracle_results.get(asset, ChainResult.ok(f"tx-oracle-{asset}"))
        if isinstance(result, list):
            # 先頭から順に消費し、最後の 1 件はそのまま返し続ける
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result

    def writes(self, name: Optional[str] = None) -> list[tuple]:
        return [c for c in self.calls if c[0] in WRITE_CALLS and (name is None or c[0] == name)]


class FakePriceSource:
    def __init__(self, prices: Optional[dict[str, float]] = None, error: Optional[Exception] = None):
        self.prices = dict(prices or {})
        self.error = error
        self.calls = 0

    async def fetch_prices(self, symbols=None) -> dict[str, float]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        wanted = set(symbols) if symbols is not None else None
        return {k: v for k, v in self.prices.items() if wanted is None or k in wanted}


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def price_source() -> FakePriceSource:
    return FakePriceSource({"BTC": 97000.12, "ETH": 3500.0, "XLM": 0.1234567})


@pytest.fixture
def keeper_config() -> KeeperConfig:
    return KeeperConfig(
        network="testnet",
        market_contract_id="CMARKET",
        oracle_contract_id="CORACLE",
        keeper_address="GKEEPER",
        poll_interval_ms=10,
        oracle_asset_delay_ms=0,
    )


@pytest.fixture
def stats() -> SessionStats:
    return SessionStats(start_time=0.0)


@pytest.fixture
def gateway_factory():
    return FakeGateway


@pytest.fixture
def price_source_factory():
    return FakePriceSource
