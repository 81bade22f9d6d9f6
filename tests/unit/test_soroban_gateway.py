from __future__ import annotations

import asyncio
import threading
import time
from types import SimpleNamespace

import pytest
from stellar_sdk import Account, Keypair, Network, StrKey, scval
from stellar_sdk.exceptions import PrepareTransactionException
from stellar_sdk.soroban_rpc import GetTransactionStatus, SendTransactionStatus

from noether_core.api import ChainCallError
from noether_core.api.soroban import SorobanGateway, _native

MARKET = StrKey.encode_contract(bytes(32))
ORACLE = StrKey.encode_contract(bytes([1]) * 32)


class FakeServer:
    """〔このクラスがすること〕 SorobanServer の代わりに、呼ばれた関数名と応答を記録/返却します。"""

    def __init__(self) -> None:
        self.sim_result = scval.to_void()
        self.sim_error = None
        self.prepare_error = None
        self.send_status = SendTransactionStatus.PENDING
        self.statuses = [GetTransactionStatus.SUCCESS]
        self.return_value = scval.to_void()
        self.simulated: list[str] = []
        self.sent: list[str] = []
        self.get_calls = 0
        self.closed = False

    @staticmethod
    def _function(tx) -> str:
        op = tx.transaction.operations[0]
        return op.host_function.invoke_contract.function_name.sc_symbol.decode()

    def simulate_transaction(self, tx):
        self.simulated.append(self._function(tx))
        return SimpleNamespace(
            error=self.sim_error,
            results=[SimpleNamespace(xdr=self.sim_result.to_xdr())],
        )

    def load_account(self, account_id):
        return Account(account_id, 100)

    def prepare_transaction(self, tx):
        if self.prepare_error is not None:
            raise PrepareTransactionException(
                "simulation failed", SimpleNamespace(error=self.prepare_error)
            )
        return tx

    def send_transaction(self, tx):
        self.sent.append(self._function(tx))
        return SimpleNamespace(
            status=self.send_status, hash="abc123", error_result_xdr="AAAA"
        )

    def get_transaction(self, tx_hash):
        status = self.statuses[min(self.get_calls, len(self.statuses) - 1)]
        self.get_calls += 1
        return SimpleNamespace(
            status=status, return_value=self.return_value.to_xdr(), result_meta_xdr=None
        )

    def close(self):
        self.closed = True


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def keeper() -> Keypair:
    return Keypair.random()


@pytest.fixture
def gw(server, keeper) -> SorobanGateway:
    return SorobanGateway(
        server,
        Network.TESTNET_NETWORK_PASSPHRASE,
        MARKET,
        ORACLE,
        keeper,
        confirm_timeout_s=0.5,
        confirm_poll_s=0.01,
    )


def test_native_decodes_keeper_types():
    order = scval.to_map(
        {
            scval.to_symbol("id"): scval.to_uint64(9),
            scval.to_symbol("order_type"): scval.to_vec([scval.to_symbol("StopLoss")]),
            scval.to_symbol("asset"): scval.to_symbol("BTC"),
        }
    )
    assert _native(order) == {"id": 9, "order_type": ["StopLoss"], "asset": "BTC"}
    assert _native(scval.to_int128(-5)) == -5
    assert _native(scval.to_bool(True)) is True


@pytest.mark.asyncio
async def test_reads_are_simulated(gw, server):
    server.sim_result = scval.to_vec([scval.to_uint64(1), scval.to_uint64(7)])
    assert await gw.list_open_position_ids() == [1, 7]

    server.sim_result = scval.to_bool(True)
    assert await gw.is_liquidatable(7) is True
    assert server.simulated == ["get_all_position_ids", "is_liquidatable"]
    assert server.sent == []


@pytest.mark.asyncio
async def test_read_error_carries_contract_code(gw, server):
    server.sim_error = "HostError: Error(Contract, #20)"
    with pytest.raises(ChainCallError) as info:
        await gw.is_liquidatable(3)
    assert info.value.code == 20


@pytest.mark.asyncio
async def test_get_order_decodes_enum_names(gw, server):
    server.sim_result = scval.to_map(
        {
            scval.to_symbol("asset"): scval.to_symbol("ETH"),
            scval.to_symbol("direction"): scval.to_vec([scval.to_symbol("Short")]),
            scval.to_symbol("id"): scval.to_uint64(4),
            scval.to_symbol("order_type"): scval.to_vec([scval.to_symbol("TakeProfit")]),
        }
    )
    order = await gw.get_order(4)
    assert (order.order_id, order.order_type, order.direction, order.asset) == (
        4,
        "TakeProfit",
        "Short",
        "ETH",
    )


@pytest.mark.asyncio
async def test_write_returns_reward(gw, server):
    server.statuses = [GetTransactionStatus.NOT_FOUND, GetTransactionStatus.SUCCESS]
    server.return_value = scval.to_int128(50_0000000)

    result = await gw.liquidate(7)

    assert result.success is True
    assert result.reward == 50_0000000
    assert result.tx_hash == "abc123"
    assert server.sent == ["liquidate"]
    assert server.get_calls == 2


@pytest.mark.asyncio
async def test_prepare_failure_is_structured(gw, server):
    server.prepare_error = "HostError: Error(Contract, #55)"

    result = await gw.apply_funding()

    assert result.success is False
    assert result.error_code == 55
    assert result.error.startswith("Simulation failed")
    assert server.sent == []


@pytest.mark.asyncio
async def test_send_error_and_failed_status(gw, server):
    server.send_status = SendTransactionStatus.ERROR
    assert (await gw.execute_order(3)).success is False

    server.send_status = SendTransactionStatus.PENDING
    server.statuses = [GetTransactionStatus.FAILED]
    result = await gw.execute_order(3)
    assert result.success is False
    assert "FAILED" in result.error


@pytest.mark.parametrize(
    "status", [SendTransactionStatus.TRY_AGAIN_LATER, SendTransactionStatus.DUPLICATE]
)
@pytest.mark.asyncio
async def test_unaccepted_send_fails_without_polling(gw, server, status):
    server.send_status = status

    started = time.monotonic()
    result = await gw.liquidate(7)

    assert result.success is False
    assert status.value in result.error
    assert server.get_calls == 0
    assert time.monotonic() - started < 0.4


@pytest.mark.asyncio
async def test_oracle_writes_use_oracle_contract(gw, server):
    result = await gw.update_oracle_price("BTC", 970001200000)
    assert result.success is True
    assert server.sent == ["set_price"]


@pytest.mark.asyncio
async def test_close_closes_server(gw, server):
    await gw.close()
    assert server.closed is True


class SlowSendServer(FakeServer):
    """〔このクラスがすること〕 send_transaction をわざと遅くし、同時に走った送信数の最大値を記録します。"""

    def __init__(self) -> None:
        super().__init__()
        self._guard = threading.Lock()
        self._active = 0
        self.max_active = 0

    def send_transaction(self, tx):
        with self._guard:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            time.sleep(0.1)
            return super().send_transaction(tx)
        finally:
            with self._guard:
                self._active -= 1


@pytest.mark.asyncio
async def test_writes_from_one_signer_never_overlap(keeper):
    server = SlowSendServer()
    gw = SorobanGateway(
        server,
        Network.TESTNET_NETWORK_PASSPHRASE,
        MARKET,
        ORACLE,
        keeper,
        confirm_timeout_s=0.5,
        confirm_poll_s=0.01,
    )

    results = await asyncio.gather(
        gw.liquidate(1), gw.execute_order(2), gw.update_oracle_price("BTC", 1)
    )

    assert all(r.success for r in results)
    assert sorted(server.sent) == ["execute_order", "liquidate", "set_price"]
    assert server.max_active == 1


@pytest.mark.asyncio
async def test_separate_oracle_signer_has_its_own_lock(keeper):
    server = SlowSendServer()
    gw = SorobanGateway(
        server,
        Network.TESTNET_NETWORK_PASSPHRASE,
        MARKET,
        ORACLE,
        keeper,
        Keypair.random(),
        confirm_timeout_s=0.5,
        confirm_poll_s=0.01,
    )

    await asyncio.gather(gw.liquidate(1), gw.update_oracle_price("BTC", 1))

    assert server.max_active == 2
