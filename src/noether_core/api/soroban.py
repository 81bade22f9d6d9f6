from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

from stellar_sdk import Account, Keypair, SorobanServer, TransactionBuilder, scval
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.exceptions import PrepareTransactionException
from stellar_sdk.soroban_rpc import GetTransactionStatus, SendTransactionStatus

from noether_core.utils.logger import get_logger

from .gateway import ChainCallError, ChainResult, OrderInfo

# Soroban コントラクト呼び出しアダプタ
# - 読み取りはシミュレーションのみ（署名・送信なし）
# - 書き込みは simulate → prepare → sign → send → get_transaction ポーリング
# - 同一署名者の書き込みは asyncio.Lock で直列化（シーケンス番号の競合回避）

logger = get_logger("noether_core.api.soroban")

BASE_FEE = 100_000
TX_TIMEOUT_S = 30


def _native(val: stellar_xdr.SCVal) -> Any:
    """SCVal を Python の値に変換する（keeper が扱う型のみ）。"""
    t = val.type
    if t == stellar_xdr.SCValType.SCV_VOID:
        return None
    if t == stellar_xdr.SCValType.SCV_BOOL:
        return scval.from_bool(val)
    if t == stellar_xdr.SCValType.SCV_U32:
        return scval.from_uint32(val)
    if t == stellar_xdr.SCValType.SCV_I32:
        return scval.from_int32(val)
    if t == stellar_xdr.SCValType.SCV_U64:
        return scval.from_uint64(val)
    if t == stellar_xdr.SCValType.SCV_I64:
        return scval.from_int64(val)
    if t == stellar_xdr.SCValType.SCV_U128:
        return scval.from_uint128(val)
    if t == stellar_xdr.SCValType.SCV_I128:
        return scval.from_int128(val)
    if t == stellar_xdr.SCValType.SCV_SYMBOL:
        return scval.from_symbol(val)
    if t == stellar_xdr.SCValType.SCV_STRING:
        return scval.from_string(val).decode("utf-8", errors="replace")
    if t == stellar_xdr.SCValType.SCV_ADDRESS:
        return scval.from_address(val).address
    if t == stellar_xdr.SCValType.SCV_VEC:
        return [_native(v) for v in scval.from_vec(val)]
    if t == stellar_xdr.SCValType.SCV_MAP:
        entries = val.map.sc_map if val.map is not None else []
        return {_native(e.key): _native(e.val) for e in entries}
    raise ChainCallError(f"unsupported return type: {t}")


def _enum_name(value: Any, names: tuple[str, ...] = ()) -> str:
    """contracttype の unit enum（[Symbol] か添字）を名前にする。"""
    if isinstance(value, list) and value:
        return str(value[0])
    if isinstance(value, int) and 0 <= value < len(names):
        return names[value]
    return str(value)


def _return_value(resp: Any) -> Optional[stellar_xdr.SCVal]:
    """get_transaction 応答から戻り値 SCVal を取り出す（meta v3 / v4 両対応）。"""
    raw = getattr(resp, "return_value", None)
    if raw:
        return stellar_xdr.SCVal.from_xdr(raw)
    if not resp.result_meta_xdr:
        return None
    meta = stellar_xdr.TransactionMeta.from_xdr(resp.result_meta_xdr)
    for body in (getattr(meta, "v4", None), getattr(meta, "v3", None)):
        soroban_meta = getattr(body, "soroban_meta", None) if body is not None else None
        if soroban_meta is not None:
            return soroban_meta.return_value
    return None


class SorobanGateway:
    """Noether market / oracle コントラクトへの ChainGateway 実装。"""

    def __init__(
        self,
        server: SorobanServer,
        network_passphrase: str,
        market_contract_id: str,
        oracle_contract_id: str,
        keeper: Keypair,
        oracle_signer: Optional[Keypair] = None,
        *,
        confirm_timeout_s: float = 15.0,
        confirm_poll_s: float = 1.0,
    ) -> None:
        self._server = server
        self._passphrase = network_passphrase
        self.market_contract_id = market_contract_id
        self.oracle_contract_id = oracle_contract_id
        self._keeper = keeper
        self._oracle_signer = oracle_signer or keeper
        self._confirm_timeout_s = confirm_timeout_s
        self._confirm_poll_s = confirm_poll_s
        self._write_locks: Dict[str, asyncio.Lock] = {}

    @property
    def keeper_address(self) -> str:
        return self._keeper.public_key

    # ── 読み取り ──────────────────────────────────────────────
    def _simulate_sync(self, contract_id: str, function: str, params: list) -> Any:
        # シミュレーションはシーケンス番号を見ないので口座ロードを省略
        source = Account(self._keeper.public_key, 0)
        tx = (
            TransactionBuilder(source, self._passphrase, base_fee=BASE_FEE)
            .append_invoke_contract_function_op(contract_id, function, params)
            .set_timeout(TX_TIMEOUT_S)
            .build()
        )
        sim = self._server.simulate_transaction(tx)
        if sim.error:
            raise ChainCallError(f"{function} simulation failed: {sim.error}")
        if not sim.results:
            raise ChainCallError(f"{function} simulation returned no result")
        return _native(stellar_xdr.SCVal.from_xdr(sim.results[0].xdr))

    async def _read(self, function: str, *params: stellar_xdr.SCVal) -> Any:
        return await asyncio.to_thread(
            self._simulate_sync, self.market_contract_id, function, list(params)
        )

    async def list_open_position_ids(self) -> list[int]:
        ids = await self._read("get_all_position_ids")
        return [int(i) for i in ids or []]

    async def is_liquidatable(self, position_id: int) -> bool:
        return bool(await self._read("is_liquidatable", scval.to_uint64(position_id)))

    async def list_pending_order_ids(self) -> list[int]:
        ids = await self._read("get_pending_order_ids")
        return [int(i) for i in ids or []]

    async def should_execute_order(self, order_id: int) -> bool:
        return bool(await self._read("check_order_trigger", scval.to_uint64(order_id)))

    async def get_order(self, order_id: int) -> Optional[OrderInfo]:
        raw = await self._read("get_order", scval.to_uint64(order_id))
        if not isinstance(raw, dict):
            return None
        return OrderInfo(
            order_id=int(raw.get("id", order_id)),
            order_type=_enum_name(raw.get("order_type"), ("Limit", "StopLoss", "TakeProfit")),
            direction=_enum_name(raw.get("direction"), ("Long", "Short")),
            asset=str(raw.get("asset", "?")),
        )

    # ── 書き込み ──────────────────────────────────────────────
    def _lock_for(self, signer: Keypair) -> asyncio.Lock:
        lock = self._write_locks.get(signer.public_key)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[signer.public_key] = lock
        return lock

    def _submit_sync(
        self, signer: Keypair, contract_id: str, function: str, params: list
    ) -> Any:
        source = self._server.load_account(signer.public_key)
        tx = (
            TransactionBuilder(source, self._passphrase, base_fee=BASE_FEE)
            .append_invoke_contract_function_op(contract_id, function, params)
            .set_timeout(TX_TIMEOUT_S)
            .build()
        )
        tx = self._server.prepare_transaction(tx)
        tx.sign(signer)
        return self._server.send_transaction(tx)

    async def _write(
        self, signer: Keypair, contract_id: str, function: str, *params: stellar_xdr.SCVal
    ) -> ChainResult:
        async with self._lock_for(signer):
            try:
                sent = await asyncio.to_thread(
                    self._submit_sync, signer, contract_id, function, list(params)
                )
            except PrepareTransactionException as exc:
                sim = getattr(exc, "simulate_transaction_response", None)
                detail = getattr(sim, "error", None) or str(exc)
                return ChainResult.failed(f"Simulation failed: {detail}")

            # ERROR / TRY_AGAIN_LATER / DUPLICATE は確定待ちせず即失敗
            if sent.status != SendTransactionStatus.PENDING:
                return ChainResult.failed(
                    f"Send failed ({sent.status.value}): {sent.error_result_xdr}"
                )

            resp = await self._wait_confirmed(sent.hash)

        if resp.status != GetTransactionStatus.SUCCESS:
            return ChainResult.failed(f"Transaction status: {resp.status}")

        ret = _return_value(resp)
        reward = _native(ret) if ret is not None else None
        return ChainResult.ok(
            tx_hash=sent.hash, reward=int(reward) if isinstance(reward, int) else None
        )

    async def _wait_confirmed(self, tx_hash: str) -> Any:
        deadline = time.monotonic() + self._confirm_timeout_s
        resp = await asyncio.to_thread(self._server.get_transaction, tx_hash)
        while resp.status == GetTransactionStatus.NOT_FOUND and time.monotonic() < deadline:
            await asyncio.sleep(self._confirm_poll_s)
            resp = await asyncio.to_thread(self._server.get_transaction, tx_hash)
        return resp

    async def liquidate(self, position_id: int) -> ChainResult:
        return await self._write(
            self._keeper,
            self.market_contract_id,
            "liquidate",
            scval.to_address(self._keeper.public_key),
            scval.to_uint64(position_id),
        )

    async def execute_order(self, order_id: int) -> ChainResult:
        return await self._write(
            self._keeper,
            self.market_contract_id,
            "execute_order",
            scval.to_address(self._keeper.public_key),
            scval.to_uint64(order_id),
        )

    async def apply_funding(self) -> ChainResult:
        return await self._write(self._keeper, self.market_contract_id, "apply_funding")

    async def update_oracle_price(self, asset: str, scaled_price: int) -> ChainResult:
        return await self._write(
            self._oracle_signer,
            self.oracle_contract_id,
            "set_price",
            scval.to_symbol(asset),
            scval.to_int128(scaled_price),
        )

    async def close(self) -> None:
        await asyncio.to_thread(self._server.close)


__all__ = ["SorobanGateway"]
