"""Chain gateway contract consumed by the keeper.

The keeper never talks to the SDK directly; it only sees this call table.
Writes return a :class:`ChainResult`, reads return plain values and raise
:class:`ChainCallError` when the remote call itself fails.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

_CONTRACT_ERROR_RE = re.compile(r"Error\(Contract,\s*#(\d+)\)")


def parse_contract_error_code(text: Optional[str]) -> Optional[int]:
    """Extract the numeric contract error from host error text (``Error(Contract, #20)``)."""
    if not text:
        return None
    match = _CONTRACT_ERROR_RE.search(text)
    if match is None:
        return None
    return int(match.group(1))


class ChainCallError(RuntimeError):
    """A read call (simulation) failed; ``code`` is the contract error if one was reported."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code if code is not None else parse_contract_error_code(message)


@dataclass(frozen=True)
class ChainResult:
    success: bool
    tx_hash: Optional[str] = None
    reward: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[int] = None

    @classmethod
    def ok(cls, tx_hash: Optional[str] = None, reward: Optional[int] = None) -> "ChainResult":
        return cls(success=True, tx_hash=tx_hash, reward=reward)

    @classmethod
    def failed(cls, error: str, error_code: Optional[int] = None) -> "ChainResult":
        code = error_code if error_code is not None else parse_contract_error_code(error)
        return cls(success=False, error=error, error_code=code)


@dataclass(frozen=True)
class OrderInfo:
    order_id: int
    order_type: str
    direction: str
    asset: str


@runtime_checkable
class ChainGateway(Protocol):
    async def list_open_position_ids(self) -> list[int]: ...

    async def is_liquidatable(self, position_id: int) -> bool: ...

    async def liquidate(self, position_id: int) -> ChainResult: ...

    async def list_pending_order_ids(self) -> list[int]: ...

    async def should_execute_order(self, order_id: int) -> bool: ...

    async def get_order(self, order_id: int) -> Optional[OrderInfo]: ...

    async def execute_order(self, order_id: int) -> ChainResult: ...

    async def apply_funding(self) -> ChainResult: ...

    async def update_oracle_price(self, asset: str, scaled_price: int) -> ChainResult: ...


__all__ = [
    "ChainCallError",
    "ChainGateway",
    "ChainResult",
    "OrderInfo",
    "parse_contract_error_code",
]
