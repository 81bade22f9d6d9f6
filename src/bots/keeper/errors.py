# 〔このモジュールがすること〕
# コントラクトが返したエラーを keeper 上の意味（既に解決済み・孤立注文・間隔未経過）へ分類します。
# 構造化されたエラーコードを優先し、コードが取れないときだけエラー名の文字列一致で判定します。

from __future__ import annotations

from typing import Iterable, Optional

from noether_core.api.gateway import parse_contract_error_code

from .config import ErrorCodes

POSITION_NOT_FOUND = "PositionNotFound"
ORDER_NOT_FOUND = "OrderNotFound"
FUNDING_INTERVAL_NOT_ELAPSED = "FundingIntervalNotElapsed"


def matches(
    error_code: Optional[int], message: Optional[str], codes: Iterable[int], name: str
) -> bool:
    """〔この関数がすること〕 コード一致 → 名前一致の順で判定します。"""
    code = error_code if error_code is not None else parse_contract_error_code(message)
    if code is not None and code in tuple(codes):
        return True
    return bool(message) and name in str(message)


def is_position_not_found(
    error_code: Optional[int], message: Optional[str], table: ErrorCodes
) -> bool:
    return matches(error_code, message, table.position_not_found, POSITION_NOT_FOUND)


def is_order_not_found(
    error_code: Optional[int], message: Optional[str], table: ErrorCodes
) -> bool:
    return matches(error_code, message, table.order_not_found, ORDER_NOT_FOUND)


def is_funding_interval_not_elapsed(
    error_code: Optional[int], message: Optional[str], table: ErrorCodes
) -> bool:
    return matches(
        error_code, message, table.funding_interval_not_elapsed, FUNDING_INTERVAL_NOT_ELAPSED
    )


def is_not_found(error_code: Optional[int], message: Optional[str], table: ErrorCodes) -> bool:
    """ポジション/注文のどちらかが既に存在しない（他の keeper が先に処理した等）。"""
    return is_position_not_found(error_code, message, table) or is_order_not_found(
        error_code, message, table
    )


__all__ = [
    "is_funding_interval_not_elapsed",
    "is_not_found",
    "is_order_not_found",
    "is_position_not_found",
    "matches",
    "parse_contract_error_code",
]
