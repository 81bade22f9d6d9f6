# 〔このモジュールがすること〕
# 各タスク実行の結果（TaskOutcome）と、オラクル価格のスナップショット（PriceSnapshot）を定義します。
# 金額・価格は 7 桁固定小数点の int で扱い、float の丸め誤差を持ち込みません。

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

PRICE_DECIMALS = 7
SCALE = 10**PRICE_DECIMALS


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    BENIGN_SKIP = "benign_skip"
    FAILURE = "failure"


class TaskName(str, Enum):
    ORACLE = "oracle"
    LIQUIDATION = "liquidation"
    ORDER = "order"
    FUNDING = "funding"


class SkipReason(str, Enum):
    ALREADY_RESOLVED = "already_resolved"
    SLIPPAGE_CANCELLED = "slippage_cancelled"
    ORPHANED = "orphaned"
    INTERVAL_NOT_ELAPSED = "interval_not_elapsed"


@dataclass(frozen=True)
class TaskOutcome:
    """〔このクラスがすること〕
    1 回のタスク実行（1 資産 / 1 ポジション / 1 注文 / 1 回の funding）の結果です。
    kind は SUCCESS / BENIGN_SKIP / FAILURE のどれか 1 つで、reason は BENIGN_SKIP のときだけ持ちます。
    """

    task: TaskName
    kind: OutcomeKind
    reward: int = 0
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    reason: Optional[SkipReason] = None
    subject: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is OutcomeKind.SUCCESS and self.reward < 0:
            raise ValueError(f"success outcome with negative reward: {self.reward}")
        if (self.reason is not None) != (self.kind is OutcomeKind.BENIGN_SKIP):
            raise ValueError("skip reason must be set exactly for benign skips")

    @classmethod
    def success(
        cls,
        task: TaskName,
        *,
        reward: int = 0,
        tx_hash: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> "TaskOutcome":
        return cls(task, OutcomeKind.SUCCESS, reward=reward, tx_hash=tx_hash, subject=subject)

    @classmethod
    def skip(
        cls,
        task: TaskName,
        reason: SkipReason,
        *,
        error: Optional[str] = None,
        tx_hash: Optional[str] = None,
        subject: Optional[str] = None,
    ) -> "TaskOutcome":
        return cls(
            task,
            OutcomeKind.BENIGN_SKIP,
            error=error,
            tx_hash=tx_hash,
            reason=reason,
            subject=subject,
        )

    @classmethod
    def failure(
        cls, task: TaskName, error: str, *, subject: Optional[str] = None
    ) -> "TaskOutcome":
        return cls(task, OutcomeKind.FAILURE, error=error, subject=subject)


@dataclass(frozen=True)
class PriceSnapshot:
    asset: str
    price: float
    scaled_price: int
    timestamp: float


def to_fixed_point(price: Union[float, int, str, Decimal]) -> int:
    """〔この関数がすること〕 floor(price × 10^7) を Decimal で計算します（負数・非有限は ValueError）。"""
    try:
        # float は repr 経由で Decimal 化する（2 進誤差をそのまま拾わない）
        value = Decimal(repr(price)) if isinstance(price, float) else Decimal(price)
    except InvalidOperation as exc:
        raise ValueError(f"not a number: {price!r}") from exc
    if not value.is_finite():
        raise ValueError(f"price must be finite, got {price!r}")
    if value < 0:
        raise ValueError(f"price must not be negative, got {price!r}")
    return int((value * SCALE).to_integral_value(rounding=ROUND_FLOOR))


def format_amount(amount: int, decimals: int = PRICE_DECIMALS) -> str:
    """固定小数点の金額を小数 2 桁で表示します（500000000 → "50.00"）。"""
    value = Decimal(amount) / (Decimal(10) ** decimals)
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_FLOOR))


def format_duration(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


__all__ = [
    "OutcomeKind",
    "PRICE_DECIMALS",
    "PriceSnapshot",
    "SCALE",
    "SkipReason",
    "TaskName",
    "TaskOutcome",
    "format_amount",
    "format_duration",
    "to_fixed_point",
]
