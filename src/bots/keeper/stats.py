# 〔このモジュールがすること〕
# セッション統計（SessionStats）を保持し、TaskOutcome を受け取ってカウンタを加算します。
# カウンタはメインループ（単一スレッドのイベントループ）だけが触り、減ることはありません。

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

from noether_core.utils.logger import get_logger

from .metrics import KeeperMetrics
from .outcome import OutcomeKind, SkipReason, TaskName, TaskOutcome, format_amount, format_duration

logger = get_logger("keeper.stats")

_SUCCESS_COUNTERS = {
    TaskName.ORACLE: "oracle_updates",
    TaskName.LIQUIDATION: "liquidations_executed",
    TaskName.ORDER: "orders_executed",
    TaskName.FUNDING: "funding_applications",
}

_SKIP_COUNTERS = {
    SkipReason.SLIPPAGE_CANCELLED: "orders_cancelled_slippage",
    SkipReason.ORPHANED: "orders_skipped_orphaned",
}


@dataclass
class SessionStats:
    start_time: float = field(default_factory=time.time)
    oracle_updates: int = 0
    liquidations_executed: int = 0
    orders_executed: int = 0
    orders_cancelled_slippage: int = 0
    orders_skipped_orphaned: int = 0
    funding_applications: int = 0
    errors: int = 0
    total_rewards: int = 0
    metrics: Optional[KeeperMetrics] = field(default=None, repr=False, compare=False)

    def record(self, outcome: TaskOutcome) -> None:
        """〔このメソッドがすること〕 結果の種類に応じて該当カウンタだけを加算します。"""
        if outcome.kind is OutcomeKind.FAILURE:
            self.errors += 1
            if self.metrics is not None:
                self.metrics.inc_errors()
        elif outcome.kind is OutcomeKind.SUCCESS:
            name = _SUCCESS_COUNTERS[outcome.task]
            setattr(self, name, getattr(self, name) + 1)
            self.total_rewards += outcome.reward
        else:
            name = _SKIP_COUNTERS.get(outcome.reason)  # type: ignore[arg-type]
            if name is not None:
                setattr(self, name, getattr(self, name) + 1)
        if self.metrics is not None:
            self.metrics.observe_outcome(outcome)

    def record_error(self, context: str, exc: BaseException) -> None:
        """スケジューラの catch-all から呼ばれる（タスク外で起きた例外 1 件）。"""
        logger.error("❌ %s: %s", context, exc, exc_info=exc)
        self.errors += 1
        if self.metrics is not None:
            self.metrics.inc_errors()

    def render_summary(self, now: Optional[float] = None) -> str:
        runtime = (now if now is not None else time.time()) - self.start_time
        rule = "═" * 80
        lines = [
            rule,
            "  KEEPER SESSION SUMMARY",
            rule,
            f"  Runtime:               {format_duration(runtime)}",
            f"  Oracle Updates:        {self.oracle_updates}",
            f"  Liquidations:          {self.liquidations_executed}",
            f"  Orders Executed:       {self.orders_executed}",
            f"  Orders Cancelled:      {self.orders_cancelled_slippage} (slippage)",
            f"  Orders Skipped:        {self.orders_skipped_orphaned} (orphaned - position closed)",
            f"  Funding Applications:  {self.funding_applications}",
            f"  Total Rewards:         {format_amount(self.total_rewards)} USDC",
            f"  Errors:                {self.errors}",
            rule,
        ]
        return "\n".join(lines)


__all__ = ["SessionStats"]
