# 〔このモジュールがすること〕
# 全オープンポジションを列挙し、清算可能なものだけ liquidate を送信します。
# 列挙自体の失敗は呼び出し側（スケジューラ）へ送出し、ポジション単位の失敗はここで吸収して次へ進みます。

from __future__ import annotations

from typing import Optional

from noether_core.api import ChainCallError, ChainGateway
from noether_core.utils.logger import get_logger

from .config import KeeperConfig
from .errors import is_not_found
from .outcome import SkipReason, TaskName, TaskOutcome, format_amount
from .stats import SessionStats

logger = get_logger("keeper.liquidation")


class LiquidationChecker:
    def __init__(self, config: KeeperConfig, gateway: ChainGateway) -> None:
        self.config = config
        self.gateway = gateway

    async def run(self, stats: SessionStats) -> list[TaskOutcome]:
        position_ids = await self.gateway.list_open_position_ids()
        outcomes: list[TaskOutcome] = []
        for position_id in position_ids:
            outcome = await self.check_position(position_id)
            if outcome is not None:
                stats.record(outcome)
                outcomes.append(outcome)
        return outcomes

    def _resolved_or_failed(self, subject: str, error: str, code: Optional[int]) -> TaskOutcome:
        if is_not_found(code, error, self.config.errors):
            logger.debug("position %s already resolved: %s", subject, error)
            return TaskOutcome.skip(
                TaskName.LIQUIDATION, SkipReason.ALREADY_RESOLVED, error=error, subject=subject
            )
        logger.error("❌ Liquidation of position #%s failed: %s", subject, error)
        return TaskOutcome.failure(TaskName.LIQUIDATION, error, subject=subject)

    async def check_position(self, position_id: int) -> Optional[TaskOutcome]:
        """〔このメソッドがすること〕 1 ポジションを判定→清算します（清算不要なら None）。"""
        subject = str(position_id)
        try:
            if not await self.gateway.is_liquidatable(position_id):
                return None
            logger.warning("⚠️ Position #%s is liquidatable, liquidating…", position_id)
            result = await self.gateway.liquidate(position_id)
        except ChainCallError as exc:
            return self._resolved_or_failed(subject, str(exc), exc.code)
        except Exception as exc:
            logger.error("❌ Liquidation check for position #%s raised: %s", position_id, exc)
            return TaskOutcome.failure(TaskName.LIQUIDATION, str(exc), subject=subject)

        if not result.success:
            return self._resolved_or_failed(
                subject, result.error or "liquidation failed", result.error_code
            )

        reward = max(0, result.reward or 0)
        logger.info(
            "✅ Position #%s liquidated (tx=%s) Reward: %s USDC",
            position_id,
            result.tx_hash,
            format_amount(reward),
        )
        return TaskOutcome.success(
            TaskName.LIQUIDATION, reward=reward, tx_hash=result.tx_hash, subject=subject
        )


__all__ = ["LiquidationChecker"]
