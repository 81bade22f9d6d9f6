# 〔このモジュールがすること〕
# apply_funding を 1 回だけ送信します（全ポジションへの適用はコントラクト側で一括）。
# コントラクト側の 1 時間ゲートとずれて「間隔未経過」になった場合は黙ってスキップします。

from __future__ import annotations

from noether_core.api import ChainCallError, ChainGateway
from noether_core.utils.logger import get_logger

from .config import KeeperConfig
from .errors import is_funding_interval_not_elapsed
from .outcome import SkipReason, TaskName, TaskOutcome
from .stats import SessionStats

logger = get_logger("keeper.funding")


class FundingApplier:
    def __init__(self, config: KeeperConfig, gateway: ChainGateway) -> None:
        self.config = config
        self.gateway = gateway

    async def run(self, stats: SessionStats) -> TaskOutcome:
        outcome = await self._apply()
        stats.record(outcome)
        return outcome

    async def _apply(self) -> TaskOutcome:
        try:
            result = await self.gateway.apply_funding()
        except ChainCallError as exc:
            error, code = str(exc), exc.code
        else:
            if result.success:
                logger.info("✅ Funding rate applied (tx=%s)", result.tx_hash)
                return TaskOutcome.success(TaskName.FUNDING, tx_hash=result.tx_hash)
            error, code = result.error or "apply_funding failed", result.error_code

        if is_funding_interval_not_elapsed(code, error, self.config.errors):
            logger.debug("funding interval not elapsed yet: %s", error)
            return TaskOutcome.skip(
                TaskName.FUNDING, SkipReason.INTERVAL_NOT_ELAPSED, error=error
            )
        logger.error("❌ Funding rate application failed: %s", error)
        return TaskOutcome.failure(TaskName.FUNDING, error)


__all__ = ["FundingApplier"]
