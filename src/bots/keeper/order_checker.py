# 〔このモジュールがすること〕
# 保留中の条件付き注文（指値・SL・TP）を列挙し、トリガー成立分を execute_order で執行します。
# 送信結果は 4 通りに分類します:
# - 成功かつ報酬 > 0 → 執行（SUCCESS）
# - 成功かつ報酬 0 → スリッページ超過でキャンセル（BENIGN_SKIP / SLIPPAGE_CANCELLED）
# - PositionNotFound → 親ポジションが既に無い孤立注文（BENIGN_SKIP / ORPHANED、以後は再送しない）
# - それ以外の失敗 → FAILURE

from __future__ import annotations

from typing import Optional

from noether_core.api import ChainCallError, ChainGateway, ChainResult
from noether_core.utils.logger import get_logger

from .config import KeeperConfig
from .errors import is_not_found, is_position_not_found
from .outcome import SkipReason, TaskName, TaskOutcome, format_amount
from .stats import SessionStats

logger = get_logger("keeper.orders")


class OrderChecker:
    def __init__(self, config: KeeperConfig, gateway: ChainGateway) -> None:
        self.config = config
        self.gateway = gateway
        # 孤立と判定した注文 id（保留リストから消えたら掃除する）
        self.orphaned: set[int] = set()

    async def run(self, stats: SessionStats) -> list[TaskOutcome]:
        order_ids = await self.gateway.list_pending_order_ids()
        self.orphaned.intersection_update(order_ids)
        outcomes: list[TaskOutcome] = []
        for order_id in order_ids:
            if order_id in self.orphaned:
                continue
            outcome = await self.check_order(order_id)
            if outcome is not None:
                stats.record(outcome)
                outcomes.append(outcome)
        return outcomes

    def _resolved_skip(self, subject: str, error: Optional[str]) -> TaskOutcome:
        logger.debug("order %s already resolved: %s", subject, error)
        return TaskOutcome.skip(
            TaskName.ORDER, SkipReason.ALREADY_RESOLVED, error=error, subject=subject
        )

    async def check_order(self, order_id: int) -> Optional[TaskOutcome]:
        subject = str(order_id)
        try:
            if not await self.gateway.should_execute_order(order_id):
                return None
            order = await self.gateway.get_order(order_id)
            if order is None:
                return self._resolved_skip(subject, "order no longer exists")
            logger.info(
                "⚡ Order #%s triggered: %s %s %s",
                order_id,
                order.order_type,
                order.direction,
                order.asset,
            )
        except ChainCallError as exc:
            if is_not_found(exc.code, str(exc), self.config.errors):
                return self._resolved_skip(subject, str(exc))
            logger.error("❌ Order #%s check failed: %s", order_id, exc)
            return TaskOutcome.failure(TaskName.ORDER, str(exc), subject=subject)
        except Exception as exc:
            logger.error("❌ Order #%s check raised: %s", order_id, exc)
            return TaskOutcome.failure(TaskName.ORDER, str(exc), subject=subject)

        try:
            result = await self.gateway.execute_order(order_id)
        except ChainCallError as exc:
            # 送信時の例外も戻り値の失敗と同じ分類（孤立判定を含む）に通す
            result = ChainResult.failed(str(exc), exc.code)
        except Exception as exc:
            logger.error("❌ Order #%s execution raised: %s", order_id, exc)
            return TaskOutcome.failure(TaskName.ORDER, str(exc), subject=subject)

        if result.success:
            reward = result.reward or 0
            if reward > 0:
                logger.info(
                    "✅ Order #%s executed (tx=%s) Keeper fee: %s USDC",
                    order_id,
                    result.tx_hash,
                    format_amount(reward),
                )
                return TaskOutcome.success(
                    TaskName.ORDER, reward=reward, tx_hash=result.tx_hash, subject=subject
                )
            logger.warning(
                "⚠️ Order #%s cancelled (slippage exceeded), collateral refunded", order_id
            )
            return TaskOutcome.skip(
                TaskName.ORDER,
                SkipReason.SLIPPAGE_CANCELLED,
                tx_hash=result.tx_hash,
                subject=subject,
            )

        error = result.error or "order execution failed"
        if is_position_not_found(result.error_code, error, self.config.errors):
            self.orphaned.add(order_id)
            logger.warning("⚠️ Order #%s skipped: position already closed (orphaned)", order_id)
            return TaskOutcome.skip(TaskName.ORDER, SkipReason.ORPHANED, error=error, subject=subject)
        if is_not_found(result.error_code, error, self.config.errors):
            return self._resolved_skip(subject, error)
        logger.error("❌ Order #%s execution failed: %s", order_id, error)
        return TaskOutcome.failure(TaskName.ORDER, error, subject=subject)


__all__ = ["OrderChecker"]
