# 〔このモジュールがすること〕
# 参照価格を 1 回取得し、設定順に資産ごとの set_price を送信します。
# 同じ署名者の書き込みが連続しないよう、送信と送信の間に oracle_asset_delay_ms だけ待ちます（最後の後は待たない）。
# 1 資産の送信は失敗しても oracle_retry_delay_ms 間隔で oracle_max_attempts 回まで再送します。

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, MutableMapping

from noether_core.api import ChainGateway
from noether_core.utils.logger import get_logger

from .config import KeeperConfig
from .outcome import PriceSnapshot, TaskName, TaskOutcome, to_fixed_point
from .price_feed import PriceSource
from .stats import SessionStats

logger = get_logger("keeper.oracle")


class OracleUpdater:
    def __init__(
        self,
        config: KeeperConfig,
        gateway: ChainGateway,
        price_source: PriceSource,
        snapshots: MutableMapping[str, PriceSnapshot],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.price_source = price_source
        self.snapshots = snapshots
        self._sleep = sleep
        self._clock = clock

    async def run(self, stats: SessionStats) -> list[TaskOutcome]:
        """〔このメソッドがすること〕
        価格取得に失敗したらエラー 1 件として記録して終了します（スナップショットは一切上書きしない）。
        資産ごとの送信失敗はその資産だけの失敗として記録し、残りの資産は続行します。
        """
        outcomes: list[TaskOutcome] = []
        try:
            prices = await self.price_source.fetch_prices(self.config.asset_symbols)
        except Exception as exc:
            logger.error("❌ Error fetching prices: %s", exc)
            outcome = TaskOutcome.failure(TaskName.ORACLE, f"price fetch failed: {exc}")
            stats.record(outcome)
            return [outcome]

        submitted = 0
        for asset in self.config.assets:
            price = prices.get(asset.symbol)
            if price is None:
                continue
            if submitted:
                await self._sleep(self.config.oracle_asset_delay_ms / 1000.0)
            submitted += 1
            outcome = await self._push(asset.symbol, price)
            stats.record(outcome)
            outcomes.append(outcome)
        return outcomes

    async def _push(self, symbol: str, price: float) -> TaskOutcome:
        """〔このメソッドがすること〕
        1 資産の set_price を最大 oracle_max_attempts 回まで送信します。
        失敗（例外・送信拒否・未確定）の間は oracle_retry_delay_ms 待って再送し、最後の失敗だけを FAILURE として返します。
        """
        try:
            scaled = to_fixed_point(price)
        except ValueError as exc:
            logger.error("❌ %s price rejected: %s", symbol, exc)
            return TaskOutcome.failure(TaskName.ORACLE, str(exc), subject=symbol)

        attempts = self.config.oracle_max_attempts
        error = "oracle update failed"
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                await self._sleep(self.config.oracle_retry_delay_ms / 1000.0)
            try:
                result = await self.gateway.update_oracle_price(symbol, scaled)
            except Exception as exc:
                error = str(exc)
            else:
                if result.success:
                    self.snapshots[symbol] = PriceSnapshot(
                        asset=symbol, price=price, scaled_price=scaled, timestamp=self._clock()
                    )
                    logger.info("✅ %s oracle price set to $%s", symbol, f"{price:,}")
                    return TaskOutcome.success(
                        TaskName.ORACLE, tx_hash=result.tx_hash, subject=symbol
                    )
                error = result.error or "oracle update failed"
            if attempt < attempts:
                logger.warning(
                    "⚠️ %s oracle update attempt %d/%d failed: %s", symbol, attempt, attempts, error
                )

        logger.error("❌ %s oracle update failed after %d attempts: %s", symbol, attempts, error)
        return TaskOutcome.failure(TaskName.ORACLE, error, subject=symbol)


__all__ = ["OracleUpdater"]
