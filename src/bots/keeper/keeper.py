# 〔このモジュールがすること〕
# keeper の司令塔（サイクルスケジューラ）と CLI エントリポイントです。
# 1 つのイベントループ上で、毎 tick ごとに次の順で処理します:
#   1) オラクル更新（間隔経過時のみ、待たずにバックグラウンド起動）
#   2) 清算チェック（完了まで待つ）
#   3) 注文チェック（完了まで待つ）
#   4) funding 適用（1 時間ごと、待たずにバックグラウンド起動）
#   5) ステータス行の表示
# どのステップで例外が出てもエラーとして数えてループは続行します。停止要求は tick の境目でだけ見ます。

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import time
from dataclasses import replace
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Optional, TextIO

# uvloop があれば高速化（なくても動く）
try:
    import uvloop  # type: ignore
except ImportError:  # pragma: no cover
    uvloop = None  # type: ignore

from noether_core.api import ChainGateway, HTTPClient
from noether_core.config import Settings, load_settings, mask_secret, require_contracts
from noether_core.soroban_client import get_rpc_url, make_gateway
from noether_core.utils.config import ConfigError
from noether_core.utils.logger import get_logger, setup_logger

from .config import KeeperConfig, load_keeper_config
from .funding_applier import FundingApplier
from .liquidation_checker import LiquidationChecker
from .metrics import KeeperMetrics
from .oracle_updater import OracleUpdater
from .order_checker import OrderChecker
from .outcome import PriceSnapshot
from .price_feed import BinancePriceSource, PriceSource
from .stats import SessionStats

logger = get_logger("keeper")


class KeeperState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


def _format_price(price: float) -> str:
    return f"{price:,.2f}" if price >= 1 else f"{price:,.4f}"


class KeeperBot:
    """〔このクラスがすること〕
    4 つの保守タスクを壁時計（ms）基準のタイムスタンプで駆動します。
    - last_oracle_update / last_funding_application は None が「未実行」
    - バックグラウンドタスクは完了まで集合で参照を保持し、想定外の例外は done-callback でエラー計上
    - 前回のオラクル更新がまだ走っている間は、次のオラクル起動を見送ります（タイムスタンプも据え置き）
    """

    def __init__(
        self,
        config: KeeperConfig,
        gateway: ChainGateway,
        price_source: PriceSource,
        *,
        stats: Optional[SessionStats] = None,
        metrics: Optional[KeeperMetrics] = None,
        clock: Callable[[], float] = time.time,
        out: TextIO = sys.stdout,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.gateway = gateway
        self.metrics = metrics
        self._clock = clock
        self._out = out
        self.stats = stats if stats is not None else SessionStats(start_time=clock())
        if metrics is not None and self.stats.metrics is None:
            self.stats.metrics = metrics

        self.snapshots: dict[str, PriceSnapshot] = {}
        self.oracle = OracleUpdater(
            config, gateway, price_source, self.snapshots, sleep=sleep, clock=clock
        )
        self.liquidations = LiquidationChecker(config, gateway)
        self.orders = OrderChecker(config, gateway)
        self.funding = FundingApplier(config, gateway)

        self.last_oracle_update: Optional[int] = None
        self.last_funding_application: Optional[int] = None
        self.state = KeeperState.RUNNING
        self._stop = asyncio.Event()
        self._background: set[asyncio.Task[Any]] = set()
        self._oracle_task: Optional[asyncio.Task[Any]] = None

    # ───────────── 時刻・判定ヘルパー ─────────────

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def _due(last: Optional[int], interval_ms: int, now_ms: int) -> bool:
        return last is None or now_ms - last >= interval_ms

    # ───────────── バックグラウンド実行 ─────────────

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.stats.record_error(f"{task.get_name()} task", exc)

    @property
    def in_flight(self) -> int:
        return sum(1 for t in self._background if not t.done())

    async def _guarded(self, context: str, coro: Awaitable[Any]) -> None:
        try:
            await coro
        except Exception as exc:
            self.stats.record_error(context, exc)

    # ───────────── 1 サイクル ─────────────

    async def run_cycle(self) -> None:
        started = time.monotonic()
        now = self._now_ms()

        # 1) オラクル更新（待たない）
        if self._due(self.last_oracle_update, self.config.oracle_update_interval_ms, now):
            if self._oracle_task is not None and not self._oracle_task.done():
                logger.debug("previous oracle update still in flight; dispatch skipped")
            else:
                self.last_oracle_update = now
                try:
                    self._oracle_task = self._spawn(self.oracle.run(self.stats), "oracle")
                except Exception as exc:
                    self.stats.record_error("oracle dispatch", exc)

        # 2) 清算 → 3) 注文（順番に待つ）
        await self._guarded("liquidation check", self.liquidations.run(self.stats))
        await self._guarded("order check", self.orders.run(self.stats))

        # 4) funding（待たない）
        if self._due(self.last_funding_application, self.config.funding_interval_ms, now):
            self.last_funding_application = now
            try:
                self._spawn(self.funding.run(self.stats), "funding")
            except Exception as exc:
                self.stats.record_error("funding dispatch", exc)

        # 5) ステータス行
        try:
            self._render_status()
        except Exception as exc:
            self.stats.record_error("status line", exc)

        if self.metrics is not None:
            self.metrics.set_cycle_seconds(time.monotonic() - started)

    def status_line(self, now: Optional[float] = None) -> str:
        ts = time.strftime("%H:%M:%S", time.localtime(now if now is not None else self._clock()))
        parts = [
            f"{a.symbol}:${_format_price(self.snapshots[a.symbol].price)}"
            for a in self.config.assets
            if a.symbol in self.snapshots
        ]
        return f"[{ts}] " + " | ".join(parts)

    def _render_status(self) -> None:
        if self.metrics is not None:
            for snap in self.snapshots.values():
                self.metrics.set_oracle_price(snap.asset, snap.price)
        self._out.write(f"\r{self.status_line()}    ")
        self._out.flush()

    # ───────────── 起動・停止 ─────────────

    def startup_banner(self) -> str:
        cfg = self.config
        rule = "═" * 80
        lines = [
            rule,
            "  NOETHER KEEPER BOT",
            rule,
            f"  Network:           {cfg.network}",
            f"  RPC:               {cfg.rpc_url or '(default)'}",
            f"  Keeper:            {cfg.keeper_address or '(unknown)'}",
            f"  Market Contract:   {mask_secret(cfg.market_contract_id, 8)}",
            f"  Oracle Contract:   {mask_secret(cfg.oracle_contract_id, 8)}",
            f"  Poll Interval:     {cfg.poll_interval_ms}ms",
            f"  Oracle Interval:   {cfg.oracle_update_interval_ms}ms",
            f"  Funding Interval:  {cfg.funding_interval_ms}ms",
            f"  Assets:            {', '.join(cfg.asset_symbols)}",
            rule,
        ]
        return "\n".join(lines)

    def request_stop(self) -> None:
        """停止要求（シグナルハンドラから呼んでよい）。現在の tick を終えてから止まります。"""
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        """〔このメソッドがすること〕 停止要求が来るまで run_cycle → poll_interval_ms 待機を繰り返します。"""
        self.state = KeeperState.RUNNING
        logger.info("keeper started (poll=%sms)", self.config.poll_interval_ms)
        while not self._stop.is_set():
            await self._guarded("keeper cycle", self.run_cycle())
            try:
                await asyncio.wait_for(
                    self._stop.wait(), timeout=self.config.poll_interval_ms / 1000.0
                )
            except asyncio.TimeoutError:
                pass

    async def wait_background(self, timeout: Optional[float] = None) -> int:
        """走行中のバックグラウンドタスクを待ち、timeout までに終わらなかった件数を返します。"""
        pending = [t for t in self._background if not t.done()]
        if not pending:
            return 0
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        # done-callback（エラー計上）を先に走らせる
        await asyncio.sleep(0)
        return len(still_running)

    async def shutdown(self, grace_s: float = 10.0) -> str:
        """〔このメソッドがすること〕
        走行中のバックグラウンドタスクを grace_s まで待ち、残りはキャンセルしてから
        STOPPED に遷移し、セッションサマリを返します。
        """
        if self.in_flight:
            logger.info("waiting for %d background task(s)…", self.in_flight)
        if await self.wait_background(grace_s):
            leftovers = [t for t in self._background if not t.done()]
            for task in leftovers:
                task.cancel()
            logger.warning("⚠️ cancelled %d unfinished task(s)", len(leftovers))
            await asyncio.gather(*leftovers, return_exceptions=True)
        self.state = KeeperState.STOPPED
        summary = self.stats.render_summary(now=self._clock())
        self._out.write("\n\n" + summary + "\n")
        self._out.flush()
        logger.info("keeper stopped: %s", summary.replace("\n", " | "))
        return summary


# ───────────── CLI ─────────────


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """〔この関数がすること〕 CLI 引数を解釈します。（--config, --log-level, --prom-port, --once）"""
    p = argparse.ArgumentParser(prog="noether-keeper", description="Noether perpetuals keeper bot")
    p.add_argument("--config", default=None, help="path to keeper config (TOML/YAML/JSON, optional)")
    p.add_argument("--log-level", default=None, help="logging level (default: LOG_LEVEL or INFO)")
    p.add_argument("--prom-port", type=int, default=None, help="Prometheus metrics port (optional)")
    p.add_argument("--once", action="store_true", help="run a single cycle and exit")
    return p.parse_args(argv)


def _build_price_source(settings: Settings, config: KeeperConfig) -> tuple[HTTPClient, BinancePriceSource]:
    client = HTTPClient(settings.price_feed_url)
    return client, BinancePriceSource(client, config.assets)


async def _run(argv: Optional[list[str]] = None) -> int:
    """〔この関数がすること〕
    設定読込 → 契約 ID 検証 → ロガー → ゲートウェイ/価格ソース → シグナル登録 → ループ → 終了処理。
    """
    args = parse_args(argv)
    try:
        settings = load_settings()
        require_contracts(settings)
    except ConfigError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1

    setup_logger(
        "keeper",
        console_level=args.log_level or settings.log_level,
        discord_webhook=settings.discord_webhook,
    )

    try:
        gateway = make_gateway(settings)
        config = load_keeper_config(args.config, settings, keeper_address=gateway.keeper_address)
        if not config.rpc_url:
            config = replace(config, rpc_url=get_rpc_url(settings))
    except ConfigError as exc:
        print(f"❌ {exc}", file=sys.stderr)
        return 1

    client, price_source = _build_price_source(settings, config)
    metrics = KeeperMetrics(prom_port=args.prom_port)
    bot = KeeperBot(config, gateway, price_source, metrics=metrics)
    print(bot.startup_banner())

    loop = asyncio.get_running_loop()
    for s in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(s, bot.request_stop)
        except NotImplementedError:  # pragma: no cover (Windows)
            pass

    try:
        if args.once:
            await bot.run_cycle()
        else:
            await bot.run()
    finally:
        await bot.shutdown()
        await client.close()
        await gateway.close()
    return 0


def main() -> None:
    """〔この関数がすること〕 uvloop があれば利用し、非同期メインを実行して終了コードを返します。"""
    if uvloop is not None:
        uvloop.install()
    try:
        exit_code = asyncio.run(_run(sys.argv[1:]))
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
