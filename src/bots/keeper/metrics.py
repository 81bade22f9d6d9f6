# 〔このモジュールがすること〕
# keeper のメトリクス（Prometheus）を一元管理します。
# - インスタンスごとに専用の CollectorRegistry を持つ（テストで何度生成しても重複登録にならない）
# - HTTP エクスポータ（/metrics）は prom_port が指定されたときだけ起動します。

from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

from noether_core.utils.logger import get_logger

from .outcome import TaskOutcome

logger = get_logger("keeper.metrics")


class KeeperMetrics:
    """〔このクラスがすること〕
    SessionStats の各カウンタを Prometheus に写し、オラクル価格とサイクル所要時間を Gauge で公開します。
    """

    def __init__(self, prom_port: Optional[int] = None) -> None:
        self.registry = CollectorRegistry()
        self.outcomes = Counter(
            "keeper_outcomes",
            "Task outcomes by task and kind.",
            ["task", "kind"],
            registry=self.registry,
        )
        self.rewards = Counter(
            "keeper_rewards", "Keeper rewards earned (fixed-point units).", registry=self.registry
        )
        self.errors = Counter("keeper_errors", "Errors counted by the keeper.", registry=self.registry)
        self.oracle_price = Gauge(
            "keeper_oracle_price", "Last price pushed on-chain.", ["asset"], registry=self.registry
        )
        self.cycle_seconds = Gauge(
            "keeper_cycle_seconds", "Duration of the last keeper cycle (s).", registry=self.registry
        )

        # エクスポータ起動（任意）
        if prom_port is not None:
            try:
                start_http_server(int(prom_port), registry=self.registry)
                logger.info("Prometheus exporter started on :%s", prom_port)
            except OSError as e:
                logger.warning("failed to start Prometheus exporter: %s", e)

    # ─────────── 呼び出し側から使う Setter 群 ───────────

    def observe_outcome(self, outcome: TaskOutcome) -> None:
        self.outcomes.labels(task=outcome.task.value, kind=outcome.kind.value).inc()
        if outcome.reward > 0:
            self.rewards.inc(outcome.reward)

    def inc_errors(self, n: int = 1) -> None:
        self.errors.inc(int(n))

    def set_oracle_price(self, asset: str, price: float) -> None:
        self.oracle_price.labels(asset=asset).set(float(price))

    def set_cycle_seconds(self, seconds: float) -> None:
        """〔この関数がすること〕 直近サイクルの所要時間（秒）を Gauge に設定します。"""
        self.cycle_seconds.set(max(0.0, float(seconds)))


__all__ = ["KeeperMetrics"]
