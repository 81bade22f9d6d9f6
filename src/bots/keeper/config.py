# 〔このモジュールがすること〕
# keeper の設定（.env の Settings + 任意の TOML/YAML/JSON）を「属性アクセスできる frozen dataclass」へ変換します。
# - coerce_keeper_config(data, settings): dict/オブジェクト → KeeperConfig（keeper/assets/errors）
# - load_keeper_config(path, settings): noether_core.utils.config.load_config で読み込み → coerce に通す

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from noether_core.config import Settings
from noether_core.utils.config import ConfigError, load_config

ONE_HOUR_MS = 3_600_000


# ───────────── dataclass 定義 ─────────────


@dataclass(frozen=True)
class AssetConfig:
    """表示シンボルと外部価格フィードのシンボルの対応。"""

    symbol: str
    feed_symbol: str


DEFAULT_ASSETS: tuple[AssetConfig, ...] = (
    AssetConfig("BTC", "BTCUSDT"),
    AssetConfig("ETH", "ETHUSDT"),
    AssetConfig("XLM", "XLMUSDT"),
)


@dataclass(frozen=True)
class ErrorCodes:
    """コントラクトのエラーコード → keeper 上の意味。

    コード一致を優先し、コードが取れないときはエラー名（文字列）で判定します。
    """

    position_not_found: tuple[int, ...] = (20,)
    order_not_found: tuple[int, ...] = ()
    funding_interval_not_elapsed: tuple[int, ...] = (55,)


@dataclass(frozen=True)
class KeeperConfig:
    network: str = "testnet"
    rpc_url: str = ""
    market_contract_id: str = ""
    oracle_contract_id: str = ""
    keeper_address: str = ""
    poll_interval_ms: int = 5_000
    oracle_update_interval_ms: int = 10_000
    funding_interval_ms: int = ONE_HOUR_MS
    oracle_asset_delay_ms: int = 1_500
    oracle_max_attempts: int = 3
    oracle_retry_delay_ms: int = 2_000
    assets: tuple[AssetConfig, ...] = DEFAULT_ASSETS
    errors: ErrorCodes = field(default_factory=ErrorCodes)

    @property
    def asset_symbols(self) -> list[str]:
        return [a.symbol for a in self.assets]


# ───────────── ヘルパー（dict/属性どちらでも取り出せるように） ─────────────


def _sec(raw: Any, name: str) -> Any:
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return raw.get(name, {})
    return getattr(raw, name, {})


def _val(sec: Any, key: str, default: Any) -> Any:
    if isinstance(sec, Mapping):
        return sec.get(key, default)
    return getattr(sec, key, default)


def _positive_int(sec: Any, key: str, default: int) -> int:
    value = _val(sec, key, default)
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"keeper.{key} must be an integer, got {value!r}") from exc
    if number <= 0:
        raise ConfigError(f"keeper.{key} must be positive, got {number}")
    return number


def _non_negative_int(sec: Any, key: str, default: int) -> int:
    value = _val(sec, key, default)
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"keeper.{key} must be an integer, got {value!r}") from exc
    return max(0, number)


def _codes(sec: Any, key: str, default: tuple[int, ...]) -> tuple[int, ...]:
    value = _val(sec, key, default)
    if value is None:
        return ()
    if isinstance(value, (int, str)):
        value = [value]
    try:
        return tuple(int(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"errors.{key} must be a list of integers, got {value!r}") from exc


def _assets(raw: Any) -> tuple[AssetConfig, ...]:
    """[[assets]] 配列（symbol/feed_symbol）を AssetConfig に変換します。"""
    items = raw.get("assets") if isinstance(raw, Mapping) else getattr(raw, "assets", None)
    if items is None:
        return DEFAULT_ASSETS
    assets: list[AssetConfig] = []
    for item in items:
        symbol = str(_val(item, "symbol", "")).strip().upper()
        if not symbol:
            raise ConfigError(f"asset entry without symbol: {item!r}")
        feed = str(_val(item, "feed_symbol", "") or _val(item, "binance_symbol", "")).strip()
        assets.append(AssetConfig(symbol=symbol, feed_symbol=feed or f"{symbol}USDT"))
    if not assets:
        raise ConfigError("at least one asset must be configured")
    return tuple(assets)


# ───────────── 入口関数 ─────────────


def coerce_keeper_config(
    data: Any, settings: Optional[Settings] = None, keeper_address: str = ""
) -> KeeperConfig:
    """生設定（dict 等）と Settings を KeeperConfig に変換します。"""

    k = _sec(data, "keeper")
    e = _sec(data, "errors")
    defaults = ErrorCodes()
    errors = ErrorCodes(
        position_not_found=_codes(e, "position_not_found", defaults.position_not_found),
        order_not_found=_codes(e, "order_not_found", defaults.order_not_found),
        funding_interval_not_elapsed=_codes(
            e, "funding_interval_not_elapsed", defaults.funding_interval_not_elapsed
        ),
    )
    return KeeperConfig(
        network=settings.network if settings else str(_val(k, "network", "testnet")),
        rpc_url=(settings.rpc_url or "") if settings else str(_val(k, "rpc_url", "")),
        market_contract_id=(settings.market_contract_id or "")
        if settings
        else str(_val(k, "market_contract_id", "")),
        oracle_contract_id=(settings.oracle_contract_id or "")
        if settings
        else str(_val(k, "oracle_contract_id", "")),
        keeper_address=keeper_address,
        poll_interval_ms=_positive_int(
            k,
            "poll_interval_ms",
            (settings and settings.poll_interval_ms) or KeeperConfig.poll_interval_ms,
        ),
        oracle_update_interval_ms=_positive_int(
            k,
            "oracle_update_interval_ms",
            (settings and settings.oracle_update_interval_ms)
            or KeeperConfig.oracle_update_interval_ms,
        ),
        funding_interval_ms=_positive_int(k, "funding_interval_ms", ONE_HOUR_MS),
        oracle_asset_delay_ms=_non_negative_int(
            k, "oracle_asset_delay_ms", KeeperConfig.oracle_asset_delay_ms
        ),
        oracle_max_attempts=_positive_int(
            k, "oracle_max_attempts", KeeperConfig.oracle_max_attempts
        ),
        oracle_retry_delay_ms=_non_negative_int(
            k, "oracle_retry_delay_ms", KeeperConfig.oracle_retry_delay_ms
        ),
        assets=_assets(data),
        errors=errors,
    )


def load_keeper_config(
    path: Optional[str], settings: Optional[Settings] = None, keeper_address: str = ""
) -> KeeperConfig:
    """ファイル（任意）から設定を読み込み、KeeperConfig に変換します。"""

    raw = load_config(path) if path else {}
    return coerce_keeper_config(raw, settings, keeper_address)


__all__ = [
    "AssetConfig",
    "ErrorCodes",
    "KeeperConfig",
    "ONE_HOUR_MS",
    "coerce_keeper_config",
    "load_keeper_config",
]
