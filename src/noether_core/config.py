from __future__ import annotations

import os
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from .utils.config import ConfigError


def load_env_file() -> None:
    load_dotenv(override=True)


def _first_env(*names: str) -> Optional[str]:
    """先に見つかった非空の環境変数を返す（NEXT_PUBLIC_* の旧名にも対応）。"""
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


class Settings(BaseModel):
    network: Literal["mainnet", "testnet"] = "testnet"
    rpc_url: Optional[str] = None
    network_passphrase: Optional[str] = None
    market_contract_id: Optional[str] = None
    oracle_contract_id: Optional[str] = None
    keeper_secret_key: Optional[str] = None
    oracle_secret_key: Optional[str] = None
    price_feed_url: str = "https://api.binance.us/api/v3"
    log_level: str = "INFO"
    discord_webhook: Optional[str] = None
    poll_interval_ms: Optional[int] = None
    oracle_update_interval_ms: Optional[int] = None

    @field_validator("network", mode="before")
    def _norm_network(cls, v):
        if not v:
            return "testnet"
        s = str(v).strip().lower()
        if s in {"mainnet", "main", "prod", "production", "public"}:
            return "mainnet"
        return "testnet"

    @field_validator("log_level", mode="before")
    def _norm_level(cls, v):
        return str(v or "INFO").strip().upper()


def load_settings() -> Settings:
    load_env_file()
    raw: dict[str, Any] = {
        "network": os.getenv("NETWORK", "testnet"),
        "rpc_url": _first_env("RPC_URL"),
        "network_passphrase": _first_env("NETWORK_PASSPHRASE"),
        "market_contract_id": _first_env("MARKET_CONTRACT_ID", "NEXT_PUBLIC_MARKET_ID"),
        "oracle_contract_id": _first_env(
            "ORACLE_CONTRACT_ID", "NEXT_PUBLIC_MOCK_ORACLE_ID"
        ),
        "keeper_secret_key": _first_env("KEEPER_SECRET_KEY", "ADMIN_SECRET_KEY"),
        "oracle_secret_key": _first_env("ORACLE_SECRET_KEY"),
        "price_feed_url": os.getenv("PRICE_FEED_URL", "https://api.binance.us/api/v3"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "discord_webhook": _first_env("DISCORD_WEBHOOK"),
        "poll_interval_ms": _first_env("POLL_INTERVAL_MS"),
        "oracle_update_interval_ms": _first_env("ORACLE_UPDATE_INTERVAL_MS"),
    }
    try:
        return Settings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid environment settings: {exc}") from exc


def require_contracts(settings: Settings) -> None:
    if not settings.market_contract_id:
        raise ConfigError(
            "Market contract ID not configured. "
            "Set MARKET_CONTRACT_ID (or NEXT_PUBLIC_MARKET_ID) in .env or deploy contracts first."
        )
    if not settings.oracle_contract_id:
        raise ConfigError(
            "Oracle contract ID not configured. "
            "Set ORACLE_CONTRACT_ID (or NEXT_PUBLIC_MOCK_ORACLE_ID) in .env or deploy contracts first."
        )


def require_signer(settings: Settings) -> str:
    if not settings.keeper_secret_key:
        raise ConfigError("Keeper signing key missing: set KEEPER_SECRET_KEY in .env")
    return settings.keeper_secret_key


def mask_secret(value: Optional[str], show: int = 6) -> str:
    if not value:
        return ""
    if len(value) <= show * 2:
        return "*" * len(value)
    return value[:show] + "…" + value[-show:]
