from __future__ import annotations

import logging
from typing import Optional

from stellar_sdk import Keypair, Network, SorobanServer

from .api.soroban import SorobanGateway
from .config import Settings, mask_secret, require_contracts, require_signer
from .utils.config import ConfigError

logger = logging.getLogger(__name__)

TESTNET_RPC_URL = "https://soroban-testnet.stellar.org"


def get_rpc_url(settings: Settings) -> str:
    if settings.rpc_url:
        return settings.rpc_url
    if settings.network == "mainnet":
        # mainnet は公開 RPC の既定が無いため明示必須
        raise ConfigError("RPC_URL is required on mainnet")
    return TESTNET_RPC_URL


def get_network_passphrase(settings: Settings) -> str:
    if settings.network_passphrase:
        return settings.network_passphrase
    return (
        Network.PUBLIC_NETWORK_PASSPHRASE
        if settings.network == "mainnet"
        else Network.TESTNET_NETWORK_PASSPHRASE
    )


def _keypair_from_secret(secret: str) -> Keypair:
    try:
        return Keypair.from_secret(secret)
    except ValueError as exc:
        raise ConfigError(f"invalid secret key ({mask_secret(secret)}): {exc}") from exc


def make_keypair(secret: Optional[str]) -> Optional[Keypair]:
    if not secret:
        return None
    return _keypair_from_secret(secret)


def make_gateway(
    settings: Settings,
    *,
    confirm_timeout_s: float = 15.0,
    confirm_poll_s: float = 1.0,
) -> SorobanGateway:
    require_contracts(settings)

    keeper = _keypair_from_secret(require_signer(settings))
    oracle_signer = make_keypair(settings.oracle_secret_key)
    if oracle_signer is not None and oracle_signer.public_key != keeper.public_key:
        logger.info(
            "oracle updates signed by a dedicated account: %s",
            mask_secret(oracle_signer.public_key),
        )

    server = SorobanServer(get_rpc_url(settings))
    return SorobanGateway(
        server,
        get_network_passphrase(settings),
        settings.market_contract_id or "",
        settings.oracle_contract_id or "",
        keeper,
        oracle_signer,
        confirm_timeout_s=confirm_timeout_s,
        confirm_poll_s=confirm_poll_s,
    )
