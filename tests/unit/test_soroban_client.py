from __future__ import annotations

import pytest
from stellar_sdk import Keypair, Network

from noether_core.config import Settings
from noether_core.soroban_client import (
    TESTNET_RPC_URL,
    get_network_passphrase,
    get_rpc_url,
    make_gateway,
    make_keypair,
)
from noether_core.utils.config import ConfigError


def test_rpc_url_defaults_to_testnet_and_is_required_on_mainnet():
    assert get_rpc_url(Settings()) == TESTNET_RPC_URL
    assert get_rpc_url(Settings(rpc_url="https://rpc.example")) == "https://rpc.example"
    with pytest.raises(ConfigError):
        get_rpc_url(Settings(network="mainnet"))


def test_network_passphrase():
    assert get_network_passphrase(Settings()) == Network.TESTNET_NETWORK_PASSPHRASE
    assert (
        get_network_passphrase(Settings(network="mainnet"))
        == Network.PUBLIC_NETWORK_PASSPHRASE
    )
    assert get_network_passphrase(Settings(network_passphrase="custom")) == "custom"


def test_make_keypair_rejects_garbage():
    assert make_keypair(None) is None
    with pytest.raises(ConfigError):
        make_keypair("not-a-secret")


def test_make_gateway_requires_configuration():
    with pytest.raises(ConfigError):
        make_gateway(Settings(keeper_secret_key=Keypair.random().secret))
    with pytest.raises(ConfigError):
        make_gateway(Settings(market_contract_id="CM", oracle_contract_id="CO"))


def test_make_gateway_uses_keeper_key_for_both_signers():
    keeper = Keypair.random()
    gw = make_gateway(
        Settings(
            market_contract_id="CM",
            oracle_contract_id="CO",
            keeper_secret_key=keeper.secret,
        )
    )
    assert gw.keeper_address == keeper.public_key
    assert gw.market_contract_id == "CM"
    assert gw.oracle_contract_id == "CO"


def test_make_gateway_rejects_invalid_keeper_secret():
    with pytest.raises(ConfigError, match="invalid secret key"):
        make_gateway(
            Settings(
                market_contract_id="CM",
                oracle_contract_id="CO",
                keeper_secret_key="SNOTAREALKEY",
            )
        )
