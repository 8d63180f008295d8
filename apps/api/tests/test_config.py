"""Tests for settings guards and ledger gateway selection."""

import pytest

from tradefin.core.config import Settings
from tradefin.core.services import build_gateway
from tradefin.modules.ledger.fake_adapter import FAKE_PROTOCOL_ADDRESS, FakeLedgerGateway
from tradefin.modules.ledger.web3_adapter import Web3LedgerGateway

PROTOCOL = "0x" + "a1" * 20
STABLECOIN = "0x" + "b2" * 20


def _settings(**overrides) -> Settings:
    fields = {"APP_ENV": "development", "LEDGER_BACKEND": "web3"}
    fields.update(overrides)
    return Settings(**fields)


def test_web3_backend_without_addresses_exits(capsys) -> None:
    with pytest.raises(SystemExit) as info:
        build_gateway(_settings(PROTOCOL_CONTRACT_ADDRESS="", STABLECOIN_CONTRACT_ADDRESS=""))

    assert info.value.code == 1
    err = capsys.readouterr().err
    assert err.startswith("FATAL:")
    assert "PROTOCOL_CONTRACT_ADDRESS, STABLECOIN_CONTRACT_ADDRESS" in err


def test_web3_backend_names_the_missing_address(capsys) -> None:
    with pytest.raises(SystemExit):
        build_gateway(_settings(PROTOCOL_CONTRACT_ADDRESS=PROTOCOL, STABLECOIN_CONTRACT_ADDRESS=""))

    err = capsys.readouterr().err
    assert "STABLECOIN_CONTRACT_ADDRESS" in err
    assert "PROTOCOL_CONTRACT_ADDRESS" not in err


def test_web3_backend_with_addresses_builds_gateway() -> None:
    gateway = build_gateway(
        _settings(PROTOCOL_CONTRACT_ADDRESS=PROTOCOL, STABLECOIN_CONTRACT_ADDRESS=STABLECOIN)
    )
    assert isinstance(gateway, Web3LedgerGateway)


def test_fake_backend_needs_no_addresses() -> None:
    gateway = build_gateway(_settings(LEDGER_BACKEND="fake", PROTOCOL_CONTRACT_ADDRESS=""))
    assert isinstance(gateway, FakeLedgerGateway)
    assert gateway.protocol_address == FAKE_PROTOCOL_ADDRESS


def test_production_rejects_fake_backend(capsys) -> None:
    with pytest.raises(SystemExit):
        _settings(APP_ENV="production", LEDGER_BACKEND="fake")
    assert "LEDGER_BACKEND=fake" in capsys.readouterr().err
