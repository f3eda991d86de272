import pytest

from crosslink.core.config import ContractConfig, HarnessSettings
from crosslink.core.exceptions import ConfigurationError

ADDR_1 = "0x" + "11" * 20
ADDR_2 = "0x" + "22" * 20
ADDR_3 = "0x" + "33" * 20


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("CROSSLINK_HEADER_SYNC_TIMEOUT", "5")
    monkeypatch.setenv("CROSSLINK_DELAY_PERIOD", "3")
    monkeypatch.setenv("CROSSLINK_CLIENT_TYPE", "BesuQBFT")
    settings = HarnessSettings.from_env()
    assert settings.header_sync_timeout == 5.0
    assert settings.delay_period == 3
    assert settings.client_type == "BesuQBFT"


def test_settings_defaults(monkeypatch):
    for var in ("CROSSLINK_HEADER_SYNC_TIMEOUT", "CROSSLINK_CLIENT_TYPE", "CROSSLINK_CHANNEL_VERSION"):
        monkeypatch.delenv(var, raising=False)
    settings = HarnessSettings.from_env()
    assert settings.header_sync_timeout == 30.0
    assert settings.client_type == "BesuIBFT2"
    assert settings.channel_version == "ics20-1"


@pytest.mark.parametrize("raw", ["soon", "0", "-1"])
def test_invalid_timeout_rejected(monkeypatch, raw):
    monkeypatch.setenv("CROSSLINK_HEADER_SYNC_TIMEOUT", raw)
    with pytest.raises(ConfigurationError):
        HarnessSettings.from_env()


def test_with_overrides_returns_copy():
    base = HarnessSettings(header_sync_timeout=30.0)
    fast = base.with_overrides(header_sync_timeout=1.0)
    assert fast.header_sync_timeout == 1.0
    assert base.header_sync_timeout == 30.0
    assert fast.channel_version == base.channel_version


def test_contract_config_from_env(monkeypatch):
    monkeypatch.setenv("CHAIN_A_PROVABLE_STORE", ADDR_1)
    monkeypatch.setenv("CHAIN_A_IBC_CLIENT", ADDR_2)
    monkeypatch.setenv("CHAIN_A_IBC_CONNECTION", ADDR_3)
    config = ContractConfig.from_env(prefix="CHAIN_A")
    assert config.provable_store_address == ADDR_1
    assert config.ibc_client_address == ADDR_2
    assert config.ibc_connection_address == ADDR_3


def test_contract_config_missing_address(monkeypatch):
    monkeypatch.setenv("CHAIN_B_PROVABLE_STORE", ADDR_1)
    monkeypatch.delenv("CHAIN_B_IBC_CLIENT", raising=False)
    monkeypatch.setenv("CHAIN_B_IBC_CONNECTION", ADDR_3)
    with pytest.raises(ConfigurationError) as exc_info:
        ContractConfig.from_env(prefix="CHAIN_B")
    assert exc_info.value.details["env_var"] == "CHAIN_B_IBC_CLIENT"


def test_contract_config_malformed_address():
    with pytest.raises(ConfigurationError):
        ContractConfig(ADDR_1, "0x1234", ADDR_3)
