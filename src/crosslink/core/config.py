"""
crosslink configuration

Harness defaults are read from CROSSLINK_* environment variables so the same
test-suite can be pointed at a local devnet or a pair of Besu networks without
code changes.

Contract addresses have no defaults: ContractConfig.from_env raises
ConfigurationError when any of them is missing.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, replace

from crosslink.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _get_float(env_var: str, default: str) -> float:
    raw = os.getenv(env_var, default).strip()
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{env_var} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{env_var} must be positive, got {raw!r}")
    return value


# Client and connection protocol constants
BESU_IBFT2_CLIENT = "BesuIBFT2"
DEFAULT_CHANNEL_VERSION = os.getenv("CROSSLINK_CHANNEL_VERSION", "ics20-1")
DEFAULT_DELAY_PERIOD = int(os.getenv("CROSSLINK_DELAY_PERIOD", "0"))
# Prefix a simulated provable store commits under; deployed stores report their own
DEFAULT_PREFIX = os.getenv("CROSSLINK_COMMITMENT_PREFIX", "ibc")

# Signing identity
HD_DERIVATION_PATH = os.getenv("CROSSLINK_HD_PATH", "m/44'/60'/0'/0/0")

# Liveness
HEADER_SYNC_TIMEOUT = _get_float("CROSSLINK_HEADER_SYNC_TIMEOUT", "30")
HEADER_POLL_INTERVAL = _get_float("CROSSLINK_HEADER_POLL_INTERVAL", "0.2")
RECEIPT_TIMEOUT = _get_float("CROSSLINK_RECEIPT_TIMEOUT", "120")
RPC_TIMEOUT = _get_float("CROSSLINK_RPC_TIMEOUT", "10")


@dataclass(frozen=True)
class HarnessSettings:
    """Per-agent timing and protocol settings."""

    header_sync_timeout: float = HEADER_SYNC_TIMEOUT
    header_poll_interval: float = HEADER_POLL_INTERVAL
    receipt_timeout: float = RECEIPT_TIMEOUT
    delay_period: int = DEFAULT_DELAY_PERIOD
    channel_version: str = DEFAULT_CHANNEL_VERSION
    client_type: str = BESU_IBFT2_CLIENT

    @classmethod
    def from_env(cls) -> "HarnessSettings":
        """Re-read the environment (module constants are bound at import)."""
        return cls(
            header_sync_timeout=_get_float("CROSSLINK_HEADER_SYNC_TIMEOUT", "30"),
            header_poll_interval=_get_float("CROSSLINK_HEADER_POLL_INTERVAL", "0.2"),
            receipt_timeout=_get_float("CROSSLINK_RECEIPT_TIMEOUT", "120"),
            delay_period=int(os.getenv("CROSSLINK_DELAY_PERIOD", "0")),
            channel_version=os.getenv("CROSSLINK_CHANNEL_VERSION", "ics20-1"),
            client_type=os.getenv("CROSSLINK_CLIENT_TYPE", BESU_IBFT2_CLIENT),
        )

    def with_overrides(self, **changes) -> "HarnessSettings":
        return replace(self, **changes)


@dataclass(frozen=True)
class ContractConfig:
    """Addresses of the IBC contracts deployed on one chain."""

    provable_store_address: str
    ibc_client_address: str
    ibc_connection_address: str

    def __post_init__(self) -> None:
        for name in ("provable_store_address", "ibc_client_address", "ibc_connection_address"):
            value = getattr(self, name)
            if not value or not _ADDRESS_RE.match(value):
                raise ConfigurationError(
                    f"{name} must be a 0x-prefixed 20-byte hex address, got {value!r}",
                    details={"field": name},
                )

    @classmethod
    def from_env(cls, prefix: str = "CROSSLINK") -> "ContractConfig":
        """Load addresses from {prefix}_PROVABLE_STORE, {prefix}_IBC_CLIENT, {prefix}_IBC_CONNECTION."""
        values = {}
        for field_name, suffix in (
            ("provable_store_address", "PROVABLE_STORE"),
            ("ibc_client_address", "IBC_CLIENT"),
            ("ibc_connection_address", "IBC_CONNECTION"),
        ):
            env_var = f"{prefix}_{suffix}"
            value = os.getenv(env_var, "").strip()
            if not value:
                raise ConfigurationError(
                    f"{env_var} environment variable is required",
                    details={"env_var": env_var},
                )
            values[field_name] = value
        logger.debug(
            "Loaded contract configuration",
            extra={"event": "config.contracts_loaded", "prefix": prefix},
        )
        return cls(**values)
