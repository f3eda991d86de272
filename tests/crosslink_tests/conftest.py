import sys
from pathlib import Path

import pytest
from eth_account import Account
from prometheus_client import CollectorRegistry

# Make `crosslink.*` importable without an editable install.
project_root = Path(__file__).resolve().parents[2]
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

from crosslink.backends.simulated import SimulatedLedger  # noqa: E402
from crosslink.core.config import BESU_IBFT2_CLIENT, HarnessSettings  # noqa: E402
from crosslink.core.metrics import HandshakeMetrics  # noqa: E402
from crosslink.core.wallet import private_key_from_mnemonic  # noqa: E402
from crosslink.ibc.chain_agent import ChainAgent  # noqa: E402

TEST_MNEMONIC = "test test test test test test test test test test test junk"

CHAIN_A_ID = 1001
CHAIN_B_ID = 2001

FAST_SETTINGS = HarnessSettings(
    header_sync_timeout=2.0,
    header_poll_interval=0.01,
    receipt_timeout=5.0,
    delay_period=0,
    channel_version="ics20-1",
    client_type=BESU_IBFT2_CLIENT,
)


@pytest.fixture
def settings():
    return FAST_SETTINGS


@pytest.fixture
def metrics():
    """Metrics bound to a private registry so counts start at zero."""
    return HandshakeMetrics(registry=CollectorRegistry())


@pytest.fixture
def signer():
    return Account.from_key(private_key_from_mnemonic(TEST_MNEMONIC))


@pytest.fixture
def ledger_a():
    return SimulatedLedger(chain_id=CHAIN_A_ID, genesis_time=1_700_000_000)


@pytest.fixture
def ledger_b():
    return SimulatedLedger(chain_id=CHAIN_B_ID, genesis_time=1_700_000_000)


@pytest.fixture
def agent_a(ledger_a, signer, settings, metrics):
    return ChainAgent(CHAIN_A_ID, ledger_a, ledger_a.contract_set(), signer, settings=settings, metrics=metrics)


@pytest.fixture
def agent_b(ledger_b, signer, settings, metrics):
    return ChainAgent(CHAIN_B_ID, ledger_b, ledger_b.contract_set(), signer, settings=settings, metrics=metrics)


@pytest.fixture
def synced_agents(agent_a, agent_b):
    agent_a.sync()
    agent_b.sync()
    return agent_a, agent_b


@pytest.fixture
def clients(synced_agents):
    """Create A's client of B and B's client of A; returns (client_a, client_b)."""
    agent_a, agent_b = synced_agents
    client_a = agent_a.new_client_id(BESU_IBFT2_CLIENT)
    agent_a.create_client(agent_b, client_a)
    client_b = agent_b.new_client_id(BESU_IBFT2_CLIENT)
    agent_b.create_client(agent_a, client_b)
    return client_a, client_b


@pytest.fixture
def connections(synced_agents, clients):
    """Register one connection end per chain; returns (conn_a, conn_b)."""
    agent_a, agent_b = synced_agents
    client_a, client_b = clients
    conn_a = agent_a.add_test_connection(client_a, client_b)
    conn_b = agent_b.add_test_connection(client_b, client_a)
    return conn_a, conn_b
