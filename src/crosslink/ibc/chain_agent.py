"""
Chain agent: one ledger as seen by the handshake harness.

A ChainAgent owns the chain identity, the latest synchronized header
snapshot, the signing identity and the client/connection bookkeeping for one
ledger. Light client, handshake and proof operations are delegated to
LightClientManager, ConnectionHandshakeCoordinator and ProofStoreAccessor,
all of which reach the ledger only through the ChainClient and ContractSet
interfaces.

Usage:
    agent_a = ChainAgent(1001, client_a, contracts_a, account_a)
    agent_b = ChainAgent(2001, client_b, contracts_b, account_b)
    agent_a.sync(); agent_b.sync()
    client_a = agent_a.new_client_id(BESU_IBFT2_CLIENT)
    agent_a.create_client(agent_b, client_a)
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Optional, Sequence

from crosslink.blockchain.ibc_types import (
    ClientState,
    ContractState,
    HeaderSnapshot,
    ParsedHeader,
    Proof,
    Receipt,
    TestConnection,
)
from crosslink.core.chain_interfaces import ChainClient, ContractSet
from crosslink.core.config import HarnessSettings
from crosslink.core.exceptions import HeaderNotSyncedError, TransactionFailedError
from crosslink.core.metrics import HandshakeMetrics, get_metrics
from crosslink.ibc.handshake import ConnectionHandshakeCoordinator
from crosslink.ibc.header_sync import wait_for_progress
from crosslink.ibc.identifiers import IdentifierAllocator
from crosslink.ibc.light_client_manager import LightClientManager
from crosslink.ibc.proof_store import ProofStoreAccessor

logger = logging.getLogger(__name__)


class ChainAgent:
    """Facade over one ledger for client, connection and proof operations."""

    def __init__(
        self,
        chain_id: int,
        client: ChainClient,
        contracts: ContractSet,
        signer: Any,
        settings: Optional[HarnessSettings] = None,
        metrics: Optional[HandshakeMetrics] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            chain_id: Numeric chain id of the ledger
            client: Header/proof/receipt access for the ledger
            contracts: IBC contracts deployed on the ledger
            signer: Transaction signing account (anything with an ``address``)
            settings: Timing and protocol settings; read from the environment when None
            metrics: Metrics collector; the process-wide one when None
            clock: Time source for identifier timestamps
        """
        self.chain_id = chain_id
        self.client = client
        self.contracts = contracts
        self.signer = signer
        self.sender: str = signer.address
        self.settings = settings or HarnessSettings.from_env()
        self.metrics = metrics or get_metrics()

        self.client_ids: List[str] = []
        self.connections: List[TestConnection] = []
        self._ids = IdentifierAllocator(clock=clock)

        self._snapshot: Optional[HeaderSnapshot] = None
        self._snapshot_version = 0
        self._sync_lock = threading.Lock()

        self.light_clients = LightClientManager(self)
        self.handshake = ConnectionHandshakeCoordinator(self)
        self.proofs = ProofStoreAccessor(self)

    def __repr__(self) -> str:
        return f"ChainAgent(chain_id={self.chain_id}, sender={self.sender})"

    # ==================== Identity ====================

    def chain_id_string(self) -> str:
        return str(self.chain_id)

    def commitment_prefix(self) -> bytes:
        """Prefix the ledger's provable store commits under."""
        return self.contracts.provable_store.commitment_prefix()

    @property
    def provable_store_address(self) -> bytes:
        return self.contracts.provable_store_address

    # ==================== Header state ====================

    @property
    def last_snapshot(self) -> Optional[HeaderSnapshot]:
        return self._snapshot

    def require_snapshot(self) -> HeaderSnapshot:
        if self._snapshot is None:
            raise HeaderNotSyncedError(
                f"Chain {self.chain_id} has no synchronized header; call sync() first",
                details={"chain_id": self.chain_id},
            )
        return self._snapshot

    @property
    def last_contract_state(self) -> ContractState:
        return self.require_snapshot().state

    def last_header(self) -> ParsedHeader:
        return self.require_snapshot().header

    def last_validators(self) -> List[bytes]:
        return self.require_snapshot().state.last_validators()

    def sync(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> HeaderSnapshot:
        """
        Wait for a header strictly newer than the last snapshot and adopt it.

        Args:
            timeout: Deadline in seconds (settings.header_sync_timeout when None)
            cancel: Event that aborts the wait

        Returns:
            The new snapshot

        Raises:
            HeaderSyncTimeoutError: No newer header before the deadline
            SyncCancelledError: cancel was set
            ChainAccessError: The ledger could not be read
        """
        timeout = self.settings.header_sync_timeout if timeout is None else timeout
        with self._sync_lock:
            previous = self._snapshot
            started = time.monotonic()

            def is_newer(state: ContractState) -> bool:
                return previous is None or state.height > previous.height

            try:
                state = wait_for_progress(
                    lambda: self.client.get_contract_state(self.provable_store_address, [], None),
                    is_newer,
                    timeout=timeout,
                    poll_interval=self.settings.header_poll_interval,
                    cancel=cancel,
                    describe=lambda s: s.height,
                )
            finally:
                self.metrics.observe_header_sync(self.chain_id_string(), time.monotonic() - started)

            self._snapshot_version += 1
            self._snapshot = HeaderSnapshot(
                chain_id=self.chain_id_string(),
                version=self._snapshot_version,
                state=state,
            )
            logger.debug(
                "Header synchronized",
                extra={
                    "event": "chain.header_synced",
                    "chain_id": self.chain_id,
                    "height": state.height,
                    "version": self._snapshot_version,
                },
            )
            return self._snapshot

    def update_header(
        self,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
    ) -> HeaderSnapshot:
        return self.sync(timeout=timeout, cancel=cancel)

    # ==================== Transactions ====================

    def submit_and_wait(self, description: str, submit: Callable[[], str]) -> Receipt:
        """Submit a transaction and wait for its inclusion as one step.

        Raises:
            TransactionFailedError: the receipt reports a revert
        """
        tx_hash = submit()
        receipt = self.client.wait_for_receipt(tx_hash, timeout=self.settings.receipt_timeout)
        if not receipt.succeeded:
            logger.warning(
                "Transaction reverted",
                extra={
                    "event": "chain.tx_reverted",
                    "chain_id": self.chain_id,
                    "description": description,
                    "tx_hash": tx_hash,
                    "revert_reason": receipt.revert_reason,
                },
            )
            raise TransactionFailedError(
                f"failed to call transaction: {description}: {receipt.revert_reason or 'reverted'}",
                tx_hash=tx_hash,
                revert_reason=receipt.revert_reason,
            )
        return receipt

    # ==================== Light clients ====================

    def create_client(
        self,
        counterparty: "ChainAgent",
        client_id: str,
        snapshot: Optional[HeaderSnapshot] = None,
    ) -> None:
        self.light_clients.create_client(counterparty, client_id, snapshot)

    def create_besu_client(
        self,
        counterparty: "ChainAgent",
        client_id: str,
        snapshot: Optional[HeaderSnapshot] = None,
    ) -> None:
        self.create_client(counterparty, client_id, snapshot)

    def update_client(
        self,
        counterparty: "ChainAgent",
        client_id: str,
        snapshot: Optional[HeaderSnapshot] = None,
    ) -> None:
        self.light_clients.update_client(counterparty, client_id, snapshot)

    def update_besu_client(
        self,
        counterparty: "ChainAgent",
        client_id: str,
        snapshot: Optional[HeaderSnapshot] = None,
    ) -> None:
        self.update_client(counterparty, client_id, snapshot)

    def get_client_state(self, client_id: str) -> ClientState:
        return self.light_clients.get_client_state(client_id)

    def verify_client_state(
        self,
        client_id: str,
        counterparty: "ChainAgent",
        counterparty_client_id: str,
    ) -> bool:
        return self.light_clients.verify_client_state(client_id, counterparty, counterparty_client_id)

    # ==================== Proofs ====================

    def get_contract_state(
        self,
        counterparty: "ChainAgent",
        counterparty_client_id: str,
        storage_keys: Sequence[str],
    ) -> ContractState:
        return self.proofs.get_contract_state(counterparty, counterparty_client_id, storage_keys)

    def query_proof(
        self,
        counterparty: "ChainAgent",
        counterparty_client_id: str,
        storage_key: str,
    ) -> Proof:
        return self.proofs.query_proof(counterparty, counterparty_client_id, storage_key)

    def connection_state_commitment_slot(self, connection_id: str) -> str:
        return self.proofs.connection_state_commitment_slot(connection_id)

    # ==================== Connections ====================

    def connection_open_init(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        self.handshake.connection_open_init(counterparty, connection, counterparty_connection)

    def connection_open_try(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        self.handshake.connection_open_try(counterparty, connection, counterparty_connection)

    def connection_open_ack(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        self.handshake.connection_open_ack(counterparty, connection, counterparty_connection)

    def connection_open_confirm(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        self.handshake.connection_open_confirm(counterparty, connection, counterparty_connection)

    # ==================== Bookkeeping ====================

    def new_client_id(self, client_type: Optional[str] = None) -> str:
        client_id = self._ids.next_client_id(client_type or self.settings.client_type)
        self.client_ids.append(client_id)
        return client_id

    def add_test_connection(self, client_id: str, counterparty_client_id: str) -> TestConnection:
        conn = self.construct_next_test_connection(client_id, counterparty_client_id)
        self.connections.append(conn)
        return conn

    def construct_next_test_connection(self, client_id: str, counterparty_client_id: str) -> TestConnection:
        return TestConnection(
            id=self._ids.next_connection_id(),
            client_id=client_id,
            counterparty_client_id=counterparty_client_id,
            next_channel_version=self.settings.channel_version,
        )
