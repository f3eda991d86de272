from __future__ import annotations

"""
Interfaces for the ledger collaborators a chain agent drives.

The agent only ever talks to a chain through these views: a read/receipt
client for proofs and inclusion, and the three IBC contracts (client,
connection, provable store). The simulated ledger and the web3 backend both
implement them, so the handshake code has no dependency on either.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from crosslink.blockchain.ibc_types import (
    ClientHeader,
    ClientState,
    ConnectionEnd,
    ConsensusState,
    ContractState,
    Counterparty,
    MsgConnectionOpenAck,
    MsgConnectionOpenConfirm,
    MsgConnectionOpenTry,
    Receipt,
)


class ChainClient(ABC):
    """Read access to headers/proofs and transaction inclusion for one chain."""

    @abstractmethod
    def get_contract_state(
        self,
        address: bytes,
        storage_keys: Sequence[str],
        height: Optional[int] = None,
    ) -> ContractState:
        """Fetch header, seals and storage proofs of address at height (latest when None)."""

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Receipt:
        """Block until tx_hash is included and return its receipt."""


class ProvableStoreContract(ABC):
    """Read-only view of the committed IBC state."""

    @abstractmethod
    def get_client_state(self, client_id: str) -> Optional[ClientState]:
        """Return the committed client state, or None when client_id is unknown."""

    @abstractmethod
    def get_connection(self, connection_id: str) -> Optional[ConnectionEnd]:
        """Return the committed connection end, or None when connection_id is unknown."""

    @abstractmethod
    def client_state_commitment_slot(self, client_id: str) -> bytes:
        """Storage slot holding the client state commitment."""

    @abstractmethod
    def connection_commitment_slot(self, connection_id: str) -> bytes:
        """Storage slot holding the connection end commitment."""

    @abstractmethod
    def commitment_prefix(self) -> bytes:
        """Key prefix the store commits every path under."""


class IBCClientContract(ABC):
    """On-chain light client verification layer."""

    @abstractmethod
    def create_client(
        self,
        sender: str,
        client_id: str,
        client_state: ClientState,
        consensus_state: ConsensusState,
    ) -> str:
        """Submit a create-client transaction and return its hash."""

    @abstractmethod
    def update_client(self, sender: str, client_id: str, header: ClientHeader) -> str:
        """Submit an update-client transaction and return its hash."""

    @abstractmethod
    def verify_client_state(
        self,
        client_id: str,
        height: int,
        prefix: bytes,
        counterparty_client_id: str,
        proof: bytes,
        target_state: ClientState,
    ) -> bool:
        """Check proof shows target_state committed under counterparty_client_id at height."""


class IBCConnectionContract(ABC):
    """On-chain connection handshake handler."""

    @abstractmethod
    def connection_open_init(
        self,
        sender: str,
        client_id: str,
        connection_id: str,
        counterparty: Counterparty,
        delay_period: int,
    ) -> str:
        """Submit ConnOpenInit."""

    @abstractmethod
    def connection_open_try(self, sender: str, msg: MsgConnectionOpenTry) -> str:
        """Submit ConnOpenTry."""

    @abstractmethod
    def connection_open_ack(self, sender: str, msg: MsgConnectionOpenAck) -> str:
        """Submit ConnOpenAck."""

    @abstractmethod
    def connection_open_confirm(self, sender: str, msg: MsgConnectionOpenConfirm) -> str:
        """Submit ConnOpenConfirm."""


@dataclass
class ContractSet:
    """The IBC contracts deployed on one chain."""

    ibc_client: IBCClientContract
    ibc_connection: IBCConnectionContract
    provable_store: ProvableStoreContract
    provable_store_address: bytes
