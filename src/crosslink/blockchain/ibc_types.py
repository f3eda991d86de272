"""
IBC value types shared by the agents, the verification layer and the backends.

Headers, client/consensus states, connection ends and proofs are plain
dataclasses. Each type that gets committed to a provable store has a
deterministic to_bytes() encoding (compact, sorted-key JSON with bytes as
0x-hex) so both ledgers hash the same object to the same commitment.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def from_hex(value: str) -> bytes:
    if value.startswith(("0x", "0X")):
        value = value[2:]
    return bytes.fromhex(value)


def canonical_bytes(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def load_canonical(data: bytes) -> Dict[str, Any]:
    return json.loads(bytes(data).decode("utf-8"))


# ==================== Chain state ====================


@dataclass(frozen=True)
class ParsedHeader:
    """Contract-level view of a block header."""

    number: int
    timestamp: int
    root: bytes
    validators: Tuple[bytes, ...]
    hash: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "timestamp": self.timestamp,
            "root": to_hex(self.root),
            "validators": [to_hex(v) for v in self.validators],
            "hash": to_hex(self.hash),
        }


@dataclass(frozen=True)
class StorageProof:
    """Inclusion proof for one storage slot of the provable store."""

    key: str
    value: bytes
    proof: bytes

    @property
    def is_empty(self) -> bool:
        return not any(self.value)


@dataclass(frozen=True)
class ContractState:
    """Provable store state at one height: header, seals and storage proofs."""

    parsed_header: ParsedHeader
    commit_seals: Tuple[bytes, ...]
    sealing_header: bytes
    account_proof: bytes
    storage_hash: bytes
    storage_proofs: Tuple[StorageProof, ...] = ()

    @property
    def height(self) -> int:
        return self.parsed_header.number

    def storage_proof_bytes(self, index: int) -> bytes:
        return self.storage_proofs[index].proof

    def account_proof_bytes(self) -> bytes:
        return self.account_proof

    def last_validators(self) -> List[bytes]:
        return list(self.parsed_header.validators)


@dataclass(frozen=True)
class HeaderSnapshot:
    """A chain's header state as observed by one explicit sync.

    version increases by one on every successful sync of the owning agent, so
    two snapshots can be ordered without comparing heights.
    """

    chain_id: str
    version: int
    state: ContractState

    @property
    def height(self) -> int:
        return self.state.height

    @property
    def header(self) -> ParsedHeader:
        return self.state.parsed_header


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    revert_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


# ==================== Clients ====================


@dataclass(frozen=True)
class ClientState:
    """Local record of a counterparty chain."""

    chain_id: str
    provable_store_address: bytes
    latest_height: int

    def with_latest_height(self, height: int) -> "ClientState":
        return replace(self, latest_height=height)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "provable_store_address": to_hex(self.provable_store_address),
            "latest_height": self.latest_height,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientState":
        return cls(
            chain_id=str(data["chain_id"]),
            provable_store_address=from_hex(data["provable_store_address"]),
            latest_height=int(data["latest_height"]),
        )

    def to_bytes(self) -> bytes:
        return canonical_bytes(self.to_dict())


@dataclass(frozen=True)
class ConsensusState:
    """Counterparty consensus snapshot at one height."""

    timestamp: int
    root: bytes
    validators: Tuple[bytes, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "root": to_hex(self.root),
            "validators": [to_hex(v) for v in self.validators],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConsensusState":
        return cls(
            timestamp=int(data["timestamp"]),
            root=from_hex(data["root"]),
            validators=tuple(from_hex(v) for v in data["validators"]),
        )

    def to_bytes(self) -> bytes:
        return canonical_bytes(self.to_dict())


@dataclass(frozen=True)
class MsgCreateClient:
    client_state: ClientState
    consensus_state: ConsensusState


@dataclass(frozen=True)
class ClientHeader:
    """Header update submitted to UpdateClient."""

    besu_header_rlp: bytes
    seals: Tuple[bytes, ...]
    trusted_height: int
    account_state_proof: bytes


# ==================== Connections ====================


class ConnectionState(IntEnum):
    UNINITIALIZED = 0
    INIT = 1
    TRYOPEN = 2
    OPEN = 3


@dataclass(frozen=True)
class MerklePrefix:
    key_prefix: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {"key_prefix": to_hex(self.key_prefix)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MerklePrefix":
        return cls(key_prefix=from_hex(data["key_prefix"]))


@dataclass(frozen=True)
class Counterparty:
    client_id: str
    connection_id: str
    prefix: MerklePrefix

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "connection_id": self.connection_id,
            "prefix": self.prefix.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Counterparty":
        return cls(
            client_id=str(data["client_id"]),
            connection_id=str(data["connection_id"]),
            prefix=MerklePrefix.from_dict(data["prefix"]),
        )


@dataclass(frozen=True)
class Version:
    identifier: str
    features: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"identifier": self.identifier, "features": list(self.features)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Version":
        return cls(identifier=str(data["identifier"]), features=tuple(data.get("features", ())))


@dataclass(frozen=True)
class ConnectionEnd:
    client_id: str
    versions: Tuple[Version, ...]
    state: ConnectionState
    counterparty: Counterparty
    delay_period: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "versions": [v.to_dict() for v in self.versions],
            "state": int(self.state),
            "counterparty": self.counterparty.to_dict(),
            "delay_period": self.delay_period,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionEnd":
        return cls(
            client_id=str(data["client_id"]),
            versions=tuple(Version.from_dict(v) for v in data["versions"]),
            state=ConnectionState(int(data["state"])),
            counterparty=Counterparty.from_dict(data["counterparty"]),
            delay_period=int(data.get("delay_period", 0)),
        )

    def to_bytes(self) -> bytes:
        return canonical_bytes(self.to_dict())


@dataclass(frozen=True)
class MsgConnectionOpenTry:
    connection_id: str
    counterparty: Counterparty
    delay_period: int
    client_id: str
    counterparty_versions: Tuple[Version, ...]
    proof_height: int
    proof_init: bytes


@dataclass(frozen=True)
class MsgConnectionOpenAck:
    connection_id: str
    counterparty_connection_id: str
    version: Version
    proof_try: bytes
    proof_height: int


@dataclass(frozen=True)
class MsgConnectionOpenConfirm:
    connection_id: str
    proof_ack: bytes
    proof_height: int


# ==================== Harness bookkeeping ====================


@dataclass(frozen=True)
class Proof:
    """Storage proof bytes valid only at height."""

    height: int
    data: bytes


@dataclass
class TestConnection:
    """Identifiers of one connection end tracked by a chain agent."""

    __test__ = False

    id: str
    client_id: str
    counterparty_client_id: str
    next_channel_version: str
