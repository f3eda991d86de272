"""
In-process IBFT2-like ledger with IBC contracts.

SimulatedLedger seals blocks with secp256k1 validator commit seals, keeps the
provable store's storage under a Merkle storage root bound into the block
state root, and snapshots storage per height so proofs can be served at any
historical height. The IBC client/connection/provable-store contracts run the
same checks the Solidity contracts do: commit seal quorum, strictly increasing
client height, account proof against the header, and membership proofs for
committed client states and connection ends.

Usage:
    ledger = SimulatedLedger(chain_id=1001)
    agent = ChainAgent(1001, ledger, ledger.contract_set(), account)
"""

from __future__ import annotations

import copy
import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from crosslink.blockchain.ibc_types import (
    ClientHeader,
    ClientState,
    ConnectionEnd,
    ConnectionState,
    ConsensusState,
    ContractState,
    Counterparty,
    MerklePrefix,
    MsgConnectionOpenAck,
    MsgConnectionOpenConfirm,
    MsgConnectionOpenTry,
    ParsedHeader,
    Receipt,
    StorageProof,
    canonical_bytes,
    from_hex,
    to_hex,
)
from crosslink.blockchain.merkle import (
    MerkleTree,
    client_state_path,
    commitment_slot,
    commitment_value,
    connection_path,
    decode_proof,
    encode_proof,
)
from crosslink.blockchain.versions import SUPPORTED_VERSIONS, negotiate_version
from crosslink.core.chain_interfaces import (
    ChainClient,
    ContractSet,
    IBCClientContract,
    IBCConnectionContract,
    ProvableStoreContract,
)
from crosslink.core.config import DEFAULT_PREFIX
from crosslink.core.crypto_utils import (
    deterministic_keypair_from_seed,
    keccak256,
    sign_message,
    verify_signature,
)
from crosslink.core.exceptions import ChainAccessError, VersionNegotiationError

logger = logging.getLogger(__name__)

ZERO_VALUE = bytes(32)


class ContractRevert(Exception):
    """Raised inside a simulated contract call to revert the transaction."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class SimulatedBlock:
    number: int
    timestamp: int
    parent_hash: bytes
    state_root: bytes
    validators: Tuple[bytes, ...]
    sealing_header: bytes
    hash: bytes
    seals: Tuple[bytes, ...]


def quorum_size(validator_count: int) -> int:
    """IBFT2 commit quorum: ceil(2n/3)."""
    return math.ceil(validator_count * 2 / 3)


def encode_sealing_header(
    number: int,
    timestamp: int,
    parent_hash: bytes,
    state_root: bytes,
    validators: Sequence[bytes],
) -> bytes:
    return canonical_bytes(
        {
            "number": number,
            "timestamp": timestamp,
            "parent_hash": to_hex(parent_hash),
            "state_root": to_hex(state_root),
            "validators": [to_hex(v) for v in validators],
        }
    )


def decode_sealing_header(data: bytes) -> Dict:
    payload = json.loads(data.decode())
    return {
        "number": int(payload["number"]),
        "timestamp": int(payload["timestamp"]),
        "state_root": from_hex(payload["state_root"]),
        "validators": tuple(from_hex(v) for v in payload["validators"]),
    }


class SimulatedLedger(ChainClient):
    """A single-node ledger with a fixed validator set and one provable store."""

    def __init__(
        self,
        chain_id: int,
        validator_count: int = 4,
        seed: bytes = b"crosslink-validator",
        auto_mine: bool = True,
        prefix: bytes = DEFAULT_PREFIX.encode(),
        provable_store_address: Optional[bytes] = None,
        genesis_time: Optional[int] = None,
    ):
        if validator_count < 1:
            raise ValueError("validator_count must be at least 1")
        self.chain_id = chain_id
        self.auto_mine = auto_mine
        self.prefix = prefix
        self.provable_store_address = provable_store_address or keccak256(
            f"provable-store-{chain_id}".encode()
        )[-20:]

        self._validator_keys: List[Tuple[str, str]] = [
            deterministic_keypair_from_seed(keccak256(seed + f":{chain_id}:{i}".encode()))
            for i in range(validator_count)
        ]
        self._sealers: List[int] = list(range(validator_count))
        self._reachable = True
        self._lock = threading.RLock()
        self._genesis_time = int(time.time()) if genesis_time is None else genesis_time

        self._storage: Dict[bytes, Dict[str, str]] = {self.provable_store_address: {}}
        self._history: Dict[int, Dict[bytes, Dict[str, str]]] = {}
        self._blocks: List[SimulatedBlock] = []
        self._receipts: Dict[str, Receipt] = {}
        self._nonce = 0

        # IBC contract state
        self.client_states: Dict[str, ClientState] = {}
        self.consensus_states: Dict[Tuple[str, int], ConsensusState] = {}
        self.connections: Dict[str, ConnectionEnd] = {}

        self.mine()

    # ==================== Node controls ====================

    @property
    def validators(self) -> Tuple[bytes, ...]:
        return tuple(bytes.fromhex(pub) for _, pub in self._validator_keys)

    @property
    def height(self) -> int:
        return self._blocks[-1].number

    def set_reachable(self, reachable: bool) -> None:
        self._reachable = reachable

    def set_sealing_validators(self, indices: Sequence[int]) -> None:
        """Restrict which validators seal subsequent blocks."""
        for index in indices:
            if not 0 <= index < len(self._validator_keys):
                raise ValueError(f"Validator index {index} out of range")
        self._sealers = list(indices)

    def contract_set(self) -> ContractSet:
        return ContractSet(
            ibc_client=SimulatedIBCClient(self),
            ibc_connection=SimulatedIBCConnection(self),
            provable_store=SimulatedProvableStore(self),
            provable_store_address=self.provable_store_address,
        )

    def _ensure_reachable(self) -> None:
        if not self._reachable:
            raise ChainAccessError(
                f"Chain {self.chain_id} node is unreachable",
                details={"chain_id": self.chain_id},
            )

    # ==================== Blocks ====================

    @staticmethod
    def _storage_root(slots: Dict[str, str]) -> str:
        return MerkleTree(slots).get_root()

    def _account_tree(self, storage: Dict[bytes, Dict[str, str]]) -> MerkleTree:
        return MerkleTree({to_hex(addr): self._storage_root(slots) for addr, slots in storage.items()})

    def mine(self) -> SimulatedBlock:
        """Seal a block over the current storage."""
        with self._lock:
            number = len(self._blocks)
            parent_hash = self._blocks[-1].hash if self._blocks else bytes(32)
            timestamp = self._genesis_time + number
            state_root = bytes.fromhex(self._account_tree(self._storage).get_root())
            validators = self.validators
            sealing_header = encode_sealing_header(number, timestamp, parent_hash, state_root, validators)
            header_hash = keccak256(sealing_header)
            seals = tuple(sign_message(self._validator_keys[i][0], header_hash) for i in self._sealers)

            block = SimulatedBlock(
                number=number,
                timestamp=timestamp,
                parent_hash=parent_hash,
                state_root=state_root,
                validators=validators,
                sealing_header=sealing_header,
                hash=header_hash,
                seals=seals,
            )
            self._blocks.append(block)
            self._history[number] = copy.deepcopy(self._storage)
            return block

    # ==================== ChainClient ====================

    def get_contract_state(
        self,
        address: bytes,
        storage_keys: Sequence[str],
        height: Optional[int] = None,
    ) -> ContractState:
        with self._lock:
            self._ensure_reachable()
            if height is None:
                if self.auto_mine:
                    self.mine()
                height = self.height
            if not 0 <= height <= self.height:
                raise ChainAccessError(
                    f"Block {height} not found on chain {self.chain_id}",
                    details={"height": height, "latest": self.height},
                )

            block = self._blocks[height]
            storage = self._history[height]
            if address not in storage:
                raise ChainAccessError(
                    f"Account {to_hex(address)} has no state on chain {self.chain_id}",
                    details={"address": to_hex(address)},
                )

            account_key = to_hex(address)
            account_tree = self._account_tree(storage)
            storage_root = self._storage_root(storage[address])
            account_proof = encode_proof(
                account_key, storage_root, account_tree.generate_merkle_proof(account_key)
            )

            storage_tree = MerkleTree(storage[address])
            proofs = []
            for key in storage_keys:
                slot = key.lower()
                if slot in storage[address]:
                    value = storage[address][slot]
                    proofs.append(
                        StorageProof(
                            key=key,
                            value=from_hex(value),
                            proof=encode_proof(slot, value, storage_tree.generate_merkle_proof(slot)),
                        )
                    )
                else:
                    proofs.append(StorageProof(key=key, value=ZERO_VALUE, proof=b""))

            return ContractState(
                parsed_header=ParsedHeader(
                    number=block.number,
                    timestamp=block.timestamp,
                    root=block.state_root,
                    validators=block.validators,
                    hash=block.hash,
                ),
                commit_seals=block.seals,
                sealing_header=block.sealing_header,
                account_proof=account_proof,
                storage_hash=bytes.fromhex(storage_root),
                storage_proofs=tuple(proofs),
            )

    def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Receipt:
        with self._lock:
            self._ensure_reachable()
            receipt = self._receipts.get(tx_hash)
        if receipt is None:
            raise ChainAccessError(
                f"Transaction {tx_hash} not found on chain {self.chain_id}",
                details={"tx_hash": tx_hash},
            )
        return receipt

    # ==================== Transactions ====================

    def transact(self, sender: str, description: str, apply: Callable[[], None]) -> str:
        """Execute apply() as one transaction in its own block and return the tx hash."""
        with self._lock:
            self._ensure_reachable()
            self._nonce += 1
            tx_hash = to_hex(keccak256(f"{self.chain_id}:{sender}:{self._nonce}:{description}".encode()))
            checkpoint = self._checkpoint()
            try:
                apply()
                status, reason = 1, None
            except ContractRevert as exc:
                self._restore(checkpoint)
                status, reason = 0, exc.reason
                logger.debug(
                    "Simulated transaction reverted",
                    extra={
                        "event": "simulated.tx_reverted",
                        "chain_id": self.chain_id,
                        "description": description,
                        "reason": reason,
                    },
                )
            block = self.mine()
            self._receipts[tx_hash] = Receipt(
                tx_hash=tx_hash, status=status, block_number=block.number, revert_reason=reason
            )
            return tx_hash

    def _checkpoint(self):
        return (
            copy.deepcopy(self._storage),
            dict(self.client_states),
            dict(self.consensus_states),
            dict(self.connections),
        )

    def _restore(self, checkpoint) -> None:
        storage, client_states, consensus_states, connections = checkpoint
        self._storage = storage
        self.client_states = client_states
        self.consensus_states = consensus_states
        self.connections = connections

    # ==================== Provable store ====================

    def slot_for(self, path: str) -> bytes:
        return commitment_slot(self.prefix, path)

    def commit(self, path: str, value: bytes) -> None:
        slot = to_hex(self.slot_for(path))
        self._storage[self.provable_store_address][slot] = to_hex(commitment_value(value))

    def set_client_state(self, client_id: str, state: ClientState) -> None:
        self.client_states[client_id] = state
        self.commit(client_state_path(client_id), state.to_bytes())

    def set_connection(self, connection_id: str, end: ConnectionEnd) -> None:
        self.connections[connection_id] = end
        self.commit(connection_path(connection_id), end.to_bytes())

    # ==================== Verification ====================

    def verify_membership(
        self,
        client_id: str,
        height: int,
        prefix: bytes,
        path: str,
        value: bytes,
        proof: bytes,
    ) -> bool:
        """Check proof shows value committed at prefix/path in the counterparty store at height."""
        consensus = self.consensus_states.get((client_id, height))
        if consensus is None:
            return False
        payload = decode_proof(proof)
        if payload is None:
            return False
        if payload["key"] != to_hex(commitment_slot(prefix, path)):
            return False
        if payload["value"] != to_hex(commitment_value(value)):
            return False
        return MerkleTree.verify_merkle_proof(
            payload["key"], payload["value"], consensus.root.hex(), payload["path"]
        )


class SimulatedProvableStore(ProvableStoreContract):
    def __init__(self, ledger: SimulatedLedger):
        self.ledger = ledger

    def get_client_state(self, client_id: str) -> Optional[ClientState]:
        self.ledger._ensure_reachable()
        return self.ledger.client_states.get(client_id)

    def get_connection(self, connection_id: str) -> Optional[ConnectionEnd]:
        self.ledger._ensure_reachable()
        return self.ledger.connections.get(connection_id)

    def client_state_commitment_slot(self, client_id: str) -> bytes:
        return self.ledger.slot_for(client_state_path(client_id))

    def connection_commitment_slot(self, connection_id: str) -> bytes:
        return self.ledger.slot_for(connection_path(connection_id))

    def commitment_prefix(self) -> bytes:
        return self.ledger.prefix


class SimulatedIBCClient(IBCClientContract):
    """Besu IBFT2 light client contract."""

    def __init__(self, ledger: SimulatedLedger):
        self.ledger = ledger

    def create_client(
        self,
        sender: str,
        client_id: str,
        client_state: ClientState,
        consensus_state: ConsensusState,
    ) -> str:
        ledger = self.ledger

        def apply() -> None:
            if client_id in ledger.client_states:
                raise ContractRevert(f"client {client_id} already exists")
            ledger.set_client_state(client_id, client_state)
            ledger.consensus_states[(client_id, client_state.latest_height)] = consensus_state

        return ledger.transact(sender, f"createClient {client_id}", apply)

    def update_client(self, sender: str, client_id: str, header: ClientHeader) -> str:
        ledger = self.ledger

        def apply() -> None:
            client_state = ledger.client_states.get(client_id)
            if client_state is None:
                raise ContractRevert(f"client {client_id} not found")
            trusted = ledger.consensus_states.get((client_id, header.trusted_height))
            if trusted is None:
                raise ContractRevert(f"consensus state at trusted height {header.trusted_height} not found")
            try:
                parsed = decode_sealing_header(header.besu_header_rlp)
            except (ValueError, KeyError, TypeError, UnicodeDecodeError):
                raise ContractRevert("malformed header")
            if parsed["number"] <= client_state.latest_height:
                raise ContractRevert(
                    f"header height {parsed['number']} must be greater than latest height {client_state.latest_height}"
                )

            header_hash = keccak256(header.besu_header_rlp)
            signers = set()
            for seal in header.seals:
                for validator in trusted.validators:
                    if validator not in signers and verify_signature(validator.hex(), header_hash, seal):
                        signers.add(validator)
                        break
            required = quorum_size(len(trusted.validators))
            if len(signers) < required:
                raise ContractRevert(f"insufficient commit seals: {len(signers)} < {required}")

            account = decode_proof(header.account_state_proof)
            if account is None or account["key"] != to_hex(client_state.provable_store_address):
                raise ContractRevert("invalid account proof")
            if not MerkleTree.verify_merkle_proof(
                account["key"], account["value"], parsed["state_root"].hex(), account["path"]
            ):
                raise ContractRevert("account proof does not match state root")

            ledger.consensus_states[(client_id, parsed["number"])] = ConsensusState(
                timestamp=parsed["timestamp"],
                root=bytes.fromhex(account["value"]),
                validators=parsed["validators"],
            )
            ledger.set_client_state(client_id, client_state.with_latest_height(parsed["number"]))

        return ledger.transact(sender, f"updateClient {client_id}", apply)

    def verify_client_state(
        self,
        client_id: str,
        height: int,
        prefix: bytes,
        counterparty_client_id: str,
        proof: bytes,
        target_state: ClientState,
    ) -> bool:
        self.ledger._ensure_reachable()
        return self.ledger.verify_membership(
            client_id,
            height,
            prefix,
            client_state_path(counterparty_client_id),
            target_state.to_bytes(),
            proof,
        )


class SimulatedIBCConnection(IBCConnectionContract):
    """Connection handshake handler."""

    def __init__(self, ledger: SimulatedLedger):
        self.ledger = ledger

    def _require_client(self, client_id: str) -> None:
        if client_id not in self.ledger.client_states:
            raise ContractRevert(f"client {client_id} not found")

    def _verify_connection(
        self,
        client_id: str,
        proof_height: int,
        counterparty: Counterparty,
        counterparty_connection_id: str,
        expected: ConnectionEnd,
        proof: bytes,
    ) -> None:
        if not self.ledger.verify_membership(
            client_id,
            proof_height,
            counterparty.prefix.key_prefix,
            connection_path(counterparty_connection_id),
            expected.to_bytes(),
            proof,
        ):
            raise ContractRevert("failed to verify connection state")

    def connection_open_init(
        self,
        sender: str,
        client_id: str,
        connection_id: str,
        counterparty: Counterparty,
        delay_period: int,
    ) -> str:
        ledger = self.ledger

        def apply() -> None:
            if connection_id in ledger.connections:
                raise ContractRevert(f"connection {connection_id} already exists")
            self._require_client(client_id)
            ledger.set_connection(
                connection_id,
                ConnectionEnd(
                    client_id=client_id,
                    versions=SUPPORTED_VERSIONS,
                    state=ConnectionState.INIT,
                    counterparty=counterparty,
                    delay_period=delay_period,
                ),
            )

        return ledger.transact(sender, f"connectionOpenInit {connection_id}", apply)

    def connection_open_try(self, sender: str, msg: MsgConnectionOpenTry) -> str:
        ledger = self.ledger

        def apply() -> None:
            if msg.connection_id in ledger.connections:
                raise ContractRevert(f"connection {msg.connection_id} already exists")
            self._require_client(msg.client_id)
            try:
                version = negotiate_version(SUPPORTED_VERSIONS, msg.counterparty_versions)
            except VersionNegotiationError as exc:
                raise ContractRevert(exc.message)
            expected = ConnectionEnd(
                client_id=msg.counterparty.client_id,
                versions=tuple(msg.counterparty_versions),
                state=ConnectionState.INIT,
                counterparty=Counterparty(msg.client_id, "", MerklePrefix(ledger.prefix)),
                delay_period=msg.delay_period,
            )
            self._verify_connection(
                msg.client_id,
                msg.proof_height,
                msg.counterparty,
                msg.counterparty.connection_id,
                expected,
                msg.proof_init,
            )
            ledger.set_connection(
                msg.connection_id,
                ConnectionEnd(
                    client_id=msg.client_id,
                    versions=(version,),
                    state=ConnectionState.TRYOPEN,
                    counterparty=msg.counterparty,
                    delay_period=msg.delay_period,
                ),
            )

        return ledger.transact(sender, f"connectionOpenTry {msg.connection_id}", apply)

    def connection_open_ack(self, sender: str, msg: MsgConnectionOpenAck) -> str:
        ledger = self.ledger

        def apply() -> None:
            end = ledger.connections.get(msg.connection_id)
            if end is None or end.state != ConnectionState.INIT:
                raise ContractRevert(f"connection {msg.connection_id} is not in INIT state")
            if msg.version.identifier not in [v.identifier for v in end.versions]:
                raise ContractRevert(f"unsupported version {msg.version.identifier}")
            expected = ConnectionEnd(
                client_id=end.counterparty.client_id,
                versions=(msg.version,),
                state=ConnectionState.TRYOPEN,
                counterparty=Counterparty(end.client_id, msg.connection_id, MerklePrefix(ledger.prefix)),
                delay_period=end.delay_period,
            )
            self._verify_connection(
                end.client_id,
                msg.proof_height,
                end.counterparty,
                msg.counterparty_connection_id,
                expected,
                msg.proof_try,
            )
            ledger.set_connection(
                msg.connection_id,
                ConnectionEnd(
                    client_id=end.client_id,
                    versions=(msg.version,),
                    state=ConnectionState.OPEN,
                    counterparty=Counterparty(
                        end.counterparty.client_id,
                        msg.counterparty_connection_id,
                        end.counterparty.prefix,
                    ),
                    delay_period=end.delay_period,
                ),
            )

        return ledger.transact(sender, f"connectionOpenAck {msg.connection_id}", apply)

    def connection_open_confirm(self, sender: str, msg: MsgConnectionOpenConfirm) -> str:
        ledger = self.ledger

        def apply() -> None:
            end = ledger.connections.get(msg.connection_id)
            if end is None or end.state != ConnectionState.TRYOPEN:
                raise ContractRevert(f"connection {msg.connection_id} is not in TRYOPEN state")
            expected = ConnectionEnd(
                client_id=end.counterparty.client_id,
                versions=end.versions,
                state=ConnectionState.OPEN,
                counterparty=Counterparty(end.client_id, msg.connection_id, MerklePrefix(ledger.prefix)),
                delay_period=end.delay_period,
            )
            self._verify_connection(
                end.client_id,
                msg.proof_height,
                end.counterparty,
                end.counterparty.connection_id,
                expected,
                msg.proof_ack,
            )
            ledger.set_connection(
                msg.connection_id,
                ConnectionEnd(
                    client_id=end.client_id,
                    versions=end.versions,
                    state=ConnectionState.OPEN,
                    counterparty=end.counterparty,
                    delay_period=end.delay_period,
                ),
            )

        return ledger.transact(sender, f"connectionOpenConfirm {msg.connection_id}", apply)
