"""
Hyperledger Besu (IBFT2) backend over JSON-RPC.

Web3ChainClient reads headers with eth_getBlockByNumber and proofs with
eth_getProof, and decodes the IBFT2 extraData (vanity, validators, vote,
round, commit seals) with rlp. The sealing header handed to the light client
is the block header re-encoded with the commit seals stripped, which is what
each validator signed.

Contract bindings sign transactions locally with eth_account and wait for
inclusion through web3. Transport failures surface as ChainAccessError and
contract reverts as TransactionFailedError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
import rlp
from rlp.exceptions import DecodingError
from eth_account import Account
from eth_utils import to_bytes, to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from crosslink.backends.abi import IBC_CLIENT_ABI, IBC_CONNECTION_ABI, PROVABLE_STORE_ABI
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
    ParsedHeader,
    Receipt,
    StorageProof,
    Version,
    load_canonical,
    to_hex,
)
from crosslink.core.chain_interfaces import (
    ChainClient,
    ContractSet,
    IBCClientContract,
    IBCConnectionContract,
    ProvableStoreContract,
)
from crosslink.core.config import RECEIPT_TIMEOUT, RPC_TIMEOUT, ContractConfig
from crosslink.core.exceptions import ChainAccessError, TransactionFailedError
from crosslink.core.wallet import private_key_from_mnemonic

logger = logging.getLogger(__name__)

# Pre-London header field order; baseFeePerGas is appended when present
_HEADER_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("parentHash", "bytes"),
    ("sha3Uncles", "bytes"),
    ("miner", "bytes"),
    ("stateRoot", "bytes"),
    ("transactionsRoot", "bytes"),
    ("receiptsRoot", "bytes"),
    ("logsBloom", "bytes"),
    ("difficulty", "int"),
    ("number", "int"),
    ("gasLimit", "int"),
    ("gasUsed", "int"),
    ("timestamp", "int"),
    ("extraData", "bytes"),
    ("mixHash", "bytes"),
    ("nonce", "bytes"),
)


@dataclass(frozen=True)
class Ibft2ExtraData:
    vanity: bytes
    validators: Tuple[bytes, ...]
    vote: Any
    round: bytes
    seals: Tuple[bytes, ...]


def _hex_to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return to_bytes(hexstr=value)


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


def parse_ibft2_extra_data(extra_data: bytes) -> Ibft2ExtraData:
    """Decode IBFT2 extraData: rlp([vanity, [validators], vote, round, [seals]])."""
    try:
        decoded = rlp.decode(extra_data)
    except DecodingError as exc:
        raise ChainAccessError(f"Malformed IBFT2 extraData: {exc}")
    if not isinstance(decoded, list) or len(decoded) != 5:
        raise ChainAccessError("IBFT2 extraData must be a 5 element list")
    vanity, validators, vote, round_, seals = decoded
    return Ibft2ExtraData(
        vanity=vanity,
        validators=tuple(validators),
        vote=vote,
        round=round_,
        seals=tuple(seals),
    )


def encode_sealing_header(block: Dict[str, Any], extra: Ibft2ExtraData) -> bytes:
    """RLP of the header with commit seals removed from extraData."""
    stripped_extra = rlp.encode([extra.vanity, list(extra.validators), extra.vote, extra.round, []])
    fields: List[Any] = []
    for name, kind in _HEADER_FIELDS:
        if name == "extraData":
            fields.append(stripped_extra)
        elif kind == "int":
            fields.append(_hex_to_int(block[name]))
        else:
            fields.append(_hex_to_bytes(block[name]))
    if block.get("baseFeePerGas") is not None:
        fields.append(_hex_to_int(block["baseFeePerGas"]))
    return rlp.encode(fields)


def _encode_proof_nodes(nodes: Sequence[Any]) -> bytes:
    return rlp.encode([_hex_to_bytes(node) for node in nodes])


class Web3ChainClient(ChainClient):
    """ChainClient for a Besu node reachable over HTTP JSON-RPC."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        web3: Optional[Web3] = None,
        timeout: float = RPC_TIMEOUT,
    ):
        if web3 is None and not rpc_url:
            raise ValueError("rpc_url or web3 is required")
        self.rpc_url = rpc_url
        self.w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    def _rpc(self, method: str, params: List[Any]) -> Any:
        try:
            response = self.w3.provider.make_request(method, params)
        except (requests.RequestException, Web3Exception, OSError) as exc:
            raise ChainAccessError(
                f"RPC {method} failed: {exc}",
                details={"method": method, "rpc_url": self.rpc_url},
            )
        if response.get("error"):
            raise ChainAccessError(
                f"RPC {method} returned error: {response['error']}",
                details={"method": method, "rpc_url": self.rpc_url},
            )
        return response.get("result")

    def get_contract_state(
        self,
        address: bytes,
        storage_keys: Sequence[str],
        height: Optional[int] = None,
    ) -> ContractState:
        block_tag = hex(height) if height is not None else "latest"
        block = self._rpc("eth_getBlockByNumber", [block_tag, False])
        if not block:
            raise ChainAccessError(f"Block {block_tag} not found", details={"height": height})

        number = _hex_to_int(block["number"])
        proof = self._rpc(
            "eth_getProof",
            [to_checksum_address(address), list(storage_keys), hex(number)],
        )
        if not proof:
            raise ChainAccessError(f"No proof for {to_hex(address)} at {number}")

        extra = parse_ibft2_extra_data(_hex_to_bytes(block["extraData"]))
        storage_proofs = tuple(
            StorageProof(
                key=entry["key"],
                value=_hex_to_int(entry["value"]).to_bytes(32, "big"),
                proof=_encode_proof_nodes(entry["proof"]),
            )
            for entry in proof.get("storageProof", [])
        )
        logger.debug(
            "Fetched contract state",
            extra={"event": "web3.contract_state", "height": number, "keys": len(storage_keys)},
        )
        return ContractState(
            parsed_header=ParsedHeader(
                number=number,
                timestamp=_hex_to_int(block["timestamp"]),
                root=_hex_to_bytes(block["stateRoot"]),
                validators=extra.validators,
                hash=_hex_to_bytes(block["hash"]),
            ),
            commit_seals=extra.seals,
            sealing_header=encode_sealing_header(block, extra),
            account_proof=_encode_proof_nodes(proof["accountProof"]),
            storage_hash=_hex_to_bytes(proof["storageHash"]),
            storage_proofs=storage_proofs,
        )

    def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Receipt:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=timeout or RECEIPT_TIMEOUT
            )
        except TimeExhausted as exc:
            raise ChainAccessError(
                f"Transaction {tx_hash} not included: {exc}",
                details={"tx_hash": tx_hash},
            )
        except (requests.RequestException, Web3Exception, OSError) as exc:
            raise ChainAccessError(f"Receipt lookup for {tx_hash} failed: {exc}")
        return Receipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
        )


def _build_tx_params(w3: Web3, sender: str) -> Dict[str, Any]:
    base: Dict[str, Any] = {
        "from": to_checksum_address(sender),
        "nonce": w3.eth.get_transaction_count(to_checksum_address(sender)),
        "chainId": w3.eth.chain_id,
    }
    latest_block = w3.eth.get_block("latest")
    base_fee = latest_block.get("baseFeePerGas")
    if base_fee is None:
        # IBFT2 networks commonly run without EIP-1559
        base["gasPrice"] = w3.eth.gas_price
    else:
        priority_fee = int(base_fee // 10)
        base["maxPriorityFeePerGas"] = priority_fee
        base["maxFeePerGas"] = base_fee * 2 + priority_fee
    return base


class _Web3Contract:
    def __init__(self, w3: Web3, address: str, abi: list, account: Any = None):
        self.w3 = w3
        self.address = to_checksum_address(address)
        self.account = account
        self.contract = w3.eth.contract(address=self.address, abi=abi)

    def _call(self, name: str, *args: Any) -> Any:
        try:
            return getattr(self.contract.functions, name)(*args).call()
        except (requests.RequestException, Web3Exception, OSError) as exc:
            raise ChainAccessError(f"{name} call failed: {exc}", details={"contract": self.address})

    def _transact(self, sender: str, name: str, *args: Any) -> str:
        if self.account is None:
            raise ChainAccessError(f"No signing account bound to {self.address}")
        try:
            tx = getattr(self.contract.functions, name)(*args).build_transaction(
                _build_tx_params(self.w3, sender)
            )
            if "gas" not in tx:
                tx["gas"] = self.w3.eth.estimate_gas(tx)
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as exc:
            raise TransactionFailedError(
                f"{name} reverted: {exc}",
                revert_reason=str(exc),
                details={"contract": self.address},
            )
        except (requests.RequestException, Web3Exception, OSError) as exc:
            raise ChainAccessError(f"{name} submission failed: {exc}", details={"contract": self.address})
        logger.debug(
            "Submitted transaction",
            extra={"event": "web3.tx_submitted", "function": name, "tx_hash": Web3.to_hex(tx_hash)},
        )
        return Web3.to_hex(tx_hash)


def _counterparty_arg(counterparty: Counterparty) -> tuple:
    return (counterparty.client_id, counterparty.connection_id, (counterparty.prefix.key_prefix,))


def _version_arg(version: Version) -> tuple:
    return (version.identifier, list(version.features))


class Web3ProvableStore(_Web3Contract, ProvableStoreContract):
    def get_client_state(self, client_id: str) -> Optional[ClientState]:
        data, found = self._call("getClientState", client_id)
        return ClientState.from_dict(load_canonical(data)) if found else None

    def get_connection(self, connection_id: str) -> Optional[ConnectionEnd]:
        data, found = self._call("getConnection", connection_id)
        return ConnectionEnd.from_dict(load_canonical(data)) if found else None

    def client_state_commitment_slot(self, client_id: str) -> bytes:
        return bytes(self._call("clientStateCommitmentSlot", client_id))

    def connection_commitment_slot(self, connection_id: str) -> bytes:
        return bytes(self._call("connectionCommitmentSlot", connection_id))

    def commitment_prefix(self) -> bytes:
        return bytes(self._call("getCommitmentPrefix"))


class Web3IBCClient(_Web3Contract, IBCClientContract):
    def __init__(self, w3: Web3, address: str, store: Web3ProvableStore, account: Any = None):
        super().__init__(w3, address, IBC_CLIENT_ABI, account)
        self.store = store

    def create_client(
        self,
        sender: str,
        client_id: str,
        client_state: ClientState,
        consensus_state: ConsensusState,
    ) -> str:
        return self._transact(
            sender, "createClient", client_id, client_state.to_bytes(), consensus_state.to_bytes()
        )

    def update_client(self, sender: str, client_id: str, header: ClientHeader) -> str:
        header_arg = (
            header.besu_header_rlp,
            list(header.seals),
            header.trusted_height,
            header.account_state_proof,
        )
        return self._transact(sender, "updateClient", client_id, header_arg)

    def verify_client_state(
        self,
        client_id: str,
        height: int,
        prefix: bytes,
        counterparty_client_id: str,
        proof: bytes,
        target_state: ClientState,
    ) -> bool:
        local_state = self.store.get_client_state(client_id)
        if local_state is None:
            return False
        return bool(
            self._call(
                "verifyClientState",
                local_state.to_bytes(),
                client_id,
                height,
                prefix,
                counterparty_client_id,
                proof,
                target_state.to_bytes(),
            )
        )


class Web3IBCConnection(_Web3Contract, IBCConnectionContract):
    def connection_open_init(
        self,
        sender: str,
        client_id: str,
        connection_id: str,
        counterparty: Counterparty,
        delay_period: int,
    ) -> str:
        return self._transact(
            sender,
            "connectionOpenInit",
            client_id,
            connection_id,
            _counterparty_arg(counterparty),
            delay_period,
        )

    def connection_open_try(self, sender: str, msg: MsgConnectionOpenTry) -> str:
        msg_arg = (
            msg.connection_id,
            _counterparty_arg(msg.counterparty),
            msg.delay_period,
            msg.client_id,
            [_version_arg(v) for v in msg.counterparty_versions],
            msg.proof_init,
            msg.proof_height,
        )
        return self._transact(sender, "connectionOpenTry", msg_arg)

    def connection_open_ack(self, sender: str, msg: MsgConnectionOpenAck) -> str:
        msg_arg = (
            msg.connection_id,
            msg.counterparty_connection_id,
            _version_arg(msg.version),
            msg.proof_try,
            msg.proof_height,
        )
        return self._transact(sender, "connectionOpenAck", msg_arg)

    def connection_open_confirm(self, sender: str, msg: MsgConnectionOpenConfirm) -> str:
        msg_arg = (msg.connection_id, msg.proof_ack, msg.proof_height)
        return self._transact(sender, "connectionOpenConfirm", msg_arg)


def build_contract_set(w3: Web3, config: ContractConfig, account: Any) -> ContractSet:
    store = Web3ProvableStore(w3, config.provable_store_address, PROVABLE_STORE_ABI, account)
    return ContractSet(
        ibc_client=Web3IBCClient(w3, config.ibc_client_address, store, account),
        ibc_connection=Web3IBCConnection(w3, config.ibc_connection_address, IBC_CONNECTION_ABI, account),
        provable_store=store,
        provable_store_address=to_bytes(hexstr=config.provable_store_address),
    )


def connect_besu_chain(
    rpc_url: str,
    config: ContractConfig,
    mnemonic_phrase: str,
    timeout: float = RPC_TIMEOUT,
) -> Tuple[Web3ChainClient, ContractSet, Any]:
    """
    Wire a Besu node into (client, contracts, signer) for a ChainAgent.

    The signer is the first account derived from mnemonic_phrase.
    """
    client = Web3ChainClient(rpc_url=rpc_url, timeout=timeout)
    account = Account.from_key(private_key_from_mnemonic(mnemonic_phrase))
    contracts = build_contract_set(client.w3, config, account)
    logger.info(
        "Connected Besu chain",
        extra={"event": "web3.connected", "rpc_url": rpc_url, "sender": account.address},
    )
    return client, contracts, account
