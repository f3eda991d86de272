"""
IBC client and connection handshake orchestration.

- ChainAgent: per-ledger facade owning identity, header snapshots and ids
- LightClientManager: create/update/verify light clients
- ConnectionHandshakeCoordinator: Init -> Try -> Ack -> Confirm
- ProofStoreAccessor: storage proofs at the verifier's trusted height
"""

from crosslink.blockchain.versions import SUPPORTED_VERSIONS, negotiate_version
from crosslink.ibc.chain_agent import ChainAgent
from crosslink.ibc.handshake import ConnectionHandshakeCoordinator
from crosslink.ibc.light_client_manager import LightClientManager
from crosslink.ibc.proof_store import ProofStoreAccessor

__all__ = [
    "ChainAgent",
    "ConnectionHandshakeCoordinator",
    "LightClientManager",
    "ProofStoreAccessor",
    "SUPPORTED_VERSIONS",
    "negotiate_version",
]
