"""
crosslink - IBC light client and connection handshake harness

Drives two EVM ledgers (Hyperledger Besu IBFT2 or the in-process simulated
ledger) through light client creation/updates and the connection handshake,
with storage proofs anchored at the heights each verifier already trusts.

Main Components:
- ibc: Chain agents, light client manager, handshake coordinator, proof store
- blockchain: IBC value types and Merkle commitments
- backends: Simulated ledger and web3 JSON-RPC backend
- core: Configuration, exceptions, logging, metrics, crypto and key derivation
"""

__version__ = "0.1.0"
__author__ = "crosslink developers"

__all__ = []
