"""
Ledger backends implementing the crosslink chain interfaces.

- simulated: in-process IBFT2-like ledger with IBC contracts
- web3_backend: Hyperledger Besu over JSON-RPC
"""
