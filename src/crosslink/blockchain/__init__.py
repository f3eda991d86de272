"""
crosslink blockchain module

IBC value types (client/consensus states, connection ends, proofs) and the
Merkle commitments used to prove them.
"""

__all__ = []
