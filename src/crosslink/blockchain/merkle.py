"""
Merkle commitments over key/value storage.

MerkleTree hashes {"key", "value"} leaves with SHA-256 and combines sorted
pairs, so a proof is just the list of sibling hashes. Commitment slots and
committed values use keccak-256 the way an EVM provable store does.
"""

import hashlib
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple

from crosslink.core.crypto_utils import keccak256

EMPTY_ROOT = hashlib.sha256(b"").hexdigest()

ProofPath = List[Tuple[str, str]]


class MerkleTree:
    def __init__(self, entries: Mapping[str, str]):
        # leaves are ordered by key so both sides build the same tree
        self.entries = dict(sorted(entries.items()))
        self.data_leaves = [
            self._hash_leaf({"key": key, "value": value}) for key, value in self.entries.items()
        ]
        self.tree = self._build_tree(self.data_leaves) if self.data_leaves else []
        self.root = self.tree[-1][0] if self.tree else EMPTY_ROOT

    @staticmethod
    def _hash_leaf(leaf_data: Dict[str, Any]) -> str:
        return hashlib.sha256(json.dumps(leaf_data, sort_keys=True).encode()).hexdigest()

    @staticmethod
    def _hash_pair(hash1: str, hash2: str) -> str:
        if hash1 > hash2:
            hash1, hash2 = hash2, hash1
        return hashlib.sha256((hash1 + hash2).encode()).hexdigest()

    def _build_tree(self, leaves: List[str]) -> List[List[str]]:
        tree = [leaves]
        current_level = leaves
        while len(current_level) > 1:
            next_level = []
            for i in range(0, len(current_level), 2):
                hash1 = current_level[i]
                hash2 = current_level[i + 1] if i + 1 < len(current_level) else hash1
                next_level.append(self._hash_pair(hash1, hash2))
            tree.append(next_level)
            current_level = next_level
        return tree

    def get_root(self) -> str:
        return self.root

    def generate_merkle_proof(self, key: str) -> ProofPath:
        if key not in self.entries:
            raise KeyError(f"Key {key} not found in the Merkle tree.")

        proof: ProofPath = []
        leaf_index = list(self.entries).index(key)

        for level in self.tree[:-1]:
            is_left_node = leaf_index % 2 == 0
            sibling_index = leaf_index + 1 if is_left_node else leaf_index - 1
            if sibling_index < len(level):
                proof.append((level[sibling_index], "right" if is_left_node else "left"))
            else:
                # odd level: the last node was paired with itself
                proof.append((level[leaf_index], "right"))
            leaf_index //= 2

        return proof

    @staticmethod
    def verify_merkle_proof(key: str, value: str, merkle_root: str, proof: ProofPath) -> bool:
        current_hash = MerkleTree._hash_leaf({"key": key, "value": value})
        for sibling_hash, _position in proof:
            current_hash = MerkleTree._hash_pair(sibling_hash, current_hash)
        return current_hash == merkle_root


def encode_proof(key: str, value: str, path: ProofPath) -> bytes:
    """Serialize an inclusion proof to the opaque bytes handed to a verifier."""
    payload = {"key": key, "value": value, "path": [list(step) for step in path]}
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


def decode_proof(data: bytes) -> Optional[Dict[str, Any]]:
    """Parse proof bytes produced by encode_proof; None when malformed."""
    try:
        payload = json.loads(data.decode())
        return {
            "key": str(payload["key"]),
            "value": str(payload["value"]),
            "path": [(str(sibling), str(position)) for sibling, position in payload["path"]],
        }
    except (ValueError, KeyError, TypeError, UnicodeDecodeError):
        return None


# Commitment paths and slots


def client_state_path(client_id: str) -> str:
    return f"clients/{client_id}/clientState"


def connection_path(connection_id: str) -> str:
    return f"connections/{connection_id}"


def commitment_slot(prefix: bytes, path: str) -> bytes:
    """keccak256(prefix || path): storage slot of a commitment."""
    return keccak256(prefix + path.encode())


def commitment_value(data: bytes) -> bytes:
    return keccak256(data)
