from crosslink.blockchain.merkle import (
    EMPTY_ROOT,
    MerkleTree,
    client_state_path,
    commitment_slot,
    connection_path,
    decode_proof,
    encode_proof,
)
from crosslink.core.crypto_utils import keccak256


def _entries(count):
    return {f"0x{i:064x}": f"0x{(i * 7):064x}" for i in range(count)}


def test_root_independent_of_insertion_order():
    entries = _entries(5)
    reversed_entries = dict(reversed(list(entries.items())))
    assert MerkleTree(entries).get_root() == MerkleTree(reversed_entries).get_root()


def test_every_key_proves_with_odd_leaf_count():
    entries = _entries(7)
    tree = MerkleTree(entries)
    for key, value in entries.items():
        proof = tree.generate_merkle_proof(key)
        assert MerkleTree.verify_merkle_proof(key, value, tree.get_root(), proof) is True


def test_single_leaf_tree_has_empty_path():
    tree = MerkleTree({"0x01": "0x02"})
    assert tree.generate_merkle_proof("0x01") == []
    assert MerkleTree.verify_merkle_proof("0x01", "0x02", tree.get_root(), []) is True


def test_tampered_value_fails_verification():
    entries = _entries(4)
    tree = MerkleTree(entries)
    key = next(iter(entries))
    proof = tree.generate_merkle_proof(key)
    assert MerkleTree.verify_merkle_proof(key, "0xdead", tree.get_root(), proof) is False


def test_empty_tree_root():
    assert MerkleTree({}).get_root() == EMPTY_ROOT


def test_unknown_key_raises():
    tree = MerkleTree(_entries(2))
    try:
        tree.generate_merkle_proof("0xmissing")
    except KeyError:
        pass
    else:
        raise AssertionError("expected KeyError")


def test_proof_bytes_decode():
    tree = MerkleTree(_entries(3))
    key, value = next(iter(_entries(3).items()))
    data = encode_proof(key, value, tree.generate_merkle_proof(key))
    decoded = decode_proof(data)
    assert decoded["key"] == key
    assert decoded["value"] == value
    assert MerkleTree.verify_merkle_proof(key, value, tree.get_root(), decoded["path"])


def test_decode_proof_rejects_garbage():
    assert decode_proof(b"\xf8\x01") is None
    assert decode_proof(b'{"key": "0x01"}') is None


def test_commitment_slot_is_keccak_of_prefix_and_path():
    assert commitment_slot(b"ibc", connection_path("connection-0-1")) == keccak256(
        b"ibcconnections/connection-0-1"
    )
    assert client_state_path("BesuIBFT2-0-1") == "clients/BesuIBFT2-0-1/clientState"
    assert commitment_slot(b"ibc", "a") != commitment_slot(b"other", "a")
