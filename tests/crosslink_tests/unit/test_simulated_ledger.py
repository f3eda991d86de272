"""
Tests for the in-process IBFT2-like ledger and its IBC contracts.
"""

import pytest

from crosslink.backends.simulated import (
    ContractRevert,
    SimulatedLedger,
    decode_sealing_header,
    quorum_size,
)
from crosslink.blockchain.ibc_types import ClientHeader, ClientState, ConsensusState, to_hex
from crosslink.blockchain.merkle import MerkleTree, decode_proof
from crosslink.core.crypto_utils import keccak256, verify_signature
from crosslink.core.exceptions import ChainAccessError, TransactionFailedError

SENDER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


@pytest.fixture
def ledger():
    return SimulatedLedger(chain_id=4001, auto_mine=False, genesis_time=1_700_000_000)


@pytest.mark.parametrize("validators,quorum", [(1, 1), (3, 2), (4, 3), (7, 5), (10, 7)])
def test_quorum_size(validators, quorum):
    assert quorum_size(validators) == quorum


class TestBlocks:
    def test_genesis_and_mining(self, ledger):
        assert ledger.height == 0
        block = ledger.mine()
        assert block.number == 1
        assert block.timestamp == 1_700_000_001

    def test_seals_sign_the_sealing_header(self, ledger):
        state = ledger.get_contract_state(ledger.provable_store_address, [])
        header_hash = keccak256(state.sealing_header)
        assert header_hash == state.parsed_header.hash
        assert len(state.commit_seals) == 4
        for seal, validator in zip(state.commit_seals, state.last_validators()):
            assert verify_signature(validator.hex(), header_hash, seal)

    def test_account_proof_binds_storage_root(self, ledger):
        state = ledger.get_contract_state(ledger.provable_store_address, [])
        account = decode_proof(state.account_proof)
        assert account["key"] == to_hex(ledger.provable_store_address)
        assert bytes.fromhex(account["value"]) == state.storage_hash
        assert MerkleTree.verify_merkle_proof(
            account["key"], account["value"], state.parsed_header.root.hex(), account["path"]
        )

    def test_historical_state_is_preserved(self, ledger):
        ledger.transact(SENDER, "commit", lambda: ledger.commit("some/path", b"payload"))
        slot = to_hex(ledger.slot_for("some/path"))
        before = ledger.get_contract_state(ledger.provable_store_address, [slot], height=0)
        after = ledger.get_contract_state(ledger.provable_store_address, [slot], height=1)
        assert before.storage_proofs[0].is_empty
        assert not after.storage_proofs[0].is_empty
        assert decode_sealing_header(after.sealing_header)["number"] == 1

    def test_future_height_is_an_access_error(self, ledger):
        with pytest.raises(ChainAccessError):
            ledger.get_contract_state(ledger.provable_store_address, [], height=99)

    def test_unknown_account(self, ledger):
        with pytest.raises(ChainAccessError):
            ledger.get_contract_state(b"\x99" * 20, [])

    def test_auto_mine_advances_latest(self):
        busy = SimulatedLedger(chain_id=4002)
        first = busy.get_contract_state(busy.provable_store_address, [])
        second = busy.get_contract_state(busy.provable_store_address, [])
        assert second.height == first.height + 1

    def test_invalid_sealer_index(self, ledger):
        with pytest.raises(ValueError):
            ledger.set_sealing_validators([4])


class TestTransactions:
    def test_revert_rolls_back_and_reports_reason(self, ledger):
        def apply():
            ledger.commit("partial/write", b"x")
            raise ContractRevert("nope")

        tx_hash = ledger.transact(SENDER, "failing", apply)
        receipt = ledger.wait_for_receipt(tx_hash)
        assert receipt.status == 0
        assert receipt.revert_reason == "nope"
        assert to_hex(ledger.slot_for("partial/write")) not in ledger._storage[ledger.provable_store_address]

    def test_unknown_receipt(self, ledger):
        with pytest.raises(ChainAccessError):
            ledger.wait_for_receipt("0x" + "00" * 32)


class TestLightClientContract:
    def _create(self, host, tracked, client_id="BesuIBFT2-0-1"):
        state = tracked.get_contract_state(tracked.provable_store_address, [])
        client_state = ClientState(str(tracked.chain_id), tracked.provable_store_address, state.height)
        consensus = ConsensusState(state.parsed_header.timestamp, state.storage_hash, state.parsed_header.validators)
        contracts = host.contract_set()
        receipt = host.wait_for_receipt(
            contracts.ibc_client.create_client(SENDER, client_id, client_state, consensus)
        )
        assert receipt.succeeded
        return contracts, state

    def _header(self, tracked, trusted_height):
        state = tracked.get_contract_state(tracked.provable_store_address, [])
        return ClientHeader(state.sealing_header, state.commit_seals, trusted_height, state.account_proof), state

    def test_update_with_quorum(self, ledger):
        tracked = SimulatedLedger(chain_id=4003)
        contracts, created = self._create(ledger, tracked)
        header, state = self._header(tracked, created.height)
        receipt = ledger.wait_for_receipt(contracts.ibc_client.update_client(SENDER, "BesuIBFT2-0-1", header))
        assert receipt.succeeded
        assert ledger.client_states["BesuIBFT2-0-1"].latest_height == state.height

    def test_update_without_quorum_reverts(self, ledger):
        tracked = SimulatedLedger(chain_id=4004)
        contracts, created = self._create(ledger, tracked)
        tracked.set_sealing_validators([0, 1])
        header, _ = self._header(tracked, created.height)
        receipt = ledger.wait_for_receipt(contracts.ibc_client.update_client(SENDER, "BesuIBFT2-0-1", header))
        assert receipt.status == 0
        assert "insufficient commit seals" in receipt.revert_reason

    def test_duplicate_seals_are_counted_once(self, ledger):
        tracked = SimulatedLedger(chain_id=4005)
        contracts, created = self._create(ledger, tracked)
        tracked.set_sealing_validators([0])
        header, state = self._header(tracked, created.height)
        header = ClientHeader(
            header.besu_header_rlp, state.commit_seals * 4, header.trusted_height, header.account_state_proof
        )
        receipt = ledger.wait_for_receipt(contracts.ibc_client.update_client(SENDER, "BesuIBFT2-0-1", header))
        assert receipt.status == 0

    def test_stale_header_reverts(self, ledger):
        tracked = SimulatedLedger(chain_id=4006)
        contracts, created = self._create(ledger, tracked)
        stale = tracked.get_contract_state(tracked.provable_store_address, [], height=created.height)
        header = ClientHeader(stale.sealing_header, stale.commit_seals, created.height, stale.account_proof)
        receipt = ledger.wait_for_receipt(contracts.ibc_client.update_client(SENDER, "BesuIBFT2-0-1", header))
        assert receipt.status == 0
        assert "must be greater" in receipt.revert_reason

    def test_foreign_account_proof_reverts(self, ledger):
        tracked = SimulatedLedger(chain_id=4007)
        other = SimulatedLedger(chain_id=4008)
        contracts, created = self._create(ledger, tracked)
        header, _ = self._header(tracked, created.height)
        foreign = other.get_contract_state(other.provable_store_address, [])
        header = ClientHeader(
            header.besu_header_rlp, header.seals, header.trusted_height, foreign.account_proof
        )
        receipt = ledger.wait_for_receipt(contracts.ibc_client.update_client(SENDER, "BesuIBFT2-0-1", header))
        assert receipt.status == 0

    def test_duplicate_create_reverts_through_agent(self, synced_agents, clients):
        agent_a, agent_b = synced_agents
        client_a, _ = clients
        with pytest.raises(TransactionFailedError) as exc_info:
            agent_a.create_client(agent_b, client_a)
        assert "already exists" in exc_info.value.revert_reason
