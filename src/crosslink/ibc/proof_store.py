"""
Storage proof retrieval for a counterparty verifier.

Proofs are always taken at the height the verifier's light client already
trusts (its client state latest_height), never at the local chain tip, so the
verifier can check them against a consensus state it holds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from crosslink.blockchain.ibc_types import ContractState, Proof, to_hex
from crosslink.core.exceptions import InvalidStorageKeyError, ProofNotFoundError

if TYPE_CHECKING:
    from crosslink.ibc.chain_agent import ChainAgent

logger = logging.getLogger(__name__)


class ProofStoreAccessor:
    """Serves provable-store proofs of the owning chain."""

    def __init__(self, agent: "ChainAgent"):
        self.agent = agent

    def get_contract_state(
        self,
        counterparty: "ChainAgent",
        counterparty_client_id: str,
        storage_keys: Sequence[str],
    ) -> ContractState:
        """Fetch the local provable store state at the counterparty client's trusted height."""
        height = counterparty.get_client_state(counterparty_client_id).latest_height
        return self.agent.client.get_contract_state(
            self.agent.provable_store_address,
            list(storage_keys),
            height,
        )

    def query_proof(
        self,
        counterparty: "ChainAgent",
        counterparty_client_id: str,
        storage_key: str,
    ) -> Proof:
        """
        Produce an inclusion proof of storage_key for counterparty.

        Args:
            counterparty: Agent whose light client will verify the proof
            counterparty_client_id: Client on counterparty tracking this chain
            storage_key: 0x-prefixed hex storage slot

        Returns:
            Proof bound to the counterparty client's latest trusted height

        Raises:
            InvalidStorageKeyError: storage_key is not 0x-prefixed (no chain access happens)
            ProofNotFoundError: the slot holds no commitment at that height
        """
        if not isinstance(storage_key, str) or not storage_key.startswith("0x"):
            raise InvalidStorageKeyError(
                "storageKey must be hex string",
                details={"storage_key": storage_key},
            )

        state = self.get_contract_state(counterparty, counterparty_client_id, [storage_key])
        height = state.parsed_header.number
        if not state.storage_proofs or state.storage_proofs[0].is_empty:
            self.agent.metrics.record_proof_query(self.agent.chain_id_string(), "not_found")
            logger.info(
                "Commitment slot empty at proof height",
                extra={
                    "event": "proof.not_found",
                    "chain_id": self.agent.chain_id,
                    "storage_key": storage_key,
                    "height": height,
                },
            )
            raise ProofNotFoundError(
                f"No commitment at {storage_key} on chain {self.agent.chain_id} at height {height}",
                storage_key=storage_key,
                height=height,
            )

        self.agent.metrics.record_proof_query(self.agent.chain_id_string(), "ok")
        logger.debug(
            "Served storage proof",
            extra={
                "event": "proof.served",
                "chain_id": self.agent.chain_id,
                "storage_key": storage_key,
                "height": height,
            },
        )
        return Proof(height=height, data=state.storage_proof_bytes(0))

    def connection_state_commitment_slot(self, connection_id: str) -> str:
        slot = self.agent.contracts.provable_store.connection_commitment_slot(connection_id)
        return to_hex(slot)

    def client_state_commitment_slot(self, client_id: str) -> str:
        slot = self.agent.contracts.provable_store.client_state_commitment_slot(client_id)
        return to_hex(slot)
