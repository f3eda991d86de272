"""
Light client lifecycle on the local chain.

Creates and updates the local chain's light client of a counterparty from an
explicitly synchronized header snapshot of that counterparty, and checks that
the counterparty's committed client state about this chain verifies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from crosslink.blockchain.ibc_types import (
    ClientHeader,
    ClientState,
    ConsensusState,
    HeaderSnapshot,
    MsgCreateClient,
    Proof,
)
from crosslink.core.exceptions import ClientNotFoundError, CrosslinkError

if TYPE_CHECKING:
    from crosslink.ibc.chain_agent import ChainAgent

logger = logging.getLogger(__name__)


class LightClientManager:
    """Creates, updates and queries the light clients hosted by one chain."""

    def __init__(self, agent: "ChainAgent"):
        self.agent = agent

    # ----- message construction -----

    def construct_msg_create_client(
        self,
        counterparty_chain_id: str,
        store_address: bytes,
        snapshot: HeaderSnapshot,
    ) -> MsgCreateClient:
        header = snapshot.header
        client_state = ClientState(
            chain_id=counterparty_chain_id,
            provable_store_address=store_address,
            latest_height=header.number,
        )
        consensus_state = ConsensusState(
            timestamp=header.timestamp,
            root=snapshot.state.storage_hash,
            validators=tuple(header.validators),
        )
        return MsgCreateClient(client_state=client_state, consensus_state=consensus_state)

    def construct_msg_update_client(self, client_id: str, snapshot: HeaderSnapshot) -> ClientHeader:
        trusted_height = self.get_client_state(client_id).latest_height
        return ClientHeader(
            besu_header_rlp=snapshot.state.sealing_header,
            seals=tuple(snapshot.state.commit_seals),
            trusted_height=trusted_height,
            account_state_proof=snapshot.state.account_proof_bytes(),
        )

    # ----- transactions -----

    def create_client(
        self,
        counterparty: "ChainAgent",
        client_id: str,
        snapshot: Optional[HeaderSnapshot] = None,
    ) -> None:
        """
        Create a light client of counterparty on the local chain.

        Args:
            counterparty: Agent of the chain to track
            client_id: Identifier for the new client
            snapshot: Counterparty header to trust initially; defaults to its last sync

        Raises:
            HeaderNotSyncedError: counterparty was never synchronized and no snapshot given
            TransactionFailedError: the chain rejected the creation
        """
        snapshot = snapshot or counterparty.require_snapshot()
        msg = self.construct_msg_create_client(
            counterparty.chain_id_string(),
            counterparty.provable_store_address,
            snapshot,
        )
        ibc_client = self.agent.contracts.ibc_client
        self._run(
            "create_client",
            client_id,
            lambda: ibc_client.create_client(
                self.agent.sender, client_id, msg.client_state, msg.consensus_state
            ),
            height=snapshot.height,
        )

    def update_client(
        self,
        counterparty: "ChainAgent",
        client_id: str,
        snapshot: Optional[HeaderSnapshot] = None,
    ) -> None:
        """Advance client_id to counterparty's snapshot (default: its last sync)."""
        snapshot = snapshot or counterparty.require_snapshot()
        header = self.construct_msg_update_client(client_id, snapshot)
        ibc_client = self.agent.contracts.ibc_client
        self._run(
            "update_client",
            client_id,
            lambda: ibc_client.update_client(self.agent.sender, client_id, header),
            height=snapshot.height,
            trusted_height=header.trusted_height,
        )

    def _run(self, operation: str, client_id: str, submit, **fields) -> None:
        chain_id = self.agent.chain_id_string()
        try:
            self.agent.submit_and_wait(f"{operation} {client_id}", submit)
        except CrosslinkError:
            self.agent.metrics.record_client_operation(chain_id, operation, ok=False)
            raise
        self.agent.metrics.record_client_operation(chain_id, operation, ok=True)
        logger.info(
            "Light client %s", operation.replace("_", " "),
            extra={
                "event": f"light_client.{operation}",
                "chain_id": self.agent.chain_id,
                "client_id": client_id,
                **fields,
            },
        )

    # ----- queries -----

    def get_client_state(self, client_id: str) -> ClientState:
        state = self.agent.contracts.provable_store.get_client_state(client_id)
        if state is None:
            raise ClientNotFoundError(
                f"Client {client_id} not found on chain {self.agent.chain_id}",
                details={"client_id": client_id},
            )
        return state

    def verify_client_state(
        self,
        client_id: str,
        counterparty: "ChainAgent",
        counterparty_client_id: str,
    ) -> bool:
        """
        Check that counterparty's client of this chain is committed as claimed.

        Reads the counterparty's committed client state, refreshes both headers,
        moves the local client to the counterparty's new header, and verifies
        the counterparty's proof of that commitment on the local chain.

        Returns:
            True when the proof verifies, False on a genuine mismatch
        """
        target_state = counterparty.get_client_state(counterparty_client_id)

        self.agent.sync()
        counterparty.sync()
        self.update_client(counterparty, client_id)

        key = counterparty.proofs.client_state_commitment_slot(counterparty_client_id)
        proof = counterparty.query_proof(self.agent, client_id, key)
        return self.verify_client_state_proof(
            client_id, proof, counterparty_client_id, target_state, counterparty.commitment_prefix()
        )

    def verify_client_state_proof(
        self,
        client_id: str,
        proof: Proof,
        counterparty_client_id: str,
        target_state: ClientState,
        prefix: bytes,
    ) -> bool:
        # the local client must exist before asking the chain to verify against it
        self.get_client_state(client_id)
        ok = self.agent.contracts.ibc_client.verify_client_state(
            client_id,
            proof.height,
            prefix,
            counterparty_client_id,
            proof.data,
            target_state,
        )
        logger.info(
            "Client state verification %s",
            "passed" if ok else "failed",
            extra={
                "event": "light_client.verify_client_state",
                "chain_id": self.agent.chain_id,
                "client_id": client_id,
                "counterparty_client_id": counterparty_client_id,
                "height": proof.height,
                "ok": ok,
            },
        )
        return ok
