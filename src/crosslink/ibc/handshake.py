"""
Connection handshake coordination.

Drives ConnOpenInit -> ConnOpenTry -> ConnOpenAck -> ConnOpenConfirm from the
local side. Every step after Init proves the counterparty's previous step:
the counterparty header is refreshed, the local light client is moved to it,
and the counterparty serves a proof of its connection commitment at exactly
that trusted height. A step attempted before its counterparty prerequisite
therefore fails with ProofNotFoundError.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Dict, List, Tuple

from crosslink.blockchain.ibc_types import (
    ConnectionState,
    Counterparty,
    MerklePrefix,
    MsgConnectionOpenAck,
    MsgConnectionOpenConfirm,
    MsgConnectionOpenTry,
    Proof,
    TestConnection,
)
from crosslink.blockchain.versions import SUPPORTED_VERSIONS, negotiate_version
from crosslink.core.exceptions import (
    ConfigurationError,
    CrosslinkError,
    HandshakeStateError,
)

if TYPE_CHECKING:
    from crosslink.ibc.chain_agent import ChainAgent

logger = logging.getLogger(__name__)

# Valid local connection end transitions
STATE_TRANSITIONS: Dict[ConnectionState, List[ConnectionState]] = {
    ConnectionState.UNINITIALIZED: [ConnectionState.INIT, ConnectionState.TRYOPEN],
    ConnectionState.INIT: [ConnectionState.OPEN],
    ConnectionState.TRYOPEN: [ConnectionState.OPEN],
    ConnectionState.OPEN: [],  # Terminal state
}

# step -> (required local state, resulting local state)
HANDSHAKE_STEPS: Dict[str, Tuple[ConnectionState, ConnectionState]] = {
    "init": (ConnectionState.UNINITIALIZED, ConnectionState.INIT),
    "try": (ConnectionState.UNINITIALIZED, ConnectionState.TRYOPEN),
    "ack": (ConnectionState.INIT, ConnectionState.OPEN),
    "confirm": (ConnectionState.TRYOPEN, ConnectionState.OPEN),
}


class ConnectionHandshakeCoordinator:
    """Submits the four connection handshake steps for one chain."""

    def __init__(self, agent: "ChainAgent"):
        self.agent = agent

    def connection_open_init(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        def run() -> None:
            self._require_local_state("init", connection)
            self.agent.get_client_state(connection.client_id)
            self.agent.submit_and_wait(
                f"connection open init {connection.id}",
                lambda: self.agent.contracts.ibc_connection.connection_open_init(
                    self.agent.sender,
                    connection.client_id,
                    connection.id,
                    Counterparty(
                        client_id=connection.counterparty_client_id,
                        connection_id="",
                        prefix=MerklePrefix(counterparty.commitment_prefix()),
                    ),
                    self.agent.settings.delay_period,
                ),
            )

        self._step("init", connection, counterparty_connection, run)

    def connection_open_try(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        def run() -> None:
            self._require_local_state("try", connection)
            proof = self._prove_counterparty(counterparty, connection, counterparty_connection)
            msg = MsgConnectionOpenTry(
                connection_id=connection.id,
                counterparty=Counterparty(
                    client_id=counterparty_connection.client_id,
                    connection_id=counterparty_connection.id,
                    prefix=MerklePrefix(counterparty.commitment_prefix()),
                ),
                delay_period=self.agent.settings.delay_period,
                client_id=connection.client_id,
                counterparty_versions=SUPPORTED_VERSIONS,
                proof_height=proof.height,
                proof_init=proof.data,
            )
            self.agent.submit_and_wait(
                f"connection open try {connection.id}",
                lambda: self.agent.contracts.ibc_connection.connection_open_try(self.agent.sender, msg),
            )

        self._step("try", connection, counterparty_connection, run)

    def connection_open_ack(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        def run() -> None:
            local_end = self._require_local_state("ack", connection)
            version = negotiate_version(SUPPORTED_VERSIONS, local_end.versions)
            proof = self._prove_counterparty(counterparty, connection, counterparty_connection)
            msg = MsgConnectionOpenAck(
                connection_id=connection.id,
                counterparty_connection_id=counterparty_connection.id,
                version=version,
                proof_try=proof.data,
                proof_height=proof.height,
            )
            self.agent.submit_and_wait(
                f"connection open ack {connection.id}",
                lambda: self.agent.contracts.ibc_connection.connection_open_ack(self.agent.sender, msg),
            )

        self._step("ack", connection, counterparty_connection, run)

    def connection_open_confirm(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> None:
        def run() -> None:
            self._require_local_state("confirm", connection)
            proof = self._prove_counterparty(counterparty, connection, counterparty_connection)
            msg = MsgConnectionOpenConfirm(
                connection_id=connection.id,
                proof_ack=proof.data,
                proof_height=proof.height,
            )
            self.agent.submit_and_wait(
                f"connection open confirm {connection.id}",
                lambda: self.agent.contracts.ibc_connection.connection_open_confirm(self.agent.sender, msg),
            )

        self._step("confirm", connection, counterparty_connection, run)

    # ----- helpers -----

    def _prove_counterparty(
        self,
        counterparty: "ChainAgent",
        connection: TestConnection,
        counterparty_connection: TestConnection,
    ) -> Proof:
        """Refresh the counterparty header, trust it locally, and fetch its connection proof."""
        # the slot is computed locally and proven remotely, so both stores must share one prefix
        local_prefix = self.agent.commitment_prefix()
        counterparty_prefix = counterparty.commitment_prefix()
        if local_prefix != counterparty_prefix:
            raise ConfigurationError(
                "Commitment prefixes of the two provable stores differ",
                details={
                    "prefix": local_prefix.decode(errors="replace"),
                    "counterparty_prefix": counterparty_prefix.decode(errors="replace"),
                },
            )
        counterparty.sync()
        self.agent.update_client(counterparty, connection.client_id)
        slot = self.agent.connection_state_commitment_slot(counterparty_connection.id)
        return counterparty.query_proof(self.agent, connection.client_id, slot)

    def _require_local_state(self, step: str, connection: TestConnection):
        required, target = HANDSHAKE_STEPS[step]
        local_end = self.agent.contracts.provable_store.get_connection(connection.id)
        current = local_end.state if local_end is not None else ConnectionState.UNINITIALIZED
        if current != required or target not in STATE_TRANSITIONS[current]:
            raise HandshakeStateError(
                f"Connection {connection.id} is {current.name}, {step} requires {required.name}",
                details={
                    "connection_id": connection.id,
                    "step": step,
                    "state": current.name,
                    "required": required.name,
                },
            )
        return local_end

    def _step(
        self,
        step: str,
        connection: TestConnection,
        counterparty_connection: TestConnection,
        run: Callable[[], None],
    ) -> None:
        chain_id = self.agent.chain_id_string()
        try:
            run()
        except CrosslinkError as exc:
            self.agent.metrics.record_handshake_step(chain_id, step, ok=False)
            logger.warning(
                "Connection handshake step failed",
                extra={
                    "event": f"handshake.{step}_failed",
                    "chain_id": self.agent.chain_id,
                    "connection_id": connection.id,
                    "counterparty_connection_id": counterparty_connection.id,
                    "error_type": type(exc).__name__,
                },
            )
            raise
        self.agent.metrics.record_handshake_step(chain_id, step, ok=True)
        logger.info(
            "Connection handshake step completed",
            extra={
                "event": f"handshake.{step}",
                "chain_id": self.agent.chain_id,
                "connection_id": connection.id,
                "counterparty_connection_id": counterparty_connection.id,
            },
        )
