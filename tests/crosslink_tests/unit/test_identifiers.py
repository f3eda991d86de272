import re

from crosslink.ibc.identifiers import IdentifierAllocator


def frozen_clock():
    return 1_700_000_000.0


def test_client_ids_keep_format_and_never_repeat():
    ids = IdentifierAllocator(clock=frozen_clock)
    issued = [ids.next_client_id("BesuIBFT2") for _ in range(50)]
    assert len(set(issued)) == 50
    assert issued[0] == "BesuIBFT2-0-1700000000"
    assert all(re.fullmatch(r"BesuIBFT2-\d+-1700000000", i) for i in issued)


def test_sequence_is_strictly_increasing():
    ids = IdentifierAllocator(clock=frozen_clock)
    sequences = [int(ids.next_connection_id().split("-")[1]) for _ in range(5)]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == 5


def test_reserved_identifier_is_skipped():
    ids = IdentifierAllocator(clock=frozen_clock)
    ids.reserve("connection-0-1700000000")
    assert ids.next_connection_id() == "connection-1-1700000000"
    assert ids.is_issued("connection-1-1700000000")


def test_client_and_connection_sequences_are_independent():
    ids = IdentifierAllocator(clock=frozen_clock)
    ids.next_client_id("BesuIBFT2")
    assert ids.next_connection_id() == "connection-0-1700000000"


def test_agent_bookkeeping(agent_a):
    client_id = agent_a.new_client_id()
    assert client_id.startswith("BesuIBFT2-0-")
    assert agent_a.client_ids == [client_id]

    first = agent_a.construct_next_test_connection(client_id, "peer")
    second = agent_a.construct_next_test_connection(client_id, "peer")
    assert first.id != second.id
    assert agent_a.connections == []

    added = agent_a.add_test_connection(client_id, "peer")
    assert agent_a.connections == [added]
    assert added.next_channel_version == "ics20-1"
    assert added.counterparty_client_id == "peer"
