import threading

import pytest

from crosslink.backends.simulated import SimulatedLedger
from crosslink.core.exceptions import (
    ChainAccessError,
    HeaderNotSyncedError,
    HeaderSyncTimeoutError,
    SyncCancelledError,
)
from crosslink.ibc.chain_agent import ChainAgent
from crosslink.ibc.header_sync import wait_for_progress


class TestWaitForProgress:
    def test_returns_first_newer_observation(self):
        heights = iter([1, 1, 2, 3])
        result = wait_for_progress(
            lambda: next(heights),
            lambda h: h > 1,
            timeout=1.0,
            poll_interval=0.001,
        )
        assert result == 2

    def test_times_out_with_last_height(self):
        with pytest.raises(HeaderSyncTimeoutError) as exc_info:
            wait_for_progress(
                lambda: 7,
                lambda h: h > 7,
                timeout=0.05,
                poll_interval=0.01,
                describe=lambda h: h,
            )
        assert exc_info.value.last_height == 7
        assert exc_info.value.timeout == 0.05

    def test_cancelled_before_first_fetch(self):
        cancel = threading.Event()
        cancel.set()
        calls = []

        def fetch():
            calls.append(1)
            return 0

        with pytest.raises(SyncCancelledError):
            wait_for_progress(fetch, lambda h: True, timeout=1.0, poll_interval=0.01, cancel=cancel)
        assert calls == []

    def test_cancel_interrupts_wait(self):
        cancel = threading.Event()
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            with pytest.raises(SyncCancelledError):
                wait_for_progress(lambda: 0, lambda h: False, timeout=5.0, poll_interval=1.0, cancel=cancel)
        finally:
            timer.cancel()

    def test_chain_access_error_is_not_retried(self):
        calls = []

        def fetch():
            calls.append(1)
            raise ChainAccessError("node down")

        with pytest.raises(ChainAccessError):
            wait_for_progress(fetch, lambda h: True, timeout=1.0, poll_interval=0.01)
        assert len(calls) == 1


class TestAgentSync:
    @pytest.fixture
    def idle_agent(self, signer, settings, metrics):
        ledger = SimulatedLedger(chain_id=3001, auto_mine=False, genesis_time=1_700_000_000)
        return ChainAgent(3001, ledger, ledger.contract_set(), signer, settings=settings, metrics=metrics), ledger

    def test_require_snapshot_before_sync(self, agent_a):
        with pytest.raises(HeaderNotSyncedError):
            agent_a.require_snapshot()
        assert agent_a.last_snapshot is None

    def test_snapshot_versions_and_heights_increase(self, agent_a):
        first = agent_a.sync()
        second = agent_a.update_header()
        assert first.version == 1
        assert second.version == 2
        assert second.height > first.height
        assert agent_a.last_snapshot is second
        assert agent_a.last_header() == second.header
        assert len(agent_a.last_validators()) == 4

    def test_first_sync_accepts_current_head(self, idle_agent):
        agent, ledger = idle_agent
        snapshot = agent.sync()
        assert snapshot.height == ledger.height

    def test_no_new_block_times_out(self, idle_agent):
        agent, _ = idle_agent
        agent.sync()
        with pytest.raises(HeaderSyncTimeoutError) as exc_info:
            agent.sync(timeout=0.05)
        assert exc_info.value.last_height == agent.last_snapshot.height

    def test_new_block_ends_wait(self, idle_agent):
        agent, ledger = idle_agent
        before = agent.sync()
        ledger.mine()
        after = agent.sync(timeout=1.0)
        assert after.height == before.height + 1

    def test_unreachable_node_raises_chain_access(self, agent_a, ledger_a):
        ledger_a.set_reachable(False)
        with pytest.raises(ChainAccessError):
            agent_a.sync()
        assert agent_a.last_snapshot is None

    def test_sync_duration_is_observed(self, agent_a, metrics):
        agent_a.sync()
        count = metrics.registry.get_sample_value(
            "crosslink_header_sync_seconds_count", {"chain_id": "1001"}
        )
        assert count == 1.0
