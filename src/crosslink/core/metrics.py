"""
crosslink - Prometheus metrics

Counters and histograms for client operations, handshake steps, proof queries
and header synchronization. One collector is shared per registry; agents use
the process-wide collector unless handed their own.
"""

from __future__ import annotations

import threading
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class HandshakeMetrics:
    """Metric families recorded by chain agents."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.client_operations_total = Counter(
            "crosslink_client_operations_total",
            "Light client operations submitted",
            ["chain_id", "operation", "outcome"],
            registry=self.registry,
        )

        self.handshake_steps_total = Counter(
            "crosslink_handshake_steps_total",
            "Connection handshake steps submitted",
            ["chain_id", "step", "outcome"],
            registry=self.registry,
        )

        self.proof_queries_total = Counter(
            "crosslink_proof_queries_total",
            "Storage proof queries served to a counterparty",
            ["chain_id", "outcome"],
            registry=self.registry,
        )

        self.header_sync_seconds = Histogram(
            "crosslink_header_sync_seconds",
            "Time spent waiting for a newer header",
            ["chain_id"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30],
            registry=self.registry,
        )

    def record_client_operation(self, chain_id: str, operation: str, ok: bool) -> None:
        self.client_operations_total.labels(
            chain_id=chain_id, operation=operation, outcome="ok" if ok else "error"
        ).inc()

    def record_handshake_step(self, chain_id: str, step: str, ok: bool) -> None:
        self.handshake_steps_total.labels(
            chain_id=chain_id, step=step, outcome="ok" if ok else "error"
        ).inc()

    def record_proof_query(self, chain_id: str, outcome: str) -> None:
        self.proof_queries_total.labels(chain_id=chain_id, outcome=outcome).inc()

    def observe_header_sync(self, chain_id: str, seconds: float) -> None:
        self.header_sync_seconds.labels(chain_id=chain_id).observe(seconds)

    def export_prometheus(self) -> bytes:
        return generate_latest(self.registry)


_default_metrics: Optional[HandshakeMetrics] = None
_default_lock = threading.Lock()


def get_metrics() -> HandshakeMetrics:
    """Return the collector bound to the default prometheus registry."""
    global _default_metrics
    with _default_lock:
        if _default_metrics is None:
            _default_metrics = HandshakeMetrics()
        return _default_metrics
