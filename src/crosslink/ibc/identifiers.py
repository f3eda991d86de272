"""
Client and connection identifier allocation.

Identifiers keep the `{clientType}-{sequence}-{unixTimestamp}` and
`connection-{sequence}-{unixTimestamp}` formats. The sequence is a per-agent
counter that only moves forward, and every issued identifier is remembered so
the same string is never handed out twice even when the clock stalls.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Set


class IdentifierAllocator:
    """Thread-safe, never-repeating identifier source for one chain agent."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._client_sequence = 0
        self._connection_sequence = 0
        self._issued: Set[str] = set()

    def reserve(self, identifier: str) -> None:
        """Mark an externally chosen identifier as taken."""
        with self._lock:
            self._issued.add(identifier)

    def is_issued(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._issued

    def next_client_id(self, client_type: str) -> str:
        with self._lock:
            while True:
                candidate = f"{client_type}-{self._client_sequence}-{int(self._clock())}"
                self._client_sequence += 1
                if candidate not in self._issued:
                    self._issued.add(candidate)
                    return candidate

    def next_connection_id(self) -> str:
        with self._lock:
            while True:
                candidate = f"connection-{self._connection_sequence}-{int(self._clock())}"
                self._connection_sequence += 1
                if candidate not in self._issued:
                    self._issued.add(candidate)
                    return candidate
