"""
Header progress polling.

wait_for_progress() repeatedly fetches a value until a monotonic-progress
predicate accepts it, a deadline passes, or the caller cancels. Chain access
failures are not retried here: the first ChainAccessError from fetch
propagates to the caller.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from crosslink.core.exceptions import HeaderSyncTimeoutError, SyncCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def wait_for_progress(
    fetch: Callable[[], T],
    is_newer: Callable[[T], bool],
    *,
    timeout: float,
    poll_interval: float,
    cancel: Optional[threading.Event] = None,
    describe: Optional[Callable[[T], Optional[int]]] = None,
) -> T:
    """
    Poll fetch() until is_newer() accepts the result.

    Args:
        fetch: Callable returning the current observation (e.g. latest contract state)
        is_newer: Predicate deciding whether the observation shows progress
        timeout: Seconds before giving up
        poll_interval: Seconds to sleep between polls
        cancel: Event that aborts the wait when set
        describe: Maps an observation to a height for error reporting

    Returns:
        The first observation accepted by is_newer

    Raises:
        HeaderSyncTimeoutError: No progress before the deadline
        SyncCancelledError: cancel was set
    """
    deadline = time.monotonic() + timeout
    cancel = cancel or threading.Event()
    last_height: Optional[int] = None
    attempts = 0

    while True:
        if cancel.is_set():
            raise SyncCancelledError(
                "Header sync cancelled",
                details={"attempts": attempts, "last_height": last_height},
            )

        observed = fetch()
        attempts += 1
        if is_newer(observed):
            logger.debug(
                "Observed header progress",
                extra={"event": "header_sync.progress", "attempts": attempts},
            )
            return observed
        if describe is not None:
            last_height = describe(observed)

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning(
                "No header progress before deadline",
                extra={
                    "event": "header_sync.timeout",
                    "timeout": timeout,
                    "attempts": attempts,
                    "last_height": last_height,
                },
            )
            raise HeaderSyncTimeoutError(
                f"No newer header observed within {timeout}s",
                last_height=last_height,
                timeout=timeout,
            )

        # Event.wait doubles as an interruptible sleep
        if cancel.wait(min(poll_interval, remaining)):
            raise SyncCancelledError(
                "Header sync cancelled",
                details={"attempts": attempts, "last_height": last_height},
            )
