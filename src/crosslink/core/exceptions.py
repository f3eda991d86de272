"""
Exception hierarchy for crosslink.

Provides typed exceptions for light client and connection handshake
operations so callers can tell input, liveness, verification and ordering
failures apart without parsing messages.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class CrosslinkError(Exception):
    """Base exception for all crosslink errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Input Errors ====================


class InputError(CrosslinkError):
    """Raised for malformed caller input. Reported immediately, never retried."""
    pass


class InvalidStorageKeyError(InputError):
    """Raised when a storage key is not a 0x-prefixed hex string."""
    pass


class ConfigurationError(InputError):
    """Raised when required configuration is missing or invalid."""
    pass


class HeaderNotSyncedError(InputError):
    """Raised when an operation needs a header snapshot that was never fetched."""
    pass


class ClientNotFoundError(InputError):
    """Raised when a client id has no client state on the chain."""
    pass


# ==================== Liveness Errors ====================


class LivenessError(CrosslinkError):
    """Raised when a chain cannot make observable progress."""
    pass


class HeaderSyncTimeoutError(LivenessError):
    """Raised when no newer header is observed before the sync deadline."""

    def __init__(
        self,
        message: str,
        last_height: Optional[int] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.last_height = last_height
        self.timeout = timeout


class SyncCancelledError(LivenessError):
    """Raised when a header sync wait is cancelled by the caller."""
    pass


class ChainAccessError(CrosslinkError):
    """Raised when the chain RPC cannot be reached or answers with an error."""
    recoverable = True


# ==================== Verification Errors ====================


class VerificationError(CrosslinkError):
    """Raised when the verification layer rejects a submitted message."""
    pass


class TransactionFailedError(VerificationError):
    """Raised when a submitted transaction is rejected or reverts."""

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        revert_reason: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


# ==================== Ordering Errors ====================


class ProofError(CrosslinkError):
    """Raised when a proof cannot be produced from the counterparty's state."""
    pass


class ProofNotFoundError(ProofError):
    """Raised when the requested commitment slot is not committed at the proof height.

    This is how a handshake step attempted before its prerequisite step
    manifests on the counterparty side.
    """

    def __init__(
        self,
        message: str,
        storage_key: Optional[str] = None,
        height: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.storage_key = storage_key
        self.height = height


class HandshakeStateError(CrosslinkError):
    """Raised when the local connection end is not in the state a step requires."""
    pass


class VersionNegotiationError(CrosslinkError):
    """Raised when no connection version is acceptable to both ends."""
    pass


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a recoverable error.

    Args:
        exc: The exception to check

    Returns:
        True if the error is recoverable and the operation can be retried
    """
    if isinstance(exc, CrosslinkError):
        return exc.recoverable

    recoverable_types = (
        ConnectionError,
        TimeoutError,
    )
    return isinstance(exc, recoverable_types)


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, CrosslinkError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, TransactionFailedError):
        if exc.tx_hash:
            context["tx_hash"] = exc.tx_hash
        if exc.revert_reason:
            context["revert_reason"] = exc.revert_reason

    if isinstance(exc, ProofNotFoundError):
        if exc.storage_key is not None:
            context["storage_key"] = exc.storage_key
        if exc.height is not None:
            context["height"] = exc.height

    if isinstance(exc, HeaderSyncTimeoutError):
        if exc.last_height is not None:
            context["last_height"] = exc.last_height
        if exc.timeout is not None:
            context["timeout"] = exc.timeout

    return context
