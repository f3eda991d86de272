"""
Connection version table and negotiation.

Shared by the handshake driver and the connection contracts so both sides
agree on what is offered and what gets selected.
"""

from __future__ import annotations

from typing import Sequence, Tuple

from crosslink.blockchain.ibc_types import Version
from crosslink.core.exceptions import VersionNegotiationError

# Ordered by preference
SUPPORTED_VERSIONS: Tuple[Version, ...] = (
    Version("1", ("ORDER_ORDERED", "ORDER_UNORDERED")),
)


def negotiate_version(supported: Sequence[Version], offered: Sequence[Version]) -> Version:
    """
    Pick the connection version both ends accept.

    Walks supported in preference order and returns the first version whose
    identifier is offered, restricted to the features both sides list.

    Raises:
        VersionNegotiationError: No identifier in common, or no common feature
    """
    for version in supported:
        for candidate in offered:
            if candidate.identifier != version.identifier:
                continue
            features = tuple(f for f in version.features if f in candidate.features)
            if features:
                return Version(version.identifier, features)
    raise VersionNegotiationError(
        "No mutually supported connection version",
        details={
            "supported": [v.to_dict() for v in supported],
            "offered": [v.to_dict() for v in offered],
        },
    )
