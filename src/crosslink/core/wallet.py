"""
Signing identity helpers.

Derives the per-chain transaction signing key from a BIP-39 mnemonic along a
fixed BIP-44 path (m/44'/60'/0'/0/0 by default, the first Ethereum account).
"""

from __future__ import annotations

import logging

from bip_utils import Bip32Slip10Secp256k1, Bip39SeedGenerator
from mnemonic import Mnemonic

from crosslink.core.config import HD_DERIVATION_PATH
from crosslink.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def private_key_from_mnemonic(
    mnemonic_phrase: str,
    path: str = HD_DERIVATION_PATH,
    passphrase: str = "",
) -> str:
    """
    Derive a secp256k1 private key from a mnemonic and derivation path.

    Args:
        mnemonic_phrase: BIP-39 mnemonic phrase
        path: BIP-32 derivation path
        passphrase: Optional BIP-39 passphrase

    Returns:
        Private key as 0x-prefixed hex

    Raises:
        ConfigurationError: If the mnemonic is invalid
    """
    if not Mnemonic("english").check(mnemonic_phrase):
        raise ConfigurationError("Invalid BIP-39 mnemonic phrase")

    seed = Bip39SeedGenerator(mnemonic_phrase).Generate(passphrase)
    node = Bip32Slip10Secp256k1.FromSeed(seed).DerivePath(path)
    logger.debug(
        "Derived signing key",
        extra={"event": "wallet.key_derived", "path": path},
    )
    return "0x" + node.PrivateKey().Raw().ToHex()
