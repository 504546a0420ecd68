"""
Signing service abstraction for custodial wallets.
"""

import hashlib
from abc import ABC, abstractmethod

from eth_keys import keys
from eth_keys.exceptions import ValidationError as EthKeysValidationError

from shared.errors import SigningFailureError, UnsupportedChainError
from ..identity.mapper import ExternalIdentity

SUPPORTED_CHAINS = frozenset({"evm"})

SIGNATURE_LENGTH = 65
DIGEST_LENGTH = 32


def require_supported_chain(chain: str) -> None:
    if chain not in SUPPORTED_CHAINS:
        raise UnsupportedChainError(f"Unsupported chain: {chain}", details={"chain": chain})


def require_digest(digest: bytes) -> bytes:
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_LENGTH:
        raise SigningFailureError("Digest must be exactly 32 bytes")
    return bytes(digest)


def identity_digest(external_identity: ExternalIdentity) -> str:
    """Full sha256 hex of the external identity; distinct identities never share it in practice."""
    return hashlib.sha256(str(external_identity).encode("utf-8")).hexdigest()


def derive_key_path(base_path: str, external_identity: ExternalIdentity) -> str:
    """Per-user derivation path: the base path plus the full identity digest."""
    return f"{base_path}/{identity_digest(external_identity)}"


def evm_address_from_public_key(public_key: bytes) -> str:
    """Checksummed EVM address for a 65-byte uncompressed (or 64-byte raw) secp256k1 key."""
    if len(public_key) == 65 and public_key[0] == 0x04:
        public_key = public_key[1:]
    try:
        return keys.PublicKey(public_key).to_checksum_address()
    except EthKeysValidationError as e:
        raise SigningFailureError("Signing backend returned an invalid public key") from e


class SigningService(ABC):
    """Signs digests on behalf of external identities.

    Implementations are deterministic per (master key, external identity)
    and never hand private key material back to the caller.
    """

    name = "abstract"

    @abstractmethod
    async def sign(self, external_identity: ExternalIdentity, digest: bytes) -> bytes:
        """Sign a 32-byte digest; returns ``r || s || v`` with ``v`` in {0, 1}."""
        raise NotImplementedError

    @abstractmethod
    async def get_public_key(self, external_identity: ExternalIdentity) -> bytes:
        """Return the 65-byte uncompressed secp256k1 public key for the identity."""
        raise NotImplementedError

    async def get_address(self, external_identity: ExternalIdentity, chain: str) -> str:
        """Derive the on-chain address for the identity on ``chain``."""
        require_supported_chain(chain)
        public_key = await self.get_public_key(external_identity)
        return evm_address_from_public_key(public_key)

    async def close(self) -> None:
        """Release any held resources."""
        return None
