"""
Deterministic key derivation signer. DEVELOPMENT ONLY.

The private key is ``sha256(f"{master_key_ref}:{external_identity}")``.
Anyone who knows the master key reference and a user's external identity
can rebuild that user's key: there is no hardware protection and the
master key reference acts as a plain shared secret. Never enable this
backend for real funds.
"""

import hashlib

from eth_keys import keys
from eth_keys.exceptions import ValidationError as EthKeysValidationError

from shared.errors import SignerNotConfiguredError, SigningFailureError
from shared.logging import get_logger
from ..identity.mapper import ExternalIdentity
from .base import SigningService, require_digest


class DerivedKeySigningService(SigningService):
    """In-process signer deriving keys from the master key reference."""

    name = "derived"

    def __init__(self, master_key_ref: str):
        if not master_key_ref:
            raise SignerNotConfiguredError("Derived signer requires a master key reference")
        self._master_key_ref = master_key_ref
        self.logger = get_logger("identity.signing.derived")
        self.logger.warning("Using derived-key signer - NOT FOR PRODUCTION")

    def _private_key(self, external_identity: ExternalIdentity) -> keys.PrivateKey:
        seed = f"{self._master_key_ref}:{external_identity}".encode("utf-8")
        try:
            return keys.PrivateKey(hashlib.sha256(seed).digest())
        except EthKeysValidationError as e:
            # digest outside the secp256k1 scalar range
            raise SigningFailureError("Failed to derive private key") from e

    async def sign(self, external_identity: ExternalIdentity, digest: bytes) -> bytes:
        digest = require_digest(digest)
        signature = self._private_key(external_identity).sign_msg_hash(digest)
        return signature.to_bytes()

    async def get_public_key(self, external_identity: ExternalIdentity) -> bytes:
        return b"\x04" + self._private_key(external_identity).public_key.to_bytes()
