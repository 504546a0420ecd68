"""
Signing service backends.

``derived`` rebuilds keys in-process from the master key reference and is
for local development only. ``managed`` delegates to a key-management
service so private keys never leave it.
"""

from typing import Optional

import httpx

from shared.config import IdentityConfig
from shared.errors import SignerNotConfiguredError
from .base import SUPPORTED_CHAINS, SigningService, derive_key_path
from .derived import DerivedKeySigningService
from .managed import ManagedKeySigningService


def build_signing_service(config: IdentityConfig, client: Optional[httpx.AsyncClient] = None) -> SigningService:
    """Select the signing backend named by ``config.wallet_signer``."""
    mode = config.wallet_signer.lower()

    if mode == "derived":
        if config.env == "production":
            raise SignerNotConfiguredError("Derived signer is not allowed in production")
        return DerivedKeySigningService(config.wallet_master_key_ref)

    if mode == "managed":
        return ManagedKeySigningService(
            config.kms_url,
            config.wallet_master_key_ref,
            config.wallet_derivation_path,
            timeout=config.kms_timeout,
            client=client,
        )

    raise SignerNotConfiguredError(f"Unknown signer backend: {config.wallet_signer}")


__all__ = [
    "SUPPORTED_CHAINS",
    "SigningService",
    "DerivedKeySigningService",
    "ManagedKeySigningService",
    "build_signing_service",
    "derive_key_path",
]
