"""
Signer backed by an external key-management service.

Private keys stay inside the KMS. The service speaks a small JSON API:

    POST {kms_url}/v1/keys/public-key  {"keyHandle"}
        -> {"publicKey": base64 DER SubjectPublicKeyInfo}
    POST {kms_url}/v1/keys/sign        {"keyHandle", "digest", "signingAlgorithm", "messageType"}
        -> {"signature": base64 DER ECDSA signature}

DER signatures are normalized to low-s and given a recovery id so they
can be used directly in EVM transactions.
"""

import base64
from typing import Any, Dict, Optional

import httpx
from cachetools import LRUCache
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_der_public_key,
)
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError as EthKeysValidationError

from shared.errors import SignerNotConfiguredError, SigningFailureError
from shared.logging import get_logger
from ..identity.mapper import ExternalIdentity
from .base import SigningService, derive_key_path, require_digest

SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

PUBLIC_KEY_CACHE_SIZE = 10_000


def key_handle_for(master_key_id: str, derivation_path: str, external_identity: ExternalIdentity) -> str:
    """KMS key handle for one user: master key id plus the per-user derivation path."""
    return f"{master_key_id}/{derive_key_path(derivation_path, external_identity)}"


def normalize_s(s: int) -> int:
    return SECP256K1_N - s if s > SECP256K1_HALF_N else s


def recoverable_signature(digest: bytes, r: int, s: int, public_key: bytes) -> bytes:
    """Find the recovery id for (r, s) that yields ``public_key``; return r || s || v."""
    expected = public_key[1:] if len(public_key) == 65 else public_key
    for v in (0, 1):
        try:
            signature = keys.Signature(vrs=(v, r, s))
            recovered = signature.recover_public_key_from_msg_hash(digest)
        except (BadSignature, EthKeysValidationError):
            continue
        if recovered.to_bytes() == expected:
            return signature.to_bytes()
    raise SigningFailureError("Signature does not recover to the signer's public key")


class ManagedKeySigningService(SigningService):
    """Signs through a remote KMS; only public keys and signatures cross the wire."""

    name = "managed"

    def __init__(
        self,
        kms_url: Optional[str],
        master_key_id: str,
        derivation_path: str,
        *,
        timeout: float = 5.0,
        public_key_cache_size: int = PUBLIC_KEY_CACHE_SIZE,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not kms_url:
            raise SignerNotConfiguredError("Managed signer requires a KMS URL")
        if not master_key_id:
            raise SignerNotConfiguredError("Managed signer requires a master key reference")

        self.kms_url = kms_url.rstrip("/")
        self.master_key_id = master_key_id
        self.derivation_path = derivation_path
        self.logger = get_logger("identity.signing.managed")

        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._public_keys: LRUCache = LRUCache(maxsize=public_key_cache_size)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def key_handle(self, external_identity: ExternalIdentity) -> str:
        return key_handle_for(self.master_key_id, self.derivation_path, external_identity)

    async def get_public_key(self, external_identity: ExternalIdentity) -> bytes:
        handle = self.key_handle(external_identity)
        cached = self._public_keys.get(handle)
        if cached is not None:
            return cached

        body = await self._post("/v1/keys/public-key", {"keyHandle": handle})
        public_key = _decode_public_key(body.get("publicKey"))
        self._public_keys[handle] = public_key
        return public_key

    async def sign(self, external_identity: ExternalIdentity, digest: bytes) -> bytes:
        digest = require_digest(digest)
        public_key = await self.get_public_key(external_identity)

        body = await self._post(
            "/v1/keys/sign",
            {
                "keyHandle": self.key_handle(external_identity),
                "digest": base64.b64encode(digest).decode("ascii"),
                "signingAlgorithm": "ECDSA_SHA_256",
                "messageType": "DIGEST",
            },
        )
        r, s = _decode_signature(body.get("signature"))
        return recoverable_signature(digest, r, normalize_s(s), public_key)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(f"{self.kms_url}{path}", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            self.logger.error("KMS request failed", path=path, status_code=e.response.status_code)
            raise SigningFailureError(
                "Key management service rejected the request",
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            self.logger.error("KMS unreachable", path=path, error=type(e).__name__)
            raise SigningFailureError("Key management service unavailable") from e
        except ValueError as e:
            raise SigningFailureError("Key management service returned invalid JSON") from e

        if not isinstance(body, dict):
            raise SigningFailureError("Key management service returned an unexpected response")
        return body


def _b64decode(value: Any, what: str) -> bytes:
    if not isinstance(value, str) or not value:
        raise SigningFailureError(f"Key management service response missing {what}")
    try:
        return base64.b64decode(value, validate=True)
    except ValueError as e:
        raise SigningFailureError(f"Key management service returned a malformed {what}") from e


def _decode_public_key(value: Any) -> bytes:
    der = _b64decode(value, "public key")
    try:
        key = load_der_public_key(der)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise SigningFailureError("Key management service returned a malformed public key") from e
    if not isinstance(key, ec.EllipticCurvePublicKey) or not isinstance(key.curve, ec.SECP256K1):
        raise SigningFailureError("Key management service key is not secp256k1")
    return key.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)


def _decode_signature(value: Any):
    der = _b64decode(value, "signature")
    try:
        r, s = decode_dss_signature(der)
    except ValueError as e:
        raise SigningFailureError("Key management service returned a malformed signature") from e
    if not (0 < r < SECP256K1_N and 0 < s < SECP256K1_N):
        raise SigningFailureError("Key management service returned an out-of-range signature")
    return r, s
