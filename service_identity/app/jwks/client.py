"""
JWKS key cache for the identity provider.
"""

import asyncio
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import httpx
from jose import jwk
from jose.backends.base import Key
from jose.exceptions import JOSEError

from shared.errors import KeyFetchError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class SigningKey:
    """A provider public key ready for signature verification."""

    key_id: str
    key: Key
    algorithm: str


_EMPTY: Mapping[str, SigningKey] = MappingProxyType({})


class JWKSClient:
    """Fetches and caches the provider's signing keys.

    The key table is an immutable mapping replaced wholesale on every
    successful refresh, so lookups read a snapshot without locking.
    Concurrent misses share a single in-flight refresh.
    """

    def __init__(
        self,
        jwks_url: str,
        cache_ttl: int = 3600,
        *,
        algorithm: str = "RS256",
        http_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.jwks_url = jwks_url
        self.cache_ttl = cache_ttl
        self.algorithm = algorithm
        self.logger = get_logger("identity.jwks")
        self.metrics = metrics

        self._client = client or httpx.AsyncClient(timeout=http_timeout)
        self._owns_client = client is None

        self._keys: Mapping[str, SigningKey] = _EMPTY
        self._last_refresh: float = 0.0
        self._refresh_task: Optional[asyncio.Task] = None

    async def close(self) -> None:
        """Close the underlying HTTP client if this cache created it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def keys(self) -> Mapping[str, SigningKey]:
        return self._keys

    def is_stale(self) -> bool:
        return self._last_refresh == 0.0 or (time.monotonic() - self._last_refresh) >= self.cache_ttl

    async def get_key(self, kid: str) -> Optional[SigningKey]:
        """Return the key for ``kid``, refreshing once on miss or expiry.

        Returns None when the key is still absent after a refresh. Raises
        KeyFetchError when the refresh itself fails; the previous table is
        kept in that case.
        """
        key = self._keys.get(kid)
        if key is not None and not self.is_stale():
            return key

        await self.refresh()

        key = self._keys.get(kid)
        if key is None:
            self.logger.warning("Key not found", kid=kid)
        return key

    async def refresh(self) -> Mapping[str, SigningKey]:
        """Fetch the key set, joining a refresh that is already running."""
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.ensure_future(self._fetch_and_swap())
            self._refresh_task = task
        # shield: a cancelled waiter must not abort the shared fetch
        return await asyncio.shield(task)

    async def _fetch_and_swap(self) -> Mapping[str, SigningKey]:
        started = time.monotonic()
        self.logger.info("Fetching JWKS", url=self.jwks_url)
        try:
            document = await self._fetch_document()
        except KeyFetchError:
            self._record_refresh("error", started)
            raise

        keys = self._parse_keys(document)
        self._keys = MappingProxyType(keys)
        self._last_refresh = time.monotonic()
        self._record_refresh("success", started)
        self.logger.info("JWKS refreshed successfully", keys_count=len(keys))
        return self._keys

    async def _fetch_document(self) -> Dict[str, Any]:
        try:
            response = await self._client.get(self.jwks_url)
            response.raise_for_status()
            document = response.json()
        except httpx.HTTPStatusError as e:
            self.logger.error("JWKS endpoint returned an error", status_code=e.response.status_code)
            raise KeyFetchError(details={"status_code": e.response.status_code}) from e
        except httpx.HTTPError as e:
            self.logger.error("Failed to fetch JWKS", error=type(e).__name__)
            raise KeyFetchError() from e
        except ValueError as e:
            self.logger.error("JWKS response is not valid JSON")
            raise KeyFetchError("Key set response is not valid JSON") from e

        if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
            self.logger.error("JWKS response missing 'keys' array")
            raise KeyFetchError("Key set response missing 'keys' array")
        return document

    def _parse_keys(self, document: Dict[str, Any]) -> Dict[str, SigningKey]:
        keys: Dict[str, SigningKey] = {}
        for entry in document["keys"]:
            if not isinstance(entry, dict):
                continue
            kid = entry.get("kid")
            if not isinstance(kid, str) or not kid:
                self.logger.warning("Skipping JWK without kid")
                continue
            if entry.get("kty") != "RSA":
                continue
            if entry.get("use", "sig") != "sig":
                continue
            alg = entry.get("alg", self.algorithm)
            if alg != self.algorithm:
                self.logger.warning("Skipping JWK with unexpected algorithm", kid=kid, alg=alg)
                continue
            try:
                key = jwk.construct(entry, algorithm=self.algorithm)
            except (JOSEError, ValueError, TypeError) as e:
                self.logger.warning("Failed to convert JWK to RSA public key", kid=kid, error=str(e))
                continue
            keys[kid] = SigningKey(key_id=kid, key=key, algorithm=alg)
        return keys

    def _record_refresh(self, status: str, started: float) -> None:
        if self.metrics is None:
            return
        self.metrics.increment_counter("jwks_refresh_total", status=status)
        self.metrics.get_metric("jwks_refresh_duration_seconds").observe(time.monotonic() - started)

    def clear_cache(self):
        """Drop all cached keys so the next lookup fetches the key set."""
        self._keys = _EMPTY
        self._last_refresh = 0.0
        self.logger.info("JWKS cache cleared")
