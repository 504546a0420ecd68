"""
ID token verification for the identity bridge.
"""

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from jose import jws
from jose.exceptions import JOSEError

from shared.errors import (
    AudienceMismatchError,
    IdentityBridgeError,
    IssuerMismatchError,
    MissingSubjectError,
    TokenExpiredError,
    TokenInvalidError,
    WrongTokenTypeError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..jwks.client import JWKSClient


@dataclass(frozen=True)
class VerifiedIdentity:
    """Claims of an ID token whose signature and registered claims checked out."""

    issuer: str
    audience: str
    subject: str
    token_use: str
    expires_at: int
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    display_name: Optional[str] = None
    picture: Optional[str] = None
    groups: Optional[Tuple[str, ...]] = None
    username: Optional[str] = None
    identity_provider: Optional[str] = None


class TokenValidator:
    """Verifies provider-issued ID tokens against the cached key set."""

    def __init__(
        self,
        jwks_client: JWKSClient,
        issuer: str,
        audience: str,
        *,
        algorithm: str = "RS256",
        token_use: str = "id",
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.jwks_client = jwks_client
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm
        self.token_use = token_use
        self._clock = clock
        self.metrics = metrics
        self.logger = get_logger("identity.validator")

    async def verify_token(self, token: str) -> VerifiedIdentity:
        """Verify a token and return its identity, or raise a coded error."""
        try:
            identity = await self._verify(token)
        except IdentityBridgeError as e:
            self.logger.warning("Token verification failed", code=e.code, error=e.message)
            self._record(e.code)
            raise

        self.logger.info("Token verified successfully", sub=identity.subject)
        self._record("success")
        return identity

    async def _verify(self, token: str) -> VerifiedIdentity:
        if not isinstance(token, str) or not token.strip():
            raise TokenInvalidError("Token is empty")

        token = token.strip()
        if token.startswith("Bearer "):
            token = token[7:].strip()

        header = self._unverified_header(token)

        alg = header.get("alg")
        if alg != self.algorithm:
            raise TokenInvalidError("Unexpected signing algorithm", details={"alg": str(alg)})

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise TokenInvalidError("Token missing key ID")

        # KeyFetchError propagates unchanged so callers can tell an
        # unreachable provider apart from a bad token.
        signing_key = await self.jwks_client.get_key(kid)
        if signing_key is None:
            raise TokenInvalidError("Signing key not found for token", details={"kid": kid})

        claims = self._verified_claims(token, signing_key.key)
        return self._validate_claims(claims)

    @staticmethod
    def _unverified_header(token: str) -> Dict[str, Any]:
        try:
            header = jws.get_unverified_header(token)
        except (JOSEError, ValueError, TypeError) as e:
            raise TokenInvalidError("Token is malformed") from e
        if not isinstance(header, dict):
            raise TokenInvalidError("Token header is not an object")
        return header

    def _verified_claims(self, token: str, key) -> Dict[str, Any]:
        try:
            payload = jws.verify(token, key, algorithms=[self.algorithm])
        except (JOSEError, ValueError, TypeError) as e:
            raise TokenInvalidError("Token signature verification failed") from e

        try:
            claims = json.loads(payload)
        except (ValueError, UnicodeDecodeError) as e:
            raise TokenInvalidError("Token payload is not valid JSON") from e
        if not isinstance(claims, dict):
            raise TokenInvalidError("Token payload is not an object")
        return claims

    def _validate_claims(self, claims: Dict[str, Any]) -> VerifiedIdentity:
        """Check registered claims in a fixed order, failing on the first violation."""
        iss = claims.get("iss")
        if iss != self.issuer:
            raise IssuerMismatchError(details={"expected": self.issuer})

        aud = claims.get("aud")
        if isinstance(aud, str):
            audience_ok = aud == self.audience
        elif isinstance(aud, list):
            audience_ok = any(isinstance(a, str) and a == self.audience for a in aud)
        else:
            audience_ok = False
        if not audience_ok:
            raise AudienceMismatchError(details={"expected": self.audience})

        token_use = claims.get("token_use")
        if token_use != self.token_use:
            raise WrongTokenTypeError(details={"expected": self.token_use})

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise TokenInvalidError("Token has no valid exp claim")
        if not exp > self._clock():
            raise TokenExpiredError()

        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub:
            raise MissingSubjectError()

        return VerifiedIdentity(
            issuer=iss,
            audience=self.audience,
            subject=sub,
            token_use=token_use,
            expires_at=int(exp),
            email=_str_claim(claims, "email"),
            email_verified=_bool_claim(claims, "email_verified"),
            display_name=_str_claim(claims, "name"),
            picture=_str_claim(claims, "picture"),
            groups=_groups_claim(claims),
            username=_str_claim(claims, "cognito:username") or _str_claim(claims, "preferred_username"),
            identity_provider=_identity_provider(claims),
        )

    def _record(self, status: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("token_verifications_total", status=status)


def _str_claim(claims: Dict[str, Any], name: str) -> Optional[str]:
    value = claims.get(name)
    if isinstance(value, str) and value:
        return value
    return None


def _bool_claim(claims: Dict[str, Any], name: str) -> Optional[bool]:
    value = claims.get(name)
    if isinstance(value, bool):
        return value
    # Cognito serializes some booleans as strings
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


def _groups_claim(claims: Dict[str, Any]) -> Optional[Tuple[str, ...]]:
    value = claims.get("cognito:groups", claims.get("groups"))
    if isinstance(value, list):
        groups = tuple(g for g in value if isinstance(g, str) and g)
        return groups or None
    return None


def _identity_provider(claims: Dict[str, Any]) -> Optional[str]:
    identities = claims.get("identities")
    if isinstance(identities, list) and identities and isinstance(identities[0], dict):
        name = identities[0].get("providerName")
        if isinstance(name, str) and name:
            return name
    return None
