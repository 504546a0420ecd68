"""
Token validation package.

Validates ID tokens issued by the upstream identity provider: signature,
issuer, audience, token type, expiry and subject, in that order.
"""

from .token_validator import TokenValidator, VerifiedIdentity

__all__ = ["TokenValidator", "VerifiedIdentity"]
