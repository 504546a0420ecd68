"""
JWKS key cache package.

Fetches the provider's JSON Web Key Set and caches it for a TTL. Lookups
read an immutable snapshot; concurrent misses share one refresh.
"""

from .client import JWKSClient, SigningKey

__all__ = ["JWKSClient", "SigningKey"]
