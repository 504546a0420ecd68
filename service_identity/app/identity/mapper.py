"""
Maps verified identities onto provider-prefixed external identities.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..validation.token_validator import VerifiedIdentity


@dataclass(frozen=True)
class ExternalIdentity:
    """Durable cross-provider user key, rendered as ``provider:subject``."""

    provider: str
    subject: str

    def __post_init__(self):
        if not self.provider or ":" in self.provider:
            raise ValueError("provider tag must be non-empty and contain no ':'")
        if not self.subject:
            raise ValueError("subject must be non-empty")

    def __str__(self) -> str:
        return f"{self.provider}:{self.subject}"

    @classmethod
    def parse(cls, value: str) -> "ExternalIdentity":
        """Parse a stored ``provider:subject`` string (for collaborator boundaries)."""
        provider, sep, subject = value.partition(":")
        if not sep:
            raise ValueError(f"not an external identity: {value!r}")
        return cls(provider=provider, subject=subject)


def to_external_identity(identity: VerifiedIdentity, provider: str) -> ExternalIdentity:
    return ExternalIdentity(provider=provider, subject=identity.subject)


def extract_user_attributes(identity: VerifiedIdentity) -> Dict[str, Any]:
    """Flatten optional profile claims into account metadata.

    Absent claims are omitted rather than defaulted.
    """
    attributes: Dict[str, Any] = {}
    if identity.email is not None:
        attributes["email"] = identity.email
    if identity.email_verified is not None:
        attributes["email_verified"] = identity.email_verified
    if identity.display_name is not None:
        attributes["name"] = identity.display_name
    if identity.picture is not None:
        attributes["picture"] = identity.picture
    if identity.groups:
        attributes["groups"] = list(identity.groups)
    if identity.identity_provider is not None:
        attributes["provider"] = identity.identity_provider
    return attributes


def select_username(identity: VerifiedIdentity, requested: Optional[str] = None) -> Optional[str]:
    """Pick the username for a new account: requested, then email, then provider username."""
    return requested or identity.email or identity.username
