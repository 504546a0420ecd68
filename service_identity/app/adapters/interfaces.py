"""
Collaborator interfaces consumed by the identity bridge.

The bridge runs inside a host backend that owns accounts, sessions and
storage. These protocols describe the slice of that host the bridge uses.
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable

PERMISSION_OWNER_READ = 1

PERMISSION_NO_WRITE = 0
PERMISSION_OWNER_WRITE = 1


@runtime_checkable
class StorageCollaborator(Protocol):
    async def read(self, collection: str, key: str, owner_id: Optional[str] = None) -> Optional[str]:
        """Return the stored JSON string, or None if there is no object."""
        ...

    async def write(
        self,
        collection: str,
        key: str,
        value: str,
        *,
        owner_id: Optional[str] = None,
        permission_read: int = PERMISSION_OWNER_READ,
        permission_write: int = PERMISSION_OWNER_WRITE,
        if_absent: bool = False,
    ) -> bool:
        """Store ``value``.

        With ``if_absent`` the write only happens when no object exists yet;
        the return value says whether this call created it.
        """
        ...


@runtime_checkable
class AccountCollaborator(Protocol):
    async def authenticate_custom(self, custom_id: str, username: Optional[str] = None, create: bool = True) -> str:
        """Find or create the account bound to ``custom_id``; returns the user id."""
        ...

    async def link_custom(self, user_id: str, custom_id: str) -> None:
        ...

    async def get_external_identity(self, user_id: str) -> Optional[str]:
        ...

    async def update_metadata(self, user_id: str, metadata: Dict[str, Any]) -> None:
        ...

    async def generate_session_token(self, user_id: str) -> str:
        ...

    async def resolve_session(self, token: str) -> Optional[str]:
        """Return the user id for a session token, or None."""
        ...


@runtime_checkable
class TransactionBroadcaster(Protocol):
    async def broadcast(self, user_id: str, transaction: Any) -> None:
        """Submit a signed transaction to the network."""
        ...


@runtime_checkable
class TransactionPolicy(Protocol):
    async def check(self, user_id: str, request: Any) -> None:
        """Raise to reject a transaction (rate limits, value ceilings, allow-lists)."""
        ...
