"""
Collaborator adapters: protocols for the host backend plus in-memory
implementations used by the development host and the tests.
"""

from .interfaces import (
    PERMISSION_NO_WRITE,
    PERMISSION_OWNER_READ,
    AccountCollaborator,
    StorageCollaborator,
    TransactionBroadcaster,
    TransactionPolicy,
)
from .memory import InMemoryAccounts, InMemoryStorage

__all__ = [
    "PERMISSION_NO_WRITE",
    "PERMISSION_OWNER_READ",
    "AccountCollaborator",
    "StorageCollaborator",
    "TransactionBroadcaster",
    "TransactionPolicy",
    "InMemoryAccounts",
    "InMemoryStorage",
]
