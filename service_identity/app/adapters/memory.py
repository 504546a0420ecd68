"""
In-memory collaborators for local development and tests.
"""

import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from shared.errors import AccountConflictError, UnauthorizedError
from shared.logging import get_logger
from .interfaces import PERMISSION_OWNER_READ, PERMISSION_OWNER_WRITE


@dataclass
class StoredObject:
    value: str
    owner_id: Optional[str]
    permission_read: int
    permission_write: int


class InMemoryStorage:
    """Dict-backed storage.

    ``write(if_absent=True)`` checks and inserts without awaiting in
    between, so it is atomic on a single event loop.
    """

    def __init__(self):
        self._objects: Dict[Tuple[str, str], StoredObject] = {}

    async def read(self, collection: str, key: str, owner_id: Optional[str] = None) -> Optional[str]:
        obj = self._objects.get((collection, key))
        return obj.value if obj is not None else None

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
        if if_absent and (collection, key) in self._objects:
            return False
        self._objects[(collection, key)] = StoredObject(
            value=value,
            owner_id=owner_id,
            permission_read=permission_read,
            permission_write=permission_write,
        )
        return True

    def get_object(self, collection: str, key: str) -> Optional[StoredObject]:
        return self._objects.get((collection, key))


@dataclass
class Account:
    user_id: str
    username: Optional[str] = None
    custom_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class InMemoryAccounts:
    """Account and session store standing in for the host backend."""

    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self._by_custom_id: Dict[str, str] = {}
        self._sessions: Dict[str, str] = {}
        self.logger = get_logger("identity.accounts")

    async def authenticate_custom(self, custom_id: str, username: Optional[str] = None, create: bool = True) -> str:
        user_id = self._by_custom_id.get(custom_id)
        if user_id is not None:
            return user_id
        if not create:
            raise UnauthorizedError("No account exists for this identity")

        user_id = str(uuid.uuid4())
        self.accounts[user_id] = Account(user_id=user_id, username=username, custom_id=custom_id)
        self._by_custom_id[custom_id] = user_id
        self.logger.info("Account created", user_id=user_id)
        return user_id

    async def link_custom(self, user_id: str, custom_id: str) -> None:
        account = self._account(user_id)
        owner = self._by_custom_id.get(custom_id)
        if owner is not None and owner != user_id:
            raise AccountConflictError()
        if account.custom_id and account.custom_id != custom_id:
            self._by_custom_id.pop(account.custom_id, None)
        account.custom_id = custom_id
        self._by_custom_id[custom_id] = user_id

    async def get_external_identity(self, user_id: str) -> Optional[str]:
        return self._account(user_id).custom_id

    async def update_metadata(self, user_id: str, metadata: Dict[str, Any]) -> None:
        self._account(user_id).metadata.update(metadata)

    async def generate_session_token(self, user_id: str) -> str:
        self._account(user_id)
        token = secrets.token_urlsafe(32)
        self._sessions[token] = user_id
        return token

    async def resolve_session(self, token: str) -> Optional[str]:
        return self._sessions.get(token)

    def _account(self, user_id: str) -> Account:
        account = self.accounts.get(user_id)
        if account is None:
            raise UnauthorizedError("Unknown account")
        return account
